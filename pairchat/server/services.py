from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from pairchat.core.directory import ConversationDirectory
from pairchat.core.messages import MessageStore
from pairchat.core.relay import SignalingRelay
from pairchat.core.rooms import ConnectionRegistry, RoomBroker
from pairchat.core.store import ChatStore


@dataclass(slots=True)
class ChatServices:
    """Process-scoped wiring shared by the HTTP API and the realtime runtime."""

    store: ChatStore
    directory: ConversationDirectory
    messages: MessageStore
    registry: ConnectionRegistry
    broker: RoomBroker
    relay: SignalingRelay

    @classmethod
    def build(cls, store: ChatStore, registry: Optional[ConnectionRegistry] = None) -> "ChatServices":
        registry = registry or ConnectionRegistry()
        return cls(
            store=store,
            directory=ConversationDirectory(store),
            messages=MessageStore(store),
            registry=registry,
            broker=RoomBroker(registry),
            relay=SignalingRelay(registry),
        )
