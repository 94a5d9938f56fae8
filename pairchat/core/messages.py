from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Callable, List

from .errors import require
from .models import ConversationSummary, Message, utcnow
from .store import ChatStore

log = logging.getLogger("pairchat.messages")


class MessageStore:
    """Append-only message log plus the per-user conversation listing."""

    def __init__(
        self,
        store: ChatStore,
        id_factory: Callable[[], str] = lambda: uuid.uuid4().hex,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.id_factory = id_factory
        self.clock = clock

    async def append(self, conversation_id: str, sender_id: str, receiver_id: str, body: str) -> Message:
        require(
            "conversationId, senderUsername, receiverUsername and message are required",
            conversationId=conversation_id,
            senderUsername=sender_id,
            receiverUsername=receiver_id,
            message=body,
        )
        message = Message(
            id=self.id_factory(),
            conversation_id=conversation_id,
            sender_username=sender_id,
            receiver_username=receiver_id,
            message=body,
            whosend=sender_id,
            timestamp=self.clock(),
        )
        await self.store.insert_message(message)
        log.debug("Stored message %s in %s", message.id, conversation_id)
        return message

    async def list_by_conversation(self, conversation_id: str) -> List[Message]:
        # unknown or empty ids are simply empty conversations
        if not conversation_id:
            return []
        return await self.store.messages_for(conversation_id)

    async def list_conversations_for(self, user_id: str) -> List[ConversationSummary]:
        if not user_id:
            return []
        conversations = await self.store.conversations_for(user_id)
        return [
            ConversationSummary(
                conversation_id=c.conversation_id,
                other_participant_id=c.counterpart(user_id),
            )
            for c in conversations
        ]
