from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, FrozenSet, List, Optional, Protocol, Set, Tuple

from .errors import require
from .proto import NEW_MESSAGE, build_frame


"""
Realtime room broker
--------------------
ConnectionRegistry is the process-scoped table of live connections. It answers
two questions:
  • which connection owns a peer address (its sid, plus any registered peer ids)
  • which connections are members of a conversation room

RoomBroker layers join / leave / broadcast on top of it; SignalingRelay reads
the same registry for peer-addressed delivery.

All mutation happens on the event loop thread. Nothing here awaits while
mutating, so no locking is needed. remove() is synchronous on purpose: a
disconnect is fully applied before the next event is dispatched.
"""


log = logging.getLogger("pairchat.rooms")


class Endpoint(Protocol):
    """What the broker needs from a live connection."""

    sid: str

    async def send(self, frame: Dict[str, Any]) -> None:
        ...


class AddressInUse(ValueError):
    pass


class ConnectionRegistry:
    def __init__(self) -> None:
        self._by_address: Dict[str, Endpoint] = {}
        self._aliases: Dict[str, Set[str]] = {}       # sid -> registered peer ids
        self._rooms: Dict[str, Set[Endpoint]] = {}    # conversation id -> members
        self._memberships: Dict[str, Set[str]] = {}   # sid -> conversation ids

    # ------------------------------------------------------------------
    # Connections & addresses
    # ------------------------------------------------------------------

    def add(self, conn: Endpoint) -> None:
        self._by_address[conn.sid] = conn
        self._aliases.setdefault(conn.sid, set())
        self._memberships.setdefault(conn.sid, set())

    def bind_address(self, conn: Endpoint, address: str) -> None:
        """Register an extra peer address for conn. Last writer wins, except
        that another live connection's sid can never be taken over."""
        current = self._by_address.get(address)
        if current is conn:
            return
        if current is not None:
            if current.sid == address:
                raise AddressInUse(f"{address} is a live connection id")
            self._aliases.get(current.sid, set()).discard(address)
            log.info("Peer address %s moved from %s to %s", address, current.sid, conn.sid)
        self._by_address[address] = conn
        self._aliases.setdefault(conn.sid, set()).add(address)

    def lookup(self, address: str) -> Optional[Endpoint]:
        return self._by_address.get(address)

    def remove(self, conn: Endpoint) -> List[str]:
        """Drop conn from every table. Returns the rooms it was in."""
        rooms = sorted(self._memberships.pop(conn.sid, ()))
        for room in rooms:
            members = self._rooms.get(room)
            if members is None:
                continue
            members.discard(conn)
            if not members:
                del self._rooms[room]
        for address in self._aliases.pop(conn.sid, set()) | {conn.sid}:
            if self._by_address.get(address) is conn:
                del self._by_address[address]
        return rooms

    def clear(self) -> None:
        self._by_address.clear()
        self._aliases.clear()
        self._rooms.clear()
        self._memberships.clear()

    # ------------------------------------------------------------------
    # Rooms
    # ------------------------------------------------------------------

    def join(self, conn: Endpoint, room: str) -> bool:
        members = self._rooms.setdefault(room, set())
        if conn in members:
            return False
        members.add(conn)
        self._memberships.setdefault(conn.sid, set()).add(room)
        return True

    def members(self, room: str) -> Tuple[Endpoint, ...]:
        return tuple(self._rooms.get(room, ()))

    def rooms_of(self, conn: Endpoint) -> FrozenSet[str]:
        return frozenset(self._memberships.get(conn.sid, ()))

    @property
    def connection_count(self) -> int:
        return len(self._memberships)

    @property
    def room_count(self) -> int:
        return len(self._rooms)


class RoomBroker:
    """Conversation-scoped fanout."""

    def __init__(self, registry: ConnectionRegistry) -> None:
        self.registry = registry

    def join(self, conn: Endpoint, conversation_id: str) -> bool:
        require("conversationId is required", conversationId=conversation_id)
        added = self.registry.join(conn, conversation_id)
        if added:
            log.info("Connection %s joined conversation %s", conn.sid, conversation_id)
        return added

    def leave_all(self, conn: Endpoint) -> List[str]:
        rooms = self.registry.remove(conn)
        if rooms:
            log.debug("Connection %s left %d room(s)", conn.sid, len(rooms))
        return rooms

    async def broadcast(self, conversation_id: str, payload: Any, *, event: str = NEW_MESSAGE) -> int:
        """Send payload to every current member of the room, the sender included.

        Membership is snapshotted before the first send. Members whose send
        fails are skipped. Returns the number of successful deliveries.
        """
        members = self.registry.members(conversation_id)
        if not members:
            return 0
        frame = build_frame(event, payload)
        results = await asyncio.gather(*(m.send(frame) for m in members), return_exceptions=True)
        delivered = 0
        for member, result in zip(members, results):
            if isinstance(result, ConnectionError):
                log.debug("Skipped closed connection %s in %s", member.sid, conversation_id)
            elif isinstance(result, BaseException):
                log.warning("Delivery to %s in %s failed: %r", member.sid, conversation_id, result)
            else:
                delivered += 1
        return delivered


__all__ = ["Endpoint", "AddressInUse", "ConnectionRegistry", "RoomBroker"]
