from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import uvicorn
import websockets
from websockets.asyncio.server import Server, ServerConnection, serve

from pairchat.core import proto
from pairchat.core.errors import ValidationError
from pairchat.core.rooms import AddressInUse
from pairchat.core.store import ChatStore
from pairchat.utils import canonical

from .api import create_app
from .services import ChatServices

log = logging.getLogger("pairchat.server.runtime")


@dataclass(slots=True, eq=False)
class Connection:
    websocket: ServerConnection
    sid: str = field(default_factory=lambda: uuid.uuid4().hex)
    send_lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    async def send(self, frame: Dict[str, Any]) -> None:
        text = canonical.dumps(frame)
        # one writer at a time keeps per-connection order FIFO
        async with self.send_lock:
            try:
                await self.websocket.send(text)
            except websockets.ConnectionClosed as exc:
                raise ConnectionError(f"connection {self.sid} is closed") from exc


class ServerRuntime:
    """Realtime WebSocket surface plus the HTTP API, sharing one event loop."""

    def __init__(self, config: Dict[str, Any]) -> None:
        self.cfg = config
        self.ws_host, self.ws_port = self._parse_listen(config.get("ws_listen") or "0.0.0.0:3001")
        http_listen = config.get("http_listen", "0.0.0.0:3000")
        self.http_addr = self._parse_listen(http_listen) if http_listen else None
        self.db_path = config.get("db_path", "pairchat.db")
        self.log_level = str(config.get("log_level", "INFO")).lower()

        self.services = ChatServices.build(ChatStore(self.db_path))
        self._connections: list[Connection] = []

        self._ws_server: Optional[Server] = None
        self._http_server: Optional[uvicorn.Server] = None
        self._tasks: list[asyncio.Task] = []

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        await self.services.store.open()

        self._ws_server = await serve(self._handle_connection, self.ws_host, self.ws_port)
        log.info("Realtime server listening on ws://%s:%d", self.ws_host, self.ws_port)

        if self.http_addr is not None:
            host, port = self.http_addr
            config = uvicorn.Config(
                create_app(self.services),
                host=host,
                port=port,
                log_level=self.log_level,
                lifespan="off",
            )
            self._http_server = uvicorn.Server(config)
            self._tasks.append(asyncio.create_task(self._http_server.serve(), name="http"))
            log.info("HTTP API listening on http://%s:%d", host, port)

    async def stop(self) -> None:
        if self._http_server is not None:
            self._http_server.should_exit = True
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()
        self._http_server = None

        for conn in list(self._connections):
            await conn.websocket.close()
        self._connections.clear()

        if self._ws_server is not None:
            self._ws_server.close()
            await self._ws_server.wait_closed()
            self._ws_server = None

        self.services.registry.clear()
        await self.services.store.close()

    # ------------------------------------------------------------------
    # Connection handling
    # ------------------------------------------------------------------

    async def _handle_connection(self, websocket: ServerConnection) -> None:
        conn = Connection(websocket=websocket)
        self._connections.append(conn)
        self.services.registry.add(conn)
        log.info("Client %s connected from %s", conn.sid, self._fmt_remote(websocket))
        try:
            await conn.send(proto.build_frame(proto.CONNECTED, {"sid": conn.sid}))
            async for raw in websocket:
                try:
                    frame = proto.Frame.model_validate(canonical.loads(raw))
                except ValueError:
                    await self._send_error(conn, "BAD_FRAME", "invalid frame")
                    continue
                await self._dispatch(conn, frame)
        except (websockets.ConnectionClosed, ConnectionError):
            pass
        finally:
            self._on_disconnect(conn)
            try:
                self._connections.remove(conn)
            except ValueError:
                pass

    async def _dispatch(self, conn: Connection, frame: proto.Frame) -> None:
        type_ = frame.type
        if type_ == proto.JOIN_CONVERSATION:
            await self._handle_join(conn, frame)
        elif type_ in proto.SIGNAL_KINDS:
            await self._handle_signal(conn, frame)
        elif type_ == proto.REGISTER_PEER:
            await self._handle_register(conn, frame)
        elif type_ == proto.PING:
            await conn.send(proto.build_frame(proto.PONG, frame.payload))
        else:
            await self._send_error(conn, "UNKNOWN_TYPE", f"unsupported type {type_}")

    async def _handle_join(self, conn: Connection, frame: proto.Frame) -> None:
        try:
            conversation_id = proto.conversation_id_of(frame.payload)
            self.services.broker.join(conn, conversation_id)
        except (ValueError, ValidationError) as exc:
            await self._send_error(conn, "MISSING_FIELD", str(exc))

    async def _handle_signal(self, conn: Connection, frame: proto.Frame) -> None:
        try:
            signal = proto.parse_signal(frame.type, frame.payload)
        except ValueError:
            await self._send_error(conn, "MISSING_FIELD", f"{frame.type} needs a target address")
            return
        log.debug("%s from %s to %s", signal.kind, conn.sid, signal.target)
        await self.services.relay.relay(signal)

    async def _handle_register(self, conn: Connection, frame: proto.Frame) -> None:
        try:
            peer_id = proto.peer_id_of(frame.payload)
        except ValueError as exc:
            await self._send_error(conn, "MISSING_FIELD", str(exc))
            return
        try:
            self.services.registry.bind_address(conn, peer_id)
        except AddressInUse as exc:
            await self._send_error(conn, "ADDRESS_IN_USE", str(exc))
            return
        log.info("Connection %s registered as %s", conn.sid, peer_id)

    def _on_disconnect(self, conn: Connection) -> None:
        rooms = self.services.broker.leave_all(conn)
        log.info("Client %s disconnected (left %d room(s))", conn.sid, len(rooms))

    # ------------------------------------------------------------------
    # Utilities
    # ------------------------------------------------------------------

    async def _send_error(self, conn: Connection, code: str, detail: str) -> None:
        await conn.send(proto.build_frame(proto.ERROR, {"code": code, "detail": detail}))

    @staticmethod
    def _parse_listen(value: str) -> tuple[str, int]:
        host, port = value.rsplit(":", 1)
        return host, int(port)

    @staticmethod
    def _fmt_remote(websocket: ServerConnection) -> str:
        peer = websocket.remote_address
        if isinstance(peer, tuple):
            return f"{peer[0]}:{peer[1]}"
        return str(peer)


__all__ = ["Connection", "ServerRuntime"]
