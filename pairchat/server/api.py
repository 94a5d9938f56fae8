"""HTTP API: thin handlers over the directory, the message store and the broker."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from pairchat.core.errors import ChatError

from .services import ChatServices

log = logging.getLogger("pairchat.server.api")


class CreateConversationBody(BaseModel):
    senderUsername: Optional[str] = None
    receiverUsername: Optional[str] = None


class SendMessageBody(BaseModel):
    conversationId: Optional[str] = None
    senderUsername: Optional[str] = None
    receiverUsername: Optional[str] = None
    message: Optional[str] = None


def create_app(services: ChatServices) -> FastAPI:
    app = FastAPI(title="pairchat")
    app.state.services = services

    @app.exception_handler(ChatError)
    async def _chat_error(request: Request, exc: ChatError) -> JSONResponse:
        if exc.http_status >= 500:
            log.error("%s %s failed: %s", request.method, request.url.path, exc.message, exc_info=exc.__cause__)
        return JSONResponse(status_code=exc.http_status, content={"message": exc.message, "code": exc.code})

    @app.exception_handler(RequestValidationError)
    async def _bad_request(request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"message": "malformed request body", "code": "BAD_REQUEST"})

    @app.post("/api/conversations")
    async def create_conversation(body: CreateConversationBody) -> Dict[str, str]:
        conversation_id = await services.directory.resolve(body.senderUsername, body.receiverUsername)
        return {"conversationId": conversation_id}

    @app.get("/api/messages/conversation/{conversation_id}")
    async def list_messages(conversation_id: str) -> List[Dict[str, Any]]:
        messages = await services.messages.list_by_conversation(conversation_id)
        return [m.to_wire() for m in messages]

    @app.get("/api/messages/list/{sender_username}")
    async def list_conversations(sender_username: str) -> List[Dict[str, Any]]:
        log.debug("Listing conversations for %s", sender_username)
        summaries = await services.messages.list_conversations_for(sender_username)
        return [s.to_wire() for s in summaries]

    @app.post("/api/messages")
    async def send_message(body: SendMessageBody) -> Dict[str, Any]:
        stored = await services.messages.append(
            body.conversationId, body.senderUsername, body.receiverUsername, body.message
        )
        wire = stored.to_wire()
        # the sender's own socket gets the echo too if it joined the room
        await services.broker.broadcast(stored.conversation_id, wire)
        return wire

    @app.get("/health")
    async def health() -> Dict[str, Any]:
        registry = services.registry
        return {"status": "ok", "connections": registry.connection_count, "rooms": registry.room_count}

    return app


__all__ = ["create_app", "CreateConversationBody", "SendMessageBody"]
