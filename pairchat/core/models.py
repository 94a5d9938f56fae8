from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Tuple

from pydantic import BaseModel, ConfigDict, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Conversation(BaseModel):
    """A unique unordered pair of participants and the id used as its room key."""

    conversation_id: str = Field(alias="conversationId")
    participants: Tuple[str, str]
    created_at: datetime = Field(default_factory=utcnow, alias="createdAt")

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    def counterpart(self, user_id: str) -> str:
        first, second = self.participants
        return second if first == user_id else first


class Message(BaseModel):
    """Stored chat message. Aliases are the external field names."""

    id: str = Field(alias="_id")
    conversation_id: str = Field(alias="conversationId")
    sender_username: str = Field(alias="senderUsername")
    receiver_username: str = Field(alias="receiverUsername")
    message: str
    whosend: str
    timestamp: datetime = Field(default_factory=utcnow)

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class ConversationSummary(BaseModel):
    conversation_id: str = Field(alias="conversationId")
    other_participant_id: str = Field(alias="otherParticipantId")

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


__all__ = ["Conversation", "Message", "ConversationSummary", "utcnow"]
