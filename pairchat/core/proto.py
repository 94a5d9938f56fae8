from __future__ import annotations

import time
from typing import Annotated, Any, Dict, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator


# ---------------------------------------------------------------------------
# Event names (realtime surface)
# ---------------------------------------------------------------------------

# inbound
JOIN_CONVERSATION = "joinConversation"
REGISTER_PEER = "registerPeer"
OFFER = "offer"
ANSWER = "answer"
ICE_CANDIDATE = "ice-candidate"
PING = "ping"

# outbound
CONNECTED = "connected"
NEW_MESSAGE = "newMessage"
ERROR = "error"
PONG = "pong"

SIGNAL_KINDS = (OFFER, ANSWER, ICE_CANDIDATE)

ERROR_CODES = {
    "BAD_FRAME",
    "UNKNOWN_TYPE",
    "MISSING_FIELD",
    "ADDRESS_IN_USE",
}


# ---------------------------------------------------------------------------
# Frame model & helpers
# ---------------------------------------------------------------------------

class Frame(BaseModel):
    """JSON frame carried over the WebSocket in both directions."""

    type: str = Field(min_length=1)
    ts: int = Field(default_factory=lambda: now_ms())
    payload: Any = None

    model_config = ConfigDict(extra="ignore")

    @field_validator("ts")
    @classmethod
    def _ts_non_negative(cls, value: int) -> int:
        if value < 0:
            raise ValueError("timestamp must be non-negative")
        return value


def now_ms() -> int:
    """Milliseconds since the Unix epoch."""

    return int(time.time() * 1000)


def build_frame(type: str, payload: Any, *, ts: int | None = None) -> Dict[str, Any]:
    return {
        "type": type,
        "ts": now_ms() if ts is None else ts,
        "payload": payload,
    }


def conversation_id_of(payload: Any) -> str:
    """Extract the room key from a joinConversation payload (bare string or object)."""

    if isinstance(payload, dict):
        payload = payload.get("conversationId")
    if not isinstance(payload, str) or not payload:
        raise ValueError("conversationId is required")
    return payload


def peer_id_of(payload: Any) -> str:
    if isinstance(payload, dict):
        payload = payload.get("peerId")
    if not isinstance(payload, str) or not payload:
        raise ValueError("peerId is required")
    return payload


# ---------------------------------------------------------------------------
# Signaling (tagged union over the three call-setup kinds)
# ---------------------------------------------------------------------------

# Older clients name the target per kind instead of using targetAddress.
LEGACY_TARGET_KEYS = {
    OFFER: "receiverId",
    ANSWER: "callerId",
    ICE_CANDIDATE: "targetId",
}


class _Signal(BaseModel):
    target: str = Field(min_length=1)
    payload: Dict[str, Any]

    model_config = ConfigDict(frozen=True)


class OfferSignal(_Signal):
    kind: Literal["offer"] = "offer"


class AnswerSignal(_Signal):
    kind: Literal["answer"] = "answer"


class IceCandidateSignal(_Signal):
    kind: Literal["ice-candidate"] = "ice-candidate"


Signal = Annotated[
    Union[OfferSignal, AnswerSignal, IceCandidateSignal],
    Field(discriminator="kind"),
]

_signal_adapter: TypeAdapter[Signal] = TypeAdapter(Signal)


def parse_signal(kind: str, payload: Any) -> Signal:
    """Validate a call-setup payload for relay.

    Only the presence of a target address is checked; the payload itself is
    kept verbatim. Raises ValueError (pydantic's ValidationError) otherwise.
    """

    if not isinstance(payload, dict):
        raise ValueError("signaling payload must be an object")
    target = payload.get("targetAddress")
    if target is None:
        target = payload.get(LEGACY_TARGET_KEYS.get(kind, "targetAddress"))
    return _signal_adapter.validate_python({"kind": kind, "target": target, "payload": payload})


__all__ = [
    "Frame",
    "Signal",
    "OfferSignal",
    "AnswerSignal",
    "IceCandidateSignal",
    "ERROR_CODES",
    "SIGNAL_KINDS",
    "LEGACY_TARGET_KEYS",
    "now_ms",
    "build_frame",
    "conversation_id_of",
    "peer_id_of",
    "parse_signal",
]
