"""Error taxonomy shared by the directory, the message store and the API.

Every error the core raises derives from ChatError so the HTTP layer can map
it to a status code in one place. Relay misses are not errors.
"""

from __future__ import annotations

from typing import Any


class ChatError(Exception):
    """Base class for chat-level errors.

    Attributes:
        code: machine readable error code (e.g. "STORAGE_FAILURE").
        message: human readable message, safe to return to clients.
        http_status: status used when surfaced over HTTP.
        extra: additional context (missing field names, ids, ...).
    """

    code = "CHAT_ERROR"
    http_status = 500

    def __init__(self, message: str, *, code: str | None = None, **extra: Any) -> None:
        self.message = message
        if code is not None:
            self.code = code
        self.extra = extra
        super().__init__(message)


class ValidationError(ChatError):
    """A required field is missing or empty."""

    code = "VALIDATION_ERROR"
    http_status = 400


class StorageFailure(ChatError):
    """The durable store failed a read or a write; nothing is assumed committed."""

    code = "STORAGE_FAILURE"
    http_status = 500


class NotFound(ChatError):
    """Reserved for lookups where the target resource is required; queries return empty instead."""

    code = "NOT_FOUND"
    http_status = 404


class DuplicateConversation(ChatError):
    """Insert lost the race against another conversation for the same pair."""

    code = "DUPLICATE_CONVERSATION"
    http_status = 409


def _is_text(value: Any) -> bool:
    if not isinstance(value, str) or not value:
        return False
    try:
        value.encode("utf-8")
    except UnicodeEncodeError:
        # lone surrogates survive JSON parsing but not sqlite or orjson
        return False
    return True


def require(message: str, /, **fields: Any) -> None:
    """Raise ValidationError if any keyword value is not a non-empty, UTF-8 encodable string."""
    missing = [name for name, value in fields.items() if not _is_text(value)]
    if missing:
        raise ValidationError(message, missing=missing)


__all__ = [
    "ChatError",
    "ValidationError",
    "StorageFailure",
    "NotFound",
    "DuplicateConversation",
    "require",
]
