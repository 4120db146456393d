"""Domain-level exceptions for direct messaging."""

from __future__ import annotations


class ChatError(Exception):
    """Base class for chat feature errors."""

    reason: str = "unknown"

    def __init__(self, reason: str | None = None) -> None:
        super().__init__(reason or self.reason)
        if reason:
            self.reason = reason


class AccessDenied(ChatError):
    reason = "access_denied"


class NotAuthor(ChatError):
    reason = "not_author"


class EditWindowExpired(ChatError):
    reason = "edit_window_expired"


class MessageNotFound(ChatError):
    reason = "message_not_found"


class UserNotFound(ChatError):
    reason = "user_not_found"


class NotParticipant(ChatError):
    reason = "not_participant"


class SelfConversation(ChatError):
    reason = "self_conversation"


class InvalidMessage(ChatError):
    reason = "invalid_message"


class ConnectivityFailure(ChatError):
    """Raised when the persistence service cannot be reached in time."""

    reason = "connectivity"


class PartialFanoutFailure(ConnectivityFailure):
    """One side of an inbox dual-write landed and the other did not."""

    reason = "partial_fanout"
