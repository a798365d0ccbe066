"""Error taxonomy for the messaging core."""

from typing import Any, Dict


class MessagingError(Exception):
    """Base class for errors surfaced to callers."""

    code = "messaging_error"
    status_code = 400

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context: Dict[str, Any] = context

    def to_dict(self) -> Dict[str, Any]:
        return {"detail": self.message, "code": self.code}


class ValidationError(MessagingError):
    """Malformed input: blank content, missing or identical participants."""

    code = "validation_error"
    status_code = 422


class ForbiddenError(MessagingError):
    """Caller is not a participant of the conversation."""

    code = "forbidden"
    status_code = 403


class NotFoundError(MessagingError):
    """Referenced conversation, pet or user does not exist."""

    code = "not_found"
    status_code = 404


class ConflictError(MessagingError):
    """A client id was reused for different content."""

    code = "conflict"
    status_code = 409


class TransientError(MessagingError):
    """Network failure or timeout; safe to retry."""

    code = "transient_error"
    status_code = 503


class RateLimitExceeded(TransientError):
    """Caller exceeded the request budget for the current window."""

    code = "rate_limited"
    status_code = 429
