"""Exception hierarchy for message loading, delivery and authentication."""

from enum import Enum
from typing import Any


class VoxcastError(Exception):
    """Base exception for messaging errors.

    Carries a human-readable message, an error category for programmatic
    handling and optional structured details.
    """

    def __init__(
        self,
        message: str,
        error_type: str = "voxcast_error",
        details: list[dict[str, Any]] | None = None,
    ) -> None:
        """Initialize the error.

        Args:
            message: Human-readable error message.
            error_type: Error category/type for caller handling.
            details: Optional additional error details.
        """
        self.message = message
        self.error_type = error_type
        self.details = details
        super().__init__(message)


class LoadError(VoxcastError):
    """Conversation history or its live feed could not be loaded."""

    def __init__(self, message: str = "Failed to load messages", details: list[dict[str, Any]] | None = None) -> None:
        super().__init__(message=message, error_type="load_error", details=details)


class SendError(VoxcastError):
    """An append call failed after the message was staged locally."""

    def __init__(self, temp_id: str, message: str = "Failed to send message", details: list[dict[str, Any]] | None = None) -> None:
        self.temp_id = temp_id
        super().__init__(message=message, error_type="send_error", details=details)


class NotFoundError(VoxcastError):
    """Retry or dismiss referenced an unknown or non-failed message."""

    def __init__(self, message: str = "Message not found", details: list[dict[str, Any]] | None = None) -> None:
        super().__init__(message=message, error_type="not_found", details=details)


class PersistenceError(VoxcastError):
    """The database accepted a request but returned no usable row."""

    def __init__(self, message: str = "Persistence operation failed", details: list[dict[str, Any]] | None = None) -> None:
        super().__init__(message=message, error_type="persistence_error", details=details)


class AuthErrorCode(str, Enum):
    """Authentication error codes."""

    UNAUTHORIZED = "UNAUTHORIZED"
    TOKEN_EXPIRED = "TOKEN_EXPIRED"
    INVALID_TOKEN = "INVALID_TOKEN"
    INVALID_SIGNATURE = "INVALID_SIGNATURE"


class AuthError(VoxcastError):
    """Access token validation failed.

    The error code indicates the specific failure reason.
    """

    def __init__(self, message: str, code: AuthErrorCode) -> None:
        self.code = code
        super().__init__(message=message, error_type="authentication_error")
