# ruff: noqa: D107
"""Chat relay exceptions."""

from typing import Any

from .base import BaseAppException


class RelayError(BaseAppException):
    """Base exception for chat relay errors."""

    def __init__(
        self,
        message: str = "Chat relay error occurred",
        status_code: int = 500,
        error_code: str = "RELAY_ERROR",
        details: dict[str, Any] | None = None,
    ):
        super().__init__(
            message=message, status_code=status_code, error_code=error_code, details=details
        )


class UnauthenticatedError(RelayError):
    """Exception raised when no authenticated identity is bound."""

    def __init__(
        self,
        message: str = "Not authenticated",
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, 401, "UNAUTHENTICATED", details)


class QuotaExceededError(RelayError):
    """Exception raised when the daily token cap is reached before generation."""

    def __init__(
        self,
        message: str = "Daily token limit reached",
        remaining: int | None = None,
        details: dict[str, Any] | None = None,
    ):
        if details is None:
            details = {}
        if remaining is not None:
            details["remaining"] = remaining
        super().__init__(message, 429, "QUOTA_EXCEEDED", details)


class BackendUnavailableError(RelayError):
    """Exception raised on network errors, non-success status or timeouts from the model backend."""

    def __init__(
        self,
        message: str = "Model backend is unavailable",
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, 503, "BACKEND_UNAVAILABLE", details)


class NoResponseError(RelayError):
    """Exception raised when the stream ends without a terminal marker."""

    def __init__(
        self,
        message: str = "Model backend ended the stream without a response",
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, 502, "NO_RESPONSE", details)


class ConversationNotFoundError(RelayError):
    """Exception raised for operations against an unknown conversation."""

    def __init__(
        self,
        message: str = "Conversation not found",
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, 404, "CONVERSATION_NOT_FOUND", details)


class UserNotFoundError(RelayError):
    """Exception raised when a user does not exist."""

    def __init__(
        self,
        message: str = "User not found",
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, 404, "USER_NOT_FOUND", details)


class UserAlreadyExistsError(RelayError):
    """Exception raised when creating a user whose name is taken."""

    def __init__(
        self,
        message: str = "User already exists",
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, 409, "USER_ALREADY_EXISTS", details)
