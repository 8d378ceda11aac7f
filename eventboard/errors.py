"""Error taxonomy shared by the store, services and HTTP layer."""

from __future__ import annotations

from typing import Any


class EventBoardError(Exception):
    """Base class for errors that map onto an HTTP response."""

    status_code = 500
    default_message = "Something went wrong."

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(EventBoardError):
    status_code = 422
    default_message = "Invalid input"

    def __init__(self, message: str | None = None, errors: list[dict[str, Any]] | None = None):
        super().__init__(message)
        self.errors = errors or []


class AuthenticationError(EventBoardError):
    status_code = 401
    default_message = "Unauthorized"


class AuthorizationError(EventBoardError):
    status_code = 403
    default_message = "Forbidden: Admin access required"


class NotFound(EventBoardError):
    status_code = 404
    default_message = "Not found"


class EventNotFound(NotFound):
    default_message = "Event not found"


class UserNotFound(NotFound):
    default_message = "User not found"


class Conflict(EventBoardError):
    status_code = 409
    default_message = "Conflict"


class DuplicateRegistration(Conflict):
    default_message = "User is already registered for this event"


class UsernameTaken(Conflict):
    default_message = "Username is already taken"


class StorageError(EventBoardError):
    """Raised when the underlying persistence layer fails."""

    status_code = 500
    default_message = "We hit a database issue. Please try again."
