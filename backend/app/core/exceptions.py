"""
Domain errors raised by the forum core.

The HTTP layer maps each error to its status code; the core never
returns error values in place of raising.
"""


class ForumError(Exception):
    """Base class for forum domain errors."""

    status_code: int = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(ForumError):
    """Malformed payload: missing text fields, bad vote value, etc."""

    status_code = 422


class NotFoundError(ForumError):
    """Referenced topic, comment, parent, course or user does not exist."""

    status_code = 404


class ForbiddenError(ForumError):
    """Requester is not allowed to perform the operation."""

    status_code = 403


class ConflictError(ForumError):
    """Storage rejected a write that the upsert could not resolve."""

    status_code = 409
