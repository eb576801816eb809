"""
Error taxonomy for the mock-exam service.

Every error carries the HTTP status it is rendered with; the handlers in
``studify.main`` turn them into the ``{"success": false, "error": ...}`` envelope.
"""

from typing import Optional


class StudifyError(Exception):
    status_code = 500

    def __init__(self, message: str, detail: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail


class ValidationError(StudifyError):
    """Missing or malformed input."""
    status_code = 400


class AuthenticationError(StudifyError):
    status_code = 401


class NotFoundError(StudifyError):
    """Unknown id, or an id that belongs to another user."""
    status_code = 404


class InternalError(StudifyError):
    """Unexpected downstream failure."""
    status_code = 500


class RoutineUnavailable(Exception):
    """A database-side routine is missing or failed; callers fall back to the in-process path."""
