"""Typed failures raised by the check-in core.

Every service raises one of these instead of returning sentinel values; the
HTTP layer translates them into status codes and the UI decides how to show
them.
"""

from __future__ import annotations


class CheckinError(Exception):
    """Base class for all check-in failures."""


class Unauthorized(CheckinError):
    """Raised when the acting user lacks the role an operation requires."""


class NotFound(CheckinError):
    """Raised when a referenced classroom, session, question or student is absent."""


class SessionNotFound(NotFound):
    """Raised when a check-in session cannot be found."""


class SessionClosed(CheckinError):
    """Raised when a student submits attendance to a closed session."""


class CodeMismatch(CheckinError):
    """Raised when the entered check-in code does not match the session code."""


class ValidationError(CheckinError):
    """Raised when a required field is missing or a value is out of range."""


class AlreadyEnrolled(CheckinError):
    """Raised when a student joins a classroom they already belong to."""


class StoreUnavailable(CheckinError):
    """Raised when the document store fails transiently; callers may retry."""
