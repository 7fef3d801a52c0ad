"""Exceptions raised at SKFill's API seams.

Recoverable problems (bad annotations, failing validators, a rejected
submission) are logged and folded into state instead of raised.
"""


class SKFillError(Exception):
    """Base class for SKFill errors."""


class UnknownFieldError(SKFillError, KeyError):
    """A command named a field id that is not part of the form."""

    def __init__(self, field_id: str) -> None:
        super().__init__(field_id)
        self.field_id = field_id

    def __str__(self) -> str:
        return f"Unknown field: {self.field_id}"


class SessionNotFoundError(SKFillError, FileNotFoundError):
    """No stored session with the given id."""
