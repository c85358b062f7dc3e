"""Exception types raised by the maintenance tracker.

Lookups of stale identifiers never raise; they return ``None``.
"""


class MaintrackError(Exception):
    """Base class for all tracker errors."""


class ValidationError(MaintrackError, ValueError):
    """Input rejected before anything was written."""


class DuplicateCodeError(ValidationError):
    """Another machine already uses the given code."""

    def __init__(self, code: str):
        super().__init__(f"Machine code already in use: {code!r}")
        self.code = code


class ReminderError(MaintrackError):
    """The reminder sink failed to register or cancel a reminder."""


class StoreBusyError(MaintrackError):
    """Another process holds the write lock of the store."""
