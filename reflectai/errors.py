"""
Exception types raised by the journal core.

Write paths raise these to the caller. Read paths that are documented as
best-effort catch `StorageError` and return an empty result instead.
"""

from typing import Optional


class JournalError(Exception):
    """Base class for all journal core errors."""


class InvalidArgument(JournalError):
    """A required field is missing or malformed (e.g. an empty entry id)."""


class InvalidState(JournalError):
    """The operation needs an authenticated user and none is resolvable."""


class StorageError(JournalError):
    """Any failure from the backing store. The original exception is kept as `cause`."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause


class DecodeError(JournalError):
    """A stored record could not be turned into a typed value."""

    def __init__(self, message: str, path: Optional[str] = None):
        super().__init__(message)
        self.path = path


class AnalysisError(JournalError):
    """The completion service failed: network error, non-2xx status or malformed body."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        body: Optional[str] = None,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.body = body
        self.cause = cause
