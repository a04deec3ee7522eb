from __future__ import annotations


class WorklogError(Exception):
    """Base class for errors surfaced to callers of the timer and ledger APIs."""


class StorageUnavailable(WorklogError):
    """The persistence medium could not be reached; nothing was written."""


class NotFound(WorklogError):
    pass


class InvalidState(WorklogError):
    pass


class ValidationError(WorklogError, ValueError):
    pass


class AuthorityUnreachable(WorklogError):
    """No reply from the timer authority within one reconciliation cycle."""
