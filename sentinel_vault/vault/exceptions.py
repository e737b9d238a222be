"""Exceptions raised by the vault engine."""

from typing import Optional


class VaultError(Exception):
    """Base exception for vault operations."""

    def __init__(self, message: str, *, recoverable: Optional[bool] = None):
        super().__init__(message)
        self.recoverable = recoverable


class DerivationInputInvalid(VaultError):
    """Master password or KDF parameters rejected before deriving."""


class DecryptionFailed(VaultError):
    """An envelope could not be authenticated or parsed.

    Recoverable at the granularity of one record: hydrate counts these
    and carries on with the rest of the batch.
    """

    def __init__(self, message: str, *, identifier: Optional[str] = None):
        super().__init__(message, recoverable=True)
        self.identifier = identifier


class StoreUnavailable(VaultError):
    """The remote record store failed or timed out."""


class ConflictError(VaultError):
    """The stored envelope version differs from the expected one."""

    def __init__(
        self,
        message: str,
        *,
        identifier: Optional[str] = None,
        expected: Optional[int] = None,
        actual: Optional[int] = None,
    ):
        super().__init__(message, recoverable=True)
        self.identifier = identifier
        self.expected = expected
        self.actual = actual


class PreconditionViolation(VaultError):
    """Operation attempted in a session state that does not allow it."""


class HydrationAborted(PreconditionViolation):
    """The session was locked while an operation was in flight."""
