"""Domain exceptions."""

from __future__ import annotations


class LedgerError(Exception):
    """Base class for all duo-ledger errors."""


class ValidationError(LedgerError):
    """Input rejected before any state was changed.

    Raised for split percentages out of range or not summing to 1.0, and for
    non-positive amounts.
    """


class NotFoundError(LedgerError):
    """Unknown participant, transaction or schedule."""


class ExternalServiceError(LedgerError):
    """The extraction model failed or returned unusable output."""


class StorageError(LedgerError):
    """The persistence layer failed."""
