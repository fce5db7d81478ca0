"""Ledger error taxonomy.

Validation errors are raised before any change set is built, so a caller
that catches one knows nothing was written.
"""

from __future__ import annotations

from typing import Any, Optional


class LedgerError(Exception):
    """Base class for every ledger/engine error."""


class ValidationError(LedgerError):
    """Request rejected before any mutation."""


class InvalidQuantityError(ValidationError):
    """Non-positive quantity for usage/transfer, or a negative stored quantity."""


class InsufficientStockError(ValidationError):
    """Requested quantity exceeds what the source entry holds."""

    def __init__(self, message: str, available: int = 0, requested: int = 0):
        super().__init__(message)
        self.available = available
        self.requested = requested


class NoSuchLocationEntryError(ValidationError):
    """No ledger entry for the item/location pair."""


class InvalidLocationAssignmentError(ValidationError):
    """Entry would belong to both or neither of warehouse/vehicle."""


class InvalidTransferError(ValidationError):
    """Transfer endpoints are not acceptable (same location, wrong kinds)."""


class DuplicateEntryError(ValidationError):
    """The item is already stocked at that location."""


class UnknownItemError(ValidationError):
    """Item id is not in the catalog."""


class UnknownTransferError(ValidationError):
    """Pending transfer id is not known."""


class DuplicateTransferResolutionError(LedgerError):
    """A pending transfer that already reached a terminal state was resolved again."""

    def __init__(self, transfer_id: str, status: Any):
        super().__init__(
            f"Transfer {transfer_id} is already {getattr(status, 'value', status)}"
        )
        self.transfer_id = transfer_id
        self.status = status


class ConcurrentModificationError(LedgerError):
    """Could not obtain the per-entry write lock in time."""


class PersistenceFailure(LedgerError):
    """The storage commit failed; in-memory state was left as last committed."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause
