"""Persistence boundary for the ledger.

A ChangeSet is everything one ledger operation writes. Repositories must
apply it all-or-nothing.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Optional

from fieldstock.models.inventory import (
    PendingTransfer,
    PurchaseOrder,
    StockLocationItem,
    TransferRecord,
    UsageRecord,
)


@dataclass
class ChangeSet:
    """Writes produced by a single ledger operation.

    saved_entries hold the new state; an entry with version 1 is a create,
    anything else is an update expected to replace version - 1.
    deleted_entries hold the last committed state being removed.
    saved_transfers with a terminal status are resolutions of a pending row.
    """

    operation: str
    triggered_by: Optional[str] = None
    saved_entries: list[StockLocationItem] = field(default_factory=list)
    deleted_entries: list[StockLocationItem] = field(default_factory=list)
    usage_records: list[UsageRecord] = field(default_factory=list)
    transfer_records: list[TransferRecord] = field(default_factory=list)
    saved_transfers: list[PendingTransfer] = field(default_factory=list)
    purchase_orders: list[PurchaseOrder] = field(default_factory=list)

    def __len__(self) -> int:
        return (
            len(self.saved_entries)
            + len(self.deleted_entries)
            + len(self.usage_records)
            + len(self.transfer_records)
            + len(self.saved_transfers)
            + len(self.purchase_orders)
        )


@dataclass
class LedgerState:
    entries: list[StockLocationItem] = field(default_factory=list)
    usage_records: list[UsageRecord] = field(default_factory=list)
    transfer_records: list[TransferRecord] = field(default_factory=list)
    transfers: list[PendingTransfer] = field(default_factory=list)
    purchase_orders: list[PurchaseOrder] = field(default_factory=list)


class LedgerRepository(ABC):
    """Transactional store behind the in-memory ledger."""

    @abstractmethod
    def commit(self, changes: ChangeSet) -> None:
        """Applies every write in the change set or none of them.

        Raises PersistenceFailure when the commit is refused.
        """
        ...

    @abstractmethod
    def load(self) -> LedgerState:
        """Returns the last committed state."""
        ...
