"""In-process repository with the same commit conditions as DynamoDB."""

from __future__ import annotations

import copy
import logging
import threading

from fieldstock.exceptions import PersistenceFailure
from fieldstock.models.inventory import (
    PendingTransfer,
    PurchaseOrder,
    StockLocationItem,
    TransferRecord,
    TransferStatus,
    UsageRecord,
)
from fieldstock.storage.base import ChangeSet, LedgerRepository, LedgerState

logger = logging.getLogger(__name__)


class InMemoryRepository(LedgerRepository):
    """Dictionary-backed store.

    Conditions are checked for the whole change set before anything is
    written, so a refused commit leaves the store untouched.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._entries: dict[str, StockLocationItem] = {}
        self._usage: dict[str, UsageRecord] = {}
        self._movements: dict[str, TransferRecord] = {}
        self._transfers: dict[str, PendingTransfer] = {}
        self._orders: dict[str, PurchaseOrder] = {}
        self.commit_count = 0

    def commit(self, changes: ChangeSet) -> None:
        with self._lock:
            self._check_conditions(changes)

            for entry in changes.saved_entries:
                self._entries[entry.entry_id] = copy.deepcopy(entry)
            for entry in changes.deleted_entries:
                del self._entries[entry.entry_id]
            for record in changes.usage_records:
                self._usage[record.record_id] = record
            for record in changes.transfer_records:
                self._movements[record.record_id] = record
            for transfer in changes.saved_transfers:
                self._transfers[transfer.transfer_id] = copy.deepcopy(transfer)
            for order in changes.purchase_orders:
                self._orders[order.order_id] = copy.deepcopy(order)

            self.commit_count += 1
            logger.debug("Commit %s applied (%d writes)", changes.operation, len(changes))

    def _check_conditions(self, changes: ChangeSet) -> None:
        for entry in changes.saved_entries:
            stored = self._entries.get(entry.entry_id)
            if entry.version == 1:
                if stored is not None:
                    raise PersistenceFailure(f"Entry {entry.entry_id} already exists")
            elif stored is None or stored.version != entry.version - 1:
                raise PersistenceFailure(
                    f"Version conflict on entry {entry.entry_id}: "
                    f"stored={getattr(stored, 'version', None)}, expected={entry.version - 1}"
                )

        for entry in changes.deleted_entries:
            stored = self._entries.get(entry.entry_id)
            if stored is None or stored.version != entry.version:
                raise PersistenceFailure(f"Version conflict deleting entry {entry.entry_id}")

        for record in changes.usage_records:
            if record.record_id in self._usage:
                raise PersistenceFailure(f"Usage record {record.record_id} already exists")
        for record in changes.transfer_records:
            if record.record_id in self._movements:
                raise PersistenceFailure(f"Transfer record {record.record_id} already exists")

        for transfer in changes.saved_transfers:
            stored_transfer = self._transfers.get(transfer.transfer_id)
            if transfer.status is TransferStatus.PENDING:
                if stored_transfer is not None:
                    raise PersistenceFailure(f"Transfer {transfer.transfer_id} already exists")
            elif stored_transfer is None or stored_transfer.status is not TransferStatus.PENDING:
                raise PersistenceFailure(f"Transfer {transfer.transfer_id} is no longer pending")

        for order in changes.purchase_orders:
            if order.order_id in self._orders:
                raise PersistenceFailure(f"Purchase order {order.order_id} already exists")

    def load(self) -> LedgerState:
        with self._lock:
            return LedgerState(
                entries=[copy.deepcopy(e) for e in self._entries.values()],
                usage_records=list(self._usage.values()),
                transfer_records=list(self._movements.values()),
                transfers=[copy.deepcopy(t) for t in self._transfers.values()],
                purchase_orders=[copy.deepcopy(o) for o in self._orders.values()],
            )
