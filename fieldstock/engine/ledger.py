"""Stock ledger: per-item, per-location quantity records.

The ledger is a flat store keyed by entry id with a coordinate index
(item@location). It owns quantity truth; every other component reads
snapshots from it and writes through ChangeSets.

Writes are committed to the repository first and only then swapped into
memory, so a failed commit leaves the in-memory ledger at its last
committed state.
"""

from __future__ import annotations

import copy
import logging
import threading
from typing import Callable, Optional

from fieldstock.config import EngineSettings, get_settings
from fieldstock.engine.catalog import Catalog
from fieldstock.engine.events import EventBus, EventType
from fieldstock.engine.integrity import StockAuditLog
from fieldstock.engine.locks import ResourceLock
from fieldstock.exceptions import (
    DuplicateEntryError,
    InvalidQuantityError,
    NoSuchLocationEntryError,
    PersistenceFailure,
    UnknownTransferError,
)
from fieldstock.models.inventory import (
    Location,
    PendingTransfer,
    PurchaseOrder,
    StockLocationItem,
    TransferRecord,
    TransferStatus,
    UsageRecord,
    utcnow,
)
from fieldstock.storage.base import ChangeSet, LedgerRepository
from fieldstock.storage.memory import InMemoryRepository

logger = logging.getLogger(__name__)


def coordinate(item_id: str, location: Location) -> str:
    return f"{item_id}@{location.key}"


def transfer_key(transfer_id: str) -> str:
    return f"transfer:{transfer_id}"


class StockLedger:
    """In-memory mirror of the committed ledger state."""

    def __init__(
        self,
        catalog: Catalog,
        repository: Optional[LedgerRepository] = None,
        bus: Optional[EventBus] = None,
        settings: Optional[EngineSettings] = None,
        audit_log: Optional[StockAuditLog] = None,
        clock: Callable = utcnow,
    ):
        self.catalog = catalog
        self.repository = repository or InMemoryRepository()
        self.bus = bus or EventBus()
        self.settings = settings or get_settings()
        self.audit_log = audit_log or StockAuditLog()
        self.clock = clock
        self.locks = ResourceLock(timeout=self.settings.lock_timeout_seconds)

        self._state_lock = threading.RLock()
        self._entries: dict[str, StockLocationItem] = {}
        self._index: dict[str, str] = {}
        self._usage: list[UsageRecord] = []
        self._movements: list[TransferRecord] = []
        self._transfers: dict[str, PendingTransfer] = {}
        self._orders: dict[str, PurchaseOrder] = {}

    @classmethod
    def load(
        cls,
        catalog: Catalog,
        repository: LedgerRepository,
        **kwargs,
    ) -> "StockLedger":
        """Builds a ledger from the repository's committed state."""
        ledger = cls(catalog, repository=repository, **kwargs)
        state = repository.load()
        with ledger._state_lock:
            for entry in sorted(state.entries, key=lambda e: (e.created_at, e.entry_id)):
                ledger._entries[entry.entry_id] = entry
                ledger._index[entry.coordinate] = entry.entry_id
            ledger._usage = sorted(state.usage_records, key=lambda r: r.timestamp)
            ledger._movements = sorted(state.transfer_records, key=lambda r: r.timestamp)
            for transfer in sorted(state.transfers, key=lambda t: t.requested_at):
                ledger._transfers[transfer.transfer_id] = transfer
            for order in sorted(state.purchase_orders, key=lambda o: o.created_at):
                ledger._orders[order.order_id] = order
        logger.info("Ledger loaded: %d entries, %d pending transfers",
                    len(ledger._entries), len(ledger.transfers(TransferStatus.PENDING)))
        return ledger

    # --- Reads (snapshot copies) ---

    def snapshot(self) -> list[StockLocationItem]:
        with self._state_lock:
            return [copy.copy(e) for e in self._entries.values()]

    def __len__(self) -> int:
        return len(self._entries)

    def get_entry(self, entry_id: str) -> StockLocationItem:
        with self._state_lock:
            entry = self._entries.get(entry_id)
            if entry is None:
                raise NoSuchLocationEntryError(f"No ledger entry with id {entry_id}")
            return copy.copy(entry)

    def find_entry(self, item_id: str, location: Location) -> Optional[StockLocationItem]:
        with self._state_lock:
            entry_id = self._index.get(coordinate(item_id, location))
            return copy.copy(self._entries[entry_id]) if entry_id else None

    def require_entry(self, item_id: str, location: Location) -> StockLocationItem:
        entry = self.find_entry(item_id, location)
        if entry is None:
            raise NoSuchLocationEntryError(f"{item_id} is not stocked at {location.label}")
        return entry

    def entries_for_item(self, item_id: str) -> list[StockLocationItem]:
        return [e for e in self.snapshot() if e.item_id == item_id]

    def entries_at(self, location: Location) -> list[StockLocationItem]:
        return [e for e in self.snapshot() if e.location == location]

    def usage_records(self) -> list[UsageRecord]:
        with self._state_lock:
            return list(self._usage)

    def transfer_records(self) -> list[TransferRecord]:
        with self._state_lock:
            return list(self._movements)

    def get_transfer(self, transfer_id: str) -> PendingTransfer:
        with self._state_lock:
            transfer = self._transfers.get(transfer_id)
            if transfer is None:
                raise UnknownTransferError(f"Transfer not found: {transfer_id}")
            return copy.copy(transfer)

    def transfers(self, status: Optional[TransferStatus] = None) -> list[PendingTransfer]:
        with self._state_lock:
            return [
                copy.copy(t) for t in self._transfers.values()
                if status is None or t.status == status
            ]

    def purchase_orders(self) -> list[PurchaseOrder]:
        with self._state_lock:
            return [copy.deepcopy(o) for o in self._orders.values()]

    # --- Commit ---

    def commit(self, changes: ChangeSet) -> None:
        """Writes the change set to the repository, then applies it in memory."""
        try:
            self.repository.commit(changes)
        except PersistenceFailure:
            logger.error("Commit refused for %s; in-memory ledger unchanged", changes.operation)
            raise
        except Exception as e:
            logger.error("Commit failed for %s: %s", changes.operation, e)
            raise PersistenceFailure(f"{changes.operation} could not be saved: {e}", cause=e) from e

        with self._state_lock:
            self._apply(changes)

    def _apply(self, changes: ChangeSet) -> None:
        triggered_by = changes.triggered_by or "system"

        for entry in changes.saved_entries:
            previous = self._entries.get(entry.entry_id)
            self._entries[entry.entry_id] = copy.copy(entry)
            self._index[entry.coordinate] = entry.entry_id
            before = previous.quantity if previous else 0
            if before != entry.quantity or previous is None:
                self.audit_log.log_stock_change(
                    changes.operation, entry.location.key, entry.item_id,
                    before, entry.quantity, triggered_by,
                )

        for entry in changes.deleted_entries:
            removed = self._entries.pop(entry.entry_id)
            self._index.pop(removed.coordinate, None)
            self.audit_log.log_stock_change(
                changes.operation, removed.location.key, removed.item_id,
                removed.quantity, 0, triggered_by,
                details={"entry_removed": removed.entry_id},
            )

        self._usage.extend(changes.usage_records)
        self._movements.extend(changes.transfer_records)
        for transfer in changes.saved_transfers:
            self._transfers[transfer.transfer_id] = copy.copy(transfer)
        for order in changes.purchase_orders:
            self._orders[order.order_id] = copy.deepcopy(order)

    # --- Operator actions ---

    def stock_item(
        self,
        item_id: str,
        location: Location,
        quantity: int = 0,
        minimum_stock_level: int = 0,
        max_stock_level: Optional[int] = None,
        triggered_by: Optional[str] = None,
    ) -> StockLocationItem:
        """Creates the ledger entry for an item first stocked at a location."""
        self.catalog.get(item_id)
        self._check_levels(minimum_stock_level, max_stock_level)

        with self.locks.hold(coordinate(item_id, location)):
            if self.find_entry(item_id, location) is not None:
                raise DuplicateEntryError(f"{item_id} is already stocked at {location.label}")
            now = self.clock()
            entry = StockLocationItem(
                item_id=item_id,
                location=location,
                quantity=quantity,
                minimum_stock_level=minimum_stock_level,
                max_stock_level=max_stock_level,
                created_at=now,
                updated_at=now,
            )
            self.commit(ChangeSet("stock_item", triggered_by, saved_entries=[entry]))

        logger.info("Stocked %s at %s: %d", item_id, location.label, quantity)
        self._announce("stock_item", entry, triggered_by)
        return copy.copy(entry)

    def adjust_quantity(
        self,
        entry_id: str,
        new_quantity: int,
        reason: str = "",
        triggered_by: Optional[str] = None,
    ) -> StockLocationItem:
        """Sets an entry's quantity after a manual count."""
        if not isinstance(new_quantity, int) or new_quantity < 0:
            raise InvalidQuantityError(f"Adjusted quantity must be a non-negative integer: {new_quantity}")

        current = self.get_entry(entry_id)
        with self.locks.hold(current.coordinate):
            current = self.get_entry(entry_id)
            updated = self.revise(current, quantity=new_quantity)
            self.commit(ChangeSet("adjust_quantity", triggered_by, saved_entries=[updated]))

        logger.info(
            "Adjusted %s: %d -> %d (%s)", updated.coordinate, current.quantity, new_quantity, reason
        )
        self._announce("adjust_quantity", updated, triggered_by, reason=reason,
                       quantity_before=current.quantity)
        return copy.copy(updated)

    def set_stock_levels(
        self,
        entry_id: str,
        minimum_stock_level: int,
        max_stock_level: Optional[int] = None,
        triggered_by: Optional[str] = None,
    ) -> StockLocationItem:
        self._check_levels(minimum_stock_level, max_stock_level)
        current = self.get_entry(entry_id)
        with self.locks.hold(current.coordinate):
            current = self.get_entry(entry_id)
            updated = self.revise(
                current, minimum_stock_level=minimum_stock_level, max_stock_level=max_stock_level
            )
            self.commit(ChangeSet("set_stock_levels", triggered_by, saved_entries=[updated]))
        return copy.copy(updated)

    def remove_entry(self, entry_id: str, triggered_by: Optional[str] = None) -> StockLocationItem:
        """Deletes an entry. Reaching zero quantity never does this implicitly."""
        current = self.get_entry(entry_id)
        with self.locks.hold(current.coordinate):
            current = self.get_entry(entry_id)
            self.commit(ChangeSet("remove_entry", triggered_by, deleted_entries=[current]))
        logger.info("Removed entry %s (%s)", entry_id, current.coordinate)
        self._announce("remove_entry", current, triggered_by)
        return current

    def remove_location(self, location: Location, triggered_by: Optional[str] = None) -> list[StockLocationItem]:
        """Cascade-deletes every entry held at a location, in one commit."""
        keys = [e.coordinate for e in self.entries_at(location)]
        with self.locks.hold(*keys):
            doomed = self.entries_at(location)
            if doomed:
                self.commit(ChangeSet("remove_location", triggered_by, deleted_entries=doomed))
        logger.info("Removed %s with %d entries", location.label, len(doomed))
        for entry in doomed:
            self._announce("remove_location", entry, triggered_by)
        return doomed

    # --- Helpers ---

    def revise(self, entry: StockLocationItem, **changes) -> StockLocationItem:
        """Next version of an entry with the given field changes."""
        revised = copy.copy(entry)
        for name, value in changes.items():
            setattr(revised, name, value)
        revised.updated_at = self.clock()
        revised.version = entry.version + 1
        if revised.quantity < 0:
            raise InvalidQuantityError(f"{entry.coordinate} would go negative: {revised.quantity}")
        return revised

    @staticmethod
    def _check_levels(minimum: int, maximum: Optional[int]) -> None:
        if minimum < 0:
            raise InvalidQuantityError(f"Minimum stock level cannot be negative: {minimum}")
        if maximum is not None and maximum < minimum:
            raise InvalidQuantityError(
                f"Maximum stock level ({maximum}) is below the minimum ({minimum})"
            )

    def _announce(self, operation: str, entry: StockLocationItem, triggered_by: Optional[str], **extra) -> None:
        payload = {
            "operation": operation,
            "entry_id": entry.entry_id,
            "item_id": entry.item_id,
            "location": entry.location.key,
            "quantity": entry.quantity,
            "triggered_by": triggered_by,
        }
        payload.update(extra)
        self.bus.publish(EventType.STOCK_ADJUSTED, payload, source="StockLedger")
