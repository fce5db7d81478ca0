"""Stock ledger unit tests."""

from decimal import Decimal
from unittest.mock import MagicMock

import pytest

from fieldstock.config import EngineSettings
from fieldstock.engine.catalog import Catalog
from fieldstock.engine.events import EventType
from fieldstock.engine.ledger import StockLedger, coordinate
from fieldstock.exceptions import (
    ConcurrentModificationError,
    DuplicateEntryError,
    InvalidQuantityError,
    NoSuchLocationEntryError,
    PersistenceFailure,
    UnknownItemError,
)
from fieldstock.models.inventory import InventoryItem, Vehicle, Warehouse
from fieldstock.storage.memory import InMemoryRepository


def _create_ledger(repository=None, **settings) -> StockLedger:
    catalog = Catalog([
        InventoryItem(item_id="A", name="Air filter", unit_price=Decimal("3.00")),
        InventoryItem(item_id="B", name="Drive belt", unit_price=Decimal("8.00")),
    ])
    return StockLedger(
        catalog,
        repository=repository or InMemoryRepository(),
        settings=EngineSettings(**settings),
    )


class TestStockItem:
    """Initial stocking creates one entry per item and location."""

    def test_creates_entry(self):
        ledger = _create_ledger()
        entry = ledger.stock_item("A", Warehouse("W1"), quantity=10, minimum_stock_level=5)
        assert ledger.find_entry("A", Warehouse("W1")) == entry
        assert len(ledger) == 1

    def test_duplicate_rejected(self):
        ledger = _create_ledger()
        ledger.stock_item("A", Warehouse("W1"), quantity=10)
        with pytest.raises(DuplicateEntryError):
            ledger.stock_item("A", Warehouse("W1"), quantity=4)
        assert ledger.find_entry("A", Warehouse("W1")).quantity == 10

    def test_same_item_at_two_locations(self):
        ledger = _create_ledger()
        ledger.stock_item("A", Warehouse("W1"), quantity=10)
        ledger.stock_item("A", Vehicle("V1"), quantity=2)
        assert len(ledger.entries_for_item("A")) == 2

    def test_unknown_item_rejected(self):
        ledger = _create_ledger()
        with pytest.raises(UnknownItemError):
            ledger.stock_item("ZZZ", Warehouse("W1"), quantity=1)

    def test_max_below_min_rejected(self):
        ledger = _create_ledger()
        with pytest.raises(InvalidQuantityError):
            ledger.stock_item("A", Vehicle("V1"), minimum_stock_level=5, max_stock_level=2)

    def test_snapshot_is_a_copy(self):
        ledger = _create_ledger()
        ledger.stock_item("A", Warehouse("W1"), quantity=10)
        ledger.snapshot()[0].quantity = 999
        assert ledger.find_entry("A", Warehouse("W1")).quantity == 10


class TestAdjustments:
    def test_adjust_quantity(self):
        ledger = _create_ledger()
        entry = ledger.stock_item("A", Warehouse("W1"), quantity=10)
        updated = ledger.adjust_quantity(entry.entry_id, 6, reason="cycle count")
        assert updated.quantity == 6
        assert updated.version == 2

    def test_negative_adjustment_rejected(self):
        ledger = _create_ledger()
        entry = ledger.stock_item("A", Warehouse("W1"), quantity=10)
        with pytest.raises(InvalidQuantityError):
            ledger.adjust_quantity(entry.entry_id, -1)
        assert ledger.get_entry(entry.entry_id).quantity == 10

    def test_adjustment_is_audited(self):
        ledger = _create_ledger()
        entry = ledger.stock_item("A", Warehouse("W1"), quantity=10)
        ledger.adjust_quantity(entry.entry_id, 6, triggered_by="tech-1")
        audit = ledger.audit_log.get_audit_log(item_id="A")
        assert [a.change_amount for a in audit] == [10, -4]
        assert audit[-1].triggered_by == "tech-1"

    def test_adjustment_published(self):
        ledger = _create_ledger()
        entry = ledger.stock_item("A", Warehouse("W1"), quantity=10)
        ledger.adjust_quantity(entry.entry_id, 6)
        events = ledger.bus.events_of(EventType.STOCK_ADJUSTED)
        assert events[-1].payload["quantity"] == 6
        assert events[-1].payload["quantity_before"] == 10

    def test_set_stock_levels(self):
        ledger = _create_ledger()
        entry = ledger.stock_item("A", Vehicle("V1"), quantity=3)
        updated = ledger.set_stock_levels(entry.entry_id, 2, 10)
        assert (updated.minimum_stock_level, updated.max_stock_level) == (2, 10)

    def test_unknown_entry(self):
        ledger = _create_ledger()
        with pytest.raises(NoSuchLocationEntryError):
            ledger.adjust_quantity("missing", 1)


class TestRemoval:
    """Entries disappear only by explicit operator action."""

    def test_zero_quantity_keeps_entry(self):
        ledger = _create_ledger()
        entry = ledger.stock_item("A", Warehouse("W1"), quantity=10)
        ledger.adjust_quantity(entry.entry_id, 0)
        assert ledger.find_entry("A", Warehouse("W1")) is not None

    def test_remove_entry(self):
        ledger = _create_ledger()
        entry = ledger.stock_item("A", Warehouse("W1"), quantity=10)
        ledger.remove_entry(entry.entry_id)
        assert ledger.find_entry("A", Warehouse("W1")) is None

    def test_remove_location_cascades_in_one_commit(self):
        repository = InMemoryRepository()
        ledger = _create_ledger(repository)
        ledger.stock_item("A", Vehicle("V1"), quantity=2)
        ledger.stock_item("B", Vehicle("V1"), quantity=1)
        ledger.stock_item("A", Warehouse("W1"), quantity=9)
        commits_before = repository.commit_count

        removed = ledger.remove_location(Vehicle("V1"))

        assert len(removed) == 2
        assert repository.commit_count == commits_before + 1
        assert ledger.entries_at(Vehicle("V1")) == []
        assert ledger.find_entry("A", Warehouse("W1")).quantity == 9


class TestCommitFailure:
    """A refused commit leaves memory at the last committed state."""

    def test_storage_error_rolls_back(self):
        repository = InMemoryRepository()
        ledger = _create_ledger(repository)
        entry = ledger.stock_item("A", Warehouse("W1"), quantity=10)
        repository.commit = MagicMock(side_effect=RuntimeError("disk full"))

        with pytest.raises(PersistenceFailure) as exc_info:
            ledger.adjust_quantity(entry.entry_id, 3)

        assert isinstance(exc_info.value.cause, RuntimeError)
        assert ledger.get_entry(entry.entry_id).quantity == 10
        assert ledger.get_entry(entry.entry_id).version == 1

    def test_failed_commit_publishes_nothing(self):
        repository = InMemoryRepository()
        ledger = _create_ledger(repository)
        entry = ledger.stock_item("A", Warehouse("W1"), quantity=10)
        published = len(ledger.bus.get_event_log())
        repository.commit = MagicMock(side_effect=PersistenceFailure("refused"))

        with pytest.raises(PersistenceFailure):
            ledger.adjust_quantity(entry.entry_id, 3)
        assert len(ledger.bus.get_event_log()) == published

    def test_stale_version_refused_by_repository(self):
        repository = InMemoryRepository()
        ledger = _create_ledger(repository)
        entry = ledger.stock_item("A", Warehouse("W1"), quantity=10)
        other = StockLedger.load(ledger.catalog, repository, settings=ledger.settings)
        other.adjust_quantity(entry.entry_id, 4)

        with pytest.raises(PersistenceFailure):
            ledger.adjust_quantity(entry.entry_id, 7)
        assert ledger.get_entry(entry.entry_id).quantity == 10


class TestLoad:
    def test_load_restores_committed_state(self):
        repository = InMemoryRepository()
        ledger = _create_ledger(repository)
        ledger.stock_item("A", Warehouse("W1"), quantity=10)
        ledger.stock_item("B", Vehicle("V1"), quantity=2, minimum_stock_level=1)

        reloaded = StockLedger.load(ledger.catalog, repository, settings=ledger.settings)

        assert len(reloaded) == 2
        assert reloaded.find_entry("B", Vehicle("V1")).minimum_stock_level == 1


class TestLocking:
    def test_held_coordinate_times_out(self):
        ledger = _create_ledger(lock_timeout_seconds=0.05)
        entry = ledger.stock_item("A", Warehouse("W1"), quantity=10)
        ledger.locks.acquire(coordinate("A", Warehouse("W1")), "someone-else")

        with pytest.raises(ConcurrentModificationError):
            ledger.adjust_quantity(entry.entry_id, 5)
        assert ledger.get_entry(entry.entry_id).quantity == 10
