"""Usage recorder unit tests."""

import threading
from decimal import Decimal
from unittest.mock import MagicMock

import pytest

from fieldstock.config import EngineSettings
from fieldstock.engine.catalog import Catalog
from fieldstock.engine.events import EventType
from fieldstock.engine.ledger import StockLedger
from fieldstock.engine.status import aggregate_item
from fieldstock.engine.usage_recorder import UsageRecorder
from fieldstock.exceptions import (
    InsufficientStockError,
    InvalidQuantityError,
    NoSuchLocationEntryError,
    PersistenceFailure,
)
from fieldstock.models.inventory import InventoryItem, StockStatus, Vehicle, Warehouse


def _create_recorder() -> UsageRecorder:
    catalog = Catalog([
        InventoryItem(item_id="A", name="Capacitor", unit_price=Decimal("6.00"), reorder_point=5),
    ])
    return UsageRecorder(StockLedger(catalog, settings=EngineSettings()))


class TestRecordUsage:
    """Usage decrements the entry and writes the usage record together."""

    def test_usage_then_status(self):
        recorder = _create_recorder()
        ledger = recorder.ledger
        ledger.stock_item("A", Warehouse("W"), quantity=10, minimum_stock_level=5)
        item = ledger.catalog.get("A")

        recorder.record_usage("A", 3, Warehouse("W"))
        assert ledger.find_entry("A", Warehouse("W")).quantity == 7
        assert aggregate_item(item, ledger.entries_for_item("A")).status is StockStatus.IN_STOCK

        recorder.record_usage("A", 3, Warehouse("W"))
        assert ledger.find_entry("A", Warehouse("W")).quantity == 4
        assert aggregate_item(item, ledger.entries_for_item("A")).status is StockStatus.LOW_STOCK

    def test_record_carries_metadata(self):
        recorder = _create_recorder()
        recorder.ledger.stock_item("A", Vehicle("V1"), quantity=4)

        record = recorder.record_usage("A", 1, Vehicle("V1"), technician_id="tech-9", job_id="JOB-1")

        assert record.vehicle_id == "V1"
        assert record.technician_id == "tech-9"
        assert recorder.ledger.usage_records() == [record]

    def test_usage_to_zero(self):
        recorder = _create_recorder()
        recorder.ledger.stock_item("A", Warehouse("W"), quantity=2)
        recorder.record_usage("A", 2, Warehouse("W"))
        assert recorder.ledger.find_entry("A", Warehouse("W")).quantity == 0


class TestRejections:
    """Invalid usage is rejected with nothing written."""

    def test_insufficient_stock(self):
        recorder = _create_recorder()
        recorder.ledger.stock_item("A", Warehouse("W"), quantity=10)

        with pytest.raises(InsufficientStockError) as exc_info:
            recorder.record_usage("A", 15, Warehouse("W"))

        assert exc_info.value.available == 10
        assert exc_info.value.requested == 15
        assert recorder.ledger.find_entry("A", Warehouse("W")).quantity == 10
        assert recorder.ledger.usage_records() == []

    @pytest.mark.parametrize("quantity", [0, -3, 1.5, True])
    def test_invalid_quantity(self, quantity):
        recorder = _create_recorder()
        recorder.ledger.stock_item("A", Warehouse("W"), quantity=10)
        with pytest.raises(InvalidQuantityError):
            recorder.record_usage("A", quantity, Warehouse("W"))

    def test_no_entry(self):
        recorder = _create_recorder()
        recorder.ledger.stock_item("A", Warehouse("W"), quantity=10)
        with pytest.raises(NoSuchLocationEntryError):
            recorder.record_usage("A", 1, Vehicle("V1"))

    def test_invalid_quantity_checked_first(self):
        recorder = _create_recorder()
        with pytest.raises(InvalidQuantityError):
            recorder.record_usage("A", 0, Vehicle("V1"))

    def test_storage_failure_writes_nothing(self):
        recorder = _create_recorder()
        recorder.ledger.stock_item("A", Warehouse("W"), quantity=10)
        recorder.ledger.repository.commit = MagicMock(side_effect=PersistenceFailure("down"))

        with pytest.raises(PersistenceFailure):
            recorder.record_usage("A", 3, Warehouse("W"))

        assert recorder.ledger.find_entry("A", Warehouse("W")).quantity == 10
        assert recorder.ledger.usage_records() == []
        assert not recorder.bus.events_of(EventType.USAGE_RECORDED)


class TestEvents:
    def test_usage_event_published(self):
        recorder = _create_recorder()
        recorder.ledger.stock_item("A", Warehouse("W"), quantity=10)
        recorder.record_usage("A", 2, Warehouse("W"), job_id="JOB-7")

        events = recorder.bus.events_of(EventType.USAGE_RECORDED)
        assert len(events) == 1
        assert events[0].payload["quantity_after"] == 8
        assert events[0].payload["job_id"] == "JOB-7"

    def test_crossing_reorder_point_triggers_notice(self):
        recorder = _create_recorder()
        recorder.ledger.stock_item("A", Warehouse("W"), quantity=7)

        recorder.record_usage("A", 1, Warehouse("W"))
        assert recorder.bus.events_of(EventType.REPLENISHMENT_NEEDED) == []

        recorder.record_usage("A", 1, Warehouse("W"))
        notices = recorder.bus.events_of(EventType.REPLENISHMENT_NEEDED)
        assert len(notices) == 1
        assert notices[0].payload["current_quantity"] == 5
        assert notices[0].payload["suggested_quantity"] == 5


class TestConcurrentUsage:
    def test_parallel_usage_never_oversells(self):
        recorder = _create_recorder()
        recorder.ledger.stock_item("A", Vehicle("V1"), quantity=10)
        failures = []

        def use_one():
            try:
                recorder.record_usage("A", 1, Vehicle("V1"))
            except InsufficientStockError as e:
                failures.append(e)

        threads = [threading.Thread(target=use_one) for _ in range(14)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert recorder.ledger.find_entry("A", Vehicle("V1")).quantity == 0
        assert len(recorder.ledger.usage_records()) == 10
        assert len(failures) == 4
