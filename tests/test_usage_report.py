"""Usage report unit tests."""

from datetime import datetime
from decimal import Decimal

from fieldstock.engine.catalog import Catalog
from fieldstock.engine.usage_report import build_usage_report
from fieldstock.models.inventory import InventoryItem, UsageRecord, Vehicle, Warehouse

_START = datetime(2024, 3, 1)
_END = datetime(2024, 3, 31, 23, 59, 59)


def _catalog() -> Catalog:
    return Catalog([
        InventoryItem(item_id="A", name="Relay", unit_price=Decimal("15.00")),
        InventoryItem(item_id="B", name="Screw", unit_price=Decimal("0.10")),
    ])


def _usage(item_id, quantity, day, vehicle_id="V1", technician_id="tech-1") -> UsageRecord:
    return UsageRecord(
        item_id=item_id,
        quantity=quantity,
        location=Vehicle(vehicle_id),
        timestamp=datetime(2024, 3, day, 12, 0),
        vehicle_id=vehicle_id,
        technician_id=technician_id,
    )


class TestUsageReport:
    """Consumption per item, most expensive first."""

    def test_grouped_and_sorted_by_cost(self):
        records = [_usage("B", 40, 2), _usage("A", 1, 3), _usage("A", 2, 9)]
        report = build_usage_report(records, _catalog(), _START, _END)

        assert [r.item_id for r in report] == ["A", "B"]
        assert report[0].total_quantity == 3
        assert report[0].total_cost == Decimal("45.00")
        assert report[1].total_cost == Decimal("4.00")
        assert len(report[0].records) == 2

    def test_date_range_is_inclusive(self):
        edge = UsageRecord(item_id="A", quantity=1, location=Warehouse("W"), timestamp=_START)
        outside = UsageRecord(item_id="A", quantity=5, location=Warehouse("W"),
                              timestamp=datetime(2024, 4, 1))
        report = build_usage_report([edge, outside], _catalog(), _START, _END)
        assert report[0].total_quantity == 1

    def test_vehicle_and_technician_filters(self):
        records = [
            _usage("A", 1, 2, vehicle_id="V1", technician_id="tech-1"),
            _usage("A", 2, 2, vehicle_id="V2", technician_id="tech-1"),
            _usage("A", 4, 2, vehicle_id="V2", technician_id="tech-2"),
        ]
        by_vehicle = build_usage_report(records, _catalog(), _START, _END, vehicle_id="V2")
        assert by_vehicle[0].total_quantity == 6

        both = build_usage_report(records, _catalog(), _START, _END,
                                  vehicle_id="V2", technician_id="tech-1")
        assert both[0].total_quantity == 2

    def test_unknown_item_has_zero_cost(self):
        report = build_usage_report([_usage("X9", 3, 5)], _catalog(), _START, _END)
        assert report[0].item_name == "Item-X9"
        assert report[0].total_cost == Decimal("0")

    def test_no_usage(self):
        assert build_usage_report([], _catalog(), _START, _END) == []
