"""Usage report: consumption per item over a date range."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Iterable, Optional

from fieldstock.engine.catalog import Catalog
from fieldstock.engine.ledger import StockLedger
from fieldstock.models.inventory import UsageRecord, UsageReportItem


def build_usage_report(
    records: Iterable[UsageRecord],
    catalog: Catalog,
    start: datetime,
    end: datetime,
    vehicle_id: Optional[str] = None,
    technician_id: Optional[str] = None,
) -> list[UsageReportItem]:
    """Groups usage in [start, end] by item, most expensive first.

    Cost uses the current catalog price. Records for items no longer in
    the catalog are kept at zero cost.
    """
    grouped: dict[str, list[UsageRecord]] = {}
    for record in records:
        if not start <= record.timestamp <= end:
            continue
        if vehicle_id is not None and record.vehicle_id != vehicle_id:
            continue
        if technician_id is not None and record.technician_id != technician_id:
            continue
        grouped.setdefault(record.item_id, []).append(record)

    report = []
    for item_id, item_records in grouped.items():
        item = catalog.find(item_id)
        total = sum(r.quantity for r in item_records)
        report.append(UsageReportItem(
            item_id=item_id,
            item_name=item.name if item else f"Item-{item_id}",
            total_quantity=total,
            total_cost=item.unit_price * total if item else Decimal("0"),
            records=sorted(item_records, key=lambda r: r.timestamp),
        ))
    report.sort(key=lambda r: (-r.total_cost, r.item_id))
    return report


def usage_report(
    ledger: StockLedger,
    start: datetime,
    end: datetime,
    vehicle_id: Optional[str] = None,
    technician_id: Optional[str] = None,
) -> list[UsageReportItem]:
    return build_usage_report(
        ledger.usage_records(), ledger.catalog, start, end, vehicle_id, technician_id
    )
