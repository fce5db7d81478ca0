"""Replenishment scanner.

Walks a ledger snapshot and reports warehouse items at or below their
catalog reorder point and vehicle items at or below the per-vehicle
minimum. Notices go out on the event bus; delivery to technicians or
purchasing is a subscriber's job.
"""

from __future__ import annotations

import logging
from typing import Iterable, Optional, Protocol

from fieldstock.engine.base import BaseService
from fieldstock.engine.events import EventBus, EventType, LedgerEvent
from fieldstock.engine.ledger import StockLedger
from fieldstock.models.inventory import (
    InventoryItem,
    ReplenishmentNotice,
    ReplenishmentScan,
    StockLocationItem,
    Vehicle,
    Warehouse,
)

logger = logging.getLogger(__name__)


def suggested_quantity(threshold: int, current_quantity: int) -> int:
    """Refill to twice the threshold, and always at least one unit."""
    return max(1, 2 * threshold - current_quantity)


def evaluate_entry(entry: StockLocationItem, item: InventoryItem) -> Optional[ReplenishmentNotice]:
    """Deficiency rule for one entry; None when the entry is healthy."""
    if isinstance(entry.location, Warehouse):
        threshold = item.reorder_point
        if entry.quantity > threshold:
            return None
    elif isinstance(entry.location, Vehicle):
        threshold = entry.minimum_stock_level
        if not entry.at_or_below_minimum:
            return None
    else:
        return None

    return ReplenishmentNotice(
        item_id=entry.item_id,
        location=entry.location,
        current_quantity=entry.quantity,
        threshold=threshold,
        suggested_quantity=suggested_quantity(threshold, entry.quantity),
    )


class ReplenishmentScanner(BaseService):
    """Finds deficient ledger entries and announces them."""

    def __init__(self, ledger: StockLedger):
        super().__init__("ReplenishmentScanner", ledger)

    def scan(
        self,
        entries: Optional[Iterable[StockLocationItem]] = None,
        notify: bool = False,
    ) -> ReplenishmentScan:
        """One pass over the snapshot (the whole ledger by default).

        Warehouse deficiencies are de-duplicated by item; vehicle
        deficiencies are listed per vehicle. Ordering follows the snapshot.
        """
        snapshot = self.ledger.snapshot() if entries is None else list(entries)
        result = ReplenishmentScan()
        seen_warehouse: set[str] = set()
        seen_vehicle: set[tuple[str, str]] = set()

        for entry in snapshot:
            item = self.catalog.find(entry.item_id)
            if item is None:
                logger.warning("Skipping %s: item not in catalog", entry.coordinate)
                continue

            notice = evaluate_entry(entry, item)
            if notice is None:
                continue
            result.notices.append(notice)

            if isinstance(entry.location, Warehouse):
                if item.item_id not in seen_warehouse:
                    seen_warehouse.add(item.item_id)
                    result.warehouse_deficiencies.append(item)
            else:
                marker = (entry.location.id, item.item_id)
                if marker not in seen_vehicle:
                    seen_vehicle.add(marker)
                    result.vehicle_deficiencies.setdefault(entry.location.id, []).append(item)

        if not result.is_empty:
            self.log_decision(
                decision_type="replenishment_scan",
                input_data={"entries_checked": len(snapshot)},
                output_data={
                    "warehouse_items": [i.item_id for i in result.warehouse_deficiencies],
                    "vehicles": sorted(result.vehicle_deficiencies),
                },
                reasoning=(
                    f"{len(result.warehouse_deficiencies)} warehouse items and "
                    f"{len(result.vehicle_deficiencies)} vehicles need stock"
                ),
            )
        if notify:
            self.notify(result)
        return result

    def check_entry(self, entry: StockLocationItem) -> Optional[ReplenishmentNotice]:
        """Evaluates a single entry right after a committed decrement."""
        item = self.catalog.find(entry.item_id)
        if item is None:
            logger.warning("Skipping %s: item not in catalog", entry.coordinate)
            return None
        notice = evaluate_entry(entry, item)
        if notice is not None:
            self._publish_notice(notice)
        return notice

    def notify(self, scan: ReplenishmentScan) -> int:
        for notice in scan.notices:
            self._publish_notice(notice)
        return len(scan.notices)

    def vehicle_needs(self, vehicle_id: str) -> list[ReplenishmentNotice]:
        return self.scan(self.ledger.entries_at(Vehicle(vehicle_id))).notices

    def _publish_notice(self, notice: ReplenishmentNotice) -> None:
        logger.info(
            "Replenishment needed: %s at %s (%d <= %d, suggest %d)",
            notice.item_id, notice.location.label, notice.current_quantity,
            notice.threshold, notice.suggested_quantity,
        )
        self.publish(EventType.REPLENISHMENT_NEEDED, notice.as_dict())


class NotificationSink(Protocol):
    """Receives replenishment notices as (item, location key, quantity).

    The quantity is the suggested refill, not the shortfall below the
    threshold.
    """

    def deliver(self, item_id: str, location: str, deficiency_quantity: int) -> None:
        ...


def attach_notification_sink(bus: EventBus, sink: NotificationSink) -> None:
    """Forwards every replenishment notice on the bus to the sink."""

    def forward(event: LedgerEvent) -> None:
        payload = event.payload
        sink.deliver(payload["item_id"], payload["location"], payload["suggested_quantity"])

    bus.subscribe(forward, EventType.REPLENISHMENT_NEEDED)
