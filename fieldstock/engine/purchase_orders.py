"""Purchase Order Generator.

Batches deficient warehouse items into one draft purchase order per
supplier and hands the drafts to procurement via the event bus.
"""

from __future__ import annotations

import logging
from typing import Iterable, Optional

from fieldstock.engine.base import BaseService
from fieldstock.engine.events import EventType
from fieldstock.engine.ledger import StockLedger
from fieldstock.engine.replenishment import ReplenishmentScanner, suggested_quantity
from fieldstock.models.inventory import (
    InventoryItem,
    PurchaseOrder,
    PurchaseOrderLineItem,
    ReplenishmentScan,
    StockLocationItem,
    Warehouse,
)
from fieldstock.storage.base import ChangeSet

logger = logging.getLogger(__name__)

ORDER_NOTES = "Auto-generated replenishment order"


def recommended_quantity(item: InventoryItem, entry: StockLocationItem) -> int:
    return suggested_quantity(item.reorder_point, entry.quantity)


class PurchaseOrderGenerator(BaseService):
    def __init__(self, ledger: StockLedger, scanner: Optional[ReplenishmentScanner] = None):
        super().__init__("PurchaseOrderGenerator", ledger)
        self.scanner = scanner or ReplenishmentScanner(ledger)

    def generate(
        self,
        warehouse_deficiencies: Iterable[InventoryItem],
        triggered_by: Optional[str] = None,
    ) -> list[PurchaseOrder]:
        """One draft order per supplier group that ends up with at least one line.

        Groups keep the order in which suppliers first appear in the input.
        """
        groups: dict[str, list[InventoryItem]] = {}
        seen: set[str] = set()
        for item in warehouse_deficiencies:
            if item.item_id in seen:
                continue
            seen.add(item.item_id)
            groups.setdefault(item.supplier or self.settings.unknown_supplier, []).append(item)
        if not groups:
            return []

        warehouse_entries = self._deficient_warehouse_entries()
        orders: list[PurchaseOrder] = []
        for supplier, items in groups.items():
            known = supplier != self.settings.unknown_supplier
            order = PurchaseOrder(
                vendor_id=supplier if known else self.settings.unknown_vendor_id,
                vendor_name=supplier,
                notes=ORDER_NOTES,
                created_at=self.ledger.clock(),
            )
            for item in items:
                entry = warehouse_entries.get(item.item_id)
                if entry is None:
                    logger.warning("No deficient warehouse entry for %s; not ordering", item.item_id)
                    continue
                order.add_line(PurchaseOrderLineItem(
                    item_id=item.item_id,
                    description=item.name,
                    quantity=recommended_quantity(item, entry),
                    unit_price=item.unit_price,
                ))
            if order.line_items:
                orders.append(order)

        if not orders:
            return []

        self.ledger.commit(ChangeSet(
            "generate_purchase_orders", triggered_by, purchase_orders=orders
        ))
        self.log_decision(
            decision_type="purchase_orders_generated",
            input_data={"items": sorted(seen)},
            output_data={o.po_number: str(o.total) for o in orders},
            reasoning=f"{len(orders)} draft orders across {len(groups)} supplier groups",
        )
        self.publish(EventType.PURCHASE_ORDERS_GENERATED, {
            "orders": [
                {
                    "order_id": o.order_id,
                    "po_number": o.po_number,
                    "vendor_id": o.vendor_id,
                    "vendor_name": o.vendor_name,
                    "line_count": len(o.line_items),
                    "total": str(o.total),
                }
                for o in orders
            ],
        })
        return orders

    def generate_from_scan(
        self, scan: Optional[ReplenishmentScan] = None, triggered_by: Optional[str] = None
    ) -> list[PurchaseOrder]:
        """Runs a fresh scan unless one is supplied, then generates orders."""
        scan = scan or self.scanner.scan()
        return self.generate(scan.warehouse_deficiencies, triggered_by)

    def _deficient_warehouse_entries(self) -> dict[str, StockLocationItem]:
        """First warehouse entry per item at or below the item's reorder point.

        Healthy warehouse entries are passed over even when stocked first, so
        the line quantity is sized from a warehouse that actually needs stock.
        """
        found: dict[str, StockLocationItem] = {}
        for entry in self.ledger.snapshot():
            if not isinstance(entry.location, Warehouse) or entry.item_id in found:
                continue
            item = self.catalog.find(entry.item_id)
            if item is not None and entry.quantity <= item.reorder_point:
                found[entry.item_id] = entry
        return found
