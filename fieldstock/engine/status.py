"""Aggregate stock status per item.

Pure functions over ledger snapshots; nothing here is cached, so callers
get the status of the ledger as of the snapshot they pass in.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Iterable, Optional

from fieldstock.models.inventory import (
    InventoryItem,
    ItemStockStatus,
    StockLocationItem,
    StockStatus,
)

# Threshold used when an item has no ledger entries at all
DEFAULT_MINIMUM = 5

# Above this multiple of the effective minimum an item is over-stocked
OVER_STOCK_FACTOR = 3


def effective_minimum(
    entries: Iterable[StockLocationItem], default: int = DEFAULT_MINIMUM
) -> int:
    """Highest per-location minimum across the entries, or default when there are none."""
    return max((e.minimum_stock_level for e in entries), default=default)


def classify(total_quantity: int, minimum: int) -> StockStatus:
    if total_quantity == 0:
        return StockStatus.OUT_OF_STOCK
    if total_quantity <= minimum:
        return StockStatus.LOW_STOCK
    if total_quantity > minimum * OVER_STOCK_FACTOR:
        return StockStatus.OVER_STOCK
    return StockStatus.IN_STOCK


def aggregate_item(
    item: InventoryItem,
    entries: Iterable[StockLocationItem],
    default_minimum: int = DEFAULT_MINIMUM,
) -> ItemStockStatus:
    """Totals and classification for one item across all its locations."""
    own = [e for e in entries if e.item_id == item.item_id]
    total = sum(e.quantity for e in own)
    return ItemStockStatus(
        item=item,
        total_quantity=total,
        total_value=item.unit_price * total,
        location_count=len(own),
        status=classify(total, effective_minimum(own, default_minimum)),
    )


def aggregate_all(
    items: Iterable[InventoryItem],
    entries: Iterable[StockLocationItem],
    default_minimum: int = DEFAULT_MINIMUM,
) -> list[ItemStockStatus]:
    """Status for every item, grouping the snapshot once."""
    by_item: dict[str, list[StockLocationItem]] = {}
    for entry in entries:
        by_item.setdefault(entry.item_id, []).append(entry)
    return [
        aggregate_item(item, by_item.get(item.item_id, []), default_minimum)
        for item in items
    ]


def inventory_value(statuses: Iterable[ItemStockStatus]) -> Decimal:
    return sum((s.total_value for s in statuses), Decimal("0"))


def filter_by_status(
    statuses: Iterable[ItemStockStatus], status: Optional[StockStatus] = None
) -> list[ItemStockStatus]:
    return [s for s in statuses if status is None or s.status == status]
