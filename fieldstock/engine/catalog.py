"""Read side of the item catalog.

Catalog management lives outside the engine; this holds the items it
hands over and answers lookups by id.
"""

from __future__ import annotations

import threading
from typing import Iterable, Optional

from fieldstock.exceptions import UnknownItemError
from fieldstock.models.inventory import InventoryItem


class Catalog:
    def __init__(self, items: Optional[Iterable[InventoryItem]] = None) -> None:
        self._lock = threading.Lock()
        self._items: dict[str, InventoryItem] = {}
        for item in items or []:
            self.put(item)

    def put(self, item: InventoryItem) -> None:
        """Adds or replaces an item (price/reorder point edits arrive this way)."""
        with self._lock:
            self._items[item.item_id] = item

    def get(self, item_id: str) -> InventoryItem:
        try:
            return self._items[item_id]
        except KeyError:
            raise UnknownItemError(f"Item not in catalog: {item_id}") from None

    def find(self, item_id: str) -> Optional[InventoryItem]:
        return self._items.get(item_id)

    def __contains__(self, item_id: object) -> bool:
        return item_id in self._items

    def __len__(self) -> int:
        return len(self._items)

    def items(self) -> list[InventoryItem]:
        with self._lock:
            return list(self._items.values())
