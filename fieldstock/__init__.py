"""Stock-location ledger and replenishment engine for field-service inventory."""

from fieldstock.engine.catalog import Catalog
from fieldstock.engine.inventory_engine import InventoryEngine
from fieldstock.engine.ledger import StockLedger
from fieldstock.models.inventory import (
    InventoryItem,
    Location,
    StockLocationItem,
    Vehicle,
    Warehouse,
)

__version__ = "0.1.0"

__all__ = [
    "Catalog",
    "InventoryEngine",
    "InventoryItem",
    "Location",
    "StockLedger",
    "StockLocationItem",
    "Vehicle",
    "Warehouse",
]
