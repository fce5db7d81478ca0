from fieldstock.engine.base import BaseService
from fieldstock.engine.inventory_engine import InventoryEngine
from fieldstock.engine.purchase_orders import PurchaseOrderGenerator
from fieldstock.engine.replenishment import ReplenishmentScanner
from fieldstock.engine.transfer_coordinator import TransferCoordinator
from fieldstock.engine.usage_recorder import UsageRecorder

__all__ = [
    "BaseService",
    "InventoryEngine",
    "PurchaseOrderGenerator",
    "ReplenishmentScanner",
    "TransferCoordinator",
    "UsageRecorder",
]
