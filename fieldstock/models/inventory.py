"""Stock ledger data models.

Catalog items, ledger entries per location, usage facts, pending transfers
and draft purchase orders.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional, Union

from fieldstock.exceptions import InvalidLocationAssignmentError, InvalidQuantityError


def utcnow() -> datetime:
    return datetime.utcnow()


def new_id() -> str:
    return str(uuid.uuid4())


class LocationKind(str, Enum):
    WAREHOUSE = "warehouse"
    VEHICLE = "vehicle"


class StockStatus(str, Enum):
    IN_STOCK = "in_stock"
    LOW_STOCK = "low_stock"
    OUT_OF_STOCK = "out_of_stock"
    OVER_STOCK = "over_stock"


class TransferStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"

    @property
    def is_terminal(self) -> bool:
        return self is not TransferStatus.PENDING


class PurchaseOrderStatus(str, Enum):
    DRAFT = "draft"
    SUBMITTED = "submitted"
    APPROVED = "approved"
    REJECTED = "rejected"
    PARTIALLY_RECEIVED = "partially_received"
    RECEIVED = "received"
    CANCELLED = "cancelled"


# --- Locations ---


@dataclass(frozen=True)
class Warehouse:
    id: str
    kind: LocationKind = field(default=LocationKind.WAREHOUSE, init=False)

    @property
    def key(self) -> str:
        return f"warehouse:{self.id}"

    @property
    def label(self) -> str:
        return f"Warehouse: {self.id}"


@dataclass(frozen=True)
class Vehicle:
    id: str
    kind: LocationKind = field(default=LocationKind.VEHICLE, init=False)

    @property
    def key(self) -> str:
        return f"vehicle:{self.id}"

    @property
    def label(self) -> str:
        return f"Vehicle: {self.id}"


Location = Union[Warehouse, Vehicle]


def location_from_ids(
    warehouse_id: Optional[str] = None, vehicle_id: Optional[str] = None
) -> Location:
    """Builds a location from the two-column shape used by storage and callers.

    Exactly one of the ids must be set.
    """
    if warehouse_id and vehicle_id:
        raise InvalidLocationAssignmentError(
            f"Entry cannot belong to warehouse {warehouse_id} and vehicle {vehicle_id} at once"
        )
    if warehouse_id:
        return Warehouse(warehouse_id)
    if vehicle_id:
        return Vehicle(vehicle_id)
    raise InvalidLocationAssignmentError("Entry must belong to a warehouse or a vehicle")


def location_ids(location: Location) -> tuple[Optional[str], Optional[str]]:
    """Inverse of location_from_ids: (warehouse_id, vehicle_id)."""
    if isinstance(location, Warehouse):
        return location.id, None
    return None, location.id


# --- Catalog ---


@dataclass
class InventoryItem:
    item_id: str
    name: str
    unit_price: Decimal = Decimal("0")
    reorder_point: int = 5
    part_number: str = ""
    category: str = ""
    supplier: Optional[str] = None
    is_active: bool = True

    def __post_init__(self) -> None:
        if not isinstance(self.unit_price, Decimal):
            self.unit_price = Decimal(str(self.unit_price))
        if self.reorder_point < 0:
            raise InvalidQuantityError(f"Reorder point cannot be negative: {self.reorder_point}")


# --- Ledger ---


@dataclass
class StockLocationItem:
    item_id: str
    location: Location
    quantity: int = 0
    minimum_stock_level: int = 0
    max_stock_level: Optional[int] = None
    entry_id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    version: int = 1

    def __post_init__(self) -> None:
        if not isinstance(self.location, (Warehouse, Vehicle)):
            raise InvalidLocationAssignmentError(
                f"Unsupported location for entry {self.entry_id}: {self.location!r}"
            )
        if not isinstance(self.quantity, int) or self.quantity < 0:
            raise InvalidQuantityError(f"Entry quantity must be a non-negative integer: {self.quantity}")
        if self.minimum_stock_level < 0:
            raise InvalidQuantityError(
                f"Minimum stock level cannot be negative: {self.minimum_stock_level}"
            )

    @property
    def coordinate(self) -> str:
        """Unique ledger coordinate: item@location."""
        return f"{self.item_id}@{self.location.key}"

    @property
    def at_or_below_minimum(self) -> bool:
        return self.quantity <= self.minimum_stock_level


@dataclass(frozen=True)
class UsageRecord:
    item_id: str
    quantity: int
    location: Location
    record_id: str = field(default_factory=new_id)
    timestamp: datetime = field(default_factory=utcnow)
    technician_id: Optional[str] = None
    vehicle_id: Optional[str] = None
    job_id: Optional[str] = None
    notes: Optional[str] = None


@dataclass(frozen=True)
class TransferRecord:
    item_id: str
    quantity: int
    source: Location
    destination: Location
    record_id: str = field(default_factory=new_id)
    timestamp: datetime = field(default_factory=utcnow)
    performed_by: Optional[str] = None
    pending_transfer_id: Optional[str] = None


@dataclass
class PendingTransfer:
    item_id: str
    quantity: int
    from_warehouse: Warehouse
    to_vehicle: Vehicle
    requested_by: Optional[str] = None
    assigned_to: Optional[str] = None
    notes: Optional[str] = None
    transfer_id: str = field(default_factory=new_id)
    status: TransferStatus = TransferStatus.PENDING
    requested_at: datetime = field(default_factory=utcnow)
    processed_at: Optional[datetime] = None
    processed_by: Optional[str] = None
    rejection_reason: Optional[str] = None


# --- Procurement ---


@dataclass
class PurchaseOrderLineItem:
    item_id: str
    description: str
    quantity: int
    unit_price: Decimal
    line_id: str = field(default_factory=new_id)

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity


@dataclass
class PurchaseOrder:
    vendor_id: str
    vendor_name: str
    order_id: str = field(default_factory=new_id)
    po_number: str = field(default_factory=lambda: f"AUTO-{uuid.uuid4().hex[:8].upper()}")
    status: PurchaseOrderStatus = PurchaseOrderStatus.DRAFT
    line_items: list[PurchaseOrderLineItem] = field(default_factory=list)
    notes: str = ""
    created_at: datetime = field(default_factory=utcnow)

    def add_line(self, line: PurchaseOrderLineItem) -> None:
        self.line_items.append(line)

    @property
    def subtotal(self) -> Decimal:
        return sum((line.line_total for line in self.line_items), Decimal("0"))

    @property
    def total(self) -> Decimal:
        # No tax or shipping on generated drafts.
        return self.subtotal


# --- Engine outputs ---


@dataclass(frozen=True)
class ItemStockStatus:
    item: InventoryItem
    total_quantity: int
    total_value: Decimal
    location_count: int
    status: StockStatus


@dataclass(frozen=True)
class ReplenishmentNotice:
    item_id: str
    location: Location
    current_quantity: int
    threshold: int
    suggested_quantity: int

    def as_dict(self) -> dict[str, Any]:
        return {
            "type": f"{self.location.kind.value}_replenishment",
            "item_id": self.item_id,
            "location": self.location.key,
            "current_quantity": self.current_quantity,
            "threshold": self.threshold,
            "suggested_quantity": self.suggested_quantity,
        }


@dataclass
class ReplenishmentScan:
    warehouse_deficiencies: list[InventoryItem] = field(default_factory=list)
    vehicle_deficiencies: dict[str, list[InventoryItem]] = field(default_factory=dict)
    notices: list[ReplenishmentNotice] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.warehouse_deficiencies and not self.vehicle_deficiencies


@dataclass(frozen=True)
class TransferResult:
    source: StockLocationItem
    destination: StockLocationItem
    record: TransferRecord
    transfer: Optional[PendingTransfer] = None


@dataclass
class RestockTask:
    vehicle_id: str
    transfers: list[PendingTransfer] = field(default_factory=list)
    # item_id -> reason the item could not be requested
    skipped: dict[str, str] = field(default_factory=dict)
    task_id: str = field(default_factory=lambda: f"TASK-{uuid.uuid4().hex[:8].upper()}")


@dataclass
class UsageReportItem:
    item_id: str
    item_name: str
    total_quantity: int
    total_cost: Decimal
    records: list[UsageRecord] = field(default_factory=list)
