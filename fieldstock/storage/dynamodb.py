"""DynamoDB-backed ledger repository.

Every change set becomes one TransactWriteItems call, so a failed
condition (stale version, transfer already resolved) cancels the whole
operation.
"""

from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

import boto3
from boto3.dynamodb.types import TypeDeserializer, TypeSerializer
from botocore.exceptions import ClientError

from fieldstock.config import EngineSettings, get_settings
from fieldstock.exceptions import PersistenceFailure
from fieldstock.models.inventory import (
    PendingTransfer,
    PurchaseOrder,
    PurchaseOrderLineItem,
    PurchaseOrderStatus,
    StockLocationItem,
    TransferRecord,
    TransferStatus,
    UsageRecord,
    Vehicle,
    Warehouse,
    location_from_ids,
    location_ids,
)
from fieldstock.storage import tables
from fieldstock.storage.base import ChangeSet, LedgerRepository, LedgerState

logger = logging.getLogger(__name__)

# DynamoDB limit for a single TransactWriteItems request
MAX_TRANSACTION_ITEMS = 100

_serializer = TypeSerializer()
_deserializer = TypeDeserializer()


def _ts(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _marshal(data: dict[str, Any]) -> dict[str, Any]:
    return {k: _serializer.serialize(v) for k, v in data.items() if v is not None}


def _unmarshal(item: dict[str, Any]) -> dict[str, Any]:
    return {k: _deserializer.deserialize(v) for k, v in item.items()}


# --- Row mapping ---


def entry_to_row(entry: StockLocationItem) -> dict[str, Any]:
    warehouse_id, vehicle_id = location_ids(entry.location)
    return {
        "entry_id": entry.entry_id,
        "item_id": entry.item_id,
        "location_key": entry.location.key,
        "warehouse_id": warehouse_id,
        "vehicle_id": vehicle_id,
        "quantity": entry.quantity,
        "minimum_stock_level": entry.minimum_stock_level,
        "max_stock_level": entry.max_stock_level,
        "created_at": _ts(entry.created_at),
        "updated_at": _ts(entry.updated_at),
        "version": entry.version,
    }


def row_to_entry(row: dict[str, Any]) -> StockLocationItem:
    max_level = row.get("max_stock_level")
    return StockLocationItem(
        entry_id=row["entry_id"],
        item_id=row["item_id"],
        location=location_from_ids(row.get("warehouse_id"), row.get("vehicle_id")),
        quantity=int(row["quantity"]),
        minimum_stock_level=int(row.get("minimum_stock_level", 0)),
        max_stock_level=int(max_level) if max_level is not None else None,
        created_at=_parse_ts(row["created_at"]),
        updated_at=_parse_ts(row["updated_at"]),
        version=int(row["version"]),
    )


def usage_to_row(record: UsageRecord) -> dict[str, Any]:
    warehouse_id, vehicle_id = location_ids(record.location)
    return {
        "record_id": record.record_id,
        "item_id": record.item_id,
        "quantity": record.quantity,
        "warehouse_id": warehouse_id,
        "location_vehicle_id": vehicle_id,
        "timestamp": _ts(record.timestamp),
        "technician_id": record.technician_id,
        "vehicle_id": record.vehicle_id,
        "job_id": record.job_id,
        "notes": record.notes,
    }


def row_to_usage(row: dict[str, Any]) -> UsageRecord:
    return UsageRecord(
        record_id=row["record_id"],
        item_id=row["item_id"],
        quantity=int(row["quantity"]),
        location=location_from_ids(row.get("warehouse_id"), row.get("location_vehicle_id")),
        timestamp=_parse_ts(row["timestamp"]),
        technician_id=row.get("technician_id"),
        vehicle_id=row.get("vehicle_id"),
        job_id=row.get("job_id"),
        notes=row.get("notes"),
    )


def movement_to_row(record: TransferRecord) -> dict[str, Any]:
    return {
        "record_id": record.record_id,
        "item_id": record.item_id,
        "quantity": record.quantity,
        "source_key": record.source.key,
        "destination_key": record.destination.key,
        "timestamp": _ts(record.timestamp),
        "performed_by": record.performed_by,
        "pending_transfer_id": record.pending_transfer_id,
    }


def _location_from_key(key: str):
    kind, _, location_id = key.partition(":")
    return Warehouse(location_id) if kind == "warehouse" else Vehicle(location_id)


def row_to_movement(row: dict[str, Any]) -> TransferRecord:
    return TransferRecord(
        record_id=row["record_id"],
        item_id=row["item_id"],
        quantity=int(row["quantity"]),
        source=_location_from_key(row["source_key"]),
        destination=_location_from_key(row["destination_key"]),
        timestamp=_parse_ts(row["timestamp"]),
        performed_by=row.get("performed_by"),
        pending_transfer_id=row.get("pending_transfer_id"),
    )


def transfer_to_row(transfer: PendingTransfer) -> dict[str, Any]:
    return {
        "transfer_id": transfer.transfer_id,
        "item_id": transfer.item_id,
        "quantity": transfer.quantity,
        "from_warehouse_id": transfer.from_warehouse.id,
        "to_vehicle_id": transfer.to_vehicle.id,
        "requested_by": transfer.requested_by,
        "assigned_to": transfer.assigned_to,
        "notes": transfer.notes,
        "status": transfer.status.value,
        "requested_at": _ts(transfer.requested_at),
        "processed_at": _ts(transfer.processed_at),
        "processed_by": transfer.processed_by,
        "rejection_reason": transfer.rejection_reason,
    }


def row_to_transfer(row: dict[str, Any]) -> PendingTransfer:
    return PendingTransfer(
        transfer_id=row["transfer_id"],
        item_id=row["item_id"],
        quantity=int(row["quantity"]),
        from_warehouse=Warehouse(row["from_warehouse_id"]),
        to_vehicle=Vehicle(row["to_vehicle_id"]),
        requested_by=row.get("requested_by"),
        assigned_to=row.get("assigned_to"),
        notes=row.get("notes"),
        status=TransferStatus(row["status"]),
        requested_at=_parse_ts(row["requested_at"]),
        processed_at=_parse_ts(row.get("processed_at")),
        processed_by=row.get("processed_by"),
        rejection_reason=row.get("rejection_reason"),
    )


def order_to_row(order: PurchaseOrder) -> dict[str, Any]:
    return {
        "order_id": order.order_id,
        "po_number": order.po_number,
        "vendor_id": order.vendor_id,
        "vendor_name": order.vendor_name,
        "status": order.status.value,
        "notes": order.notes,
        "created_at": _ts(order.created_at),
        "subtotal": order.subtotal,
        "total": order.total,
        "line_items": [
            {
                "line_id": line.line_id,
                "item_id": line.item_id,
                "description": line.description,
                "quantity": line.quantity,
                "unit_price": line.unit_price,
                "line_total": line.line_total,
            }
            for line in order.line_items
        ],
    }


def row_to_order(row: dict[str, Any]) -> PurchaseOrder:
    order = PurchaseOrder(
        order_id=row["order_id"],
        po_number=row["po_number"],
        vendor_id=row["vendor_id"],
        vendor_name=row["vendor_name"],
        status=PurchaseOrderStatus(row["status"]),
        notes=row.get("notes", ""),
        created_at=_parse_ts(row["created_at"]),
    )
    for line in row.get("line_items", []):
        order.add_line(
            PurchaseOrderLineItem(
                line_id=line["line_id"],
                item_id=line["item_id"],
                description=line.get("description", ""),
                quantity=int(line["quantity"]),
                unit_price=Decimal(line["unit_price"]),
            )
        )
    return order


class DynamoDBRepository(LedgerRepository):
    """Ledger repository on DynamoDB (low-level client)."""

    def __init__(
        self,
        dynamodb_client: Optional[Any] = None,
        settings: Optional[EngineSettings] = None,
    ):
        self.settings = settings or get_settings()
        self.client = dynamodb_client or boto3.client(
            "dynamodb", region_name=self.settings.aws_region
        )
        self.entries_table = self.settings.table_name(tables.STOCK_LOCATIONS)
        self.usage_table = self.settings.table_name(tables.USAGE_RECORDS)
        self.movements_table = self.settings.table_name(tables.TRANSFER_RECORDS)
        self.transfers_table = self.settings.table_name(tables.PENDING_TRANSFERS)
        self.orders_table = self.settings.table_name(tables.PURCHASE_ORDERS)

    # --- Writes ---

    def build_transaction(self, changes: ChangeSet) -> list[dict[str, Any]]:
        """Translates a change set into TransactWriteItems operations."""
        items: list[dict[str, Any]] = []

        for entry in changes.saved_entries:
            put: dict[str, Any] = {
                "TableName": self.entries_table,
                "Item": _marshal(entry_to_row(entry)),
            }
            if entry.version == 1:
                put["ConditionExpression"] = "attribute_not_exists(entry_id)"
            else:
                put["ConditionExpression"] = "version = :expected"
                put["ExpressionAttributeValues"] = {":expected": {"N": str(entry.version - 1)}}
            items.append({"Put": put})

        for entry in changes.deleted_entries:
            items.append(
                {
                    "Delete": {
                        "TableName": self.entries_table,
                        "Key": {"entry_id": {"S": entry.entry_id}},
                        "ConditionExpression": "version = :expected",
                        "ExpressionAttributeValues": {":expected": {"N": str(entry.version)}},
                    }
                }
            )

        for record in changes.usage_records:
            items.append(self._put_new(self.usage_table, usage_to_row(record), "record_id"))
        for record in changes.transfer_records:
            items.append(self._put_new(self.movements_table, movement_to_row(record), "record_id"))

        for transfer in changes.saved_transfers:
            if transfer.status is TransferStatus.PENDING:
                items.append(
                    self._put_new(self.transfers_table, transfer_to_row(transfer), "transfer_id")
                )
            else:
                items.append(
                    {
                        "Put": {
                            "TableName": self.transfers_table,
                            "Item": _marshal(transfer_to_row(transfer)),
                            "ConditionExpression": "#status = :pending",
                            "ExpressionAttributeNames": {"#status": "status"},
                            "ExpressionAttributeValues": {
                                ":pending": {"S": TransferStatus.PENDING.value}
                            },
                        }
                    }
                )

        for order in changes.purchase_orders:
            items.append(self._put_new(self.orders_table, order_to_row(order), "order_id"))

        return items

    @staticmethod
    def _put_new(table: str, row: dict[str, Any], key: str) -> dict[str, Any]:
        return {
            "Put": {
                "TableName": table,
                "Item": _marshal(row),
                "ConditionExpression": f"attribute_not_exists({key})",
            }
        }

    def commit(self, changes: ChangeSet) -> None:
        items = self.build_transaction(changes)
        if not items:
            return
        if len(items) > MAX_TRANSACTION_ITEMS:
            raise PersistenceFailure(
                f"{changes.operation}: {len(items)} writes exceed the "
                f"{MAX_TRANSACTION_ITEMS}-item transaction limit"
            )

        try:
            self.client.transact_write_items(TransactItems=items)
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code", "")
            logger.error("DynamoDB commit failed [%s] %s: %s", changes.operation, code, e)
            if code == "TransactionCanceledException":
                reasons = [
                    r.get("Code") for r in e.response.get("CancellationReasons", []) if r.get("Code")
                ]
                raise PersistenceFailure(
                    f"{changes.operation} cancelled: {', '.join(reasons) or 'condition not met'}",
                    cause=e,
                ) from e
            raise PersistenceFailure(f"{changes.operation} failed: {code}", cause=e) from e

        logger.info("DynamoDB commit %s (%d writes)", changes.operation, len(items))

    # --- Reads ---

    def _scan(self, table: str) -> list[dict[str, Any]]:
        rows = []
        try:
            paginator = self.client.get_paginator("scan")
            for page in paginator.paginate(TableName=table):
                rows.extend(_unmarshal(item) for item in page.get("Items", []))
        except ClientError as e:
            logger.error("DynamoDB scan failed [%s]: %s", table, e)
            raise PersistenceFailure(f"Could not read {table}", cause=e) from e
        return rows

    def load(self) -> LedgerState:
        return LedgerState(
            entries=[row_to_entry(r) for r in self._scan(self.entries_table)],
            usage_records=[row_to_usage(r) for r in self._scan(self.usage_table)],
            transfer_records=[row_to_movement(r) for r in self._scan(self.movements_table)],
            transfers=[row_to_transfer(r) for r in self._scan(self.transfers_table)],
            purchase_orders=[row_to_order(r) for r in self._scan(self.orders_table)],
        )
