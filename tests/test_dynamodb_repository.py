"""DynamoDB repository unit tests (boto3 client mocked)."""

from datetime import datetime
from decimal import Decimal
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError

from fieldstock.config import EngineSettings
from fieldstock.exceptions import PersistenceFailure
from fieldstock.models.inventory import (
    PendingTransfer,
    PurchaseOrder,
    PurchaseOrderLineItem,
    StockLocationItem,
    TransferStatus,
    UsageRecord,
    Vehicle,
    Warehouse,
)
from fieldstock.storage.base import ChangeSet
from fieldstock.storage.dynamodb import (
    MAX_TRANSACTION_ITEMS,
    DynamoDBRepository,
    _marshal,
    entry_to_row,
    order_to_row,
    transfer_to_row,
    usage_to_row,
)

_NOW = datetime(2024, 5, 1, 9, 30)


def _create_repository(client=None) -> DynamoDBRepository:
    return DynamoDBRepository(
        dynamodb_client=client or MagicMock(),
        settings=EngineSettings(table_prefix="Test"),
    )


def _entry(version=1, quantity=10) -> StockLocationItem:
    return StockLocationItem(
        item_id="A", location=Warehouse("W1"), quantity=quantity,
        minimum_stock_level=5, entry_id="e-1", created_at=_NOW, updated_at=_NOW, version=version,
    )


def _pending(status=TransferStatus.PENDING) -> PendingTransfer:
    return PendingTransfer(
        item_id="A", quantity=5, from_warehouse=Warehouse("W1"), to_vehicle=Vehicle("V1"),
        transfer_id="t-1", status=status, requested_at=_NOW,
    )


def _client_error(code, reasons=None) -> ClientError:
    response = {"Error": {"Code": code, "Message": "refused"}}
    if reasons is not None:
        response["CancellationReasons"] = reasons
    return ClientError(response, "TransactWriteItems")


class TestBuildTransaction:
    """Change sets map to conditional transaction items."""

    def test_new_entry_requires_absence(self):
        items = _create_repository().build_transaction(
            ChangeSet("stock_item", saved_entries=[_entry()])
        )
        put = items[0]["Put"]
        assert put["TableName"] == "TestStockLocations"
        assert put["ConditionExpression"] == "attribute_not_exists(entry_id)"
        assert put["Item"]["quantity"] == {"N": "10"}
        assert put["Item"]["location_key"] == {"S": "warehouse:W1"}
        assert "vehicle_id" not in put["Item"]

    def test_update_checks_previous_version(self):
        items = _create_repository().build_transaction(
            ChangeSet("adjust_quantity", saved_entries=[_entry(version=4)])
        )
        put = items[0]["Put"]
        assert put["ConditionExpression"] == "version = :expected"
        assert put["ExpressionAttributeValues"] == {":expected": {"N": "3"}}

    def test_delete_checks_current_version(self):
        items = _create_repository().build_transaction(
            ChangeSet("remove_entry", deleted_entries=[_entry(version=2)])
        )
        delete = items[0]["Delete"]
        assert delete["Key"] == {"entry_id": {"S": "e-1"}}
        assert delete["ExpressionAttributeValues"] == {":expected": {"N": "2"}}

    def test_usage_change_set_is_one_transaction(self):
        record = UsageRecord(item_id="A", quantity=3, location=Warehouse("W1"), record_id="u-1")
        items = _create_repository().build_transaction(
            ChangeSet("record_usage", saved_entries=[_entry(version=2, quantity=7)],
                      usage_records=[record])
        )
        assert len(items) == 2
        assert items[1]["Put"]["TableName"] == "TestUsageRecords"
        assert items[1]["Put"]["ConditionExpression"] == "attribute_not_exists(record_id)"

    def test_transfer_resolution_requires_pending(self):
        items = _create_repository().build_transaction(
            ChangeSet("reject_transfer", saved_transfers=[_pending(TransferStatus.REJECTED)])
        )
        put = items[0]["Put"]
        assert put["ConditionExpression"] == "#status = :pending"
        assert put["ExpressionAttributeValues"] == {":pending": {"S": "pending"}}
        assert put["Item"]["status"] == {"S": "rejected"}

    def test_new_transfer_requires_absence(self):
        items = _create_repository().build_transaction(
            ChangeSet("request_transfer", saved_transfers=[_pending()])
        )
        assert items[0]["Put"]["ConditionExpression"] == "attribute_not_exists(transfer_id)"


class TestCommit:
    def test_commit_sends_one_transaction(self):
        client = MagicMock()
        repository = _create_repository(client)
        repository.commit(ChangeSet("stock_item", saved_entries=[_entry()]))
        client.transact_write_items.assert_called_once()
        assert len(client.transact_write_items.call_args.kwargs["TransactItems"]) == 1

    def test_empty_change_set_skips_call(self):
        client = MagicMock()
        _create_repository(client).commit(ChangeSet("noop"))
        client.transact_write_items.assert_not_called()

    def test_transaction_limit(self):
        client = MagicMock()
        entries = [
            StockLocationItem(item_id=f"I{i}", location=Vehicle("V1")) for i in range(MAX_TRANSACTION_ITEMS + 1)
        ]
        with pytest.raises(PersistenceFailure):
            _create_repository(client).commit(ChangeSet("remove_location", deleted_entries=entries))
        client.transact_write_items.assert_not_called()

    def test_cancelled_transaction(self):
        client = MagicMock()
        client.transact_write_items.side_effect = _client_error(
            "TransactionCanceledException",
            [{"Code": "ConditionalCheckFailed"}, {"Code": "None"}],
        )
        with pytest.raises(PersistenceFailure) as exc_info:
            _create_repository(client).commit(ChangeSet("adjust_quantity", saved_entries=[_entry(2)]))
        assert "ConditionalCheckFailed" in str(exc_info.value)
        assert isinstance(exc_info.value.cause, ClientError)

    def test_other_client_error(self):
        client = MagicMock()
        client.transact_write_items.side_effect = _client_error("ProvisionedThroughputExceededException")
        with pytest.raises(PersistenceFailure):
            _create_repository(client).commit(ChangeSet("stock_item", saved_entries=[_entry()]))


class TestLoad:
    """Committed rows are read back into ledger state."""

    def _client_with(self, tables: dict) -> MagicMock:
        client = MagicMock()
        client.get_paginator.return_value.paginate.side_effect = (
            lambda TableName: [{"Items": tables.get(TableName, [])}]
        )
        return client

    def test_load_reads_every_table(self):
        order = PurchaseOrder(vendor_id="acme", vendor_name="Acme", created_at=_NOW)
        order.add_line(PurchaseOrderLineItem("A", "Filter", 7, Decimal("2.50")))
        usage = UsageRecord(item_id="A", quantity=2, location=Vehicle("V1"),
                            timestamp=_NOW, vehicle_id="V1", technician_id="tech-1")
        client = self._client_with({
            "TestStockLocations": [_marshal(entry_to_row(_entry(version=3)))],
            "TestUsageRecords": [_marshal(usage_to_row(usage))],
            "TestPendingTransfers": [_marshal(transfer_to_row(_pending()))],
            "TestPurchaseOrders": [_marshal(order_to_row(order))],
        })

        state = _create_repository(client).load()

        assert state.entries == [_entry(version=3)]
        assert state.usage_records == [usage]
        assert state.transfers[0].status is TransferStatus.PENDING
        assert state.purchase_orders[0].total == Decimal("17.50")
        assert state.transfer_records == []

    def test_scan_failure(self):
        client = MagicMock()
        client.get_paginator.return_value.paginate.side_effect = _client_error("ResourceNotFoundException")
        with pytest.raises(PersistenceFailure):
            _create_repository(client).load()
