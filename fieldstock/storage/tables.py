"""DynamoDB table definitions and provisioning.

5 tables: StockLocations, UsageRecords, TransferRecords, PendingTransfers, PurchaseOrders
"""

from __future__ import annotations

import copy
import logging
from typing import Any, Optional

from botocore.exceptions import ClientError

from fieldstock.config import EngineSettings, get_settings

logger = logging.getLogger(__name__)

STOCK_LOCATIONS = "StockLocations"
USAGE_RECORDS = "UsageRecords"
TRANSFER_RECORDS = "TransferRecords"
PENDING_TRANSFERS = "PendingTransfers"
PURCHASE_ORDERS = "PurchaseOrders"

TABLE_DEFINITIONS = [
    {
        "TableName": STOCK_LOCATIONS,
        "KeySchema": [
            {"AttributeName": "entry_id", "KeyType": "HASH"},
        ],
        "AttributeDefinitions": [
            {"AttributeName": "entry_id", "AttributeType": "S"},
            {"AttributeName": "item_id", "AttributeType": "S"},
            {"AttributeName": "location_key", "AttributeType": "S"},
        ],
        "GlobalSecondaryIndexes": [
            {
                "IndexName": "ItemLocationIndex",
                "KeySchema": [
                    {"AttributeName": "item_id", "KeyType": "HASH"},
                    {"AttributeName": "location_key", "KeyType": "RANGE"},
                ],
                "Projection": {"ProjectionType": "ALL"},
            },
        ],
        "BillingMode": "PAY_PER_REQUEST",
    },
    {
        "TableName": USAGE_RECORDS,
        "KeySchema": [
            {"AttributeName": "record_id", "KeyType": "HASH"},
        ],
        "AttributeDefinitions": [
            {"AttributeName": "record_id", "AttributeType": "S"},
            {"AttributeName": "item_id", "AttributeType": "S"},
            {"AttributeName": "timestamp", "AttributeType": "S"},
        ],
        "GlobalSecondaryIndexes": [
            {
                "IndexName": "ItemTimeIndex",
                "KeySchema": [
                    {"AttributeName": "item_id", "KeyType": "HASH"},
                    {"AttributeName": "timestamp", "KeyType": "RANGE"},
                ],
                "Projection": {"ProjectionType": "ALL"},
            },
        ],
        "BillingMode": "PAY_PER_REQUEST",
    },
    {
        "TableName": TRANSFER_RECORDS,
        "KeySchema": [
            {"AttributeName": "record_id", "KeyType": "HASH"},
        ],
        "AttributeDefinitions": [
            {"AttributeName": "record_id", "AttributeType": "S"},
        ],
        "BillingMode": "PAY_PER_REQUEST",
    },
    {
        "TableName": PENDING_TRANSFERS,
        "KeySchema": [
            {"AttributeName": "transfer_id", "KeyType": "HASH"},
        ],
        "AttributeDefinitions": [
            {"AttributeName": "transfer_id", "AttributeType": "S"},
            {"AttributeName": "status", "AttributeType": "S"},
            {"AttributeName": "requested_at", "AttributeType": "S"},
        ],
        "GlobalSecondaryIndexes": [
            {
                "IndexName": "StatusTimeIndex",
                "KeySchema": [
                    {"AttributeName": "status", "KeyType": "HASH"},
                    {"AttributeName": "requested_at", "KeyType": "RANGE"},
                ],
                "Projection": {"ProjectionType": "ALL"},
            },
        ],
        "BillingMode": "PAY_PER_REQUEST",
    },
    {
        "TableName": PURCHASE_ORDERS,
        "KeySchema": [
            {"AttributeName": "order_id", "KeyType": "HASH"},
        ],
        "AttributeDefinitions": [
            {"AttributeName": "order_id", "AttributeType": "S"},
        ],
        "BillingMode": "PAY_PER_REQUEST",
    },
]


def table_definitions(settings: Optional[EngineSettings] = None) -> list[dict[str, Any]]:
    """Returns the definitions with the configured table prefix applied."""
    settings = settings or get_settings()
    definitions = copy.deepcopy(TABLE_DEFINITIONS)
    for definition in definitions:
        definition["TableName"] = settings.table_name(definition["TableName"])
    return definitions


def create_tables(client: Any, settings: Optional[EngineSettings] = None) -> list[str]:
    """Creates any missing table and waits until each one is active.

    Returns the names of the tables that were created.
    """
    created = []
    for definition in table_definitions(settings):
        name = definition["TableName"]
        try:
            client.create_table(**definition)
            logger.info("Table created: %s", name)
            created.append(name)
        except ClientError as e:
            if e.response["Error"]["Code"] == "ResourceInUseException":
                logger.info("Table already exists: %s", name)
                continue
            logger.error("Table creation failed [%s]: %s", name, e)
            raise

    waiter = client.get_waiter("table_exists")
    for name in created:
        waiter.wait(TableName=name)
    return created
