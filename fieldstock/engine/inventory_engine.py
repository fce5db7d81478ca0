"""Wiring for the ledger and its services."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from fieldstock.config import EngineSettings, get_settings
from fieldstock.engine.catalog import Catalog
from fieldstock.engine.events import EventBus
from fieldstock.engine.integrity import LedgerIntegrityChecker
from fieldstock.engine.ledger import StockLedger
from fieldstock.engine.purchase_orders import PurchaseOrderGenerator
from fieldstock.engine.replenishment import ReplenishmentScanner
from fieldstock.engine.status import aggregate_all, aggregate_item
from fieldstock.engine.transfer_coordinator import TransferCoordinator
from fieldstock.engine.usage_recorder import UsageRecorder
from fieldstock.engine.usage_report import usage_report
from fieldstock.models.inventory import ItemStockStatus, UsageReportItem
from fieldstock.storage.base import LedgerRepository
from fieldstock.storage.dynamodb import DynamoDBRepository

logger = logging.getLogger(__name__)


class InventoryEngine:
    """One ledger plus the services that read and write it."""

    def __init__(self, ledger: StockLedger):
        self.ledger = ledger
        self.scanner = ReplenishmentScanner(ledger)
        self.usage = UsageRecorder(ledger, self.scanner)
        self.transfers = TransferCoordinator(ledger, self.scanner)
        self.purchasing = PurchaseOrderGenerator(ledger, self.scanner)
        self.integrity = LedgerIntegrityChecker()

    @classmethod
    def create(
        cls,
        catalog: Catalog,
        repository: Optional[LedgerRepository] = None,
        bus: Optional[EventBus] = None,
        settings: Optional[EngineSettings] = None,
    ) -> "InventoryEngine":
        """Loads committed state from the repository (in-memory by default)."""
        if repository is None:
            return cls(StockLedger(catalog, bus=bus, settings=settings))
        return cls(StockLedger.load(catalog, repository, bus=bus, settings=settings))

    @classmethod
    def from_dynamodb(
        cls,
        catalog: Catalog,
        dynamodb_client=None,
        bus: Optional[EventBus] = None,
        settings: Optional[EngineSettings] = None,
    ) -> "InventoryEngine":
        settings = settings or get_settings()
        repository = DynamoDBRepository(dynamodb_client=dynamodb_client, settings=settings)
        engine = cls.create(catalog, repository, bus=bus, settings=settings)
        logger.info("Engine ready on DynamoDB (region=%s, prefix=%s): %d entries",
                    settings.aws_region, settings.table_prefix, len(engine.ledger))
        return engine

    @property
    def bus(self) -> EventBus:
        return self.ledger.bus

    def item_status(self, item_id: str) -> ItemStockStatus:
        return aggregate_item(
            self.ledger.catalog.get(item_id),
            self.ledger.entries_for_item(item_id),
            self.ledger.settings.default_status_minimum,
        )

    def inventory_status(self) -> list[ItemStockStatus]:
        return aggregate_all(
            self.ledger.catalog.items(),
            self.ledger.snapshot(),
            self.ledger.settings.default_status_minimum,
        )

    def usage_report(
        self,
        start: datetime,
        end: datetime,
        vehicle_id: Optional[str] = None,
        technician_id: Optional[str] = None,
    ) -> list[UsageReportItem]:
        return usage_report(self.ledger, start, end, vehicle_id, technician_id)
