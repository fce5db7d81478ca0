"""Usage recording: consumption of stock at a location on a job."""

from __future__ import annotations

import logging
from typing import Optional

from fieldstock.engine.base import BaseService
from fieldstock.engine.events import EventType
from fieldstock.engine.ledger import StockLedger, coordinate
from fieldstock.engine.replenishment import ReplenishmentScanner
from fieldstock.exceptions import InsufficientStockError, InvalidQuantityError
from fieldstock.models.inventory import Location, UsageRecord, Vehicle
from fieldstock.storage.base import ChangeSet

logger = logging.getLogger(__name__)


class UsageRecorder(BaseService):
    """Decrements the ledger and writes the usage fact in one commit."""

    def __init__(self, ledger: StockLedger, scanner: Optional[ReplenishmentScanner] = None):
        super().__init__("UsageRecorder", ledger)
        self.scanner = scanner or ReplenishmentScanner(ledger)

    def record_usage(
        self,
        item_id: str,
        quantity: int,
        location: Location,
        technician_id: Optional[str] = None,
        vehicle_id: Optional[str] = None,
        job_id: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> UsageRecord:
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
            raise InvalidQuantityError(f"Usage quantity must be a positive integer: {quantity}")

        # Fail fast before taking the lock
        self.ledger.require_entry(item_id, location)

        if vehicle_id is None and isinstance(location, Vehicle):
            vehicle_id = location.id

        with self.ledger.locks.hold(coordinate(item_id, location)):
            entry = self.ledger.require_entry(item_id, location)
            if entry.quantity < quantity:
                raise InsufficientStockError(
                    f"Insufficient stock for {item_id} at {location.label}: "
                    f"available={entry.quantity}, requested={quantity}",
                    available=entry.quantity,
                    requested=quantity,
                )

            updated = self.ledger.revise(entry, quantity=entry.quantity - quantity)
            record = UsageRecord(
                item_id=item_id,
                quantity=quantity,
                location=location,
                timestamp=updated.updated_at,
                technician_id=technician_id,
                vehicle_id=vehicle_id,
                job_id=job_id,
                notes=notes,
            )
            self.ledger.commit(ChangeSet(
                "record_usage",
                technician_id,
                saved_entries=[updated],
                usage_records=[record],
            ))

        logger.info(
            "Usage recorded: %d x %s at %s (job=%s, technician=%s)",
            quantity, item_id, location.label, job_id, technician_id,
        )
        self.publish(EventType.USAGE_RECORDED, {
            "record_id": record.record_id,
            "item_id": item_id,
            "quantity": quantity,
            "location": location.key,
            "quantity_after": updated.quantity,
            "technician_id": technician_id,
            "vehicle_id": vehicle_id,
            "job_id": job_id,
        })
        self.scanner.check_entry(updated)
        return record
