"""Transfer Coordinator.

Moves quantity between ledger entries while conserving the item's total:
- Immediate transfers between any two locations
- Two-phase warehouse-to-vehicle transfers (request, then accept or reject)
- Vehicle restock tasks built from the vehicle's current deficiencies
"""

from __future__ import annotations

import logging
from typing import Optional

from fieldstock.engine.base import BaseService
from fieldstock.engine.events import EventType
from fieldstock.engine.ledger import StockLedger, coordinate, transfer_key
from fieldstock.engine.replenishment import ReplenishmentScanner
from fieldstock.exceptions import (
    DuplicateTransferResolutionError,
    InsufficientStockError,
    InvalidQuantityError,
    InvalidTransferError,
    NoSuchLocationEntryError,
    ValidationError,
)
from fieldstock.models.inventory import (
    Location,
    PendingTransfer,
    RestockTask,
    StockLocationItem,
    TransferRecord,
    TransferResult,
    TransferStatus,
    Vehicle,
    Warehouse,
)
from fieldstock.storage.base import ChangeSet

logger = logging.getLogger(__name__)

SOURCE_MISSING_REASON = "System Error: Source item missing."
INSUFFICIENT_SOURCE_REASON = "System Error: Insufficient source quantity."
ALREADY_PENDING_REASON = "Refill already pending."


class TransferCoordinator(BaseService):
    def __init__(self, ledger: StockLedger, scanner: Optional[ReplenishmentScanner] = None):
        super().__init__("TransferCoordinator", ledger)
        self.scanner = scanner or ReplenishmentScanner(ledger)

    # --- Validation ---

    def validate_transfer(
        self, item_id: str, quantity: int, source: Location, destination: Location
    ) -> StockLocationItem:
        """Checks a transfer against the current ledger; returns the source entry."""
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
            raise InvalidQuantityError(f"Transfer quantity must be a positive integer: {quantity}")
        if source == destination:
            raise InvalidTransferError(f"Source and destination are both {source.label}")

        entry = self.ledger.require_entry(item_id, source)
        self._check_available(entry, quantity)
        return entry

    @staticmethod
    def _check_available(entry: StockLocationItem, quantity: int) -> None:
        if entry.quantity < quantity:
            raise InsufficientStockError(
                f"Insufficient stock for {entry.item_id} at {entry.location.label}: "
                f"available={entry.quantity}, requested={quantity}",
                available=entry.quantity,
                requested=quantity,
            )

    # --- Immediate transfer ---

    def transfer(
        self,
        item_id: str,
        quantity: int,
        source: Location,
        destination: Location,
        performed_by: Optional[str] = None,
    ) -> TransferResult:
        self.validate_transfer(item_id, quantity, source, destination)

        with self.ledger.locks.hold(coordinate(item_id, source), coordinate(item_id, destination)):
            changes, result = self._build_transfer(
                "transfer", item_id, quantity, source, destination, performed_by
            )
            self.ledger.commit(changes)

        self._completed(result)
        return result

    def _build_transfer(
        self,
        operation: str,
        item_id: str,
        quantity: int,
        source: Location,
        destination: Location,
        performed_by: Optional[str],
        pending: Optional[PendingTransfer] = None,
    ) -> tuple[ChangeSet, TransferResult]:
        """Change set for a transfer; must be called with both coordinates locked."""
        src = self.ledger.require_entry(item_id, source)
        self._check_available(src, quantity)

        src_after = self.ledger.revise(src, quantity=src.quantity - quantity)
        dst = self.ledger.find_entry(item_id, destination)
        if dst is None:
            dst_after = self._new_destination_entry(item_id, destination, quantity, src_after.updated_at)
        else:
            dst_after = self.ledger.revise(dst, quantity=dst.quantity + quantity)

        record = TransferRecord(
            item_id=item_id,
            quantity=quantity,
            source=source,
            destination=destination,
            timestamp=src_after.updated_at,
            performed_by=performed_by,
            pending_transfer_id=pending.transfer_id if pending else None,
        )
        changes = ChangeSet(
            operation,
            performed_by,
            saved_entries=[src_after, dst_after],
            transfer_records=[record],
        )
        return changes, TransferResult(source=src_after, destination=dst_after, record=record)

    def _new_destination_entry(self, item_id, destination, quantity, now) -> StockLocationItem:
        if isinstance(destination, Vehicle):
            minimum = self.settings.vehicle_default_minimum
            maximum: Optional[int] = self.settings.vehicle_default_maximum
        else:
            minimum, maximum = 0, None
        return StockLocationItem(
            item_id=item_id,
            location=destination,
            quantity=quantity,
            minimum_stock_level=minimum,
            max_stock_level=maximum,
            created_at=now,
            updated_at=now,
        )

    def _completed(self, result: TransferResult) -> None:
        record = result.record
        logger.info(
            "Transfer completed: %d x %s from %s to %s",
            record.quantity, record.item_id, record.source.label, record.destination.label,
        )
        self.publish(EventType.TRANSFER_COMPLETED, {
            "record_id": record.record_id,
            "transfer_id": record.pending_transfer_id,
            "item_id": record.item_id,
            "quantity": record.quantity,
            "source": record.source.key,
            "destination": record.destination.key,
            "source_quantity_after": result.source.quantity,
            "destination_quantity_after": result.destination.quantity,
        })
        self.scanner.check_entry(result.source)

    # --- Two-phase transfers ---

    def request_transfer(
        self,
        item_id: str,
        quantity: int,
        from_warehouse: Warehouse,
        to_vehicle: Vehicle,
        requested_by: Optional[str] = None,
        assigned_to: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> PendingTransfer:
        """Phase one: records the request without touching the ledger."""
        if not isinstance(from_warehouse, Warehouse) or not isinstance(to_vehicle, Vehicle):
            raise InvalidTransferError("Pending transfers go from a warehouse to a vehicle")
        self.validate_transfer(item_id, quantity, from_warehouse, to_vehicle)

        pending = PendingTransfer(
            item_id=item_id,
            quantity=quantity,
            from_warehouse=from_warehouse,
            to_vehicle=to_vehicle,
            requested_by=requested_by,
            assigned_to=assigned_to,
            notes=notes,
            requested_at=self.ledger.clock(),
        )
        with self.ledger.locks.hold(transfer_key(pending.transfer_id)):
            self.ledger.commit(ChangeSet("request_transfer", requested_by, saved_transfers=[pending]))

        logger.info(
            "Transfer requested: %s (%d x %s to %s, assigned to %s)",
            pending.transfer_id, quantity, item_id, to_vehicle.label, assigned_to,
        )
        self.publish(EventType.TRANSFER_REQUESTED, {
            "transfer_id": pending.transfer_id,
            "item_id": item_id,
            "quantity": quantity,
            "from": from_warehouse.key,
            "to": to_vehicle.key,
            "requested_by": requested_by,
            "assigned_to": assigned_to,
        })
        return pending

    def accept_transfer(self, transfer_id: str, accepted_by: Optional[str] = None) -> TransferResult:
        """Phase two: applies the ledger mutation and marks the transfer accepted.

        If the source can no longer cover the transfer, it is rejected with a
        system reason and the matching error is raised.
        """
        pending = self.ledger.get_transfer(transfer_id)
        failure: Optional[ValidationError] = None

        with self.ledger.locks.hold(
            transfer_key(transfer_id),
            coordinate(pending.item_id, pending.from_warehouse),
            coordinate(pending.item_id, pending.to_vehicle),
        ):
            pending = self.ledger.get_transfer(transfer_id)
            if pending.status.is_terminal:
                raise DuplicateTransferResolutionError(transfer_id, pending.status.value)

            try:
                changes, result = self._build_transfer(
                    "accept_transfer", pending.item_id, pending.quantity,
                    pending.from_warehouse, pending.to_vehicle, accepted_by, pending,
                )
            except NoSuchLocationEntryError as e:
                failure, reason = e, SOURCE_MISSING_REASON
            except InsufficientStockError as e:
                failure, reason = e, INSUFFICIENT_SOURCE_REASON

            if failure is None:
                resolved = self._resolve(pending, TransferStatus.ACCEPTED, accepted_by)
                changes.saved_transfers.append(resolved)
                self.ledger.commit(changes)
            else:
                resolved = self._resolve(pending, TransferStatus.REJECTED, "system", reason)
                self.ledger.commit(ChangeSet("auto_reject_transfer", accepted_by,
                                             saved_transfers=[resolved]))
        self.ledger.locks.discard(transfer_key(transfer_id))

        if failure is not None:
            self.log_decision(
                decision_type="transfer_auto_rejected",
                input_data={"transfer_id": transfer_id, "accepted_by": accepted_by},
                output_data={"status": resolved.status.value},
                reasoning=reason,
            )
            self._rejected(resolved)
            raise failure

        result = TransferResult(
            source=result.source, destination=result.destination,
            record=result.record, transfer=resolved,
        )
        self._completed(result)
        return result

    def reject_transfer(
        self,
        transfer_id: str,
        reason: Optional[str] = None,
        rejected_by: Optional[str] = None,
    ) -> PendingTransfer:
        self.ledger.get_transfer(transfer_id)
        with self.ledger.locks.hold(transfer_key(transfer_id)):
            pending = self.ledger.get_transfer(transfer_id)
            if pending.status.is_terminal:
                raise DuplicateTransferResolutionError(transfer_id, pending.status.value)
            resolved = self._resolve(pending, TransferStatus.REJECTED, rejected_by, reason or None)
            self.ledger.commit(ChangeSet("reject_transfer", rejected_by, saved_transfers=[resolved]))
        self.ledger.locks.discard(transfer_key(transfer_id))

        self._rejected(resolved)
        return resolved

    def pending_transfers(self, assigned_to: Optional[str] = None) -> list[PendingTransfer]:
        open_transfers = [
            t for t in self.ledger.transfers(TransferStatus.PENDING)
            if assigned_to is None or t.assigned_to == assigned_to
        ]
        return sorted(open_transfers, key=lambda t: t.requested_at)

    def _resolve(
        self,
        pending: PendingTransfer,
        status: TransferStatus,
        processed_by: Optional[str],
        reason: Optional[str] = None,
    ) -> PendingTransfer:
        pending.status = status
        pending.processed_at = self.ledger.clock()
        pending.processed_by = processed_by
        pending.rejection_reason = reason
        return pending

    def _rejected(self, transfer: PendingTransfer) -> None:
        logger.warning("Transfer rejected: %s (%s)", transfer.transfer_id, transfer.rejection_reason)
        self.publish(EventType.TRANSFER_REJECTED, {
            "transfer_id": transfer.transfer_id,
            "item_id": transfer.item_id,
            "quantity": transfer.quantity,
            "reason": transfer.rejection_reason,
            "processed_by": transfer.processed_by,
        })

    # --- Restock tasks ---

    def request_vehicle_restock(
        self,
        vehicle_id: str,
        source_warehouse_id: str,
        requested_by: Optional[str] = None,
        assigned_to: Optional[str] = None,
    ) -> Optional[RestockTask]:
        """Pending transfers for everything the vehicle is short on.

        Returns None when the vehicle has no deficiencies. Quantities already
        pending to the vehicle count against each refill. Items that need
        nothing more, or that the warehouse cannot cover, are listed in the
        task's skipped map.
        """
        notices = self.scanner.vehicle_needs(vehicle_id)
        if not notices:
            return None

        in_flight = self._pending_to_vehicle(vehicle_id)
        task = RestockTask(vehicle_id=vehicle_id)
        warehouse = Warehouse(source_warehouse_id)
        for notice in notices:
            remaining = notice.suggested_quantity - in_flight.get(notice.item_id, 0)
            if remaining <= 0:
                logger.info("Restock %s: %s already pending to %s", task.task_id, notice.item_id, vehicle_id)
                task.skipped[notice.item_id] = ALREADY_PENDING_REASON
                continue
            try:
                pending = self.request_transfer(
                    notice.item_id,
                    remaining,
                    warehouse,
                    Vehicle(vehicle_id),
                    requested_by=requested_by,
                    assigned_to=assigned_to,
                    notes=f"Restock task {task.task_id}",
                )
            except (NoSuchLocationEntryError, InsufficientStockError) as e:
                logger.warning("Restock %s: cannot request %s: %s", task.task_id, notice.item_id, e)
                task.skipped[notice.item_id] = str(e)
                continue
            task.transfers.append(pending)

        self.log_decision(
            decision_type="vehicle_restock",
            input_data={"vehicle_id": vehicle_id, "source_warehouse_id": source_warehouse_id},
            output_data={
                "task_id": task.task_id,
                "transfers": [t.transfer_id for t in task.transfers],
                "skipped": sorted(task.skipped),
            },
            reasoning=f"{len(notices)} items at or below the vehicle minimum",
        )
        return task

    def _pending_to_vehicle(self, vehicle_id: str) -> dict[str, int]:
        totals: dict[str, int] = {}
        for t in self.ledger.transfers(TransferStatus.PENDING):
            if t.to_vehicle.id == vehicle_id:
                totals[t.item_id] = totals.get(t.item_id, 0) + t.quantity
        return totals
