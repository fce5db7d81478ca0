"""Ledger integrity checks and the stock audit log.

- Non-negative quantity check over a ledger snapshot
- Per-item conservation check between two snapshots
- Reconciliation of counted totals against the ledger
- Audit log of every committed quantity change
"""

from __future__ import annotations

import logging
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, Optional

from fieldstock.models.inventory import StockLocationItem

logger = logging.getLogger(__name__)


@dataclass
class AuditLogEntry:
    entry_id: str
    operation_type: str
    location_key: str
    item_id: str
    quantity_before: int
    quantity_after: int
    change_amount: int
    triggered_by: str
    timestamp: str = field(default_factory=lambda: datetime.utcnow().isoformat())
    details: Optional[dict] = None


@dataclass
class ValidationResult:
    is_valid: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


class StockAuditLog:
    """Append-only record of quantity changes."""

    def __init__(self) -> None:
        self._entries: list[AuditLogEntry] = []
        self._lock = threading.Lock()

    def log_stock_change(
        self,
        operation_type: str,
        location_key: str,
        item_id: str,
        quantity_before: int,
        quantity_after: int,
        triggered_by: str,
        details: Optional[dict] = None,
    ) -> AuditLogEntry:
        entry = AuditLogEntry(
            entry_id=str(uuid.uuid4()),
            operation_type=operation_type,
            location_key=location_key,
            item_id=item_id,
            quantity_before=quantity_before,
            quantity_after=quantity_after,
            change_amount=quantity_after - quantity_before,
            triggered_by=triggered_by,
            details=details,
        )
        with self._lock:
            self._entries.append(entry)
        return entry

    def get_audit_log(
        self,
        location_key: Optional[str] = None,
        item_id: Optional[str] = None,
    ) -> list[AuditLogEntry]:
        with self._lock:
            entries = list(self._entries)
        if location_key:
            entries = [e for e in entries if e.location_key == location_key]
        if item_id:
            entries = [e for e in entries if e.item_id == item_id]
        return entries


def _item_total(entries: Iterable[StockLocationItem], item_id: str) -> int:
    return sum(e.quantity for e in entries if e.item_id == item_id)


class LedgerIntegrityChecker:
    """Consistency checks over ledger snapshots."""

    def __init__(self) -> None:
        # Counted totals per item: {item_id: total}
        self._total_stock_registry: dict[str, int] = {}

    def check_no_negative_stock(self, entries: Iterable[StockLocationItem]) -> ValidationResult:
        errors = [
            f"Negative stock: {e.coordinate} = {e.quantity}"
            for e in entries
            if e.quantity < 0
        ]
        return ValidationResult(is_valid=not errors, errors=errors)

    def verify_conservation(
        self,
        item_id: str,
        before: Iterable[StockLocationItem],
        after: Iterable[StockLocationItem],
    ) -> ValidationResult:
        """Total quantity for the item must be equal in both snapshots."""
        total_before = _item_total(before, item_id)
        total_after = _item_total(after, item_id)

        errors = []
        if total_before != total_after:
            errors.append(
                f"Conservation violated for {item_id}: "
                f"before={total_before}, after={total_after}"
            )
        return ValidationResult(is_valid=not errors, errors=errors)

    # --- Count reconciliation ---

    def register_total_stock(self, item_id: str, total: int) -> None:
        """Records the expected system-wide total for an item (e.g. from a physical count)."""
        self._total_stock_registry[item_id] = total

    def verify_totals(self, entries: Iterable[StockLocationItem]) -> dict:
        """Compares registered totals with the ledger."""
        actual_totals: dict[str, int] = {}
        for entry in entries:
            actual_totals[entry.item_id] = actual_totals.get(entry.item_id, 0) + entry.quantity

        details: dict[str, dict] = {}
        discrepancies = []
        for item_id, expected_total in self._total_stock_registry.items():
            actual = actual_totals.get(item_id, 0)
            details[item_id] = {
                "expected": expected_total,
                "actual": actual,
                "match": actual == expected_total,
            }
            if actual != expected_total:
                discrepancies.append({
                    "item_id": item_id,
                    "expected": expected_total,
                    "actual": actual,
                    "difference": actual - expected_total,
                })

        if discrepancies:
            logger.warning("Stock reconciliation found %d discrepancies", len(discrepancies))

        return {
            "verification_date": datetime.utcnow().isoformat(),
            "total_items_checked": len(self._total_stock_registry),
            "discrepancies_found": len(discrepancies),
            "discrepancies": discrepancies,
            "all_valid": not discrepancies,
            "details": details,
        }
