"""Ledger event bus.

Committed ledger operations are announced here; notification delivery,
sync and procurement hand-off subscribe to it. Events are published only
after the change set is committed.
"""

from __future__ import annotations

import logging
import threading
import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    USAGE_RECORDED = "usage_recorded"
    STOCK_ADJUSTED = "stock_adjusted"
    TRANSFER_REQUESTED = "transfer_requested"
    TRANSFER_COMPLETED = "transfer_completed"
    TRANSFER_REJECTED = "transfer_rejected"
    REPLENISHMENT_NEEDED = "replenishment_needed"
    PURCHASE_ORDERS_GENERATED = "purchase_orders_generated"
    ERROR = "error"


@dataclass
class LedgerEvent:
    event_id: str
    event_type: EventType
    source: str
    payload: dict
    timestamp: str = field(default_factory=lambda: datetime.utcnow().isoformat())
    correlation_id: Optional[str] = None


Handler = Callable[[LedgerEvent], Any]

EVENT_LOG_LIMIT = 10_000


class EventBus:
    """In-process publish/subscribe for ledger events."""

    def __init__(self, log_limit: int = EVENT_LOG_LIMIT) -> None:
        self._handlers: list[tuple[Optional[EventType], Handler]] = []
        self._event_log: deque[LedgerEvent] = deque(maxlen=log_limit)
        self._lock = threading.Lock()

    def subscribe(self, handler: Handler, event_type: Optional[EventType] = None) -> None:
        """Registers a handler for one event type, or for all when event_type is None."""
        with self._lock:
            self._handlers.append((event_type, handler))

    def publish(
        self,
        event_type: EventType,
        payload: dict,
        source: str,
        correlation_id: Optional[str] = None,
    ) -> LedgerEvent:
        event = LedgerEvent(
            event_id=str(uuid.uuid4()),
            event_type=event_type,
            source=source,
            payload=payload,
            correlation_id=correlation_id,
        )
        self._dispatch(event)
        return event

    def _dispatch(self, event: LedgerEvent) -> None:
        with self._lock:
            self._event_log.append(event)
            handlers = [
                h for t, h in self._handlers if t is None or t == event.event_type
            ]
        logger.info("Event published: %s from %s", event.event_type.value, event.source)

        for handler in handlers:
            try:
                handler(event)
            except Exception as e:
                logger.exception("Event handler failed for %s", event.event_type.value)
                if event.event_type is not EventType.ERROR:
                    self._notify_error(event, handler, e)

    # --- Handler failure notification ---

    def _notify_error(self, failed: LedgerEvent, handler: Handler, error: Exception) -> None:
        """Tells the remaining subscribers that a handler failed on an event."""
        error_event = LedgerEvent(
            event_id=str(uuid.uuid4()),
            event_type=EventType.ERROR,
            source="event_bus",
            payload={
                "failed_event_id": failed.event_id,
                "failed_event_type": failed.event_type.value,
                "handler": getattr(handler, "__name__", repr(handler)),
                "error_type": type(error).__name__,
                "error_message": str(error),
            },
            correlation_id=failed.event_id,
        )
        with self._lock:
            self._event_log.append(error_event)
            others = [
                h for t, h in self._handlers
                if h is not handler and (t is None or t is EventType.ERROR)
            ]
        for other in others:
            try:
                other(error_event)
            except Exception:
                logger.exception("Error handler failed for %s", failed.event_id)

    # --- Event log ---

    def get_event_log(self) -> list[LedgerEvent]:
        with self._lock:
            return list(self._event_log)

    def events_of(self, event_type: EventType) -> list[LedgerEvent]:
        with self._lock:
            return [e for e in self._event_log if e.event_type == event_type]
