"""Base class for the ledger services."""

from __future__ import annotations

import logging
import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from fieldstock.engine.events import EventType, LedgerEvent
from fieldstock.engine.ledger import StockLedger

logger = logging.getLogger(__name__)

DECISION_LOG_LIMIT = 1_000


@dataclass
class ServiceDecision:
    decision_id: str
    service_name: str
    decision_type: str
    input_data: dict
    output_data: dict
    reasoning: str
    timestamp: str = field(default_factory=lambda: datetime.utcnow().isoformat())


class BaseService:
    """Holds no ledger state of its own; every read and write goes through the ledger."""

    def __init__(self, service_name: str, ledger: StockLedger):
        self.service_name = service_name
        self.ledger = ledger
        self.catalog = ledger.catalog
        self.bus = ledger.bus
        self.settings = ledger.settings
        self._decisions: deque[ServiceDecision] = deque(maxlen=DECISION_LOG_LIMIT)

        logger.debug("Service ready: %s", service_name)

    def log_decision(
        self,
        decision_type: str,
        input_data: dict,
        output_data: dict,
        reasoning: str,
    ) -> ServiceDecision:
        """Records why the service acted (or declined to act)."""
        decision = ServiceDecision(
            decision_id=str(uuid.uuid4()),
            service_name=self.service_name,
            decision_type=decision_type,
            input_data=input_data,
            output_data=output_data,
            reasoning=reasoning,
        )
        self._decisions.append(decision)
        logger.info("[%s] %s: %s", self.service_name, decision_type, reasoning)
        return decision

    def get_decisions(self) -> list[ServiceDecision]:
        return list(self._decisions)

    def publish(
        self, event_type: EventType, payload: dict, correlation_id: Optional[str] = None
    ) -> LedgerEvent:
        return self.bus.publish(event_type, payload, source=self.service_name,
                                correlation_id=correlation_id)
