"""
Automation Event - canonical business event sent to automation endpoints.

The event_id is the ledger idempotency key of the event that produced it, so
a redelivered webhook produces the same event_id and consumers can dedupe.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from settlement_engine.contracts.records import utcnow


@dataclass
class AutomationEvent:
    """
    Business event fanned out to subscribed endpoints.

    Attributes:
        event_id: Stable identifier (idempotency key of the source event)
        event_type: Canonical type, e.g. "payment.success"
        timestamp: When the event was produced (UTC)
        data: Event data delivered to the endpoint
    """

    event_id: str
    event_type: str
    data: dict[str, Any]
    timestamp: datetime = field(default_factory=utcnow)

    @classmethod
    def create(cls, event_type: str, event_id: str, data: dict[str, Any]) -> "AutomationEvent":
        return cls(event_id=event_id, event_type=str(event_type), data=data)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AutomationEvent":
        """Create an AutomationEvent from a dictionary (e.g. a dead letter entry)."""
        timestamp = data.get("timestamp")
        return cls(
            event_id=data["event_id"],
            event_type=data["event"],
            data=data.get("data", {}),
            timestamp=datetime.fromisoformat(timestamp) if timestamp else utcnow(),
        )

    def to_dict(self) -> dict[str, Any]:
        """Wire body delivered to automation endpoints."""
        return {
            "event": self.event_type,
            "event_id": self.event_id,
            "timestamp": self.timestamp.isoformat(),
            "data": self.data,
        }
