"""Base event definition for the alert stream.

Alerts are immutable (frozen Pydantic models) and follow the
dot.notation.past_tense naming convention, e.g.
``detection.code_generation_degradation.detected``.
"""

from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, Field


class Severity(str, Enum):
    """Alert severity levels, lowest to highest."""

    INFO = "info"
    WARN = "warn"
    ERROR = "error"
    CRITICAL = "critical"


class AlertEvent(BaseModel, frozen=True):
    """One outbound alert as delivered to subscribers.

    Attributes:
        id: Unique event identifier (UUID).
        event_type: Event type in dot.notation.past_tense.
        payload: Event-specific data (detector statistics, cycle paths, ...).
        severity: Alert severity.
        scope_id: Scope the alert is about, usually a PRD scope.
        timestamp: When the event was published (UTC).

    Example:
        event = AlertEvent(
            event_type="detection.task_dependency_deadlock.detected",
            payload={"circular_dependencies": ["A -> B -> A"]},
            severity=Severity.ERROR,
            scope_id="prd-auth",
        )
    """

    id: str = Field(default_factory=lambda: str(uuid4()))
    event_type: str
    payload: dict[str, Any] = Field(default_factory=dict)
    severity: Severity = Severity.INFO
    scope_id: str | None = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))

    def to_wire(self) -> dict[str, Any]:
        """Serialize to the alert stream shape consumed by collaborators.

        Returns:
            ``{event_type, payload, severity, scope_id, timestamp}`` with the
            timestamp in ISO 8601.
        """
        return {
            "event_type": self.event_type,
            "payload": self.payload,
            "severity": self.severity.value,
            "scope_id": self.scope_id,
            "timestamp": self.timestamp.isoformat(),
        }
