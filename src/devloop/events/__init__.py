"""Alert event models for devloop."""

from devloop.events.base import AlertEvent, Severity

__all__ = ["AlertEvent", "Severity"]
