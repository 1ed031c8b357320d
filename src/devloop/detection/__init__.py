"""Anomaly detection for devloop.

Trend and threshold detectors over history streams, the structural
(dependency cycle and stall) detector, and the alert emitter that turns a
detection into a single outbound event.
"""

from devloop.detection.alerts import AlertEmitter, AlertGate, AlertState
from devloop.detection.detectors import DETECTORS, DetectorSpec, detectors_for_stream
from devloop.detection.models import (
    DetectionConfig,
    DetectorConfig,
    Incident,
    IssueState,
    IssueType,
)
from devloop.detection.monitor import IssueMonitor
from devloop.detection.structural import DependencyGraph, StructuralDetector

__all__ = [
    # Models
    "DetectionConfig",
    "DetectorConfig",
    "Incident",
    "IssueState",
    "IssueType",
    # Detectors
    "DETECTORS",
    "DetectorSpec",
    "detectors_for_stream",
    "DependencyGraph",
    "StructuralDetector",
    # Alerting
    "AlertEmitter",
    "AlertGate",
    "AlertState",
    "IssueMonitor",
]
