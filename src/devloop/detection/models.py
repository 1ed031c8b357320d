"""Data models shared by the trend, threshold and structural detectors.

``IssueState`` is immutable: a check returns a new state instead of
mutating the old one, so a state can be handed to other threads or logged
without copying.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, model_validator

from devloop.events.base import Severity

DEFAULT_INCIDENT_CAPACITY = 50


class IssueType(str, Enum):
    """Anomaly types watched during a PRD execution.

    Attributes:
        CODE_GENERATION_DEGRADATION: Success rate of generated code trending.
        CONTEXT_WINDOW_INEFFICIENCY: Too many tokens spent per success.
        TASK_DEPENDENCY_DEADLOCK: Dependency cycles or tasks blocked too long.
        TEST_GENERATION_QUALITY: Generated tests failing.
        VALIDATION_GATE_OVER_BLOCKING: Validation blocking valid changes.
        AI_PROVIDER_INSTABILITY: Provider errors, timeouts or falling quality.
        PHASE_PROGRESSION_STALLING: A phase without progress for too long.
        PATTERN_LEARNING_INEFFICACY: Matched patterns not being applied.
        SCHEMA_VALIDATION_CONSISTENCY: Schema checks flaky or slowing down.
        MODULE_CONFUSION: Agents filtered away from files outside the target module.
        SESSION_POLLUTION: One session reused across different target modules.
        BOUNDARY_VIOLATIONS: File operations crossing module boundaries.
        TARGET_MODULE_CONTEXT_LOSS: Tasks run without a target module.
    """

    CODE_GENERATION_DEGRADATION = "code_generation_degradation"
    CONTEXT_WINDOW_INEFFICIENCY = "context_window_inefficiency"
    TASK_DEPENDENCY_DEADLOCK = "task_dependency_deadlock"
    TEST_GENERATION_QUALITY = "test_generation_quality"
    VALIDATION_GATE_OVER_BLOCKING = "validation_gate_over_blocking"
    AI_PROVIDER_INSTABILITY = "ai_provider_instability"
    PHASE_PROGRESSION_STALLING = "phase_progression_stalling"
    PATTERN_LEARNING_INEFFICACY = "pattern_learning_inefficacy"
    SCHEMA_VALIDATION_CONSISTENCY = "schema_validation_consistency"
    MODULE_CONFUSION = "module_confusion"
    SESSION_POLLUTION = "session_pollution"
    BOUNDARY_VIOLATIONS = "boundary_violations"
    TARGET_MODULE_CONTEXT_LOSS = "target_module_context_loss"

    @property
    def default_threshold(self) -> float:
        """Default alert threshold.

        A rate for most issues, minutes for the time-based ones and a count
        of polluted sessions for session pollution.
        """
        thresholds = {
            IssueType.CODE_GENERATION_DEGRADATION: 0.20,
            IssueType.CONTEXT_WINDOW_INEFFICIENCY: 0.001,
            IssueType.TASK_DEPENDENCY_DEADLOCK: 30.0,
            IssueType.TEST_GENERATION_QUALITY: 0.70,
            IssueType.VALIDATION_GATE_OVER_BLOCKING: 0.30,
            IssueType.AI_PROVIDER_INSTABILITY: 0.10,
            IssueType.PHASE_PROGRESSION_STALLING: 60.0,
            IssueType.PATTERN_LEARNING_INEFFICACY: 0.50,
            IssueType.SCHEMA_VALIDATION_CONSISTENCY: 0.20,
            IssueType.MODULE_CONFUSION: 0.10,
            IssueType.SESSION_POLLUTION: 0.0,
            IssueType.BOUNDARY_VIOLATIONS: 0.05,
            IssueType.TARGET_MODULE_CONTEXT_LOSS: 0.01,
        }
        return thresholds[self]

    @property
    def severity(self) -> Severity:
        """Severity of the alert published when this issue is detected."""
        if self is IssueType.TASK_DEPENDENCY_DEADLOCK:
            return Severity.ERROR
        return Severity.WARN

    @property
    def event_type(self) -> str:
        return f"detection.{self.value}.detected"


class DetectorConfig(BaseModel, frozen=True):
    """Tuning of one detector.

    Attributes:
        enabled: Disabled detectors are never evaluated.
        alert_threshold: Detector-specific threshold (rate or minutes).
        min_samples: Minimum history length for degradation detectors.
        min_recent_samples: Minimum samples inside the recency window.
        trend_window_hours: Recency window for degradation detectors.
    """

    enabled: bool = True
    alert_threshold: float = Field(default=0.20, ge=0.0)
    min_samples: int = Field(default=20, ge=1)
    min_recent_samples: int = Field(default=10, ge=0)
    trend_window_hours: float = Field(default=24.0, gt=0.0)

    @classmethod
    def for_issue(cls, issue_type: IssueType) -> DetectorConfig:
        return cls(alert_threshold=issue_type.default_threshold)


class DetectionConfig(BaseModel, frozen=True):
    """Per-issue detector tuning.

    Issues missing from ``detectors`` use ``DetectorConfig.for_issue``. An
    entry that omits ``alert_threshold`` gets the issue's default threshold
    rather than the generic one.
    """

    detectors: dict[IssueType, DetectorConfig] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def _fill_issue_thresholds(cls, data: Any) -> Any:
        if not isinstance(data, dict) or not isinstance(data.get("detectors"), dict):
            return data
        detectors: dict[Any, Any] = {}
        for key, value in data["detectors"].items():
            if isinstance(value, dict) and "alert_threshold" not in value:
                value = {**value, "alert_threshold": IssueType(key).default_threshold}
            detectors[key] = value
        return {**data, "detectors": detectors}

    def for_issue(self, issue_type: IssueType) -> DetectorConfig:
        return self.detectors.get(issue_type) or DetectorConfig.for_issue(issue_type)


@dataclass(frozen=True, slots=True)
class Incident:
    """One retained occurrence of a detected issue."""

    detected_at: datetime
    statistics: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class IssueState:
    """Detector state for one issue type within one PRD scope.

    Attributes:
        issue_type: The issue this state tracks.
        detected: Result of the most recent recomputation.
        statistics: Detector-specific figures from the last check.
        incidents: Retained incidents, oldest first, at most ``incident_capacity``.
        alert_threshold: Threshold used by the last check.
        checked_at: When the state was last recomputed, None if never.
        incident_capacity: Size of the incident ring.
    """

    issue_type: IssueType
    detected: bool = False
    statistics: dict[str, Any] = field(default_factory=dict)
    incidents: tuple[Incident, ...] = ()
    alert_threshold: float = 0.0
    checked_at: datetime | None = None
    incident_capacity: int = DEFAULT_INCIDENT_CAPACITY

    @classmethod
    def initial(
        cls,
        issue_type: IssueType,
        config: DetectorConfig | None = None,
        incident_capacity: int = DEFAULT_INCIDENT_CAPACITY,
    ) -> IssueState:
        threshold = config.alert_threshold if config else issue_type.default_threshold
        return cls(
            issue_type=issue_type,
            alert_threshold=threshold,
            incident_capacity=incident_capacity,
        )

    def recompute(
        self,
        detected: bool,
        statistics: dict[str, Any],
        config: DetectorConfig,
        now: datetime | None = None,
    ) -> tuple[IssueState, bool]:
        """Return the recomputed state and whether ``detected`` rose.

        A rising edge appends an incident; the ring keeps the newest
        ``incident_capacity`` entries.
        """
        checked_at = now or datetime.now(UTC)
        rising = detected and not self.detected
        incidents = self.incidents
        if rising:
            incidents = (*incidents, Incident(detected_at=checked_at, statistics=statistics))
            incidents = incidents[-self.incident_capacity :]
        new_state = replace(
            self,
            detected=detected,
            statistics=statistics,
            incidents=incidents,
            alert_threshold=config.alert_threshold,
            checked_at=checked_at,
        )
        return new_state, rising

    def to_dict(self) -> dict[str, Any]:
        return {
            "issue_type": self.issue_type.value,
            "detected": self.detected,
            "statistics": dict(self.statistics),
            "incident_count": len(self.incidents),
            "alert_threshold": self.alert_threshold,
            "checked_at": self.checked_at.isoformat() if self.checked_at else None,
        }
