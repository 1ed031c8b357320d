"""Issue monitor: history, detectors and alerting for each PRD execution.

For every PRD scope the monitor keeps one set of history streams, one
``IssueState`` per detector and one ``StructuralDetector``. Observing a
sample appends it to its stream and re-runs the detectors fed by that
stream, both under the stream's lock. A detection passes through the
``AlertGate`` and, if admitted, is published once on the ``AlertEmitter``.

``reset(prd_id)`` clears everything kept for a PRD and re-arms its alerts.
It is issued at the start of a new execution of the same PRD.

Usage:
    monitor = IssueMonitor(AlertEmitter())
    monitor.observe("prd-auth", StreamId.CODE_GENERATION, CodeGenerationSample(success=False))
    monitor.state("prd-auth", IssueType.CODE_GENERATION_DEGRADATION).detected
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
import threading

from devloop.detection.alerts import AlertEmitter, AlertGate
from devloop.detection.detectors import DETECTORS, detectors_for_stream
from devloop.detection.models import (
    DEFAULT_INCIDENT_CAPACITY,
    DetectionConfig,
    IssueState,
    IssueType,
)
from devloop.detection.structural import StructuralDetector
from devloop.metrics.history import (
    DEFAULT_HISTORY_CAPACITY,
    HistoryBuffers,
    HistorySample,
    StreamId,
    TaskDependencySample,
)
from devloop.observability.logging import get_logger

log = get_logger(__name__)


@dataclass(slots=True)
class _PrdWatch:
    history: HistoryBuffers
    structural: StructuralDetector
    states: dict[IssueType, IssueState] = field(default_factory=dict)


class IssueMonitor:
    """Runs the detectors of every PRD execution and raises de-duplicated alerts."""

    def __init__(
        self,
        emitter: AlertEmitter,
        *,
        detection: DetectionConfig | None = None,
        gate: AlertGate | None = None,
        history_capacity: int = DEFAULT_HISTORY_CAPACITY,
        incident_capacity: int = DEFAULT_INCIDENT_CAPACITY,
    ) -> None:
        self._emitter = emitter
        self._detection = detection or DetectionConfig()
        self._gate = gate or AlertGate()
        self._history_capacity = history_capacity
        self._incident_capacity = incident_capacity
        self._watches: dict[str, _PrdWatch] = {}
        self._lock = threading.Lock()

    @property
    def gate(self) -> AlertGate:
        return self._gate

    # =========================================================================
    # Sample ingestion
    # =========================================================================

    def observe(
        self,
        prd_id: str,
        stream: StreamId,
        sample: HistorySample,
        now: datetime | None = None,
    ) -> list[IssueState]:
        """Append a sample and re-evaluate every detector fed by its stream.

        Returns:
            The recomputed states, empty when no enabled detector watches
            the stream.
        """
        watch = self._watch(prd_id)
        results: list[tuple[IssueState, bool]] = []
        with watch.history.lock(stream):
            watch.history.append(stream, sample)
            history = watch.history.samples(stream)
            for spec in detectors_for_stream(stream):
                config = self._detection.for_issue(spec.issue_type)
                if not config.enabled:
                    continue
                state, rising = spec.check(history, watch.states[spec.issue_type], config, now)
                watch.states[spec.issue_type] = state
                results.append((state, rising))

        for state, rising in results:
            self._alert_if_admitted(prd_id, state, rising)
        return [state for state, _ in results]

    def check(
        self,
        prd_id: str,
        issue_type: IssueType,
        now: datetime | None = None,
    ) -> IssueState:
        """Re-evaluate one detector without a new sample.

        Time-based detectors (phase stalls, task deadlocks) need this since
        their condition can become true while no samples arrive.
        """
        if issue_type is IssueType.TASK_DEPENDENCY_DEADLOCK:
            return self.check_structural(prd_id, now)

        watch = self._watch(prd_id)
        spec = DETECTORS[issue_type]
        config = self._detection.for_issue(issue_type)
        if not config.enabled:
            return watch.states[issue_type]
        with watch.history.lock(spec.stream):
            state, rising = spec.check(
                watch.history.samples(spec.stream), watch.states[issue_type], config, now
            )
            watch.states[issue_type] = state

        self._alert_if_admitted(prd_id, state, rising)
        return state

    def check_structural(self, prd_id: str, now: datetime | None = None) -> IssueState:
        """Run the deadlock check and record its outcome on the dependency stream."""
        watch = self._watch(prd_id)
        if not self._detection.for_issue(IssueType.TASK_DEPENDENCY_DEADLOCK).enabled:
            return watch.structural.state
        with watch.history.lock(StreamId.TASK_DEPENDENCY):
            state, rising = watch.structural.check_stall(now)
            watch.history.append(
                StreamId.TASK_DEPENDENCY,
                TaskDependencySample(
                    blocked_tasks=state.statistics["blocked_tasks"],
                    avg_wait_minutes=state.statistics["avg_wait_time"],
                    cycles=len(state.statistics["circular_dependencies"]),
                    timestamp=now or datetime.now(UTC),
                ),
            )
            watch.states[IssueType.TASK_DEPENDENCY_DEADLOCK] = state

        self._alert_if_admitted(prd_id, state, rising)
        return state

    def structural(self, prd_id: str) -> StructuralDetector:
        """The dependency graph and blocked registry of a PRD execution."""
        return self._watch(prd_id).structural

    # =========================================================================
    # Queries
    # =========================================================================

    def state(self, prd_id: str, issue_type: IssueType) -> IssueState:
        return self._watch(prd_id).states[issue_type]

    def states(self, prd_id: str) -> dict[IssueType, IssueState]:
        return dict(self._watch(prd_id).states)

    def history(self, prd_id: str, stream: StreamId) -> tuple[HistorySample, ...]:
        return self._watch(prd_id).history.samples(stream)

    def detected(self, prd_id: str) -> list[IssueType]:
        """Issue types currently detected for a PRD."""
        return [issue for issue, state in self.states(prd_id).items() if state.detected]

    # =========================================================================
    # Reset
    # =========================================================================

    def reset(self, prd_id: str) -> None:
        """Clear histories, detector states and structural data; re-arm alerts."""
        watch = self._watch(prd_id)
        watch.history.reset_all()
        watch.structural.reset()
        watch.states.clear()
        watch.states.update(self._initial_states())
        self._gate.reset(prd_id)
        log.info("detection.monitor.reset", prd_id=prd_id)

    # =========================================================================
    # Internals
    # =========================================================================

    def _watch(self, prd_id: str) -> _PrdWatch:
        watch = self._watches.get(prd_id)
        if watch is not None:
            return watch
        with self._lock:
            watch = self._watches.get(prd_id)
            if watch is None:
                watch = _PrdWatch(
                    history=HistoryBuffers(self._history_capacity),
                    structural=StructuralDetector(
                        self._detection.for_issue(IssueType.TASK_DEPENDENCY_DEADLOCK),
                        incident_capacity=self._incident_capacity,
                    ),
                    states=self._initial_states(),
                )
                self._watches[prd_id] = watch
            return watch

    def _initial_states(self) -> dict[IssueType, IssueState]:
        return {
            issue: IssueState.initial(
                issue, self._detection.for_issue(issue), self._incident_capacity
            )
            for issue in IssueType
        }

    def _alert_if_admitted(self, prd_id: str, state: IssueState, rising: bool) -> None:
        if rising:
            log.warning(
                "detection.issue.detected",
                prd_id=prd_id,
                issue_type=state.issue_type.value,
                statistics=state.statistics,
            )
        if not self._gate.admit(state.issue_type, prd_id, state.detected):
            return
        payload = {
            "issue_type": state.issue_type.value,
            "alert_threshold": state.alert_threshold,
            **state.statistics,
        }
        self._emitter.publish(
            state.issue_type.event_type,
            payload,
            severity=state.issue_type.severity,
            scope_id=prd_id,
        )
