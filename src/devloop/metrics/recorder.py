"""Ingestion API: one ``record_<category>`` call per metric category.

Collaborators (task executors, AI-call wrappers, validators) report what
happened through a ``MetricsRecorder``. Every call returns None and never
raises: an unknown scope id, a finalized scope or a bad payload is logged
and dropped so the surrounding PRD execution keeps running.

Categories with a timing dimension also feed the scope's timing breakdown
under the matching ``TimingCategory``.

Usage:
    recorder = MetricsRecorder(store)
    recorder.record_validation("prd-auth", ValidationOutcome(stage="pre", passed=False))
    recorder.record_tests("prd-auth", TestResults(total=12, passing=10, failing=2))
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Literal

from devloop.metrics.aggregates import bump
from devloop.metrics.categories import CategoryRecords, TimingCategory, TokenFeature
from devloop.metrics.scope import Scope, ScopeKind
from devloop.metrics.store import ScopeStore


# =============================================================================
# Payloads
# =============================================================================


@dataclass(frozen=True, slots=True)
class TokenUsage:
    feature: TokenFeature
    input_tokens: int
    output_tokens: int


@dataclass(frozen=True, slots=True)
class TimingSample:
    category: TimingCategory | str
    duration_ms: float


@dataclass(frozen=True, slots=True)
class ValidationOutcome:
    """One validation run before (``pre``) or after (``post``) a change."""

    stage: Literal["pre", "post"]
    passed: bool
    error_category: str | None = None
    recovery_suggested: bool = False
    duration_ms: float | None = None


@dataclass(frozen=True, slots=True)
class FileFilterOutcome:
    filtered: int = 0
    allowed: int = 0
    predictive: int = 0
    boundary_violations: int = 0
    suggestions: int = 0
    duration_ms: float | None = None


@dataclass(frozen=True, slots=True)
class IpcOutcome:
    """A connection attempt or a health check on the IPC channel."""

    kind: Literal["connection", "health_check"]
    success: bool
    duration_ms: float | None = None
    retries: int = 0
    retry_ms: float | None = None


class SessionEventType(str, Enum):
    STARTED = "started"
    ROTATED = "rotated"
    EXPIRED = "expired"
    HEALTH_CHECK = "health_check"
    SAVED = "saved"
    LOADED = "loaded"


@dataclass(frozen=True, slots=True)
class SessionEvent:
    """A session lifecycle event.

    ``success`` applies to health checks, saves and loads. ``history_entries``
    is the conversation length at the time of the event, when known.
    """

    event: SessionEventType
    success: bool = True
    history_entries: int | None = None
    duration_ms: float | None = None


@dataclass(frozen=True, slots=True)
class SchemaOperation:
    operation: str
    schema_type: str
    success: bool
    error_type: str | None = None
    duration_ms: float | None = None


@dataclass(frozen=True, slots=True)
class TestResults:
    __test__ = False

    total: int
    passing: int
    failing: int


class ContributionSignalType(str, Enum):
    OBSERVATION = "observation"
    FIX = "fix"
    IMPROVEMENT = "improvement"


@dataclass(frozen=True, slots=True)
class ContributionSignal:
    """Signal from the outer agent that observes and fixes the dev-loop.

    For fixes, ``root_cause`` separates root-cause fixes from workarounds.
    """

    kind: ContributionSignalType
    category: str | None = None
    root_cause: bool = False
    session_duration_ms: float | None = None


# =============================================================================
# Recorder
# =============================================================================


class MetricsRecorder:
    """Never-raising ingestion front end over a ``ScopeStore``."""

    def __init__(self, store: ScopeStore) -> None:
        self._store = store

    @property
    def store(self) -> ScopeStore:
        return self._store

    def record_tokens(
        self, scope_id: str, usage: TokenUsage, *, kind: ScopeKind | None = None
    ) -> None:
        """Attribute tokens to a feature and add them to the scope totals."""

        def apply(scope: Scope) -> None:
            scope.categories.tokens.for_feature(usage.feature).add(
                usage.input_tokens, usage.output_tokens
            )

        if self._store.update(scope_id, "record_tokens", apply, kind=kind):
            self._store.record_tokens(
                scope_id, usage.input_tokens, usage.output_tokens, kind=kind
            )

    def record_timing(
        self, scope_id: str, sample: TimingSample, *, kind: ScopeKind | None = None
    ) -> None:
        category = (
            sample.category.value
            if isinstance(sample.category, TimingCategory)
            else sample.category
        )
        self._store.record_timing(scope_id, category, sample.duration_ms, kind=kind)

    def record_validation(
        self, scope_id: str, outcome: ValidationOutcome, *, kind: ScopeKind | None = None
    ) -> None:
        def apply(scope: Scope) -> None:
            stats = scope.categories.validation
            if outcome.stage == "pre":
                stats.pre_validations += 1
                if not outcome.passed:
                    stats.pre_validation_failures += 1
            else:
                stats.post_validations += 1
                if not outcome.passed:
                    stats.post_validation_failures += 1
            if outcome.error_category:
                bump(stats.errors_by_category, outcome.error_category)
            if outcome.recovery_suggested:
                stats.recovery_suggestions += 1
            if outcome.duration_ms is not None:
                stats.duration.observe(outcome.duration_ms)

        self._apply(
            scope_id,
            "record_validation",
            apply,
            kind,
            TimingCategory.VALIDATION,
            outcome.duration_ms,
        )

    def record_file_filtering(
        self, scope_id: str, outcome: FileFilterOutcome, *, kind: ScopeKind | None = None
    ) -> None:
        def apply(scope: Scope) -> None:
            stats = scope.categories.file_filtering
            stats.files_filtered += outcome.filtered
            stats.files_allowed += outcome.allowed
            stats.predictive_filters += outcome.predictive
            stats.boundary_violations += outcome.boundary_violations
            stats.filter_suggestions += outcome.suggestions
            if outcome.duration_ms is not None:
                stats.duration.observe(outcome.duration_ms)

        self._apply(
            scope_id,
            "record_file_filtering",
            apply,
            kind,
            TimingCategory.FILE_FILTERING,
            outcome.duration_ms,
        )

    def record_ipc(
        self, scope_id: str, outcome: IpcOutcome, *, kind: ScopeKind | None = None
    ) -> None:
        def apply(scope: Scope) -> None:
            stats = scope.categories.ipc
            if outcome.kind == "connection":
                stats.connections_attempted += 1
                if outcome.success:
                    stats.connections_succeeded += 1
                else:
                    stats.connections_failed += 1
                if outcome.duration_ms is not None:
                    stats.connection_time.observe(outcome.duration_ms)
            else:
                stats.health_checks += 1
                if not outcome.success:
                    stats.health_check_failures += 1
            stats.retries += outcome.retries
            if outcome.retry_ms is not None:
                stats.retry_time.observe(outcome.retry_ms)

        self._apply(
            scope_id, "record_ipc", apply, kind, TimingCategory.IPC, outcome.duration_ms
        )

    def record_session(
        self, scope_id: str, event: SessionEvent, *, kind: ScopeKind | None = None
    ) -> None:
        def apply(scope: Scope) -> None:
            stats = scope.categories.session
            match event.event:
                case SessionEventType.STARTED:
                    stats.sessions_started += 1
                case SessionEventType.ROTATED:
                    stats.rotations += 1
                case SessionEventType.EXPIRED:
                    stats.expirations += 1
                case SessionEventType.HEALTH_CHECK:
                    stats.health_checks += 1
                    if not event.success:
                        stats.unhealthy += 1
                case SessionEventType.SAVED:
                    stats.saves += 1
                    if not event.success:
                        stats.save_failures += 1
                case SessionEventType.LOADED:
                    stats.loads += 1
                    if not event.success:
                        stats.load_failures += 1
            if event.history_entries is not None:
                stats.history_entries.observe(event.history_entries)
            if event.duration_ms is not None and event.event in (
                SessionEventType.SAVED,
                SessionEventType.LOADED,
            ):
                stats.persistence_time.observe(event.duration_ms)

        self._apply(
            scope_id,
            "record_session",
            apply,
            kind,
            TimingCategory.SESSION_MANAGEMENT,
            event.duration_ms,
        )

    def record_schema_operation(
        self, scope_id: str, operation: SchemaOperation, *, kind: ScopeKind | None = None
    ) -> None:
        def apply(scope: Scope) -> None:
            stats = scope.categories.schema_ops
            stats.operations += 1
            bump(stats.operations_by_type, operation.operation)
            bump(stats.operations_by_schema_type, operation.schema_type)
            if operation.success:
                stats.successful += 1
            else:
                bump(stats.errors_by_type, operation.error_type or operation.operation)
            if operation.duration_ms is not None:
                stats.duration.observe(operation.duration_ms)

        self._apply(scope_id, "record_schema_operation", apply, kind)

    def record_tests(
        self, scope_id: str, results: TestResults, *, kind: ScopeKind | None = None
    ) -> None:
        def apply(scope: Scope) -> None:
            stats = scope.categories.tests
            stats.total += results.total
            stats.passing += results.passing
            stats.failing += results.failing

        self._apply(scope_id, "record_tests", apply, kind)

    def record_contribution(
        self, scope_id: str, signal: ContributionSignal, *, kind: ScopeKind | None = None
    ) -> None:
        def apply(scope: Scope) -> None:
            stats = scope.categories.contribution
            match signal.kind:
                case ContributionSignalType.OBSERVATION:
                    stats.observations += 1
                case ContributionSignalType.FIX:
                    stats.fixes_applied += 1
                    if signal.category:
                        bump(stats.fixes_by_category, signal.category)
                    if signal.root_cause:
                        stats.root_cause_fixes += 1
                    else:
                        stats.workaround_fixes += 1
                case ContributionSignalType.IMPROVEMENT:
                    stats.improvements_identified += 1
            if signal.session_duration_ms is not None:
                stats.longest_session_ms = max(
                    stats.longest_session_ms, signal.session_duration_ms
                )

        self._apply(scope_id, "record_contribution", apply, kind)

    def aggregate_children(
        self, parent_id: str, *, kind: ScopeKind | None = None
    ) -> CategoryRecords | None:
        """Merge children's category records into ``parent_id``."""
        return self._store.aggregate_children(parent_id, kind=kind)

    def _apply(
        self,
        scope_id: str,
        operation: str,
        fn: Callable[[Scope], None],
        kind: ScopeKind | None,
        timing_category: TimingCategory | None = None,
        duration_ms: float | None = None,
    ) -> None:
        applied = self._store.update(scope_id, operation, fn, kind=kind)
        if applied and timing_category is not None and duration_ms is not None:
            self._store.record_timing(scope_id, timing_category.value, duration_ms, kind=kind)
