"""Trend and threshold detectors, one per issue type.

Every detector is a pure function::

    check(history, state, config, now=None) -> (new_state, alert_fired)

``history`` is the stream's samples oldest to newest, ``state`` the previous
``IssueState``. Statistics are recomputed on every check. ``alert_fired`` is
true only when ``detected`` goes from false to true.

Degradation detectors (code generation, AI provider, schema validation)
first require ``config.min_samples`` samples in total and
``config.min_recent_samples`` inside the recency window; below that the
state is returned unchanged. The other detectors need at least one sample.

Sign conventions:
- code generation: ``success_rate_trend`` < 0 is degrading
- AI provider: ``quality_trend`` < 0 is degrading
- schema validation: ``validation_time_trend`` > 0 is degrading
- context window, test generation, pattern learning: lower rates are worse
- validation gate: higher false positive rate is worse
- contribution mode (module confusion, boundary violations, session
  pollution, context loss): higher is worse
"""

from __future__ import annotations

from collections import Counter, defaultdict
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import TypeVar

from devloop.detection.models import DetectorConfig, IssueState, IssueType
from devloop.detection.trend import has_enough_samples, mean, mean_trend, rate, rate_trend
from devloop.metrics.aggregates import safe_rate
from devloop.metrics.history import (
    CodeGenerationSample,
    ContextBuildSample,
    FileFilterSample,
    HistorySample,
    PatternLearningSample,
    PhaseProgressSample,
    ProviderResponseSample,
    SchemaValidationSample,
    SessionSample,
    StreamId,
    TestGenerationSample,
    ValidationSample,
)

S = TypeVar("S", bound=HistorySample)

CheckFn = Callable[
    [Sequence[HistorySample], IssueState, DetectorConfig, datetime | None],
    tuple[IssueState, bool],
]

MISSING_FILE_RATE_LIMIT = 0.20
IMMEDIATE_FAILURE_RATE_LIMIT = 0.30
QUALITY_TREND_LIMIT = -0.10
VALIDATION_TIME_TREND_LIMIT_MS = 1000.0
RECURRING_PATTERN_RATE_LIMIT = 0.30


def _of_type(history: Sequence[HistorySample], sample_type: type[S]) -> list[S]:
    return [s for s in history if isinstance(s, sample_type)]


# =============================================================================
# Degradation detectors
# =============================================================================


def check_code_generation_degradation(
    history: Sequence[HistorySample],
    state: IssueState,
    config: DetectorConfig,
    now: datetime | None = None,
) -> tuple[IssueState, bool]:
    """Detect a shift in code generation success rate.

    ``detected = |success_rate_trend| > alert_threshold``.
    """
    samples = _of_type(history, CodeGenerationSample)
    if not has_enough_samples(samples, config, now):
        return state, False

    first_rate, second_rate = rate_trend(samples, lambda s: s.success)
    first_tests, second_tests = rate_trend(samples, lambda s: s.test_passed)
    success_rate_trend = second_rate - first_rate
    statistics = {
        "sample_count": len(samples),
        "first_half_rate": first_rate,
        "second_half_rate": second_rate,
        "success_rate_trend": success_rate_trend,
        "test_pass_rate_trend": second_tests - first_tests,
        "degradation_rate": safe_rate(max(-success_rate_trend, 0.0), first_rate),
        "trend_window_hours": config.trend_window_hours,
    }
    detected = abs(success_rate_trend) > config.alert_threshold
    return state.recompute(detected, statistics, config, now)


def check_ai_provider_instability(
    history: Sequence[HistorySample],
    state: IssueState,
    config: DetectorConfig,
    now: datetime | None = None,
) -> tuple[IssueState, bool]:
    """Detect provider errors, timeouts or falling response quality.

    ``detected = error_rate > threshold or timeout_rate > threshold
    or quality_trend < -0.10``.
    """
    samples = _of_type(history, ProviderResponseSample)
    if not has_enough_samples(samples, config, now):
        return state, False

    error_rate = rate(samples, lambda s: s.error)
    timeout_rate = rate(samples, lambda s: s.timeout)
    first_quality, second_quality = mean_trend(samples, lambda s: s.quality)
    quality_trend = second_quality - first_quality
    statistics = {
        "sample_count": len(samples),
        "error_rate": error_rate,
        "timeout_rate": timeout_rate,
        "quality_trend": quality_trend,
    }
    detected = (
        error_rate > config.alert_threshold
        or timeout_rate > config.alert_threshold
        or quality_trend < QUALITY_TREND_LIMIT
    )
    return state.recompute(detected, statistics, config, now)


def check_schema_validation_consistency(
    history: Sequence[HistorySample],
    state: IssueState,
    config: DetectorConfig,
    now: datetime | None = None,
) -> tuple[IssueState, bool]:
    """Detect flaky schema validation or validation time creeping up.

    ``false_positive_rate`` is the share of failed validations later marked
    as false positives. ``detected = false_positive_rate > threshold or
    validation_time_trend > 1000 ms``.
    """
    samples = _of_type(history, SchemaValidationSample)
    if not has_enough_samples(samples, config, now):
        return state, False

    failures = [s for s in samples if not s.valid]
    false_positive_rate = rate(failures, lambda s: s.false_positive)
    first_time, second_time = mean_trend(samples, lambda s: s.duration_ms)
    validation_time_trend = second_time - first_time
    statistics = {
        "sample_count": len(samples),
        "false_positive_rate": false_positive_rate,
        "validation_time_trend": validation_time_trend,
        "inconsistency_rate": rate(samples, lambda s: s.inconsistent),
    }
    detected = (
        false_positive_rate > config.alert_threshold
        or validation_time_trend > VALIDATION_TIME_TREND_LIMIT_MS
    )
    return state.recompute(detected, statistics, config, now)


# =============================================================================
# Rate detectors
# =============================================================================


def check_context_window_inefficiency(
    history: Sequence[HistorySample],
    state: IssueState,
    config: DetectorConfig,
    now: datetime | None = None,
) -> tuple[IssueState, bool]:
    """Detect context builds that spend too many tokens per success.

    ``efficiency_ratio = success_rate / tokens_per_success``, or the plain
    success rate when successes cost no tokens. ``detected =
    missing_file_rate > 0.20 or efficiency_ratio < threshold``.
    """
    samples = _of_type(history, ContextBuildSample)
    if not samples:
        return state, False

    successes = [s for s in samples if s.success]
    success_rate = safe_rate(len(successes), len(samples))
    tokens_per_success = safe_rate(sum(s.tokens for s in samples), len(successes))
    if tokens_per_success > 0:
        efficiency_ratio = success_rate / tokens_per_success
    else:
        efficiency_ratio = success_rate
    missing_file_rate = rate(samples, lambda s: s.missing_files)
    statistics = {
        "sample_count": len(samples),
        "avg_context_size": mean(samples, lambda s: s.context_size),
        "tokens_per_success": tokens_per_success,
        "missing_file_rate": missing_file_rate,
        "efficiency_ratio": efficiency_ratio,
    }
    detected = (
        missing_file_rate > MISSING_FILE_RATE_LIMIT or efficiency_ratio < config.alert_threshold
    )
    return state.recompute(detected, statistics, config, now)


def check_test_generation_quality(
    history: Sequence[HistorySample],
    state: IssueState,
    config: DetectorConfig,
    now: datetime | None = None,
) -> tuple[IssueState, bool]:
    """``detected = success_rate < threshold or immediate_failure_rate > 0.30``."""
    samples = _of_type(history, TestGenerationSample)
    if not samples:
        return state, False

    success_rate = rate(samples, lambda s: s.success)
    immediate_failure_rate = rate(samples, lambda s: s.immediate_failure)
    statistics = {
        "sample_count": len(samples),
        "success_rate": success_rate,
        "immediate_failure_rate": immediate_failure_rate,
        "coverage_gap": mean(samples, lambda s: s.coverage_gap),
    }
    detected = (
        success_rate < config.alert_threshold
        or immediate_failure_rate > IMMEDIATE_FAILURE_RATE_LIMIT
    )
    return state.recompute(detected, statistics, config, now)


def check_validation_gate_over_blocking(
    history: Sequence[HistorySample],
    state: IssueState,
    config: DetectorConfig,
    now: datetime | None = None,
) -> tuple[IssueState, bool]:
    """``detected = false_positive_rate > threshold`` over blocked changes."""
    samples = _of_type(history, ValidationSample)
    if not samples:
        return state, False

    blocked = [s for s in samples if s.blocked]
    false_positive_rate = rate(blocked, lambda s: s.false_positive)
    statistics = {
        "sample_count": len(samples),
        "false_positive_rate": false_positive_rate,
        "blocked_valid_changes": sum(1 for s in blocked if s.false_positive),
        "retry_success_rate": rate(blocked, lambda s: s.retry_succeeded),
    }
    detected = false_positive_rate > config.alert_threshold
    return state.recompute(detected, statistics, config, now)


def check_pattern_learning_inefficacy(
    history: Sequence[HistorySample],
    state: IssueState,
    config: DetectorConfig,
    now: datetime | None = None,
) -> tuple[IssueState, bool]:
    """Detect matched patterns that are rarely applied or keep recurring.

    Rates are taken over matched samples. The match-to-application test only
    applies once at least one pattern matched. ``detected =
    match_to_application_rate < threshold or recurring_pattern_rate > 0.30``.
    """
    samples = _of_type(history, PatternLearningSample)
    if not samples:
        return state, False

    matched = [s for s in samples if s.matched]
    applied = [s for s in matched if s.applied]
    match_to_application_rate = safe_rate(len(applied), len(matched))
    recurring_pattern_rate = rate(matched, lambda s: s.recurred)
    statistics = {
        "sample_count": len(samples),
        "match_to_application_rate": match_to_application_rate,
        "application_success_rate": rate(applied, lambda s: s.succeeded),
        "recurring_pattern_rate": recurring_pattern_rate,
    }
    detected = bool(matched) and (
        match_to_application_rate < config.alert_threshold
        or recurring_pattern_rate > RECURRING_PATTERN_RATE_LIMIT
    )
    return state.recompute(detected, statistics, config, now)


def check_phase_progression_stalling(
    history: Sequence[HistorySample],
    state: IssueState,
    config: DetectorConfig,
    now: datetime | None = None,
) -> tuple[IssueState, bool]:
    """Detect phases without a progress sample for ``alert_threshold`` minutes.

    Phases whose latest sample is marked completed are never stalled.
    """
    samples = _of_type(history, PhaseProgressSample)
    if not samples:
        return state, False

    current = now or datetime.now(UTC)
    latest: dict[str, PhaseProgressSample] = {}
    for sample in samples:
        latest[sample.phase_id] = sample

    limit = timedelta(minutes=config.alert_threshold)
    stalled = sorted(
        phase_id
        for phase_id, sample in latest.items()
        if not sample.completed and current - sample.timestamp > limit
    )
    stall_minutes = [
        (current - latest[phase_id].timestamp).total_seconds() / 60 for phase_id in stalled
    ]
    elapsed_hours = (current - samples[0].timestamp).total_seconds() / 3600
    statistics = {
        "sample_count": len(samples),
        "stalled_phases": stalled,
        "stall_duration": max(stall_minutes, default=0.0),
        "avg_progress_rate": safe_rate(sum(s.tasks_completed for s in samples), elapsed_hours),
    }
    return state.recompute(bool(stalled), statistics, config, current)


# =============================================================================
# Contribution mode detectors
# =============================================================================


def check_module_confusion(
    history: Sequence[HistorySample],
    state: IssueState,
    config: DetectorConfig,
    now: datetime | None = None,
) -> tuple[IssueState, bool]:
    """Detect agents whose file operations keep getting filtered.

    ``filtered_file_rate`` is taken over operations that name a target
    module. ``detected = filtered_file_rate > threshold`` (0.10).
    """
    samples = [s for s in _of_type(history, FileFilterSample) if s.target_module]
    if not samples:
        return state, False

    confused = [s for s in samples if s.wrong_module and s.wrong_module != s.target_module]
    filtered_file_rate = rate(samples, lambda s: not s.allowed)
    statistics = {
        "total_file_operations": len(samples),
        "filtered_file_rate": filtered_file_rate,
        "confused_operations": len(confused),
        "wrong_modules": sorted({s.wrong_module for s in confused if s.wrong_module}),
    }
    detected = filtered_file_rate > config.alert_threshold
    return state.recompute(detected, statistics, config, now)


def check_boundary_violations(
    history: Sequence[HistorySample],
    state: IssueState,
    config: DetectorConfig,
    now: datetime | None = None,
) -> tuple[IssueState, bool]:
    """``detected = violation_rate > threshold`` (0.05) over file operations."""
    samples = [s for s in _of_type(history, FileFilterSample) if s.target_module]
    if not samples:
        return state, False

    violations = [s for s in samples if s.violation]
    by_pattern = Counter(s.pattern for s in violations if s.pattern)
    violation_rate = safe_rate(len(violations), len(samples))
    statistics = {
        "total_file_operations": len(samples),
        "total_violations": len(violations),
        "violation_rate": violation_rate,
        "by_pattern": dict(by_pattern),
    }
    detected = violation_rate > config.alert_threshold
    return state.recompute(detected, statistics, config, now)


def check_session_pollution(
    history: Sequence[HistorySample],
    state: IssueState,
    config: DetectorConfig,
    now: datetime | None = None,
) -> tuple[IssueState, bool]:
    """Detect sessions reused for tasks with different target modules.

    ``detected = sessions_with_multiple_modules > threshold`` (0, so a single
    polluted session is enough).
    """
    samples = [
        s for s in _of_type(history, SessionSample) if s.session_id and s.target_module
    ]
    if not samples:
        return state, False

    modules: dict[str, set[str]] = defaultdict(set)
    tasks: dict[str, list[str]] = defaultdict(list)
    for sample in samples:
        if sample.target_module:
            modules[sample.session_id].add(sample.target_module)
        tasks[sample.session_id].append(sample.task_id)
    polluted = {
        session_id: sorted(targets)
        for session_id, targets in sorted(modules.items())
        if len(targets) > 1
    }
    statistics = {
        "sample_count": len(samples),
        "sessions_with_multiple_modules": len(polluted),
        "polluted_sessions": polluted,
        "polluted_tasks": {session_id: tasks[session_id] for session_id in polluted},
    }
    detected = len(polluted) > config.alert_threshold
    return state.recompute(detected, statistics, config, now)


def check_target_module_context_loss(
    history: Sequence[HistorySample],
    state: IssueState,
    config: DetectorConfig,
    now: datetime | None = None,
) -> tuple[IssueState, bool]:
    """``detected = context_loss_rate > threshold`` (0.01) over task runs."""
    samples = _of_type(history, SessionSample)
    if not samples:
        return state, False

    lost = sum(1 for s in samples if not s.target_module)
    context_loss_rate = safe_rate(lost, len(samples))
    statistics = {
        "total_tasks": len(samples),
        "tasks_without_target_module": lost,
        "context_loss_rate": context_loss_rate,
    }
    detected = context_loss_rate > config.alert_threshold
    return state.recompute(detected, statistics, config, now)


# =============================================================================
# Registry
# =============================================================================


@dataclass(frozen=True, slots=True)
class DetectorSpec:
    """Binds an issue type to the stream it watches and its check function."""

    issue_type: IssueType
    stream: StreamId
    check: CheckFn


DETECTORS: dict[IssueType, DetectorSpec] = {
    spec.issue_type: spec
    for spec in (
        DetectorSpec(
            IssueType.CODE_GENERATION_DEGRADATION,
            StreamId.CODE_GENERATION,
            check_code_generation_degradation,
        ),
        DetectorSpec(
            IssueType.CONTEXT_WINDOW_INEFFICIENCY,
            StreamId.CONTEXT_BUILD,
            check_context_window_inefficiency,
        ),
        DetectorSpec(
            IssueType.TEST_GENERATION_QUALITY,
            StreamId.TEST_GENERATION,
            check_test_generation_quality,
        ),
        DetectorSpec(
            IssueType.VALIDATION_GATE_OVER_BLOCKING,
            StreamId.VALIDATION,
            check_validation_gate_over_blocking,
        ),
        DetectorSpec(
            IssueType.AI_PROVIDER_INSTABILITY,
            StreamId.PROVIDER_RESPONSE,
            check_ai_provider_instability,
        ),
        DetectorSpec(
            IssueType.PHASE_PROGRESSION_STALLING,
            StreamId.PHASE_PROGRESS,
            check_phase_progression_stalling,
        ),
        DetectorSpec(
            IssueType.PATTERN_LEARNING_INEFFICACY,
            StreamId.PATTERN_LEARNING,
            check_pattern_learning_inefficacy,
        ),
        DetectorSpec(
            IssueType.SCHEMA_VALIDATION_CONSISTENCY,
            StreamId.SCHEMA_VALIDATION,
            check_schema_validation_consistency,
        ),
        DetectorSpec(
            IssueType.MODULE_CONFUSION,
            StreamId.FILE_FILTER,
            check_module_confusion,
        ),
        DetectorSpec(
            IssueType.BOUNDARY_VIOLATIONS,
            StreamId.FILE_FILTER,
            check_boundary_violations,
        ),
        DetectorSpec(
            IssueType.SESSION_POLLUTION,
            StreamId.SESSION,
            check_session_pollution,
        ),
        DetectorSpec(
            IssueType.TARGET_MODULE_CONTEXT_LOSS,
            StreamId.SESSION,
            check_target_module_context_loss,
        ),
    )
}


def detectors_for_stream(stream: StreamId) -> list[DetectorSpec]:
    """Detectors fed by ``stream``, in registry order.

    The task dependency stream has none; the file filter and session streams
    feed two each.
    """
    return [spec for spec in DETECTORS.values() if spec.stream is stream]
