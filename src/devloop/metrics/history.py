"""Bounded sliding-window histories of monitored signals.

Each stream keeps the last ``capacity`` samples in a ``deque`` with
``maxlen``: appends are O(1) and the oldest sample is evicted first.

Samples are frozen dataclasses carrying a UTC ``timestamp`` plus a
stream-specific payload. Detectors read them through ``samples()``, which
returns an immutable tuple ordered oldest to newest.
"""

from __future__ import annotations

from collections import deque
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
import threading

from devloop.observability.logging import get_logger

log = get_logger(__name__)

DEFAULT_HISTORY_CAPACITY = 100


class StreamId(str, Enum):
    """Monitored signal streams."""

    CODE_GENERATION = "code_generation"
    CONTEXT_BUILD = "context_build"
    TASK_DEPENDENCY = "task_dependency"
    TEST_GENERATION = "test_generation"
    VALIDATION = "validation"
    PROVIDER_RESPONSE = "provider_response"
    PHASE_PROGRESS = "phase_progress"
    PATTERN_LEARNING = "pattern_learning"
    SCHEMA_VALIDATION = "schema_validation"
    FILE_FILTER = "file_filter"
    SESSION = "session"


def _utc_now() -> datetime:
    return datetime.now(UTC)


# =============================================================================
# Samples
# =============================================================================


@dataclass(frozen=True, slots=True)
class HistorySample:
    """One timestamped observation."""

    timestamp: datetime = field(default_factory=_utc_now, kw_only=True)


@dataclass(frozen=True, slots=True)
class CodeGenerationSample(HistorySample):
    success: bool
    test_passed: bool = False


@dataclass(frozen=True, slots=True)
class ContextBuildSample(HistorySample):
    context_size: int
    tokens: int
    success: bool
    missing_files: bool = False


@dataclass(frozen=True, slots=True)
class TaskDependencySample(HistorySample):
    blocked_tasks: int
    avg_wait_minutes: float
    cycles: int = 0


@dataclass(frozen=True, slots=True)
class TestGenerationSample(HistorySample):
    __test__ = False

    success: bool
    immediate_failure: bool = False
    coverage_gap: float = 0.0


@dataclass(frozen=True, slots=True)
class ValidationSample(HistorySample):
    """A validation gate decision.

    ``false_positive`` marks a block that later turned out to be wrong.
    """

    blocked: bool
    false_positive: bool = False
    retry_succeeded: bool = False


@dataclass(frozen=True, slots=True)
class ProviderResponseSample(HistorySample):
    """One AI provider call. ``quality`` is a 0..1 score."""

    error: bool = False
    timeout: bool = False
    quality: float = 1.0


@dataclass(frozen=True, slots=True)
class PhaseProgressSample(HistorySample):
    """Progress of one phase. ``completed`` marks the phase's last sample."""

    phase_id: str
    tasks_completed: int = 0
    completed: bool = False


@dataclass(frozen=True, slots=True)
class PatternLearningSample(HistorySample):
    matched: bool
    applied: bool = False
    succeeded: bool = False
    recurred: bool = False


@dataclass(frozen=True, slots=True)
class SchemaValidationSample(HistorySample):
    valid: bool
    false_positive: bool = False
    duration_ms: float = 0.0
    inconsistent: bool = False


@dataclass(frozen=True, slots=True)
class FileFilterSample(HistorySample):
    """A file operation checked against the task's target module.

    ``wrong_module`` names the module actually touched when the agent strayed
    from ``target_module``; ``pattern`` is the boundary rule that was hit.
    """

    target_module: str
    allowed: bool = True
    violation: bool = False
    wrong_module: str | None = None
    pattern: str | None = None
    task_id: str | None = None


@dataclass(frozen=True, slots=True)
class SessionSample(HistorySample):
    """A task run on an agent session. ``target_module`` is None when lost."""

    session_id: str
    task_id: str
    target_module: str | None = None


# =============================================================================
# Buffers
# =============================================================================


class HistoryBuffer:
    """Fixed-capacity FIFO of samples for one stream."""

    def __init__(self, capacity: int = DEFAULT_HISTORY_CAPACITY) -> None:
        if capacity < 1:
            raise ValueError(f"capacity must be positive, got {capacity}")
        self._capacity = capacity
        self._samples: deque[HistorySample] = deque(maxlen=capacity)

    @property
    def capacity(self) -> int:
        return self._capacity

    def append(self, sample: HistorySample) -> None:
        self._samples.append(sample)

    def samples(self) -> tuple[HistorySample, ...]:
        """Samples oldest to newest."""
        return tuple(self._samples)

    def reset(self) -> None:
        self._samples.clear()

    def __len__(self) -> int:
        return len(self._samples)


class HistoryBuffers:
    """One ``HistoryBuffer`` and one lock per stream.

    Appends to a stream and the detector check that follows must run under
    ``lock(stream_id)`` so that a stream has a single writer at a time.

    Example:
        buffers = HistoryBuffers(capacity=100)
        with buffers.lock(StreamId.CODE_GENERATION):
            buffers.append(StreamId.CODE_GENERATION, CodeGenerationSample(success=True))
            history = buffers.samples(StreamId.CODE_GENERATION)
    """

    def __init__(self, capacity: int = DEFAULT_HISTORY_CAPACITY) -> None:
        self._capacity = capacity
        self._buffers = {stream: HistoryBuffer(capacity) for stream in StreamId}
        self._locks = {stream: threading.RLock() for stream in StreamId}

    @property
    def capacity(self) -> int:
        return self._capacity

    @contextmanager
    def lock(self, stream_id: StreamId) -> Iterator[None]:
        with self._locks[stream_id]:
            yield

    def append(self, stream_id: StreamId, sample: HistorySample) -> None:
        with self._locks[stream_id]:
            self._buffers[stream_id].append(sample)

    def samples(self, stream_id: StreamId) -> tuple[HistorySample, ...]:
        with self._locks[stream_id]:
            return self._buffers[stream_id].samples()

    def reset(self, stream_id: StreamId) -> None:
        with self._locks[stream_id]:
            self._buffers[stream_id].reset()
        log.debug("metrics.history.reset", stream=stream_id.value)

    def reset_all(self) -> None:
        for stream_id in StreamId:
            self.reset(stream_id)

    def __len__(self) -> int:
        return sum(len(buffer) for buffer in self._buffers.values())
