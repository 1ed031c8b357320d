"""Trend arithmetic over bounded histories.

Histories are split by index, not by time: the first half holds
``ceil(n / 2)`` samples, so 25 samples split 13/12. A trend is the second
half's figure minus the first half's.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from datetime import UTC, datetime, timedelta
import math
from typing import TypeVar

from devloop.detection.models import DetectorConfig
from devloop.metrics.aggregates import safe_rate
from devloop.metrics.history import HistorySample

S = TypeVar("S", bound=HistorySample)


def split_halves(samples: Sequence[S]) -> tuple[Sequence[S], Sequence[S]]:
    """Split samples into first and second half by index."""
    mid = math.ceil(len(samples) / 2)
    return samples[:mid], samples[mid:]


def rate(samples: Sequence[S], predicate: Callable[[S], bool]) -> float:
    """Fraction of samples matching ``predicate`` (0.0 for no samples)."""
    return safe_rate(sum(1 for s in samples if predicate(s)), len(samples))


def mean(samples: Sequence[S], value: Callable[[S], float]) -> float:
    """Arithmetic mean of ``value`` over samples (0.0 for no samples)."""
    if not samples:
        return 0.0
    return sum(value(s) for s in samples) / len(samples)


def rate_trend(samples: Sequence[S], predicate: Callable[[S], bool]) -> tuple[float, float]:
    """Return (first_half_rate, second_half_rate)."""
    first, second = split_halves(samples)
    return rate(first, predicate), rate(second, predicate)


def mean_trend(samples: Sequence[S], value: Callable[[S], float]) -> tuple[float, float]:
    """Return (first_half_mean, second_half_mean)."""
    first, second = split_halves(samples)
    return mean(first, value), mean(second, value)


def recent(
    samples: Sequence[S],
    window_hours: float,
    now: datetime | None = None,
) -> list[S]:
    """Samples whose timestamp falls inside the recency window."""
    cutoff = (now or datetime.now(UTC)) - timedelta(hours=window_hours)
    return [s for s in samples if s.timestamp >= cutoff]


def has_enough_samples(
    samples: Sequence[HistorySample],
    config: DetectorConfig,
    now: datetime | None = None,
) -> bool:
    """Minimum-sample gate of the degradation detectors."""
    if len(samples) < config.min_samples:
        return False
    return len(recent(samples, config.trend_window_hours, now)) >= config.min_recent_samples
