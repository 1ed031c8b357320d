"""Aggregate primitives shared by scopes and category records.

Every primitive is a small mutable Pydantic model so the scope store can
serialize it directly into a snapshot and read it back with zero-valued
defaults for any field an older snapshot lacks.

Merge policies are explicit: each ``merge`` docstring states whether a field
is summed, overwritten or max/min-combined.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, computed_field


class Outcome(str, Enum):
    """Outcome of a unit of work as reported by a collaborator."""

    SUCCESS = "success"
    FAILURE = "failure"


def safe_rate(numerator: float, denominator: float) -> float:
    """Return numerator / denominator, or 0.0 when the denominator is 0."""
    if denominator <= 0:
        return 0.0
    return numerator / denominator


class Counters(BaseModel):
    """Completion counters with a derived success rate.

    ``success_rate`` is a computed field: it is serialized for readers of the
    snapshot but never stored or mutated independently.
    """

    total: int = 0
    completed: int = 0
    failed: int = 0
    blocked: int = 0

    @computed_field  # type: ignore[prop-decorator]
    @property
    def success_rate(self) -> float:
        return safe_rate(self.completed, self.completed + self.failed)

    @property
    def processed(self) -> int:
        """Completions of either outcome."""
        return self.completed + self.failed

    def add_outcome(self, outcome: Outcome) -> None:
        if outcome is Outcome.SUCCESS:
            self.completed += 1
        else:
            self.failed += 1

    def merge(self, other: Counters) -> None:
        """Sum every counter."""
        self.total += other.total
        self.completed += other.completed
        self.failed += other.failed
        self.blocked += other.blocked


class TimingTotals(BaseModel):
    """Running timing totals for one named category.

    ``avg_ms`` is maintained incrementally (``avg += (ms - avg) / count``) so
    an update costs O(1) and the result does not depend on how calls were
    batched. It equals the arithmetic mean of all observed samples up to
    floating-point rounding.
    """

    total_ms: float = 0.0
    count: int = 0
    avg_ms: float = 0.0

    def observe(self, ms: float) -> None:
        """Fold one sample into the totals."""
        self.count += 1
        self.total_ms += ms
        self.avg_ms += (ms - self.avg_ms) / self.count

    def merge(self, other: TimingTotals) -> None:
        """Sum totals and counts; combine means weighted by count."""
        if other.count == 0:
            return
        combined = self.count + other.count
        self.avg_ms += (other.avg_ms - self.avg_ms) * other.count / combined
        self.count = combined
        self.total_ms += other.total_ms


class RunningStat(BaseModel):
    """Count, incremental mean, min and max of a numeric series."""

    count: int = 0
    mean: float = 0.0
    min: float = 0.0
    max: float = 0.0

    def observe(self, value: float) -> None:
        if self.count == 0:
            self.min = value
            self.max = value
        else:
            self.min = min(self.min, value)
            self.max = max(self.max, value)
        self.count += 1
        self.mean += (value - self.mean) / self.count

    def merge(self, other: RunningStat) -> None:
        """Sum counts, count-weighted mean, min of mins, max of maxes."""
        if other.count == 0:
            return
        if self.count == 0:
            self.min = other.min
            self.max = other.max
        else:
            self.min = min(self.min, other.min)
            self.max = max(self.max, other.max)
        combined = self.count + other.count
        self.mean += (other.mean - self.mean) * other.count / combined
        self.count = combined


class TokenPair(BaseModel):
    """Input/output token counts."""

    input: int = 0
    output: int = 0

    def add(self, input_tokens: int, output_tokens: int) -> None:
        self.input += input_tokens
        self.output += output_tokens

    def merge(self, other: TokenPair) -> None:
        """Sum both counts."""
        self.input += other.input
        self.output += other.output


class TokenTotals(BaseModel):
    """Raw token totals of a scope plus the last computed cost.

    The engine only accumulates token counts; ``cost`` is filled in when a
    pricing function is applied through the store.
    """

    input: int = 0
    output: int = 0
    cost: float = 0.0

    def add(self, input_tokens: int, output_tokens: int) -> None:
        self.input += input_tokens
        self.output += output_tokens

    def merge(self, other: TokenTotals) -> None:
        """Sum tokens and cost."""
        self.input += other.input
        self.output += other.output
        self.cost += other.cost


def merge_counts(target: dict[str, int], source: dict[str, int]) -> None:
    """Sum per-key counts from ``source`` into ``target``."""
    for key, value in source.items():
        target[key] = target.get(key, 0) + value


def bump(target: dict[str, int], key: str, amount: int = 1) -> None:
    """Increment one per-key count."""
    target[key] = target.get(key, 0) + amount
