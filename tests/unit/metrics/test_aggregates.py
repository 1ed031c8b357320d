"""Unit tests for devloop.metrics.aggregates module."""

import pytest

from devloop.metrics.aggregates import (
    Counters,
    Outcome,
    RunningStat,
    TimingTotals,
    TokenTotals,
    bump,
    merge_counts,
    safe_rate,
)


class TestSafeRate:
    """Test safe_rate."""

    def test_zero_denominator(self) -> None:
        """A zero denominator yields 0.0 instead of raising."""
        assert safe_rate(5, 0) == 0.0

    def test_ratio(self) -> None:
        """A positive denominator yields the plain ratio."""
        assert safe_rate(1, 4) == 0.25


class TestCounters:
    """Test Counters."""

    def test_success_rate_without_outcomes(self) -> None:
        """No completions means a 0.0 success rate."""
        assert Counters().success_rate == 0.0

    def test_success_rate_tracks_every_outcome(self) -> None:
        """success_rate is consistent after every call."""
        counters = Counters()
        expected = [1.0, 0.5, 2 / 3, 0.5]
        outcomes = [Outcome.SUCCESS, Outcome.FAILURE, Outcome.SUCCESS, Outcome.FAILURE]
        for outcome, rate in zip(outcomes, expected, strict=True):
            counters.add_outcome(outcome)
            assert counters.success_rate == pytest.approx(rate)
        assert counters.processed == 4

    def test_success_rate_is_serialized(self) -> None:
        """The computed rate is part of the dumped model."""
        counters = Counters(completed=3, failed=1)
        assert counters.model_dump()["success_rate"] == 0.75

    def test_merge_sums(self) -> None:
        """merge sums every counter."""
        counters = Counters(total=2, completed=1, failed=1, blocked=0)
        counters.merge(Counters(total=3, completed=2, failed=0, blocked=1))
        assert (counters.total, counters.completed, counters.failed, counters.blocked) == (
            5,
            3,
            1,
            1,
        )


class TestTimingTotals:
    """Test incremental timing totals."""

    def test_incremental_mean(self) -> None:
        """avg_ms equals the arithmetic mean of all samples."""
        totals = TimingTotals()
        for ms in (100.0, 200.0, 600.0):
            totals.observe(ms)
        assert totals.count == 3
        assert totals.total_ms == 900.0
        assert totals.avg_ms == pytest.approx(300.0)

    def test_merge_weights_by_count(self) -> None:
        """Merged averages weight each side by its count."""
        left = TimingTotals()
        left.observe(10.0)
        right = TimingTotals()
        for ms in (40.0, 40.0, 40.0):
            right.observe(ms)
        left.merge(right)
        assert left.count == 4
        assert left.avg_ms == pytest.approx(32.5)
        assert left.total_ms == 130.0

    def test_merge_empty_is_noop(self) -> None:
        """Merging an empty total changes nothing."""
        totals = TimingTotals()
        totals.observe(5.0)
        totals.merge(TimingTotals())
        assert totals.count == 1
        assert totals.avg_ms == 5.0


class TestRunningStat:
    """Test RunningStat."""

    def test_tracks_min_max_mean(self) -> None:
        """observe keeps min, max and mean."""
        stat = RunningStat()
        for value in (4.0, 2.0, 9.0):
            stat.observe(value)
        assert (stat.min, stat.max) == (2.0, 9.0)
        assert stat.mean == pytest.approx(5.0)

    def test_merge_into_empty(self) -> None:
        """Merging into an empty stat copies the other side."""
        other = RunningStat()
        other.observe(3.0)
        other.observe(7.0)
        stat = RunningStat()
        stat.merge(other)
        assert (stat.count, stat.min, stat.max) == (2, 3.0, 7.0)
        assert stat.mean == pytest.approx(5.0)


class TestTokenTotals:
    """Test TokenTotals."""

    def test_add_and_merge(self) -> None:
        """Tokens and cost sum on merge."""
        totals = TokenTotals()
        totals.add(100, 50)
        totals.merge(TokenTotals(input=10, output=5, cost=0.5))
        assert (totals.input, totals.output, totals.cost) == (110, 55, 0.5)


class TestCountHelpers:
    """Test per-key count helpers."""

    def test_bump(self) -> None:
        """bump creates and increments keys."""
        counts: dict[str, int] = {}
        bump(counts, "syntax")
        bump(counts, "syntax", 2)
        assert counts == {"syntax": 3}

    def test_merge_counts(self) -> None:
        """merge_counts sums overlapping keys."""
        counts = {"a": 1}
        merge_counts(counts, {"a": 2, "b": 1})
        assert counts == {"a": 3, "b": 1}
