"""Unit tests for devloop.metrics.categories module."""

import pytest

from devloop.metrics.categories import (
    CategoryName,
    CategoryRecords,
    ContributionStats,
    SchemaStats,
    TestStats,
    TokenBreakdown,
    TokenFeature,
    ValidationStats,
)


class TestCategoryRecords:
    """Test the per-scope record container."""

    @pytest.mark.parametrize("name", list(CategoryName))
    def test_every_category_is_populated(self, name: CategoryName) -> None:
        """get returns a zero-valued record for every category."""
        record = CategoryRecords().get(name)
        assert record is not None
        assert record == type(record)()

    def test_merge_applies_each_policy(self) -> None:
        """merge sums counts and keeps the longest contribution session."""
        left = CategoryRecords()
        left.tests.total = 10
        left.tests.passing = 8
        left.contribution.longest_session_ms = 500.0
        right = CategoryRecords()
        right.tests.total = 5
        right.tests.passing = 5
        right.contribution.longest_session_ms = 200.0

        left.merge(right)

        assert left.tests.total == 15
        assert left.tests.pass_rate == pytest.approx(13 / 15)
        assert left.contribution.longest_session_ms == 500.0


class TestRecordRates:
    """Test derived rates of individual records."""

    def test_validation_failure_rate(self) -> None:
        """failure_rate spans pre and post validations."""
        stats = ValidationStats(
            pre_validations=3,
            pre_validation_failures=1,
            post_validations=1,
            post_validation_failures=1,
        )
        assert stats.failure_rate == 0.5

    def test_schema_success_rate(self) -> None:
        """success_rate is successful over all operations."""
        assert SchemaStats(operations=4, successful=3).success_rate == 0.75

    def test_test_stats_empty_pass_rate(self) -> None:
        """An empty test record has a 0.0 pass rate."""
        assert TestStats().pass_rate == 0.0

    def test_root_cause_rate(self) -> None:
        """root_cause_rate compares root-cause fixes with workarounds."""
        stats = ContributionStats(root_cause_fixes=1, workaround_fixes=3)
        assert stats.root_cause_rate == 0.25


class TestTokenBreakdown:
    """Test per-feature token attribution."""

    def test_for_feature_returns_live_pair(self) -> None:
        """for_feature hands out the stored pair for in-place updates."""
        breakdown = TokenBreakdown()
        breakdown.for_feature(TokenFeature.RETRY).add(10, 2)
        assert breakdown.retry.input == 10
        assert breakdown.retry.output == 2
        assert breakdown.code_generation.input == 0
