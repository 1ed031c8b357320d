"""Unit tests for devloop.metrics.store module."""

from datetime import UTC, datetime, timedelta
import threading

import pytest

from devloop.core.errors import DuplicateScopeError, UnknownScopeError
from devloop.metrics.aggregates import Outcome
from devloop.metrics.categories import CategoryName, TestStats
from devloop.metrics.pricing import StaticPricing
from devloop.metrics.scope import Scope, ScopeKind, ScopeStatus
from devloop.metrics.store import ScopeStore


@pytest.fixture
def store() -> ScopeStore:
    """A store with one PRD set, PRD, phase and two tasks."""
    store = ScopeStore()
    store.start_scope("set-1", ScopeKind.PRD_SET)
    store.start_scope("prd-1", ScopeKind.PRD, parent="set-1")
    store.start_scope("phase-1", ScopeKind.PHASE, parent="prd-1")
    store.start_scope("task-1", ScopeKind.TASK, parent="phase-1")
    store.start_scope("task-2", ScopeKind.TASK, parent="phase-1")
    return store


def _scope(store: ScopeStore, scope_id: str) -> Scope:
    scope = store.get_scope(scope_id)
    assert scope is not None
    return scope


class TestStartScope:
    """Test scope creation."""

    def test_task_starts_with_total_one(self, store: ScopeStore) -> None:
        """A task counts itself in its own total."""
        assert _scope(store, "task-1").counters.total == 1

    def test_parent_total_counts_direct_children(self, store: ScopeStore) -> None:
        """Each level counts its direct children."""
        assert _scope(store, "phase-1").counters.total == 2
        assert _scope(store, "prd-1").counters.total == 1
        assert _scope(store, "set-1").counters.total == 1

    def test_rollup_total_counts_all_tasks(self, store: ScopeStore) -> None:
        """Every ancestor's rollup counts the tasks beneath it."""
        for scope_id in ("phase-1", "prd-1", "set-1"):
            assert _scope(store, scope_id).rollup.total == 2

    def test_duplicate_raises(self, store: ScopeStore) -> None:
        """Starting an existing id fails loudly."""
        with pytest.raises(DuplicateScopeError) as exc_info:
            store.start_scope("task-1", ScopeKind.TASK, parent="phase-1")
        assert exc_info.value.scope_id == "task-1"

    def test_same_id_different_kind(self) -> None:
        """A PRD set and its only PRD may share an id."""
        store = ScopeStore()
        store.start_scope("auth", ScopeKind.PRD_SET)
        store.start_scope("auth", ScopeKind.PRD, parent="auth")
        store.start_scope("phase-1", ScopeKind.PHASE, parent="auth")
        store.start_scope("task-1", ScopeKind.TASK, parent="phase-1")
        store.record_completion("task-1", Outcome.SUCCESS)

        prd_set = store.get_scope("auth", ScopeKind.PRD_SET)
        prd = store.get_scope("auth", ScopeKind.PRD)
        assert prd_set is not None and prd is not None
        assert prd_set.counters.total == 1
        assert prd.counters.total == 1
        assert prd_set.rollup.completed == prd.rollup.completed == 1
        assert store.get_scope("auth") == prd

    def test_parent_is_resolved_one_kind_up(self) -> None:
        """A parent id naming a scope of the wrong kind is not linked."""
        store = ScopeStore()
        store.start_scope("x", ScopeKind.PRD)
        store.start_scope("task-1", ScopeKind.TASK, parent="x")
        prd = store.get_scope("x", ScopeKind.PRD)
        assert prd is not None
        assert prd.counters.total == 0
        assert prd.rollup.total == 0

    def test_prd_set_parent_is_ignored(self) -> None:
        """PRD sets are roots."""
        store = ScopeStore()
        ref = store.start_scope("set-1", ScopeKind.PRD_SET, parent="other")
        assert ref.parent_id is None

    def test_restart_finished_scope(self, store: ScopeStore) -> None:
        """Starting a finalized scope again replaces it and drops its subtree."""
        store.record_completion("task-1", Outcome.SUCCESS)
        store.complete_scope("prd-1", ScopeStatus.COMPLETED)

        store.start_scope("prd-1", ScopeKind.PRD, parent="set-1")

        prd = _scope(store, "prd-1")
        assert prd.status is ScopeStatus.IN_PROGRESS
        assert prd.rollup.completed == 0
        assert store.get_scope("phase-1") is None
        assert store.get_scope("task-1") is None
        assert _scope(store, "set-1").counters.total == 2

    def test_restart_restored_scope(self, store: ScopeStore) -> None:
        """Scopes loaded from a snapshot can be started again."""
        restored = ScopeStore()
        restored.load(store.snapshot())

        restored.start_scope("set-1", ScopeKind.PRD_SET)

        assert len(restored) == 1
        assert _scope(restored, "set-1").counters.total == 0

    def test_restored_scope_resumed_becomes_live(self, store: ScopeStore) -> None:
        """A restored scope that receives records is treated as running."""
        restored = ScopeStore()
        restored.load(store.snapshot())
        restored.record_completion("task-1", Outcome.SUCCESS)

        with pytest.raises(DuplicateScopeError):
            restored.start_scope("task-1", ScopeKind.TASK, parent="phase-1")

    def test_missing_parent_still_creates(self) -> None:
        """An unknown parent is tolerated."""
        store = ScopeStore()
        ref = store.start_scope("task-9", ScopeKind.TASK, parent="ghost")
        assert ref.parent_id == "ghost"
        assert "task-9" in store

    def test_metadata_is_copied(self) -> None:
        """Metadata is stored as given."""
        store = ScopeStore()
        store.start_scope("prd-x", ScopeKind.PRD, metadata={"title": "Auth"})
        assert _scope(store, "prd-x").metadata == {"title": "Auth"}


class TestRecordCompletion:
    """Test completion roll-up."""

    def test_task_and_ancestors(self, store: ScopeStore) -> None:
        """Task outcomes update the phase level and every ancestor rollup."""
        store.record_completion("task-1", Outcome.SUCCESS)
        store.record_completion("task-2", Outcome.FAILURE)

        task = _scope(store, "task-1")
        assert task.counters.completed == 1
        assert task.success_rate == 1.0

        phase = _scope(store, "phase-1")
        assert (phase.counters.completed, phase.counters.failed) == (1, 1)
        assert phase.success_rate == 0.5

        for scope_id in ("phase-1", "prd-1", "set-1"):
            rollup = _scope(store, scope_id).rollup
            assert (rollup.completed, rollup.failed) == (1, 1)

    def test_container_completion_counts_at_parent(self, store: ScopeStore) -> None:
        """A phase outcome counts at the PRD level only."""
        store.record_completion("phase-1", Outcome.SUCCESS)

        phase = _scope(store, "phase-1")
        assert phase.outcome is Outcome.SUCCESS
        assert phase.counters.completed == 0
        assert _scope(store, "prd-1").counters.completed == 1
        assert _scope(store, "set-1").counters.completed == 0
        assert _scope(store, "prd-1").rollup.completed == 0

    def test_unknown_scope_is_noop(self, store: ScopeStore) -> None:
        """Recording on an unknown id never raises."""
        before = store.snapshot().scopes
        store.record_completion("ghost", Outcome.SUCCESS)
        assert store.snapshot().scopes == before

    def test_frozen_scope_ignores_records(self, store: ScopeStore) -> None:
        """A completed task ignores later completions."""
        store.record_completion("task-1", Outcome.SUCCESS)
        store.complete_scope("task-1", ScopeStatus.COMPLETED)
        store.record_completion("task-1", Outcome.FAILURE)

        assert _scope(store, "task-1").counters.failed == 0
        assert _scope(store, "phase-1").counters.failed == 0

    def test_rollup_reaches_completed_ancestor(self, store: ScopeStore) -> None:
        """Late task outcomes still reach a finalized phase."""
        store.complete_scope("phase-1", ScopeStatus.COMPLETED)
        store.record_completion("task-2", Outcome.SUCCESS)
        assert _scope(store, "phase-1").counters.completed == 1

    def test_concurrent_completions(self) -> None:
        """Concurrent workers lose no increments."""
        store = ScopeStore()
        store.start_scope("prd", ScopeKind.PRD)
        store.start_scope("phase", ScopeKind.PHASE, parent="prd")
        task_ids = [f"task-{i}" for i in range(200)]
        for task_id in task_ids:
            store.start_scope(task_id, ScopeKind.TASK, parent="phase")

        def worker(ids: list[str]) -> None:
            for task_id in ids:
                store.record_completion(task_id, Outcome.SUCCESS)

        threads = [threading.Thread(target=worker, args=(task_ids[i::4],)) for i in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert _scope(store, "phase").counters.completed == 200
        assert _scope(store, "prd").rollup.completed == 200


class TestRecordBlocked:
    """Test blocked counting."""

    def test_blocked_counts_at_scope_and_parent(self, store: ScopeStore) -> None:
        """record_blocked increments the scope and its parent."""
        store.record_blocked("task-1")
        assert _scope(store, "task-1").counters.blocked == 1
        assert _scope(store, "phase-1").counters.blocked == 1
        assert _scope(store, "prd-1").counters.blocked == 0


class TestTokensAndTimings:
    """Test token and timing roll-up."""

    def test_tokens_roll_up(self, store: ScopeStore) -> None:
        """Tokens reach every ancestor."""
        store.record_tokens("task-1", 100, 40)
        store.record_tokens("task-2", 50, 10)
        for scope_id in ("phase-1", "prd-1", "set-1"):
            tokens = _scope(store, scope_id).tokens
            assert (tokens.input, tokens.output) == (150, 50)

    def test_timings_roll_up(self, store: ScopeStore) -> None:
        """Timing samples reach every ancestor with incremental means."""
        store.record_timing("task-1", "validation", 100.0)
        store.record_timing("task-2", "validation", 300.0)

        assert _scope(store, "task-1").timings["validation"].count == 1
        prd_timing = _scope(store, "prd-1").timings["validation"]
        assert prd_timing.count == 2
        assert prd_timing.avg_ms == pytest.approx(200.0)

    def test_compute_cost(self, store: ScopeStore) -> None:
        """compute_cost prices raw tokens and stores the cost."""
        store.record_tokens("prd-1", 1_000_000, 1_000_000)
        cost = store.compute_cost(
            "prd-1", "anthropic", "claude-3-5-sonnet-20241022", StaticPricing()
        )
        assert cost == pytest.approx(18.0)
        assert _scope(store, "prd-1").tokens.cost == pytest.approx(18.0)

    def test_compute_cost_pricing_failure(self, store: ScopeStore) -> None:
        """A failing pricing function yields None."""

        def broken(provider: str, model: str, input_tokens: int, output_tokens: int) -> float:
            raise RuntimeError("no prices")

        assert store.compute_cost("prd-1", "x", "y", broken) is None
        assert _scope(store, "prd-1").tokens.cost == 0.0

    def test_compute_cost_unknown_scope(self, store: ScopeStore) -> None:
        """Pricing an unknown scope yields None."""
        assert store.compute_cost("ghost", "openai", "gpt-4o", StaticPricing()) is None


class TestCompleteScope:
    """Test finalization."""

    def test_complete_stamps_end_and_duration(self, store: ScopeStore) -> None:
        """Completion sets status, end time and duration."""
        store.complete_scope("task-1", ScopeStatus.FAILED)
        task = _scope(store, "task-1")
        assert task.status is ScopeStatus.FAILED
        assert task.end_time is not None
        assert task.duration_ms is not None
        assert task.duration_ms >= 0

    def test_non_terminal_status_ignored(self, store: ScopeStore) -> None:
        """IN_PROGRESS is not a completion."""
        store.complete_scope("task-1", ScopeStatus.IN_PROGRESS)
        assert _scope(store, "task-1").end_time is None

    def test_finalize_stale(self, store: ScopeStore) -> None:
        """Idle PRD sets are finalized as blocked."""
        later = datetime.now(UTC) + timedelta(hours=2)
        finalized = store.finalize_stale(timedelta(minutes=60), now=later)
        assert finalized == ["set-1"]
        assert _scope(store, "set-1").status is ScopeStatus.BLOCKED
        assert _scope(store, "prd-1").status is ScopeStatus.IN_PROGRESS

    def test_finalize_stale_skips_active(self, store: ScopeStore) -> None:
        """Recently active scopes stay open."""
        assert store.finalize_stale(timedelta(minutes=60)) == []


class TestCategoriesAndAggregation:
    """Test category access and child aggregation."""

    def test_category_accessor_returns_copy(self, store: ScopeStore) -> None:
        """category returns a populated copy that does not alias the store."""
        record = store.category("task-1", CategoryName.TESTS)
        assert isinstance(record, TestStats)
        record.total = 99
        again = store.category("task-1", CategoryName.TESTS)
        assert isinstance(again, TestStats)
        assert again.total == 0

    def test_category_unknown_scope(self, store: ScopeStore) -> None:
        """Unknown scopes have no categories."""
        assert store.category("ghost", CategoryName.TESTS) is None

    def test_aggregate_children_is_idempotent(self, store: ScopeStore) -> None:
        """Aggregating twice gives the same totals."""

        def add_tests(scope: Scope) -> None:
            scope.categories.tests.total += 5
            scope.categories.tests.passing += 4

        store.update("task-1", "test", add_tests)
        store.update("task-2", "test", add_tests)

        first = store.aggregate_children("phase-1")
        second = store.aggregate_children("phase-1")
        assert first is not None
        assert second is not None
        assert first.tests.total == second.tests.total == 10
        assert _scope(store, "phase-1").child_categories.tests.passing == 8

    def test_aggregate_bottom_up(self, store: ScopeStore) -> None:
        """Aggregating phases, then the PRD, yields subtree totals."""

        def add_tests(scope: Scope) -> None:
            scope.categories.tests.total += 3

        store.update("task-1", "test", add_tests)
        store.aggregate_children("phase-1")
        merged = store.aggregate_children("prd-1")
        assert merged is not None
        assert merged.tests.total == 3

    def test_update_swallows_errors(self, store: ScopeStore) -> None:
        """An exception inside an update is logged, not raised."""

        def explode(scope: Scope) -> None:
            raise ValueError("bad payload")

        assert store.update("task-1", "explode", explode) is False


class TestQueriesAndSnapshots:
    """Test read access and snapshots."""

    def test_get_scope_returns_copy(self, store: ScopeStore) -> None:
        """Mutating a returned scope does not affect the store."""
        scope = _scope(store, "task-1")
        scope.counters.completed = 42
        assert _scope(store, "task-1").counters.completed == 0

    def test_require_scope(self, store: ScopeStore) -> None:
        """require_scope reports unknown ids as error values."""
        assert store.require_scope("task-1").is_ok
        result = store.require_scope("ghost")
        assert result.is_err
        assert isinstance(result.error, UnknownScopeError)

    def test_list_scopes_by_kind(self, store: ScopeStore) -> None:
        """list_scopes filters by kind."""
        tasks = store.list_scopes(ScopeKind.TASK)
        assert [scope.id for scope in tasks] == ["task-1", "task-2"]
        assert len(store.list_scopes()) == len(store) == 5

    def test_snapshot_is_isolated(self, store: ScopeStore) -> None:
        """Later mutations do not appear in an earlier snapshot."""
        snapshot = store.snapshot()
        store.record_completion("task-1", Outcome.SUCCESS)
        task = snapshot.get("task-1")
        assert task is not None
        assert task.counters.completed == 0

    def test_load_restores_snapshot(self, store: ScopeStore) -> None:
        """load replaces the contents and clears the dirty flag."""
        store.record_completion("task-1", Outcome.SUCCESS)
        snapshot = store.snapshot()

        restored = ScopeStore()
        restored.load(snapshot)
        assert not restored.is_dirty
        assert _scope(restored, "prd-1").rollup.completed == 1
        restored.record_completion("task-2", Outcome.SUCCESS)
        assert _scope(restored, "prd-1").rollup.completed == 2

    def test_dirty_tracking(self, store: ScopeStore) -> None:
        """Mutations mark the store dirty until consumed."""
        assert store.consume_dirty()
        assert not store.is_dirty
        store.record_tokens("task-1", 1, 1)
        assert store.is_dirty
        store.mark_clean()
        assert not store.consume_dirty()
