"""Unit tests for devloop.engine module."""

from pathlib import Path

import pytest

from devloop.config.models import DevLoopConfig, MetricsConfig
from devloop.core.errors import DuplicateScopeError
from devloop.detection.models import IssueType
from devloop.engine import create_run_context
from devloop.events.base import AlertEvent
from devloop.metrics.aggregates import Outcome
from devloop.metrics.history import StreamId, TestGenerationSample
from devloop.metrics.scope import ScopeKind, ScopeStatus
from devloop.persistence.snapshot import SnapshotStore


@pytest.fixture
def snapshot_path(tmp_path: Path) -> Path:
    return tmp_path / "metrics.json"


class TestCreateRunContext:
    """Test wiring from configuration."""

    def test_components_share_the_store(self, snapshot_path: Path) -> None:
        """The recorder writes into the context's store."""
        ctx = create_run_context(snapshot_path=snapshot_path)
        assert ctx.recorder.store is ctx.store
        assert ctx.snapshots.path == snapshot_path

    def test_restores_existing_snapshot(self, snapshot_path: Path) -> None:
        """A previous snapshot is loaded into the new store."""
        first = create_run_context(snapshot_path=snapshot_path)
        first.store.start_scope("prd-old", ScopeKind.PRD)
        assert first.snapshots.save(first.store.snapshot()).is_ok

        second = create_run_context(snapshot_path=snapshot_path)
        assert "prd-old" in second.store

        fresh = create_run_context(snapshot_path=snapshot_path, restore=False)
        assert len(fresh.store) == 0

    def test_history_capacity_from_config(self, snapshot_path: Path) -> None:
        """Metrics settings reach the monitor."""
        config = DevLoopConfig(metrics=MetricsConfig(history_capacity=3))
        ctx = create_run_context(config, snapshot_path=snapshot_path)
        for _ in range(5):
            ctx.monitor.observe(
                "prd-1", StreamId.TEST_GENERATION, TestGenerationSample(success=True)
            )
        assert len(ctx.monitor.history("prd-1", StreamId.TEST_GENERATION)) == 3


class TestPrdLifecycle:
    """Test a full PRD execution through the context."""

    async def test_prd_execution(self, snapshot_path: Path) -> None:
        """Metrics roll up, alerts are delivered and the snapshot is written on exit."""
        received: list[AlertEvent] = []

        async with create_run_context(snapshot_path=snapshot_path) as ctx:
            ctx.emitter.subscribe(received.append)
            ctx.store.start_scope("set-1", ScopeKind.PRD_SET)
            ctx.begin_prd("prd-1", parent="set-1")
            ctx.store.start_scope("phase-1", ScopeKind.PHASE, parent="prd-1")
            ctx.store.start_scope("task-1", ScopeKind.TASK, parent="phase-1")
            ctx.store.record_completion("task-1", Outcome.SUCCESS)
            ctx.store.complete_scope("task-1", ScopeStatus.COMPLETED)
            ctx.monitor.observe(
                "prd-1", StreamId.TEST_GENERATION, TestGenerationSample(success=False)
            )
            ctx.end_prd("prd-1", ScopeStatus.COMPLETED)

        assert [event.scope_id for event in received] == ["prd-1"]
        loaded = SnapshotStore(snapshot_path).load().value
        assert loaded is not None
        prd_set = loaded.get("set-1")
        assert prd_set is not None
        assert prd_set.rollup.completed == 1
        prd = loaded.get("prd-1")
        assert prd is not None
        assert prd.status is ScopeStatus.COMPLETED

    def test_begin_prd_rearms_detectors(self, snapshot_path: Path) -> None:
        """Starting a PRD resets its detector state and alert gate."""
        ctx = create_run_context(snapshot_path=snapshot_path, restore=False)
        ctx.monitor.observe("prd-1", StreamId.TEST_GENERATION, TestGenerationSample(success=False))
        assert ctx.monitor.detected("prd-1") == [IssueType.TEST_GENERATION_QUALITY]

        ctx.begin_prd("prd-1")
        assert ctx.monitor.detected("prd-1") == []
        ctx.end_prd("prd-1", ScopeStatus.COMPLETED)

    def test_begin_prd_twice_raises(self, snapshot_path: Path) -> None:
        """A PRD that is still running cannot be started again."""
        ctx = create_run_context(snapshot_path=snapshot_path, restore=False)
        ctx.begin_prd("prd-1")
        with pytest.raises(DuplicateScopeError):
            ctx.begin_prd("prd-1")
        ctx.end_prd("prd-1", ScopeStatus.FAILED)

    def test_finalize_stale(self, snapshot_path: Path) -> None:
        """Fresh PRD sets are not finalized."""
        ctx = create_run_context(snapshot_path=snapshot_path, restore=False)
        ctx.store.start_scope("set-1", ScopeKind.PRD_SET)
        assert ctx.finalize_stale() == []


class TestPrdReruns:
    """Test starting a PRD again after an earlier execution."""

    def test_rerun_after_end_starts_fresh(self, snapshot_path: Path) -> None:
        """A finished PRD restarts from zero with its children discarded and alerts re-armed."""
        received: list[AlertEvent] = []
        ctx = create_run_context(snapshot_path=snapshot_path, restore=False)
        ctx.emitter.subscribe(received.append)

        ctx.begin_prd("prd-auth")
        ctx.store.start_scope("phase-1", ScopeKind.PHASE, parent="prd-auth")
        ctx.store.record_completion("phase-1", Outcome.SUCCESS)
        ctx.monitor.observe(
            "prd-auth", StreamId.TEST_GENERATION, TestGenerationSample(success=False)
        )
        ctx.end_prd("prd-auth", ScopeStatus.FAILED)

        ctx.begin_prd("prd-auth")
        prd = ctx.store.get_scope("prd-auth", ScopeKind.PRD)
        assert prd is not None
        assert prd.status is ScopeStatus.IN_PROGRESS
        assert prd.counters.total == 0
        assert prd.counters.completed == 0
        assert ctx.store.get_scope("phase-1") is None
        assert ctx.monitor.detected("prd-auth") == []

        ctx.monitor.observe(
            "prd-auth", StreamId.TEST_GENERATION, TestGenerationSample(success=False)
        )
        ctx.emitter.drain()
        assert [event.scope_id for event in received] == ["prd-auth", "prd-auth"]

    async def test_same_flow_twice_against_one_snapshot(self, snapshot_path: Path) -> None:
        """A second process can run the same PRD set and PRD ids again."""

        async def run_once() -> None:
            async with create_run_context(snapshot_path=snapshot_path) as ctx:
                ctx.store.start_scope("set-1", ScopeKind.PRD_SET)
                ctx.begin_prd("prd-auth", parent="set-1")
                ctx.store.start_scope("phase-1", ScopeKind.PHASE, parent="prd-auth")
                ctx.store.start_scope("task-1", ScopeKind.TASK, parent="phase-1")
                ctx.store.record_completion("task-1", Outcome.SUCCESS)
                ctx.end_prd("prd-auth", ScopeStatus.COMPLETED)

        await run_once()
        await run_once()

        loaded = SnapshotStore(snapshot_path).load().value
        assert loaded is not None
        prd_set = loaded.get("set-1", ScopeKind.PRD_SET)
        assert prd_set is not None
        assert prd_set.rollup.completed == 1
        assert len(loaded.of_kind(ScopeKind.TASK)) == 1
