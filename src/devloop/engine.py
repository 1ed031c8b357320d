"""Run context: the engine components of one dev-loop process, wired together.

There is no module-level engine instance. A ``RunContext`` is created by
``create_run_context`` and passed explicitly to whatever executes PRDs, so
several PRD executions can share one process safely.

Usage:
    async with create_run_context(load_config_or_default()) as ctx:
        ctx.begin_prd("prd-auth")
        ctx.store.start_scope("phase-1", ScopeKind.PHASE, parent="prd-auth")
        ...
        ctx.end_prd("prd-auth", ScopeStatus.COMPLETED)
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from types import TracebackType
from typing import Any

from devloop.config.loader import get_snapshot_path
from devloop.config.models import DevLoopConfig
from devloop.detection.alerts import AlertEmitter
from devloop.detection.monitor import IssueMonitor
from devloop.metrics.recorder import MetricsRecorder
from devloop.metrics.scope import ScopeKind, ScopeRef, ScopeStatus
from devloop.metrics.store import ScopeStore
from devloop.observability.logging import bind_context, get_logger, unbind_context
from devloop.persistence.snapshot import SnapshotFlusher, SnapshotStore

log = get_logger(__name__)


@dataclass(slots=True)
class RunContext:
    """Engine components shared by the PRD executions of one process.

    Attributes:
        config: Configuration the context was built from.
        store: Scope store holding every aggregate.
        recorder: Never-raising ingestion front end over ``store``.
        emitter: Alert publish/subscribe sink.
        monitor: Histories, detectors and alert gate per PRD.
        snapshots: Snapshot file the store is flushed to.
        flusher: Background flush task for ``store``.
    """

    config: DevLoopConfig
    store: ScopeStore
    recorder: MetricsRecorder
    emitter: AlertEmitter
    monitor: IssueMonitor
    snapshots: SnapshotStore
    flusher: SnapshotFlusher

    async def start(self) -> None:
        """Start alert dispatch and background snapshot flushing."""
        await self.emitter.start()
        await self.flusher.start()

    async def stop(self) -> None:
        """Flush a final snapshot and drain pending alerts."""
        await self.flusher.stop()
        await self.emitter.stop()

    async def __aenter__(self) -> RunContext:
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.stop()

    def begin_prd(
        self,
        prd_id: str,
        *,
        parent: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> ScopeRef:
        """Start a PRD execution.

        Starts the PRD scope, re-arms the PRD's detectors and alerts and binds
        ``prd_id`` to the logging context. A PRD that finished earlier, in
        this process or in the one that wrote the restored snapshot, starts
        over from a zero-valued scope.

        Raises:
            DuplicateScopeError: If the PRD is still running.
        """
        ref = self.store.start_scope(prd_id, ScopeKind.PRD, parent=parent, metadata=metadata)
        self.monitor.reset(prd_id)
        bind_context(prd_id=prd_id)
        log.info("engine.prd.started", prd_id=prd_id, parent_id=parent)
        return ref

    def end_prd(self, prd_id: str, status: ScopeStatus) -> None:
        """Finalize a PRD scope and unbind it from the logging context."""
        self.store.complete_scope(prd_id, status, kind=ScopeKind.PRD)
        unbind_context("prd_id")
        log.info("engine.prd.finished", prd_id=prd_id, status=status.value)

    def finalize_stale(self) -> list[str]:
        """Finalize PRD sets idle longer than ``metrics.stale_scope_minutes``."""
        max_idle = timedelta(minutes=self.config.metrics.stale_scope_minutes)
        return self.store.finalize_stale(max_idle)


def create_run_context(
    config: DevLoopConfig | None = None,
    *,
    snapshot_path: Path | None = None,
    restore: bool = True,
) -> RunContext:
    """Build a ``RunContext`` from configuration.

    Args:
        config: Configuration. Defaults to built-in defaults.
        snapshot_path: Snapshot file. Defaults to ``get_snapshot_path(config)``.
        restore: Load the existing snapshot into the store. A corrupt
            snapshot is logged and the store starts empty.

    Returns:
        A context whose background tasks are not started yet.
    """
    config = config or DevLoopConfig()
    snapshots = SnapshotStore(snapshot_path or get_snapshot_path(config))

    store = ScopeStore()
    if restore:
        store.load(snapshots.load_or_empty())

    emitter = AlertEmitter(buffer_size=config.alerts.buffer_size)
    monitor = IssueMonitor(
        emitter,
        detection=config.detection,
        history_capacity=config.metrics.history_capacity,
        incident_capacity=config.metrics.incident_capacity,
    )
    flusher = SnapshotFlusher(store, snapshots, interval=config.metrics.flush_interval_seconds)

    log.debug("engine.context.created", snapshot_path=str(snapshots.path))
    return RunContext(
        config=config,
        store=store,
        recorder=MetricsRecorder(store),
        emitter=emitter,
        monitor=monitor,
        snapshots=snapshots,
        flusher=flusher,
    )
