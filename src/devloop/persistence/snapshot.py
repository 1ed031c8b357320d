"""Snapshot persistence for the scope store.

This module provides:
- SnapshotStore: atomic JSON save/load of a ``StoreSnapshot``
- SnapshotFlusher: background task that writes the store when it is dirty

Snapshot document::

    {"version": 1, "saved_at": "...", "scopes": [{...}, ...]}

Writes go to a temporary file in the target directory that is then renamed
over the snapshot, so a crash never leaves a half-written file. Reads and
writes hold an advisory ``fcntl`` lock on a sibling ``.lock`` file.

Readers tolerate missing optional fields: every scope field has a
zero-valued default, so snapshots written by older versions load as fully
populated records.
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterator
from contextlib import contextmanager
import fcntl
import json
import os
from pathlib import Path
import tempfile

from pydantic import ValidationError

from devloop.core.errors import PersistenceError
from devloop.core.types import Result
from devloop.metrics.scope import StoreSnapshot
from devloop.metrics.store import ScopeStore
from devloop.observability.logging import get_logger

log = get_logger(__name__)

SNAPSHOT_VERSION = 1


@contextmanager
def _file_lock(file_path: Path, exclusive: bool = True) -> Iterator[None]:
    """Hold an advisory lock on ``<file>.lock``.

    Args:
        file_path: File being protected.
        exclusive: Exclusive lock for writes, shared lock for reads.
    """
    lock_path = file_path.with_suffix(file_path.suffix + ".lock")
    lock_path.parent.mkdir(parents=True, exist_ok=True)

    with open(lock_path, "w") as lock_file:
        lock_type = fcntl.LOCK_EX if exclusive else fcntl.LOCK_SH
        try:
            fcntl.flock(lock_file.fileno(), lock_type)
            yield
        finally:
            fcntl.flock(lock_file.fileno(), fcntl.LOCK_UN)


class SnapshotStore:
    """Reads and writes one snapshot file.

    Usage:
        snapshots = SnapshotStore(Path("~/.devloop/data/metrics.json").expanduser())
        result = snapshots.save(store.snapshot())
        if result.is_err:
            log.error("persistence.snapshot.save_failed", error=str(result.error))

        store.load(snapshots.load_or_empty())
    """

    def __init__(self, path: Path) -> None:
        self._path = path

    @property
    def path(self) -> Path:
        return self._path

    def save(self, snapshot: StoreSnapshot) -> Result[None, PersistenceError]:
        """Atomically replace the snapshot file.

        Returns:
            Result.ok(None) on success, Result.err(PersistenceError) on failure.
        """
        tmp_name: str | None = None
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            payload = snapshot.model_dump_json(indent=2)

            with _file_lock(self._path, exclusive=True):
                with tempfile.NamedTemporaryFile(
                    "w",
                    dir=self._path.parent,
                    prefix=f".{self._path.name}.",
                    suffix=".tmp",
                    delete=False,
                    encoding="utf-8",
                ) as tmp:
                    tmp_name = tmp.name
                    tmp.write(payload)
                    tmp.flush()
                    os.fsync(tmp.fileno())
                os.replace(tmp_name, self._path)
                tmp_name = None

            log.debug(
                "persistence.snapshot.saved",
                path=str(self._path),
                scope_count=len(snapshot.scopes),
            )
            return Result.ok(None)
        except Exception as e:
            return Result.err(
                PersistenceError(
                    f"Failed to save snapshot: {e}",
                    operation="write",
                    path=str(self._path),
                )
            )
        finally:
            if tmp_name is not None:
                Path(tmp_name).unlink(missing_ok=True)

    def load(self) -> Result[StoreSnapshot | None, PersistenceError]:
        """Read the snapshot file.

        Returns:
            Result.ok(StoreSnapshot) if loaded,
            Result.ok(None) if no snapshot exists yet (normal on first run),
            Result.err(PersistenceError) if the file is unreadable or invalid.
        """
        if not self._path.exists():
            return Result.ok(None)

        try:
            with _file_lock(self._path, exclusive=False):
                with self._path.open("r", encoding="utf-8") as f:
                    data = json.load(f)
        except json.JSONDecodeError as e:
            return Result.err(
                PersistenceError(
                    f"Failed to parse snapshot JSON: {e}",
                    operation="parse",
                    path=str(self._path),
                )
            )
        except OSError as e:
            return Result.err(
                PersistenceError(
                    f"Failed to read snapshot: {e}",
                    operation="read",
                    path=str(self._path),
                )
            )

        version = data.get("version", SNAPSHOT_VERSION) if isinstance(data, dict) else None
        if version != SNAPSHOT_VERSION:
            return Result.err(
                PersistenceError(
                    f"Unsupported snapshot version: {version}",
                    operation="validate",
                    path=str(self._path),
                    details={"version": version},
                )
            )

        try:
            return Result.ok(StoreSnapshot.model_validate(data))
        except ValidationError as e:
            return Result.err(
                PersistenceError(
                    f"Snapshot validation failed: {e.error_count()} errors",
                    operation="validate",
                    path=str(self._path),
                    details={"validation_errors": e.errors()},
                )
            )

    def load_or_empty(self) -> StoreSnapshot:
        """Load the snapshot, falling back to an empty one.

        A corrupt or unreadable snapshot is logged and replaced by an empty
        default so startup never fails on it.
        """
        result = self.load()
        if result.is_err:
            log.error(
                "persistence.snapshot.load_failed",
                path=str(self._path),
                operation=result.error.operation,
                error=result.error.message,
            )
            return StoreSnapshot()
        snapshot = result.value
        if snapshot is None:
            log.info("persistence.snapshot.not_found", path=str(self._path))
            return StoreSnapshot()
        log.info(
            "persistence.snapshot.loaded",
            path=str(self._path),
            scope_count=len(snapshot.scopes),
        )
        return snapshot


class SnapshotFlusher:
    """Background task that flushes a dirty ``ScopeStore`` to disk.

    Record callers never wait on disk: the store only raises a dirty flag,
    and this task picks it up every ``interval`` seconds and writes the
    snapshot from a worker thread. A failed write is logged and the store is
    marked dirty again so the next tick retries.

    Usage:
        flusher = SnapshotFlusher(store, SnapshotStore(path), interval=5.0)
        await flusher.start()
        ...
        await flusher.stop()  # writes a final snapshot
    """

    def __init__(
        self,
        store: ScopeStore,
        snapshots: SnapshotStore,
        interval: float = 5.0,
    ) -> None:
        self._store = store
        self._snapshots = snapshots
        self._interval = interval
        self._task: asyncio.Task[None] | None = None
        self._stop_event = asyncio.Event()

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        """Start the background flush loop. Idempotent."""
        if self._task is None or self._task.done():
            self._stop_event.clear()
            self._task = asyncio.create_task(self._run())
            log.info("persistence.flusher.started", interval=self._interval)

    async def stop(self) -> None:
        """Stop the loop and write a final snapshot if the store is dirty."""
        if self._task is not None and not self._task.done():
            self._stop_event.set()
            await self._task
            self._task = None
        await self.flush()
        log.info("persistence.flusher.stopped")

    async def flush(self) -> bool:
        """Write a snapshot now if the store is dirty.

        Returns:
            True if a snapshot was written.
        """
        if not self._store.consume_dirty():
            return False
        snapshot = self._store.snapshot()
        result = await asyncio.to_thread(self._snapshots.save, snapshot)
        if result.is_err:
            self._store.mark_dirty()
            log.error(
                "persistence.snapshot.flush_failed",
                path=str(self._snapshots.path),
                error=result.error.message,
            )
            return False
        return True

    async def _run(self) -> None:
        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self._interval)
                break
            except TimeoutError:
                await self.flush()
