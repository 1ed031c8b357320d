"""Snapshot persistence for devloop metrics."""

from devloop.persistence.snapshot import SNAPSHOT_VERSION, SnapshotFlusher, SnapshotStore

__all__ = ["SNAPSHOT_VERSION", "SnapshotFlusher", "SnapshotStore"]
