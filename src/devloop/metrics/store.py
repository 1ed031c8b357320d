"""In-memory scope store with bottom-up roll-up.

The store owns every ``Scope`` record of a run. Collaborators call the
``record_*`` methods from concurrently running task workers:

- Scopes are keyed by ``(kind, id)``. A PRD set and a PRD may share an id.
  A parent is always looked up one kind up (task -> phase -> PRD -> PRD set).
- Each scope has its own ``threading.Lock``. Mutations of different scopes
  never contend.
- A roll-up touches the scope first, releases its lock, then takes each
  ancestor's lock in turn. Locks are never nested, so there is no lock
  ordering to get wrong.
- ``record_*`` never raises. Unknown ids and writes to finalized scopes are
  logged as warnings and dropped.
- ``start_scope`` raises ``DuplicateScopeError`` for a scope that is still
  running in this process. A finalized scope, or one restored from a
  snapshot, is replaced by a fresh one together with its descendants.

Methods that take a ``scope_id`` also accept ``kind``. Without it the most
specific kind with that id is used.

Every mutating call marks the store dirty. The store performs no I/O itself;
``SnapshotFlusher`` polls the dirty flag and writes snapshots in the
background.

Usage:
    store = ScopeStore()
    store.start_scope("prd-auth", ScopeKind.PRD)
    store.start_scope("phase-1", ScopeKind.PHASE, parent="prd-auth")
    store.start_scope("task-1", ScopeKind.TASK, parent="phase-1")
    store.record_completion("task-1", Outcome.SUCCESS)
"""

from __future__ import annotations

from collections.abc import Callable, Iterator
from datetime import UTC, datetime, timedelta
import threading
from typing import Any

from devloop.core.errors import DuplicateScopeError, UnknownScopeError
from devloop.core.types import Result
from devloop.metrics.aggregates import Outcome
from devloop.metrics.categories import CategoryName, CategoryRecord, CategoryRecords
from devloop.metrics.pricing import PricingFn
from devloop.metrics.scope import (
    Scope,
    ScopeKey,
    ScopeKind,
    ScopeRef,
    ScopeStatus,
    StoreSnapshot,
)
from devloop.observability.logging import get_logger

log = get_logger(__name__)


class ScopeStore:
    """Thread-safe tree of scope aggregates keyed by ``(kind, id)``."""

    def __init__(self) -> None:
        self._scopes: dict[ScopeKey, Scope] = {}
        self._locks: dict[ScopeKey, threading.Lock] = {}
        self._restored: set[ScopeKey] = set()
        self._registry_lock = threading.Lock()
        self._dirty_lock = threading.Lock()
        self._dirty = False

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def start_scope(
        self,
        scope_id: str,
        kind: ScopeKind,
        parent: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> ScopeRef:
        """Create a zero-valued scope.

        A task starts with ``counters.total == 1``. When ``parent`` is given,
        the parent (of the next kind up) has its level ``total`` bumped and,
        for tasks, every ancestor's ``rollup.total`` as well.

        Starting an id that is finalized, or that was restored from a
        snapshot, begins a new execution: the old scope and everything below
        it are discarded.

        Raises:
            DuplicateScopeError: If a scope of this kind and id is running.
        """
        if parent is not None and kind.parent_kind is None:
            log.warning("metrics.scope.parent_ignored", scope_id=scope_id, parent_id=parent)
            parent = None

        key: ScopeKey = (kind, scope_id)
        with self._registry_lock:
            existing = self._scopes.get(key)
            if existing is not None:
                if not existing.frozen and key not in self._restored:
                    raise DuplicateScopeError(
                        f"Scope already exists: {kind.value} {scope_id}",
                        scope_id=scope_id,
                        kind=kind.value,
                        details={"status": existing.status.value},
                    )
                dropped = self._drop_subtree(key)
                log.info(
                    "metrics.scope.restarted",
                    scope_id=scope_id,
                    kind=kind.value,
                    previous_status=existing.status.value,
                    dropped=dropped,
                )
            scope = Scope(id=scope_id, kind=kind, parent_id=parent, metadata=dict(metadata or {}))
            if kind is ScopeKind.TASK:
                scope.counters.total = 1
            self._scopes[key] = scope
            self._locks[key] = threading.Lock()

        parent_key = scope.parent_key
        if parent_key is not None:
            if parent_key not in self._scopes:
                log.warning(
                    "metrics.scope.parent_missing",
                    scope_id=scope_id,
                    parent_id=parent,
                    parent_kind=parent_key[0].value,
                )
            else:
                self._apply_rollup(parent_key, _bump_total)
                if kind is ScopeKind.TASK:
                    for ancestor in self._ancestors(key):
                        self._apply_rollup(ancestor, _bump_rollup_total)

        self.mark_dirty()
        log.debug("metrics.scope.started", scope_id=scope_id, kind=kind.value, parent_id=parent)
        return ScopeRef(id=scope_id, kind=kind, parent_id=parent)

    def complete_scope(
        self, scope_id: str, status: ScopeStatus, *, kind: ScopeKind | None = None
    ) -> None:
        """Freeze a scope with a terminal status, stamping end time and duration.

        Later ``record_*`` calls on the scope are ignored with a warning.
        Roll-ups from children that finish late still reach it.
        """
        if not status.is_terminal:
            log.warning(
                "metrics.scope.complete_ignored",
                scope_id=scope_id,
                reason="non_terminal_status",
                status=status.value,
            )
            return

        def finish(scope: Scope) -> None:
            scope.finish(status)

        key = self._resolve(scope_id, kind, "complete_scope")
        if key is not None and self._mutate(key, "complete_scope", finish):
            log.info(
                "metrics.scope.completed",
                scope_id=scope_id,
                kind=key[0].value,
                status=status.value,
            )

    def finalize_stale(
        self,
        max_idle: timedelta,
        *,
        kinds: tuple[ScopeKind, ...] = (ScopeKind.PRD_SET,),
        now: datetime | None = None,
    ) -> list[str]:
        """Mark in-progress scopes idle longer than ``max_idle`` as blocked.

        Scopes that are never completed otherwise stay in progress for the
        lifetime of the process. This is an explicit sweep, never automatic.

        Returns:
            Ids of the scopes that were finalized.
        """
        current = now or datetime.now(UTC)
        stale = [
            scope.key
            for scope in list(self._scopes.values())
            if scope.kind in kinds
            and not scope.frozen
            and current - scope.last_activity > max_idle
        ]
        for kind, scope_id in stale:
            self.complete_scope(scope_id, ScopeStatus.BLOCKED, kind=kind)
        stale_ids = [scope_id for _, scope_id in stale]
        if stale:
            log.info("metrics.scope.stale_finalized", count=len(stale), scope_ids=stale_ids)
        return stale_ids

    # =========================================================================
    # Recording
    # =========================================================================

    def record_completion(
        self, scope_id: str, outcome: Outcome, *, kind: ScopeKind | None = None
    ) -> None:
        """Record the outcome of a unit of work.

        1. A task increments its own counters; a container stamps ``outcome``.
        2. The parent's level counters get the same increment.
        3. For tasks only, every ancestor's ``rollup`` gets it too.

        Call it before ``complete_scope``: a finalized scope ignores it.
        """

        def apply(target: Scope) -> None:
            if target.kind is ScopeKind.TASK:
                target.counters.add_outcome(outcome)
            else:
                target.outcome = outcome

        key = self._resolve(scope_id, kind, "record_completion")
        if key is None or not self._mutate(key, "record_completion", apply):
            return

        parent_key = self._scopes[key].parent_key
        if parent_key is not None:
            self._apply_rollup(parent_key, lambda p: p.counters.add_outcome(outcome))
        if key[0] is ScopeKind.TASK:
            for ancestor in self._ancestors(key):
                self._apply_rollup(ancestor, lambda a: a.rollup.add_outcome(outcome))

    def record_blocked(self, scope_id: str, *, kind: ScopeKind | None = None) -> None:
        """Count a blocked unit of work at its own level and at its parent."""
        key = self._resolve(scope_id, kind, "record_blocked")
        if key is None or not self._mutate(key, "record_blocked", _bump_blocked):
            return
        parent_key = self._scopes[key].parent_key
        if parent_key is not None:
            self._apply_rollup(parent_key, _bump_blocked)

    def record_tokens(
        self,
        scope_id: str,
        input_tokens: int,
        output_tokens: int,
        *,
        kind: ScopeKind | None = None,
    ) -> None:
        """Accumulate raw token counts into the scope and all its ancestors."""

        def add(target: Scope) -> None:
            target.tokens.add(input_tokens, output_tokens)

        key = self._resolve(scope_id, kind, "record_tokens")
        if key is not None and self._mutate(key, "record_tokens", add):
            for ancestor in self._ancestors(key):
                self._apply_rollup(ancestor, add)

    def record_timing(
        self, scope_id: str, category: str, ms: float, *, kind: ScopeKind | None = None
    ) -> None:
        """Fold one timing sample into the scope and all its ancestors."""

        def observe(target: Scope) -> None:
            target.timing(category).observe(ms)

        key = self._resolve(scope_id, kind, "record_timing")
        if key is not None and self._mutate(key, "record_timing", observe):
            for ancestor in self._ancestors(key):
                self._apply_rollup(ancestor, observe)

    def compute_cost(
        self,
        scope_id: str,
        provider: str,
        model: str,
        pricing: PricingFn,
        *,
        kind: ScopeKind | None = None,
    ) -> float | None:
        """Price the scope's raw tokens and store the result in ``tokens.cost``.

        Returns:
            The computed cost, or None when the scope is unknown or the
            pricing function failed.
        """
        key = self._resolve(scope_id, kind, "compute_cost")
        if key is None:
            return None

        with self._locks[key]:
            tokens = self._scopes[key].tokens
            input_tokens, output_tokens = tokens.input, tokens.output
        try:
            cost = pricing(provider, model, input_tokens, output_tokens)
        except Exception:
            log.exception(
                "metrics.cost.pricing_failed",
                scope_id=scope_id,
                provider=provider,
                model=model,
            )
            return None

        def store_cost(target: Scope) -> None:
            target.tokens.cost = cost

        self._apply_rollup(key, store_cost)
        return cost

    def update(
        self,
        scope_id: str,
        operation: str,
        fn: Callable[[Scope], None],
        *,
        kind: ScopeKind | None = None,
    ) -> bool:
        """Apply ``fn`` to a live scope under its lock.

        This is the entry point the ingestion recorder uses. Unknown or
        finalized scopes are logged and skipped; an exception raised by
        ``fn`` is logged and swallowed.

        Returns:
            True if ``fn`` ran to completion.
        """
        key = self._resolve(scope_id, kind, operation)
        return key is not None and self._mutate(key, operation, fn)

    def category(
        self, scope_id: str, name: CategoryName, *, kind: ScopeKind | None = None
    ) -> CategoryRecord | None:
        """Get-or-create accessor for one category record of a scope.

        Returns a copy of the fully populated record, or None if the scope is
        unknown.
        """
        key = self._lookup(scope_id, kind)
        if key is None:
            return None
        with self._locks[key]:
            return self._scopes[key].categories.get(name).model_copy(deep=True)

    def aggregate_children(
        self, parent_id: str, *, kind: ScopeKind | None = None
    ) -> CategoryRecords | None:
        """Merge the category records of a scope's direct children into it.

        Each child contributes its own records plus whatever was aggregated
        into it earlier, so calling this bottom-up (phases, then the PRD,
        then the PRD set) yields whole-subtree totals. The result replaces
        ``child_categories`` on the parent, which makes repeated calls
        idempotent.

        Returns:
            A copy of the merged records, or None if ``parent_id`` is unknown.
        """
        key = self._resolve(parent_id, kind, "aggregate_children")
        if key is None:
            return None

        merged = CategoryRecords()
        for child in self._children(key):
            with self._locks[child.key]:
                merged.merge(child.categories)
                merged.merge(child.child_categories)

        def replace(target: Scope) -> None:
            target.child_categories = merged

        self._apply_rollup(key, replace)
        log.debug("metrics.categories.aggregated", scope_id=parent_id, kind=key[0].value)
        return merged.model_copy(deep=True)

    # =========================================================================
    # Queries
    # =========================================================================

    def get_scope(self, scope_id: str, kind: ScopeKind | None = None) -> Scope | None:
        """Return a deep copy of one scope, or None if unknown."""
        key = self._lookup(scope_id, kind)
        if key is None:
            return None
        return self._copy(key)

    def require_scope(
        self, scope_id: str, kind: ScopeKind | None = None
    ) -> Result[Scope, UnknownScopeError]:
        """Like ``get_scope`` but reports an unknown id as an error value."""
        scope = self.get_scope(scope_id, kind)
        if scope is None:
            return Result.err(
                UnknownScopeError(
                    f"Unknown scope: {scope_id}",
                    scope_id=scope_id,
                    kind=kind.value if kind else None,
                )
            )
        return Result.ok(scope)

    def list_scopes(self, kind: ScopeKind | None = None) -> list[Scope]:
        """Return deep copies of all scopes, optionally of one kind, by start time."""
        keys = [key for key in list(self._scopes) if kind is None or key[0] is kind]
        copies = [self._copy(key) for key in keys]
        return sorted((s for s in copies if s is not None), key=lambda s: s.start_time)

    def snapshot(self) -> StoreSnapshot:
        """Return an immutable point-in-time copy of the store.

        Each scope is copied under its own lock, so no record is ever torn.
        A roll-up in flight on another thread may be visible on the child
        and not yet on its ancestors.
        """
        return StoreSnapshot(scopes=tuple(self.list_scopes()))

    def load(self, snapshot: StoreSnapshot) -> None:
        """Replace the store contents with the scopes of ``snapshot``.

        Restored scopes belong to an earlier process: starting one of them
        again replaces it instead of raising ``DuplicateScopeError``.
        """
        with self._registry_lock:
            self._scopes = {scope.key: scope.model_copy(deep=True) for scope in snapshot.scopes}
            self._locks = {key: threading.Lock() for key in self._scopes}
            self._restored = set(self._scopes)
        with self._dirty_lock:
            self._dirty = False
        log.info("metrics.store.loaded", scope_count=len(snapshot.scopes))

    def __len__(self) -> int:
        return len(self._scopes)

    def __contains__(self, scope_id: object) -> bool:
        if isinstance(scope_id, tuple):
            return scope_id in self._scopes
        return any(key[1] == scope_id for key in list(self._scopes))

    # =========================================================================
    # Dirty tracking
    # =========================================================================

    @property
    def is_dirty(self) -> bool:
        with self._dirty_lock:
            return self._dirty

    def mark_clean(self) -> None:
        with self._dirty_lock:
            self._dirty = False

    def consume_dirty(self) -> bool:
        """Atomically read and clear the dirty flag."""
        with self._dirty_lock:
            dirty = self._dirty
            self._dirty = False
            return dirty

    def mark_dirty(self) -> None:
        with self._dirty_lock:
            self._dirty = True

    # =========================================================================
    # Internals
    # =========================================================================

    def _lookup(self, scope_id: str, kind: ScopeKind | None) -> ScopeKey | None:
        if kind is not None:
            key: ScopeKey = (kind, scope_id)
            return key if key in self._scopes else None
        for candidate in ScopeKind:
            if (candidate, scope_id) in self._scopes:
                return (candidate, scope_id)
        return None

    def _resolve(self, scope_id: str, kind: ScopeKind | None, operation: str) -> ScopeKey | None:
        key = self._lookup(scope_id, kind)
        if key is None:
            log.warning(
                "metrics.scope.unknown",
                scope_id=scope_id,
                kind=kind.value if kind else None,
                operation=operation,
            )
        return key

    def _copy(self, key: ScopeKey) -> Scope | None:
        scope = self._scopes.get(key)
        lock = self._locks.get(key)
        if scope is None or lock is None:
            return None
        with lock:
            return scope.model_copy(deep=True)

    def _mutate(self, key: ScopeKey, operation: str, fn: Callable[[Scope], None]) -> bool:
        scope = self._scopes.get(key)
        lock = self._locks.get(key)
        if scope is None or lock is None:
            log.warning("metrics.scope.unknown", scope_id=key[1], operation=operation)
            return False

        with lock:
            if scope.frozen:
                log.warning(
                    "metrics.scope.frozen",
                    scope_id=key[1],
                    kind=key[0].value,
                    operation=operation,
                    status=scope.status.value,
                )
                return False
            try:
                fn(scope)
            except Exception:
                log.exception("metrics.scope.update_failed", scope_id=key[1], operation=operation)
                return False
            scope.touch()

        self._restored.discard(key)
        self.mark_dirty()
        return True

    def _apply_rollup(self, key: ScopeKey, fn: Callable[[Scope], None]) -> None:
        """Apply a roll-up step to an ancestor, finalized or not."""
        scope = self._scopes.get(key)
        lock = self._locks.get(key)
        if scope is None or lock is None:
            log.warning("metrics.scope.unknown", scope_id=key[1], operation="rollup")
            return
        with lock:
            fn(scope)
            scope.touch()
        self.mark_dirty()

    def _ancestors(self, key: ScopeKey) -> Iterator[ScopeKey]:
        """Yield ancestor keys from the parent upward, stopping at unknown ones."""
        scope = self._scopes.get(key)
        parent_key = scope.parent_key if scope is not None else None
        while parent_key is not None:
            parent = self._scopes.get(parent_key)
            if parent is None:
                return
            yield parent_key
            parent_key = parent.parent_key

    def _children(self, key: ScopeKey) -> list[Scope]:
        return [scope for scope in list(self._scopes.values()) if scope.parent_key == key]

    def _drop_subtree(self, key: ScopeKey) -> int:
        """Remove a scope and its descendants. Caller holds the registry lock."""
        pending = [key]
        dropped = 0
        while pending:
            current = pending.pop()
            pending.extend(child.key for child in self._children(current))
            self._scopes.pop(current, None)
            self._locks.pop(current, None)
            self._restored.discard(current)
            dropped += 1
        self.mark_dirty()
        return dropped


def _bump_total(scope: Scope) -> None:
    scope.counters.total += 1


def _bump_rollup_total(scope: Scope) -> None:
    scope.rollup.total += 1


def _bump_blocked(scope: Scope) -> None:
    scope.counters.blocked += 1
