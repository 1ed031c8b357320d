"""Scope records for the Task -> Phase -> PRD -> PRD set hierarchy.

A scope carries two completion tallies:

- ``counters`` are the level counters. A task counts its own outcomes; a
  container counts completions of its direct children (a phase counts tasks,
  a PRD counts phases, a PRD set counts PRDs).
- ``rollup`` reflects every task start and completion beneath the scope
  exactly once, however deep the task sits.

Both expose a derived ``success_rate`` that is recomputed on every read.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from devloop.metrics.aggregates import Counters, Outcome, TimingTotals, TokenTotals
from devloop.metrics.categories import CategoryRecords


class ScopeKind(str, Enum):
    """Granularity of a scope, leaf first."""

    TASK = "task"
    PHASE = "phase"
    PRD = "prd"
    PRD_SET = "prd_set"

    @property
    def parent_kind(self) -> ScopeKind | None:
        """Kind of the scope one level up, or None for a PRD set."""
        return _PARENT_KINDS.get(self)


_PARENT_KINDS: dict[ScopeKind, ScopeKind] = {
    ScopeKind.TASK: ScopeKind.PHASE,
    ScopeKind.PHASE: ScopeKind.PRD,
    ScopeKind.PRD: ScopeKind.PRD_SET,
}

ScopeKey = tuple[ScopeKind, str]
"""A scope is identified by its kind and id; ids only need to be unique per kind."""


class ScopeStatus(str, Enum):
    """Lifecycle status of a scope."""

    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    BLOCKED = "blocked"

    @property
    def is_terminal(self) -> bool:
        return self is not ScopeStatus.IN_PROGRESS


def _utc_now() -> datetime:
    return datetime.now(UTC)


class Scope(BaseModel):
    """Aggregate record of one unit of work.

    Live instances are owned by ``ScopeStore`` and only mutated under the
    scope's lock. Everything handed out by the store is a deep copy.
    """

    id: str
    kind: ScopeKind
    parent_id: str | None = None
    status: ScopeStatus = ScopeStatus.IN_PROGRESS
    outcome: Outcome | None = None
    counters: Counters = Field(default_factory=Counters)
    rollup: Counters = Field(default_factory=Counters)
    tokens: TokenTotals = Field(default_factory=TokenTotals)
    timings: dict[str, TimingTotals] = Field(default_factory=dict)
    categories: CategoryRecords = Field(default_factory=CategoryRecords)
    child_categories: CategoryRecords = Field(default_factory=CategoryRecords)
    metadata: dict[str, Any] = Field(default_factory=dict)
    start_time: datetime = Field(default_factory=_utc_now)
    end_time: datetime | None = None
    duration_ms: float | None = None
    last_activity: datetime = Field(default_factory=_utc_now)

    @property
    def frozen(self) -> bool:
        """True once ``complete_scope`` has been applied."""
        return self.status.is_terminal

    @property
    def key(self) -> ScopeKey:
        return (self.kind, self.id)

    @property
    def parent_key(self) -> ScopeKey | None:
        """Key of the parent, which is always one kind up."""
        parent_kind = self.kind.parent_kind
        if self.parent_id is None or parent_kind is None:
            return None
        return (parent_kind, self.parent_id)

    @property
    def success_rate(self) -> float:
        return self.counters.success_rate

    def timing(self, category: str) -> TimingTotals:
        """Get-or-create the timing totals for ``category``."""
        totals = self.timings.get(category)
        if totals is None:
            totals = TimingTotals()
            self.timings[category] = totals
        return totals

    def touch(self, now: datetime | None = None) -> None:
        self.last_activity = now or _utc_now()

    def finish(self, status: ScopeStatus, now: datetime | None = None) -> None:
        """Freeze the scope with a terminal status and stamp its end time."""
        end = now or _utc_now()
        self.status = status
        self.end_time = end
        self.duration_ms = (end - self.start_time).total_seconds() * 1000
        self.last_activity = end


@dataclass(frozen=True, slots=True)
class ScopeRef:
    """Handle returned by ``ScopeStore.start_scope``."""

    id: str
    kind: ScopeKind
    parent_id: str | None = None


class StoreSnapshot(BaseModel, frozen=True):
    """Point-in-time copy of every scope in a store.

    ``scopes`` holds deep copies, so later store mutations never show up here.
    """

    version: int = 1
    saved_at: datetime = Field(default_factory=_utc_now)
    scopes: tuple[Scope, ...] = ()

    def get(self, scope_id: str, kind: ScopeKind | None = None) -> Scope | None:
        """Find a scope by id.

        Without ``kind``, the most specific kind wins (task before phase,
        phase before PRD, PRD before PRD set).
        """
        matches = {scope.kind: scope for scope in self.scopes if scope.id == scope_id}
        if kind is not None:
            return matches.get(kind)
        for candidate in ScopeKind:
            if candidate in matches:
                return matches[candidate]
        return None

    def of_kind(self, kind: ScopeKind) -> list[Scope]:
        return [scope for scope in self.scopes if scope.kind is kind]
