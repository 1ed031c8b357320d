"""Structural detection: dependency cycles and stalled tasks.

The detector owns a ``DependencyGraph`` (edges ``task -> depends_on``) and a
``BlockedRegistry`` (task -> since, reason) for one PRD execution. Both are
cleared by ``reset``.

Cycle search is a depth-first traversal from every unvisited node that keeps
the current path as a recursion stack. Reaching a node already on the stack
records the stack slice from that node as one cycle, e.g. ``"A -> B -> C ->
A"``. This yields at least one representative cycle per cyclic region; it
does not enumerate every simple cycle.
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass
from datetime import UTC, datetime
import threading

from devloop.detection.models import (
    DEFAULT_INCIDENT_CAPACITY,
    DetectorConfig,
    IssueState,
    IssueType,
)
from devloop.observability.logging import get_logger

log = get_logger(__name__)

CYCLE_SEPARATOR = " -> "


class DependencyGraph:
    """Directed graph of declared task dependencies, in declaration order."""

    def __init__(self) -> None:
        self._edges: dict[str, list[str]] = {}

    def add_edge(self, task: str, depends_on: str) -> None:
        targets = self._edges.setdefault(task, [])
        self._edges.setdefault(depends_on, [])
        if depends_on not in targets:
            targets.append(depends_on)

    def remove_edge(self, task: str, depends_on: str) -> bool:
        targets = self._edges.get(task)
        if targets is None or depends_on not in targets:
            return False
        targets.remove(depends_on)
        return True

    def dependencies(self, task: str) -> tuple[str, ...]:
        return tuple(self._edges.get(task, ()))

    @property
    def nodes(self) -> tuple[str, ...]:
        return tuple(self._edges)

    def edge_count(self) -> int:
        return sum(len(targets) for targets in self._edges.values())

    def clear(self) -> None:
        self._edges.clear()

    def find_cycles(self) -> list[str]:
        """Return representative cycles as ``" -> "``-joined node paths."""
        cycles: list[str] = []
        visited: set[str] = set()

        for root in self._edges:
            if root in visited:
                continue
            # Iterative DFS: each frame is (node, iterator over its dependencies).
            stack: list[str] = [root]
            on_stack: set[str] = {root}
            frames: list[tuple[str, Iterator[str]]] = [(root, iter(self._edges[root]))]
            visited.add(root)

            while frames:
                node, children = frames[-1]
                child = next(children, None)
                if child is None:
                    frames.pop()
                    stack.pop()
                    on_stack.discard(node)
                    continue
                if child in on_stack:
                    start = stack.index(child)
                    cycles.append(CYCLE_SEPARATOR.join([*stack[start:], child]))
                elif child not in visited:
                    visited.add(child)
                    stack.append(child)
                    on_stack.add(child)
                    frames.append((child, iter(self._edges.get(child, ()))))

        return cycles


@dataclass(frozen=True, slots=True)
class BlockedTask:
    task_id: str
    since: datetime
    reason: str


class BlockedRegistry:
    """Tasks currently waiting, with when and why they started waiting."""

    def __init__(self) -> None:
        self._blocked: dict[str, BlockedTask] = {}

    def mark(self, task_id: str, reason: str, since: datetime) -> None:
        # Re-marking keeps the original start of the wait.
        if task_id not in self._blocked:
            self._blocked[task_id] = BlockedTask(task_id=task_id, since=since, reason=reason)

    def unmark(self, task_id: str) -> BlockedTask | None:
        return self._blocked.pop(task_id, None)

    def entries(self) -> tuple[BlockedTask, ...]:
        return tuple(self._blocked.values())

    def clear(self) -> None:
        self._blocked.clear()

    def __len__(self) -> int:
        return len(self._blocked)

    def __contains__(self, task_id: object) -> bool:
        return task_id in self._blocked


class StructuralDetector:
    """Deadlock detector for one PRD execution.

    ``detected = cycles or any wait > threshold or avg_wait_time > threshold``
    with waits in minutes.

    Example:
        detector = StructuralDetector()
        detector.declare_dependency("A", "B")
        detector.declare_dependency("B", "A")
        state, fired = detector.check_stall()
        state.statistics["circular_dependencies"]  # ["A -> B -> A"]
    """

    def __init__(
        self,
        config: DetectorConfig | None = None,
        *,
        incident_capacity: int = DEFAULT_INCIDENT_CAPACITY,
    ) -> None:
        self._config = config or DetectorConfig.for_issue(IssueType.TASK_DEPENDENCY_DEADLOCK)
        self._incident_capacity = incident_capacity
        self._graph = DependencyGraph()
        self._blocked = BlockedRegistry()
        self._lock = threading.Lock()
        self._state = IssueState.initial(
            IssueType.TASK_DEPENDENCY_DEADLOCK, self._config, incident_capacity
        )

    @property
    def state(self) -> IssueState:
        return self._state

    @property
    def config(self) -> DetectorConfig:
        return self._config

    def declare_dependency(self, task: str, depends_on: str) -> None:
        with self._lock:
            self._graph.add_edge(task, depends_on)

    def remove_dependency(self, task: str, depends_on: str) -> bool:
        with self._lock:
            return self._graph.remove_edge(task, depends_on)

    def find_cycles(self) -> list[str]:
        with self._lock:
            return self._graph.find_cycles()

    def mark_blocked(self, task: str, reason: str, now: datetime | None = None) -> None:
        with self._lock:
            self._blocked.mark(task, reason, now or datetime.now(UTC))
        log.debug("detection.task.blocked", task_id=task, reason=reason)

    def mark_unblocked(self, task: str) -> None:
        with self._lock:
            entry = self._blocked.unmark(task)
        if entry is not None:
            log.debug("detection.task.unblocked", task_id=task)

    def blocked_tasks(self) -> tuple[BlockedTask, ...]:
        with self._lock:
            return self._blocked.entries()

    def check_stall(self, now: datetime | None = None) -> tuple[IssueState, bool]:
        """Recompute the deadlock state.

        Returns:
            The new state and whether ``detected`` rose on this check.
        """
        current = now or datetime.now(UTC)
        with self._lock:
            cycles = self._graph.find_cycles()
            entries = self._blocked.entries()
            waits = {
                entry.task_id: (current - entry.since).total_seconds() / 60 for entry in entries
            }
            avg_wait = sum(waits.values()) / len(waits) if waits else 0.0
            threshold = self._config.alert_threshold
            overdue = sorted(task for task, wait in waits.items() if wait > threshold)
            statistics = {
                "blocked_tasks": len(entries),
                "circular_dependencies": cycles,
                "avg_wait_time": avg_wait,
                "max_wait_time": max(waits.values(), default=0.0),
                "overdue_tasks": overdue,
            }
            detected = bool(cycles) or bool(overdue) or avg_wait > threshold
            self._state, fired = self._state.recompute(
                detected, statistics, self._config, current
            )
            return self._state, fired

    def reset(self) -> None:
        """Clear the graph, the blocked registry and the detector state."""
        with self._lock:
            self._graph.clear()
            self._blocked.clear()
            self._state = IssueState.initial(
                IssueType.TASK_DEPENDENCY_DEADLOCK, self._config, self._incident_capacity
            )
        log.debug("detection.structural.reset")
