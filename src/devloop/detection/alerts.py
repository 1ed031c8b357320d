"""Alert emitter and per-detector alert gate.

``AlertEmitter`` is an in-process publish/subscribe sink. ``publish`` never
raises and never waits on a listener:

- After ``await emitter.start()`` events are queued on an ``asyncio.Queue``
  and delivered by a background dispatcher task. ``publish`` may be called
  from any thread.
- Without a dispatcher, events are handed to a daemon delivery thread that
  runs sync listeners and drives async listeners on its own event loop.
  ``drain()`` blocks until that thread has caught up.

Listener exceptions are logged with ``log.exception`` and dropped.

The emitter also keeps the last ``buffer_size`` events for ``poll``.

``AlertGate`` de-duplicates alerts per (issue type, scope)::

    NORMAL --(detected)--> ALERTED --(reset(scope_id))--> NORMAL

While ALERTED, further detections publish nothing. There is no automatic
decay back to NORMAL when the condition clears.
"""

from __future__ import annotations

import asyncio
from collections import deque
from collections.abc import Awaitable, Callable, Iterable
from datetime import datetime
from enum import Enum
import inspect
import queue
import threading
from typing import Any
import uuid

from devloop.detection.models import IssueType
from devloop.events.base import AlertEvent, Severity
from devloop.observability.logging import get_logger

log = get_logger(__name__)

DEFAULT_BUFFER_SIZE = 1000

Listener = Callable[[AlertEvent], Awaitable[None] | None]

_SEVERITY_ORDER = tuple(Severity)


def _at_least(severity: Severity, minimum: Severity) -> bool:
    return _SEVERITY_ORDER.index(severity) >= _SEVERITY_ORDER.index(minimum)


async def _guard(awaitable: Awaitable[None], subscription_id: str, event: AlertEvent) -> None:
    try:
        await awaitable
    except Exception:
        log.exception(
            "alerts.listener.failed",
            subscription_id=subscription_id,
            event_type=event.event_type,
        )


class AlertEmitter:
    """Fire-and-forget alert publisher with a bounded replay buffer.

    Example:
        emitter = AlertEmitter()
        sub_id = emitter.subscribe(lambda event: print(event.event_type))
        emitter.publish(
            "detection.task_dependency_deadlock.detected",
            {"circular_dependencies": ["A -> B -> A"]},
            severity=Severity.ERROR,
            scope_id="prd-auth",
        )
        emitter.drain()
        emitter.unsubscribe(sub_id)
    """

    def __init__(self, buffer_size: int = DEFAULT_BUFFER_SIZE) -> None:
        self._listeners: dict[str, Listener] = {}
        self._buffer: deque[AlertEvent] = deque(maxlen=buffer_size)
        self._lock = threading.Lock()
        self._queue: asyncio.Queue[AlertEvent] | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._dispatcher: asyncio.Task[None] | None = None
        self._inbox: queue.Queue[AlertEvent] = queue.Queue()
        self._worker: threading.Thread | None = None

    # =========================================================================
    # Subscription
    # =========================================================================

    def subscribe(self, listener: Listener) -> str:
        """Register a listener and return its subscription id."""
        subscription_id = uuid.uuid4().hex[:12]
        with self._lock:
            self._listeners[subscription_id] = listener
        log.debug("alerts.listener.subscribed", subscription_id=subscription_id)
        return subscription_id

    def unsubscribe(self, subscription_id: str) -> bool:
        with self._lock:
            removed = self._listeners.pop(subscription_id, None) is not None
        if removed:
            log.debug("alerts.listener.unsubscribed", subscription_id=subscription_id)
        return removed

    @property
    def listener_count(self) -> int:
        with self._lock:
            return len(self._listeners)

    # =========================================================================
    # Publishing
    # =========================================================================

    def publish(
        self,
        event_type: str,
        payload: dict[str, Any] | None = None,
        *,
        severity: Severity = Severity.INFO,
        scope_id: str | None = None,
    ) -> AlertEvent:
        """Publish one alert to every listener without blocking the caller."""
        event = AlertEvent(
            event_type=event_type,
            payload=dict(payload or {}),
            severity=severity,
            scope_id=scope_id,
        )
        with self._lock:
            self._buffer.append(event)

        log.info(
            "alerts.event.published",
            event_type=event_type,
            severity=severity.value,
            scope_id=scope_id,
        )

        self._enqueue(event)
        return event

    @property
    def is_running(self) -> bool:
        return self._dispatcher is not None and not self._dispatcher.done()

    async def start(self) -> None:
        """Start the background dispatcher on the running loop."""
        if self.is_running:
            return
        self._loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue()
        self._dispatcher = asyncio.create_task(self._dispatch_loop(self._queue))
        log.info("alerts.dispatcher.started")

    async def stop(self) -> None:
        """Deliver queued events, then stop the dispatcher."""
        await asyncio.to_thread(self.drain)
        if self._dispatcher is None or self._queue is None:
            return
        await self._queue.join()
        self._dispatcher.cancel()
        try:
            await self._dispatcher
        except asyncio.CancelledError:
            pass
        self._dispatcher = None
        self._queue = None
        self._loop = None
        log.info("alerts.dispatcher.stopped")

    def drain(self) -> None:
        """Block until the delivery thread has handled every handed-off event."""
        self._inbox.join()

    def _enqueue(self, event: AlertEvent) -> None:
        dispatch_queue, loop = self._queue, self._loop
        if dispatch_queue is None or loop is None or not self.is_running:
            self._hand_off(event)
            return
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is loop:
            dispatch_queue.put_nowait(event)
        else:
            loop.call_soon_threadsafe(dispatch_queue.put_nowait, event)

    async def _dispatch_loop(self, dispatch_queue: asyncio.Queue[AlertEvent]) -> None:
        while True:
            event = await dispatch_queue.get()
            try:
                for subscription_id, listener in self._snapshot_listeners():
                    try:
                        result = listener(event)
                    except Exception:
                        log.exception(
                            "alerts.listener.failed",
                            subscription_id=subscription_id,
                            event_type=event.event_type,
                        )
                        continue
                    if inspect.isawaitable(result):
                        await _guard(result, subscription_id, event)
            finally:
                dispatch_queue.task_done()

    def _hand_off(self, event: AlertEvent) -> None:
        with self._lock:
            if self._worker is None or not self._worker.is_alive():
                self._worker = threading.Thread(
                    target=self._deliver_forever, name="devloop-alerts", daemon=True
                )
                self._worker.start()
        self._inbox.put(event)

    def _deliver_forever(self) -> None:
        with asyncio.Runner() as runner:
            while True:
                event = self._inbox.get()
                try:
                    for subscription_id, listener in self._snapshot_listeners():
                        try:
                            result = listener(event)
                        except Exception:
                            log.exception(
                                "alerts.listener.failed",
                                subscription_id=subscription_id,
                                event_type=event.event_type,
                            )
                            continue
                        if inspect.isawaitable(result):
                            runner.run(_guard(result, subscription_id, event))
                finally:
                    self._inbox.task_done()

    def _snapshot_listeners(self) -> list[tuple[str, Listener]]:
        with self._lock:
            return list(self._listeners.items())

    # =========================================================================
    # Replay buffer
    # =========================================================================

    def poll(
        self,
        *,
        event_types: Iterable[str] | None = None,
        severity: Severity | None = None,
        scope_id: str | None = None,
        since: datetime | None = None,
        limit: int | None = None,
    ) -> list[AlertEvent]:
        """Return buffered events matching every given filter, oldest first.

        Args:
            event_types: Only these event types.
            severity: Minimum severity.
            scope_id: Only events about this scope.
            since: Only events published strictly after this time.
            limit: Keep only the newest ``limit`` matches.
        """
        wanted = set(event_types) if event_types is not None else None
        with self._lock:
            events = list(self._buffer)
        matches = [
            event
            for event in events
            if (wanted is None or event.event_type in wanted)
            and (severity is None or _at_least(event.severity, severity))
            and (scope_id is None or event.scope_id == scope_id)
            and (since is None or event.timestamp > since)
        ]
        if limit is not None:
            matches = matches[-limit:] if limit > 0 else []
        return matches

    def clear_buffer(self) -> None:
        with self._lock:
            self._buffer.clear()


class AlertState(str, Enum):
    NORMAL = "normal"
    ALERTED = "alerted"


class AlertGate:
    """Lets exactly one alert through per (issue type, scope) until reset."""

    def __init__(self) -> None:
        self._states: dict[tuple[IssueType, str], AlertState] = {}
        self._lock = threading.Lock()

    def admit(self, issue_type: IssueType, scope_id: str, detected: bool) -> bool:
        """Return True if a detection should be published now.

        Moves NORMAL to ALERTED on the first detection. Everything else,
        including detections while ALERTED, returns False.
        """
        if not detected:
            return False
        key = (issue_type, scope_id)
        with self._lock:
            if self._states.get(key, AlertState.NORMAL) is AlertState.ALERTED:
                return False
            self._states[key] = AlertState.ALERTED
            return True

    def state(self, issue_type: IssueType, scope_id: str) -> AlertState:
        with self._lock:
            return self._states.get((issue_type, scope_id), AlertState.NORMAL)

    def reset(self, scope_id: str) -> None:
        """Re-arm every detector of ``scope_id``."""
        with self._lock:
            for key in [key for key in self._states if key[1] == scope_id]:
                del self._states[key]
