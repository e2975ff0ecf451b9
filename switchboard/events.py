"""In-process async event bus for Switchboard.

The orchestrator emits one event per notable turn outcome (routed,
aborted, session paused/resumed, state swept). Events are queued and
dispatched off the turn's critical path, so a slow or failing listener
never delays or fails a turn.

Listeners subscribe per event type, or to every event with on_any().
A single persister (the routing audit writer) runs before listeners.
"""

from __future__ import annotations

import asyncio
import logging
from collections import Counter, defaultdict
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable

from switchboard.utils import utcnow

logger = logging.getLogger(__name__)

EventHandler = Callable[["Event"], Awaitable[None]]

TURN_ROUTED = "turn_routed"
TURN_ABORTED = "turn_aborted"
SESSION_PAUSED = "session_paused"
SESSION_RESUMED = "session_resumed"
STATE_SWEPT = "state_swept"


@dataclass
class Event:
    """Something that happened to one user/scope during a turn."""

    type: str
    user_id: str
    scope: str = "web"
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=utcnow)

    def as_dict(self) -> dict[str, Any]:
        out = asdict(self)
        out["timestamp"] = self.timestamp.isoformat()
        return out


class EventBus:
    """Queue-backed dispatcher with per-listener error isolation.

    emit() never blocks: when the queue is full the event is dropped and
    counted. Events are dispatched one at a time in emission order; the
    listeners of a single event run concurrently.
    """

    def __init__(self, max_queue: int = 1000) -> None:
        self._listeners: dict[str, list[EventHandler]] = defaultdict(list)
        self._any: list[EventHandler] = []
        self._persister: EventHandler | None = None
        self._queue: asyncio.Queue[Event] = asyncio.Queue(maxsize=max_queue)
        self._task: asyncio.Task | None = None
        self.dispatched: Counter[str] = Counter()
        self.dropped: Counter[str] = Counter()

    # ------------------------------------------------------------------
    # Subscription
    # ------------------------------------------------------------------

    def on(self, event_type: str, handler: EventHandler) -> None:
        self._listeners[event_type].append(handler)
        logger.debug("Subscribed %s to '%s'", getattr(handler, "__qualname__", handler), event_type)

    def on_any(self, handler: EventHandler) -> None:
        """Subscribe to every event type."""
        self._any.append(handler)

    def off(self, event_type: str, handler: EventHandler) -> bool:
        listeners = self._listeners.get(event_type, [])
        if handler in listeners:
            listeners.remove(handler)
            return True
        return False

    def set_persister(self, persister: EventHandler) -> None:
        """Attach the writer that persists events (routing audit records)."""
        self._persister = persister

    # ------------------------------------------------------------------
    # Emission
    # ------------------------------------------------------------------

    async def emit(self, event: Event) -> None:
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            self.dropped[event.type] += 1
            logger.warning("Event queue full, dropped %s for %s/%s", event.type, event.user_id, event.scope)

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name="switchboard-events")
        logger.info("Event bus started")

    async def stop(self) -> None:
        """Stop the loop, then dispatch whatever is still queued."""
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        drained = 0
        while True:
            try:
                event = self._queue.get_nowait()
            except asyncio.QueueEmpty:
                break
            await self._dispatch(event)
            drained += 1
        logger.info("Event bus stopped (%d drained, %d dropped)", drained, sum(self.dropped.values()))

    async def _run(self) -> None:
        while True:
            event = await self._queue.get()
            try:
                await self._dispatch(event)
            except Exception:
                logger.exception("Unexpected error dispatching %s", event.type)

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def _dispatch(self, event: Event) -> None:
        if self._persister is not None:
            try:
                await self._persister(event)
            except Exception as e:
                logger.warning("Persisting %s for %s/%s failed: %s", event.type, event.user_id, event.scope, e)

        listeners = [*self._listeners.get(event.type, []), *self._any]
        if listeners:
            await asyncio.gather(*(self._call(h, event) for h in listeners))
        self.dispatched[event.type] += 1

    async def _call(self, handler: EventHandler, event: Event) -> None:
        try:
            await handler(event)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Listener %s failed on %s", getattr(handler, "__qualname__", handler), event.type)
