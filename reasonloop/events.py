"""
Event broadcasting for live run progress.

Runs publish ``Event`` records; any number of observers (SSE clients,
the CLI, tests) subscribe and receive them through their own bounded
queue. Publishing never blocks: when a subscriber falls behind, its
oldest queued event is dropped and counted, so a slow consumer can never
stall a run.

Example:
    broadcaster = EventBroadcaster()

    async with broadcaster.subscribe() as subscription:
        async for event in subscription:
            print(event.kind, event.payload)
"""

import asyncio
import itertools
import logging
import threading
import time
from collections import deque
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, AsyncIterator, Optional

from .config import config

logger = logging.getLogger(__name__)


class EventKind(str, Enum):
    """Kinds of run progress events."""

    PLAN = "plan"
    PLAN_STEP = "plan_step"
    THOUGHT = "thought"
    ACTION = "action"
    OBSERVATION = "observation"
    FINISH = "finish"
    ERROR = "error"


TERMINAL_KINDS = frozenset({EventKind.FINISH, EventKind.ERROR})


@dataclass(frozen=True)
class Event:
    """One progress record of one run."""

    execution_id: str
    sequence: int
    timestamp: float
    kind: EventKind
    payload: dict = field(default_factory=dict)

    @property
    def is_terminal(self) -> bool:
        return self.kind in TERMINAL_KINDS

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["kind"] = self.kind.value
        return data


class Subscription:
    """A subscriber's bounded view of the event stream.

    Iterating yields events until the subscription is closed. Use it as
    an async context manager so it is always released.
    """

    def __init__(self, broadcaster: "EventBroadcaster", maxsize: int):
        self._broadcaster = broadcaster
        self.queue: asyncio.Queue[Optional[Event]] = asyncio.Queue(maxsize=maxsize)
        self.dropped = 0
        self._closed = False

    @property
    def is_closed(self) -> bool:
        return self._closed

    def _deliver(self, event: Optional[Event]) -> None:
        """Enqueue without blocking, evicting the oldest entry if full."""
        while True:
            try:
                self.queue.put_nowait(event)
                return
            except asyncio.QueueFull:
                try:
                    self.queue.get_nowait()
                except asyncio.QueueEmpty:
                    continue
                if event is not None:
                    self.dropped += 1

    def _mark_closed(self) -> None:
        if not self._closed:
            self._closed = True
            self._deliver(None)

    async def get(self, timeout: Optional[float] = None) -> Optional[Event]:
        """Get the next event, or None on timeout or close."""
        if self._closed and self.queue.empty():
            return None
        try:
            if timeout:
                return await asyncio.wait_for(self.queue.get(), timeout=timeout)
            return await self.queue.get()
        except asyncio.TimeoutError:
            return None

    def close(self) -> None:
        """Unsubscribe from the broadcaster."""
        self._broadcaster.unsubscribe(self)

    def __aiter__(self) -> AsyncIterator[Event]:
        return self

    async def __anext__(self) -> Event:
        event = await self.queue.get()
        if event is None:
            raise StopAsyncIteration
        return event

    async def __aenter__(self) -> "Subscription":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()


class EventBroadcaster:
    """Process-wide fan-out of run events.

    ``publish`` must be called from the event loop thread that owns the
    subscribers' queues.
    """

    def __init__(self, queue_size: Optional[int] = None, history_size: Optional[int] = None):
        self.queue_size = queue_size if queue_size is not None else config.events.queue_size
        history = history_size if history_size is not None else config.events.history_size
        self._history: deque[Event] = deque(maxlen=history)
        self._subscribers: set[Subscription] = set()
        self._lock = threading.Lock()

    def subscribe(self, replay_history: bool = False) -> Subscription:
        """
        Register a new subscriber.

        Args:
            replay_history: Pre-load the subscription with the recent
                history snapshot before live events.
        """
        subscription = Subscription(self, self.queue_size)
        with self._lock:
            if replay_history:
                for event in self._history:
                    subscription._deliver(event)
            self._subscribers.add(subscription)
        logger.debug("Subscriber added (total=%d)", len(self._subscribers))
        return subscription

    def unsubscribe(self, subscription: Subscription) -> bool:
        """Remove a subscriber. Returns False if it was not subscribed."""
        with self._lock:
            removed = subscription in self._subscribers
            self._subscribers.discard(subscription)
        subscription._mark_closed()
        if removed:
            logger.debug(
                "Subscriber removed (total=%d, dropped=%d)",
                len(self._subscribers),
                subscription.dropped,
            )
        return removed

    def publish(self, event: Event) -> None:
        """Deliver an event to every subscriber without blocking."""
        with self._lock:
            self._history.append(event)
            for subscription in self._subscribers:
                subscription._deliver(event)

    def recent(self) -> list[Event]:
        """Snapshot of the bounded recent history."""
        with self._lock:
            return list(self._history)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)


class EventEmitter:
    """Stamps and publishes the events of a single run."""

    def __init__(self, broadcaster: Optional[EventBroadcaster], execution_id: str):
        self.broadcaster = broadcaster
        self.execution_id = execution_id
        self._sequence = itertools.count(1)

    def emit(self, kind: EventKind, **payload: Any) -> Event:
        event = Event(
            execution_id=self.execution_id,
            sequence=next(self._sequence),
            timestamp=time.time(),
            kind=kind,
            payload=payload,
        )
        if self.broadcaster is not None:
            self.broadcaster.publish(event)
        return event
