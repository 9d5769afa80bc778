"""Per-build event channel.

Every live runner owns one :class:`EventChannel`.  Observers subscribe and
receive a ``snapshot`` event first, then every event the runner publishes,
in publish order, through their own bounded queue.  Closing the channel
(the run ended) delivers ``done`` to everyone.  Subscribers never affect
the runner: a slow one is dropped, a departing one just unsubscribes.
"""

import asyncio
import logging
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

SNAPSHOT = "snapshot"
DONE = "done"

# Event types a runner publishes.
EVENT_TYPES = frozenset({
    "planning",
    "plan-ready",
    "plan-approved",
    "conversation-response",
    "quick-change-start",
    "phase-start",
    "file-generating",
    "file-updating",
    "file-created",
    "file-updated",
    "file-error",
    "file-reading",
    "file-read",
    "file-deleting",
    "file-deleted",
    "dynamic-file",
    "phase-reviewing",
    "phase-complete",
    "build-complete",
    "build-error",
    "build-cancelled",
    "thinking",
})


@dataclass(frozen=True)
class BuildEvent:
    type: str
    data: dict = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.type not in EVENT_TYPES and self.type not in (SNAPSHOT, DONE):
            raise ValueError(f"Unknown build event type: {self.type}")

    def to_dict(self) -> dict:
        """Wire form: ``{"type": ..., **data}``."""
        return {"type": self.type, **self.data}


class Subscription:
    """One observer's ordered view of a channel."""

    def __init__(self, queue_size: int, channel: "EventChannel | None" = None) -> None:
        self._queue: asyncio.Queue[BuildEvent] = asyncio.Queue(maxsize=max(queue_size, 2))
        self._channel = channel
        self.finished = False

    @classmethod
    def detached(cls, snapshot: dict, queue_size: int = 2) -> "Subscription":
        """A stream for a build with no live runner: snapshot, then done."""
        sub = cls(queue_size)
        sub._offer(BuildEvent(SNAPSHOT, snapshot))
        sub._finish()
        return sub

    def _offer(self, event: BuildEvent) -> bool:
        if self.finished:
            return False
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            return False
        return True

    def _finish(self) -> None:
        """Terminate the stream with ``done``.

        A full queue gives up its oldest undelivered event to make room, so an
        evicted or overflowing observer may miss that one event.
        """
        if self.finished:
            return
        self.finished = True
        if self._queue.full():
            lost = self._queue.get_nowait()
            logger.warning("Subscriber queue full; dropped '%s' event to deliver done", lost.type)
        self._queue.put_nowait(BuildEvent(DONE))

    async def get(self) -> BuildEvent:
        return await self._queue.get()

    def close(self) -> None:
        """Stop receiving events.  Has no effect on the runner."""
        if self._channel is not None:
            self._channel.unsubscribe(self)
        self._channel = None

    def __aiter__(self):
        return self

    async def __anext__(self) -> BuildEvent:
        if self.finished and self._queue.empty():
            raise StopAsyncIteration
        return await self._queue.get()


class EventChannel:
    """Bounded one-to-many fan-out for a single build's events."""

    def __init__(self, build_id, *, max_subscribers: int = 50, queue_size: int = 1000) -> None:
        self.build_id = build_id
        self.max_subscribers = max_subscribers
        self.queue_size = queue_size
        self._subscribers: list[Subscription] = []
        self.closed = False

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self, snapshot: dict) -> Subscription:
        """Register an observer; *snapshot* is its first event.

        When the subscriber limit is reached the oldest subscriber is
        evicted (its stream ends with ``done``).
        """
        sub = Subscription(self.queue_size, self)
        sub._offer(BuildEvent(SNAPSHOT, snapshot))
        if self.closed:
            sub._finish()
            return sub
        while len(self._subscribers) >= self.max_subscribers:
            oldest = self._subscribers.pop(0)
            oldest._finish()
            logger.info("Build %s: evicted oldest subscriber (limit %d)", self.build_id, self.max_subscribers)
        self._subscribers.append(sub)
        return sub

    def unsubscribe(self, sub: Subscription) -> None:
        if sub in self._subscribers:
            self._subscribers.remove(sub)

    def publish(self, event: BuildEvent) -> None:
        """Deliver *event* to every subscriber.  Overflowing ones are dropped."""
        if self.closed:
            return
        dropped = [sub for sub in self._subscribers if not sub._offer(event)]
        for sub in dropped:
            self._subscribers.remove(sub)
            sub._finish()
            logger.warning("Build %s: dropped subscriber with a full queue", self.build_id)

    def close(self) -> None:
        """End the channel; every subscriber receives ``done``."""
        if self.closed:
            return
        self.closed = True
        for sub in self._subscribers:
            sub._finish()
        self._subscribers.clear()
