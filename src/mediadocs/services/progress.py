"""In-process progress bus delivering job events to subscribers."""

from __future__ import annotations

import asyncio
from itertools import count
from typing import AsyncIterator, Dict, Optional, Set

from mediadocs.utils.progress import ProgressEvent, merge_progress

DEFAULT_BUFFER_SIZE = 100


class ProgressSubscription:
    """Bounded event stream for one job.

    Iterating yields the current snapshot first (so late subscribers resynchronise), then live
    events, and stops after the first terminal event. When the buffer is full the oldest event is
    dropped so publishers never block.
    """

    def __init__(self, bus: "ProgressBus", job_id: str, buffer_size: int) -> None:
        self._bus = bus
        self.job_id = job_id
        self._queue: asyncio.Queue[ProgressEvent] = asyncio.Queue(maxsize=buffer_size)
        self.dropped = 0
        self._closed = False

    def offer(self, event: ProgressEvent) -> None:
        if self._closed:
            return
        while True:
            try:
                self._queue.put_nowait(event)
                return
            except asyncio.QueueFull:
                try:
                    self._queue.get_nowait()
                    self.dropped += 1
                except asyncio.QueueEmpty:  # pragma: no cover - raced with a consumer
                    pass

    async def get(self, timeout: Optional[float] = None) -> ProgressEvent:
        """Return the next buffered event, waiting at most ``timeout`` seconds."""

        if timeout is None:
            return await self._queue.get()
        return await asyncio.wait_for(self._queue.get(), timeout=timeout)

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._bus.unsubscribe(self)

    async def __aenter__(self) -> "ProgressSubscription":
        return self

    async def __aexit__(self, *_exc_info: object) -> None:
        self.close()

    def __aiter__(self) -> AsyncIterator[ProgressEvent]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[ProgressEvent]:
        try:
            while True:
                event = await self._queue.get()
                yield event
                if event.stage.is_terminal:
                    return
        finally:
            self.close()


class ProgressBus:
    """Publishes :class:`ProgressEvent` values keyed by job id.

    Publishing never waits on subscribers; the bus keeps the authoritative latest event per job
    so consumers that missed events can resynchronise from :meth:`latest`.
    """

    def __init__(self, *, buffer_size: int = DEFAULT_BUFFER_SIZE) -> None:
        self._buffer_size = max(1, buffer_size)
        self._latest: Dict[str, ProgressEvent] = {}
        self._subscribers: Dict[str, Set[ProgressSubscription]] = {}
        self._sequence = count(1)

    def publish(self, event: ProgressEvent) -> ProgressEvent:
        """Record and fan out ``event``; returns the event as stamped with its sequence number."""

        stamped = event.model_copy(update={"sequence": next(self._sequence)})
        self._latest[stamped.job_id] = merge_progress(self._latest.get(stamped.job_id), stamped)

        for subscription in list(self._subscribers.get(stamped.job_id, ())):
            subscription.offer(stamped)
        return stamped

    def subscribe(self, job_id: str, *, snapshot: Optional[ProgressEvent] = None) -> ProgressSubscription:
        """Open a subscription primed with the job's current snapshot, if any.

        ``snapshot`` replaces the bus's own record, for jobs whose events were already cleared.
        """

        subscription = ProgressSubscription(self, job_id, self._buffer_size)
        snapshot = snapshot or self._latest.get(job_id)
        if snapshot is not None:
            subscription.offer(snapshot)
        self._subscribers.setdefault(job_id, set()).add(subscription)
        return subscription

    def unsubscribe(self, subscription: ProgressSubscription) -> None:
        subscribers = self._subscribers.get(subscription.job_id)
        if not subscribers:
            return
        subscribers.discard(subscription)
        if not subscribers:
            del self._subscribers[subscription.job_id]

    def latest(self, job_id: str) -> Optional[ProgressEvent]:
        """Return the authoritative latest event for ``job_id``."""

        return self._latest.get(job_id)

    def subscriber_count(self, job_id: str) -> int:
        return len(self._subscribers.get(job_id, ()))

    def clear(self, job_id: str) -> None:
        """Forget the snapshot of a finished job."""

        self._latest.pop(job_id, None)


__all__ = ["ProgressBus", "ProgressSubscription"]
