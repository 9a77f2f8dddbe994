"""Fan-out of graph events to live subscribers.

This module provides the Broadcaster, which keeps a set of subscriber
handles per root and pushes every event to each of them.

Delivery is best-effort and isolated per subscriber. A handle whose
``send`` raises or times out is removed and closed. The remaining handles
still receive the event, and the failure never reaches the caller.

Subscribers may connect or disconnect while a broadcast is in progress, so
each broadcast iterates over a copy of the subscriber list taken at the
start.

Usage:
    >>> broadcaster = Broadcaster(snapshot_reader=store.get)
    >>> subscriber = QueueSubscriber("proj-1")
    >>> await broadcaster.add_subscriber("proj-1", subscriber)
    >>> await broadcaster.broadcast(snapshot_event(snapshot))
    >>> event = await subscriber.get()
    >>> broadcaster.remove_subscriber("proj-1", subscriber)
    >>> await broadcaster.close_all()
"""

import asyncio
import contextlib
import time
import uuid
from collections import defaultdict
from collections.abc import Callable
from typing import Protocol

import structlog

from events.types import GraphEvent, closed_event, snapshot_event
from models.graph import Snapshot

logger = structlog.get_logger(__name__)


class SubscriberClosedError(Exception):
    """Raised when sending to a subscriber that has been closed."""


class SubscriberHandle(Protocol):
    """A live viewer connection the Broadcaster can write to."""

    async def send(self, event: GraphEvent) -> None: ...

    async def close(self) -> None: ...


class QueueSubscriber:
    """Subscriber handle backed by a bounded asyncio.Queue.

    The push channel (websocket handler) drains the queue with ``get()``.
    A consumer that stops reading fills the queue, and the next ``send``
    times out, which removes the subscriber.

    Attributes:
        root_id: Root this subscriber is watching.
        subscriber_id: Unique id for logs.
        registered_at: Unix timestamp of registration.
    """

    def __init__(
        self,
        root_id: str,
        max_queue_size: int = 100,
        send_timeout_seconds: float = 5.0,
    ) -> None:
        self.root_id = root_id
        self.subscriber_id = f"sub_{uuid.uuid4().hex[:12]}"
        self.registered_at = time.time()
        self.send_timeout_seconds = send_timeout_seconds
        self._queue: asyncio.Queue[GraphEvent] = asyncio.Queue(maxsize=max_queue_size)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def send(self, event: GraphEvent) -> None:
        if self._closed:
            raise SubscriberClosedError(self.subscriber_id)
        await asyncio.wait_for(self._queue.put(event), timeout=self.send_timeout_seconds)

    async def close(self) -> None:
        """Mark closed and enqueue a CLOSED sentinel for the consumer."""
        if self._closed:
            return
        self._closed = True
        sentinel = closed_event(self.root_id, "closed")
        if self._queue.full():
            # Make room so the consumer still sees the sentinel.
            with contextlib.suppress(asyncio.QueueEmpty):
                self._queue.get_nowait()
        self._queue.put_nowait(sentinel)

    async def get(self) -> GraphEvent:
        return await self._queue.get()

    def pending(self) -> int:
        return self._queue.qsize()


class Broadcaster:
    """Per-root fan-out of graph events.

    Attributes:
        _subscribers: Dict mapping root_id to its list of subscriber handles.
        _snapshot_reader: Read-only lookup of the current snapshot, used to
            greet new subscribers without waiting for the next cycle.
    """

    def __init__(self, snapshot_reader: Callable[[str], Snapshot | None] | None = None) -> None:
        self._subscribers: dict[str, list[SubscriberHandle]] = defaultdict(list)
        self._snapshot_reader = snapshot_reader
        logger.info("broadcaster_initialized")

    async def add_subscriber(self, root_id: str, handle: SubscriberHandle) -> None:
        """Register a handle and push the current snapshot if one exists."""
        self._subscribers[root_id].append(handle)
        logger.info(
            "subscriber_added",
            root_id=root_id,
            subscriber_count=len(self._subscribers[root_id]),
        )

        snapshot = self._snapshot_reader(root_id) if self._snapshot_reader else None
        if snapshot is not None:
            await self._deliver(root_id, handle, snapshot_event(snapshot))

    def remove_subscriber(self, root_id: str, handle: SubscriberHandle) -> bool:
        """Unregister a handle.

        Returns:
            True if the handle was registered. Removing an unknown handle is a no-op.
        """
        handles = self._subscribers.get(root_id)
        if not handles or handle not in handles:
            return False
        handles.remove(handle)
        if not handles:
            del self._subscribers[root_id]
        logger.info(
            "subscriber_removed",
            root_id=root_id,
            subscriber_count=len(self._subscribers.get(root_id, [])),
        )
        return True

    async def broadcast(self, event: GraphEvent) -> int:
        """Push an event to every subscriber of its root.

        Returns:
            Number of subscribers the event was delivered to.
        """
        handles = list(self._subscribers.get(event.root_id, []))
        delivered = 0
        for handle in handles:
            if await self._deliver(event.root_id, handle, event):
                delivered += 1

        logger.debug(
            "event_broadcast",
            root_id=event.root_id,
            event_type=event.type.value,
            subscriber_count=len(handles),
            delivered=delivered,
        )
        return delivered

    async def close_root(self, root_id: str) -> None:
        """Close and unregister every subscriber of a root."""
        handles = self._subscribers.pop(root_id, [])
        for handle in handles:
            await self._close_handle(root_id, handle)
        if handles:
            logger.info("root_subscribers_closed", root_id=root_id, subscriber_count=len(handles))

    async def close_all(self) -> None:
        """Close every subscriber of every root (used at shutdown)."""
        for root_id in list(self._subscribers.keys()):
            await self.close_root(root_id)

    def subscriber_count(self, root_id: str) -> int:
        return len(self._subscribers.get(root_id, []))

    async def _deliver(self, root_id: str, handle: SubscriberHandle, event: GraphEvent) -> bool:
        try:
            await handle.send(event)
            return True
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(
                "subscriber_delivery_failed",
                root_id=root_id,
                event_type=event.type.value,
                error=str(e) or type(e).__name__,
            )
            if self.remove_subscriber(root_id, handle):
                await self._close_handle(root_id, handle)
            return False

    @staticmethod
    async def _close_handle(root_id: str, handle: SubscriberHandle) -> None:
        try:
            await handle.close()
        except Exception as e:
            logger.debug("subscriber_close_failed", root_id=root_id, error=str(e))
