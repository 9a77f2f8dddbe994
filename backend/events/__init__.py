"""Event system for pushing live graph updates to viewers.

Key Components:
    - GraphEventType: Enum of all pushed event types
    - GraphEvent: Pydantic model for events flowing to viewers
    - Broadcaster: Per-root fan-out with per-subscriber failure isolation
    - QueueSubscriber: Bounded queue handle drained by the websocket handler

Event Flow:
    1. A Poller cycle replaces the root's snapshot in the StateStore
    2. The SyncManager broadcasts a SNAPSHOT event (or ERROR on failure)
    3. Each websocket handler drains its QueueSubscriber
    4. Viewers redraw from the snapshot or show a "delayed" indicator
"""

from events.broadcaster import (
    Broadcaster,
    QueueSubscriber,
    SubscriberClosedError,
    SubscriberHandle,
)
from events.types import (
    GraphEvent,
    GraphEventType,
    closed_event,
    error_event,
    snapshot_event,
)

__all__ = [
    # Event types
    "GraphEventType",
    "GraphEvent",
    "closed_event",
    "error_event",
    "snapshot_event",
    # Fan-out
    "Broadcaster",
    "QueueSubscriber",
    "SubscriberClosedError",
    "SubscriberHandle",
]
