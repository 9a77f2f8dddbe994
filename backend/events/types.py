"""Event type definitions for the live graph push channel.

Every event carries the root it concerns. Viewers receive a full snapshot
on each update. A failed poll cycle produces an error event, and the
viewer keeps its last snapshot and shows an "updates delayed" state.
"""

import time
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field

from models.graph import Snapshot


class GraphEventType(StrEnum):
    """All event types pushed to subscribers."""

    CONNECTED = "connected"
    SNAPSHOT = "update"
    ERROR = "error"
    CLOSED = "closed"


class GraphEvent(BaseModel):
    """An event pushed to live subscribers of a root.

    Payload schemas by event type:

    CONNECTED:
        - subscriber_id: str - Id assigned to the new subscriber

    SNAPSHOT:
        - snapshot: dict - The complete serialized Snapshot

    ERROR:
        - error: str - Human-readable failure message
        - code: str - Stable error code (e.g. "TIMEOUT", "NOT_FOUND")
        - retry_in_seconds: float - When the next poll cycle is due

    CLOSED:
        - reason: str - Why the channel is closing (e.g. "shutdown")
    """

    type: GraphEventType
    root_id: str
    timestamp: float = Field(default_factory=time.time)
    data: dict[str, Any] = Field(default_factory=dict)

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "type": "error",
                    "root_id": "proj-1",
                    "timestamp": 1699876543.123,
                    "data": {
                        "error": "Command timed out after 30.0s: bd dep tree proj-1",
                        "code": "TIMEOUT",
                        "retry_in_seconds": 5.0,
                    },
                }
            ]
        }
    }


def snapshot_event(snapshot: Snapshot) -> GraphEvent:
    return GraphEvent(
        type=GraphEventType.SNAPSHOT,
        root_id=snapshot.root_id,
        data={"snapshot": snapshot.model_dump(mode="json")},
    )


def error_event(root_id: str, error: Exception, retry_in_seconds: float) -> GraphEvent:
    return GraphEvent(
        type=GraphEventType.ERROR,
        root_id=root_id,
        data={
            "error": str(error),
            "code": getattr(error, "code", "INTERNAL_ERROR"),
            "retry_in_seconds": retry_in_seconds,
        },
    )


def closed_event(root_id: str, reason: str) -> GraphEvent:
    return GraphEvent(type=GraphEventType.CLOSED, root_id=root_id, data={"reason": reason})
