"""Canonical per-root snapshots.

The StateStore maps each tracked root id to its latest ``Snapshot``. A
snapshot is a frozen value. ``update`` replaces it with a single dict
assignment and never patches it in place, so readers always see a complete
view.

``update`` is the only write path. The SyncManager hands it to the root's
poller and to nothing else. Mutation handlers never receive the store.
Exactly one poll cycle runs per root at a time on the event loop, so no
lock is needed.
"""

import structlog

from models.graph import Snapshot

logger = structlog.get_logger(__name__)


class StateStore:
    """In-memory store of the latest snapshot per root."""

    def __init__(self) -> None:
        self._snapshots: dict[str, Snapshot] = {}

    def get(self, root_id: str) -> Snapshot | None:
        """Return the latest snapshot for a root, or None if never polled."""
        return self._snapshots.get(root_id)

    def update(self, root_id: str, snapshot: Snapshot) -> Snapshot:
        """Replace a root's snapshot, stamping the next version number.

        Returns:
            The stored snapshot.
        """
        previous = self._snapshots.get(root_id)
        version = previous.version + 1 if previous is not None else 1
        stored = snapshot.model_copy(update={"root_id": root_id, "version": version})
        self._snapshots[root_id] = stored
        logger.debug(
            "snapshot_updated",
            root_id=root_id,
            version=version,
            node_count=len(stored.nodes),
        )
        return stored

    def remove(self, root_id: str) -> None:
        """Forget a root's snapshot. Unknown roots are a no-op."""
        self._snapshots.pop(root_id, None)

    def roots_containing(self, issue_id: str) -> list[str]:
        """Roots whose current snapshot includes the given issue."""
        return [root_id for root_id, snap in self._snapshots.items() if snap.contains(issue_id)]
