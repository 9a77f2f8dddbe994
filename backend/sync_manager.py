"""Coordinator for live root tracking.

The SyncManager owns one Poller per tracked root and wires each cycle
through the graph pipeline:

    tracker tree query -> GraphBuilder -> ProgressAggregator
        -> StateStore.update() -> Broadcaster.broadcast()

It also owns the MutationHandler, whose refresh requests are routed to the
pollers of the roots a mutation touched.

Usage:
    >>> manager = SyncManager(client, StateStore(), broadcaster, metrics)
    >>> await manager.track_root("proj-1")
    >>> manager.get_snapshot("proj-1")
    >>> await manager.mutations.set_status("proj-1.2", IssueStatus.CLOSED, wait=True)
    >>> await manager.shutdown()
"""

import asyncio
from collections.abc import Sequence

import structlog

from events import Broadcaster, error_event, snapshot_event
from graph import (
    GraphBuilder,
    ProgressAggregator,
    relationship_edges,
    render_mermaid,
    structural_edges,
)
from graph.aggregator import flatten, unique_by_id
from metrics import PollMetricsCollector, PollMetricsData
from models.graph import DependencyEdge, GraphNode, IssueStatus, Snapshot, TreeNode
from mutations import MutationHandler
from poller import Poller
from state_store import StateStore
from tracker import NotFoundError, TrackerClient, parse_tree_output

logger = structlog.get_logger(__name__)


def merge_edges(*groups: Sequence[DependencyEdge]) -> list[DependencyEdge]:
    """Concatenate edge lists, keeping the first occurrence of each edge."""
    seen: set[tuple] = set()
    merged: list[DependencyEdge] = []
    for group in groups:
        for edge in group:
            if edge.key in seen:
                continue
            seen.add(edge.key)
            merged.append(edge)
    return merged


class SyncManager:
    """Tracks roots, keeps their snapshots fresh, and routes refreshes.

    Attributes:
        client: Typed tracker client shared by every component.
        store: Canonical snapshot store. Only poll cycles write to it.
        broadcaster: Fan-out to live subscribers.
        mutations: Handler for viewer-initiated changes.
    """

    def __init__(
        self,
        client: TrackerClient,
        store: StateStore,
        broadcaster: Broadcaster,
        metrics_collector: PollMetricsCollector | None = None,
        *,
        poll_interval_seconds: float = 5.0,
        detect_changes: bool = False,
        refresh_wait_timeout_seconds: float = 10.0,
    ) -> None:
        self.client = client
        self.store = store
        self.broadcaster = broadcaster
        self.metrics_collector = metrics_collector
        self.poll_interval_seconds = poll_interval_seconds
        self.detect_changes = detect_changes
        self.refresh_wait_timeout_seconds = refresh_wait_timeout_seconds
        self.builder = GraphBuilder(client)
        self.aggregator = ProgressAggregator(client)
        self.mutations = MutationHandler(client, self.request_refresh)
        self._pollers: dict[str, Poller[str]] = {}
        self._lock = asyncio.Lock()
        logger.info(
            "sync_manager_initialized",
            poll_interval_seconds=poll_interval_seconds,
            detect_changes=detect_changes,
        )

    # ------------------------------------------------------------------
    # Root registry
    # ------------------------------------------------------------------

    async def track_root(self, root_id: str) -> bool:
        """Start polling a root.

        The root is looked up first so that unknown ids are rejected.

        Returns:
            True if tracking started, False if the root was already tracked.

        Raises:
            NotFoundError: If the tracker does not know the root.
        """
        async with self._lock:
            if root_id in self._pollers:
                return False

            await self.client.show(root_id)

            poller: Poller[str] = Poller(
                root_id,
                fetch=lambda: self.client.fetch_tree_output(root_id),
                on_update=lambda raw: self._apply(root_id, raw),
                interval_seconds=self.poll_interval_seconds,
                on_error=lambda error: self._report_error(root_id, error),
                detect_changes=self.detect_changes,
                metrics_collector=self.metrics_collector,
            )
            self._pollers[root_id] = poller
            if self.metrics_collector is not None:
                self.metrics_collector.start(root_id)
            poller.start()

        logger.info("root_tracked", root_id=root_id)
        return True

    async def untrack_root(self, root_id: str) -> bool:
        """Stop polling a root, drop its snapshot and close its subscribers.

        The lock is held until cleanup is done, so a concurrent
        ``track_root`` for the same id starts only after the old poller's
        last cycle has written and its snapshot and subscribers are gone.

        Returns:
            True if the root was tracked.
        """
        async with self._lock:
            poller = self._pollers.pop(root_id, None)
            if poller is None:
                return False

            poller.stop()
            await poller.wait_stopped()
            self.store.remove(root_id)
            await self.broadcaster.close_root(root_id)
            if self.metrics_collector is not None:
                self.metrics_collector.finish(root_id)

        logger.info("root_untracked", root_id=root_id)
        return True

    def is_tracked(self, root_id: str) -> bool:
        return root_id in self._pollers

    def tracked_roots(self) -> list[str]:
        return list(self._pollers.keys())

    def get_snapshot(self, root_id: str) -> Snapshot | None:
        return self.store.get(root_id)

    def get_metrics(self, root_id: str) -> PollMetricsData | None:
        if self.metrics_collector is None:
            return None
        return self.metrics_collector.get(root_id)

    # ------------------------------------------------------------------
    # Refresh
    # ------------------------------------------------------------------

    async def refresh_root(self, root_id: str, wait: bool = False) -> bool:
        """Request an out-of-band cycle for one root.

        Raises:
            NotFoundError: If the root is not tracked.
        """
        poller = self._pollers.get(root_id)
        if poller is None:
            raise NotFoundError(f"Root {root_id} is not tracked")
        return await self._refresh_pollers([poller], wait)

    async def request_refresh(self, issue_ids: Sequence[str], wait: bool = False) -> bool:
        """Refresh every root whose snapshot contains one of ``issue_ids``.

        If no current snapshot contains any of them, every root is
        refreshed.

        Returns:
            True if ``wait`` was set and every refreshed root completed a successful
            cycle within the timeout.
        """
        targets: list[str] = []
        for issue_id in issue_ids:
            for root_id in self.store.roots_containing(issue_id):
                if root_id not in targets:
                    targets.append(root_id)
        for issue_id in issue_ids:
            if issue_id in self._pollers and issue_id not in targets:
                targets.append(issue_id)
        if not targets:
            targets = self.tracked_roots()

        pollers = [self._pollers[r] for r in targets if r in self._pollers]
        logger.debug("refresh_requested", issue_ids=list(issue_ids), roots=targets, wait=wait)
        return await self._refresh_pollers(pollers, wait)

    async def _refresh_pollers(self, pollers: list[Poller[str]], wait: bool) -> bool:
        if not wait:
            for poller in pollers:
                poller.request_refresh()
            return False
        if not pollers:
            return False
        results = await asyncio.gather(
            *(p.wait_for_cycle(timeout=self.refresh_wait_timeout_seconds) for p in pollers)
        )
        return all(results)

    # ------------------------------------------------------------------
    # Poll cycle
    # ------------------------------------------------------------------

    async def build_snapshot(self, root_id: str, raw: str) -> Snapshot:
        """Turn raw tree query output into a complete snapshot."""
        records = parse_tree_output(raw)
        tree = await self.builder.build_from_records(root_id, records)
        details = await self.aggregator.fetch_details(tree)
        summary = self.aggregator.summarize(tree, details)
        edges = merge_edges(structural_edges(root_id, records), relationship_edges(details))

        return Snapshot(
            root_id=root_id,
            tree=tree,
            nodes=unique_by_id([tree.node, *flatten(tree)]),
            edges=edges,
            metrics=summary.metrics,
            blockers=summary.blockers,
            discovered=summary.discovered,
            diagram=render_mermaid(tree, edges),
        )

    async def _apply(self, root_id: str, raw: str) -> None:
        snapshot = await self.build_snapshot(root_id, raw)
        stored = self.store.update(root_id, snapshot)
        await self.broadcaster.broadcast(snapshot_event(stored))
        logger.info(
            "snapshot_published",
            root_id=root_id,
            version=stored.version,
            node_count=len(stored.nodes),
            percent_complete=stored.metrics.percent_complete,
        )

    async def _report_error(self, root_id: str, error: Exception) -> None:
        # The last good snapshot stays in the store.
        await self.broadcaster.broadcast(error_event(root_id, error, self.poll_interval_seconds))

    # ------------------------------------------------------------------
    # Reads that bypass the snapshot
    # ------------------------------------------------------------------

    async def dependency_tree(self, issue_id: str) -> TreeNode:
        """Relationship-walk tree for a single issue."""
        return await self.builder.build_dependency_tree(issue_id)

    async def issue_tree(self, issue_id: str) -> TreeNode:
        """Structural tree of any issue, built from one tree query."""
        return await self.builder.build_tree(issue_id)

    async def list_issues(
        self,
        *,
        status: IssueStatus | None = None,
        issue_type: str | None = None,
        assignee: str | None = None,
        labels: list[str] | None = None,
        limit: int | None = None,
    ) -> list[GraphNode]:
        """Issues matching the filters, for picking roots to track."""
        return await self.client.list_issues(
            status=status,
            issue_type=issue_type,
            assignee=assignee,
            labels=labels,
            limit=limit,
        )

    async def shutdown(self) -> None:
        """Stop every poller and close every subscriber."""
        async with self._lock:
            pollers = list(self._pollers.values())
            self._pollers.clear()

        for poller in pollers:
            poller.stop()
        await asyncio.gather(*(p.wait_stopped() for p in pollers), return_exceptions=True)
        await self.broadcaster.close_all()
        logger.info("sync_manager_shutdown", roots=len(pollers))
