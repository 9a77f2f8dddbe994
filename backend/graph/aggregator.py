"""Progress aggregation over a root's descendants.

Counts are computed over the flattened tree, deduplicated by id. Blocker
and discovery classification needs each issue's relationships, which the
tree query does not carry. Those details are fetched in one bulk call, and
any issue whose details cannot be fetched is skipped instead of failing
the aggregation.
"""

import math
from collections.abc import Iterable, Mapping

import structlog

from models.graph import (
    DependencyEdge,
    GraphNode,
    IssueStatus,
    ProgressMetrics,
    ProgressSummary,
    RelationType,
    TreeNode,
)
from tracker.client import TrackerClient

logger = structlog.get_logger(__name__)


def flatten(tree: TreeNode) -> list[GraphNode]:
    """Return all descendants in pre-order, excluding the root."""
    result: list[GraphNode] = []
    stack = list(reversed(tree.children))
    while stack:
        current = stack.pop()
        result.append(current.node)
        stack.extend(reversed(current.children))
    return result


def unique_by_id(nodes: Iterable[GraphNode]) -> list[GraphNode]:
    """Drop repeated ids, keeping the first occurrence."""
    seen: set[str] = set()
    unique: list[GraphNode] = []
    for node in nodes:
        if node.id in seen:
            continue
        seen.add(node.id)
        unique.append(node)
    return unique


def classify(nodes: Iterable[GraphNode]) -> ProgressMetrics:
    """Count issues by status.

    ``open`` is everything not closed, in progress, or blocked, and
    ``percent_complete`` is 0 for an empty input.
    """
    unique = unique_by_id(nodes)
    total = len(unique)
    completed = sum(1 for n in unique if n.status == IssueStatus.CLOSED)
    in_progress = sum(1 for n in unique if n.status == IssueStatus.IN_PROGRESS)
    blocked = sum(1 for n in unique if n.status == IssueStatus.BLOCKED)
    # Half-up rounding: 12.5% reports as 13, not 12.
    percent_complete = math.floor(100 * completed / total + 0.5) if total else 0

    return ProgressMetrics(
        total=total,
        completed=completed,
        in_progress=in_progress,
        blocked=blocked,
        open=total - completed - in_progress - blocked,
        percent_complete=percent_complete,
    )


def is_blocker(node: GraphNode, known_status: Mapping[str, IssueStatus]) -> bool:
    """True if the node holds a ``blocks`` relationship to an unclosed target.

    The target's status is taken from ``known_status`` when available, then
    from the relationship itself. An unknown status counts as unclosed.
    """
    for rel in node.relations_of(RelationType.BLOCKS):
        status = known_status.get(rel.target_id, rel.target_status)
        if status != IssueStatus.CLOSED:
            return True
    return False


def is_discovered(node: GraphNode) -> bool:
    """True if the node arose from work on another issue."""
    return bool(node.relations_of(RelationType.DISCOVERED_FROM))


def relationship_edges(details: Mapping[str, GraphNode]) -> list[DependencyEdge]:
    """Edges for the explicit relationships held by fetched issues.

    Parent-child relationships are held by the child, so they are turned
    around to point from parent to child like the structural edges.
    """
    edges: list[DependencyEdge] = []
    for node in details.values():
        for rel in node.relationships:
            if rel.relation == RelationType.PARENT_CHILD:
                source, target = rel.target_id, node.id
            else:
                source, target = node.id, rel.target_id
            edges.append(DependencyEdge(source=source, target=target, relation=rel.relation))
    return edges


class ProgressAggregator:
    """Computes progress summaries for built trees.

    Attributes:
        client: Tracker client used to fetch relationship details.
    """

    def __init__(self, client: TrackerClient) -> None:
        self.client = client

    async def fetch_details(self, tree: TreeNode) -> dict[str, GraphNode]:
        """Fetch relationship details for the root and every descendant."""
        ids = [tree.node.id, *(n.id for n in flatten(tree))]
        return await self.client.fetch_details(ids)

    def summarize(self, tree: TreeNode, details: Mapping[str, GraphNode]) -> ProgressSummary:
        """Build the summary for a tree from already-fetched details."""
        descendants = unique_by_id(flatten(tree))
        metrics = classify(descendants)

        known_status: dict[str, IssueStatus] = {n.id: n.status for n in descendants}
        known_status.update({node_id: n.status for node_id, n in details.items()})

        blockers: list[str] = []
        discovered: list[str] = []
        skipped = 0
        for node in descendants:
            detail = details.get(node.id)
            if detail is None:
                skipped += 1
                continue
            if is_blocker(detail, known_status):
                blockers.append(node.id)
            if is_discovered(detail):
                discovered.append(node.id)

        if skipped:
            logger.debug(
                "progress_details_missing",
                root_id=tree.node.id,
                skipped=skipped,
            )

        return ProgressSummary(metrics=metrics, blockers=blockers, discovered=discovered)

    async def aggregate(self, tree: TreeNode) -> ProgressSummary:
        """Fetch details and summarise a tree in one step."""
        return self.summarize(tree, await self.fetch_details(tree))
