"""Tree reconstruction from flat tracker output.

The tracker answers a tree query with a flat list of records, each naming
its ``parent_id``. GraphBuilder groups those records by parent and attaches
children recursively. Sibling order depends only on status and id (closed
first, then ascending id), so a viewer sees the same layout on every poll.

An issue can legitimately be reached through more than one parent (a
dependency diamond). Traversal keeps a visited set, so each issue is expanded
once and cycles in the source data cannot recurse forever. The depth field
reported by the tracker is not trusted for this. Every parent-child edge
still appears in ``structural_edges`` so the diamond stays renderable.
"""

from collections import defaultdict
from collections.abc import Sequence

import structlog

from models.graph import (
    DependencyEdge,
    GraphNode,
    IssueStatus,
    RelationType,
    TreeNode,
    TreeRecord,
)
from tracker.client import TrackerClient

logger = structlog.get_logger(__name__)

_RECORD_ONLY_FIELDS = {"parent_id", "depth", "truncated"}


def sibling_sort_key(node: GraphNode) -> tuple[bool, str]:
    """Closed issues first, then ascending id."""
    return (node.status != IssueStatus.CLOSED, node.id)


def _to_node(record: TreeRecord) -> GraphNode:
    return GraphNode.model_validate(record.model_dump(exclude=_RECORD_ONLY_FIELDS))


def assemble_tree(root_id: str, records: Sequence[TreeRecord]) -> TreeNode | None:
    """Build a rooted tree from flat records.

    Args:
        root_id: Id of the declared root.
        records: Flat records as returned by the tree query.

    Returns:
        The rooted tree, or None if the root is absent from ``records``.
    """
    nodes: dict[str, GraphNode] = {}
    children_of: dict[str, list[str]] = defaultdict(list)

    for record in records:
        if record.id not in nodes:
            nodes[record.id] = _to_node(record)
        if record.id == root_id or not record.parent_id:
            continue
        siblings = children_of[record.parent_id]
        if record.id not in siblings:
            siblings.append(record.id)

    if root_id not in nodes:
        return None

    visited: set[str] = set()

    def attach(node_id: str, depth: int) -> TreeNode:
        visited.add(node_id)
        kids = sorted(
            (nodes[c] for c in children_of.get(node_id, []) if c in nodes),
            key=sibling_sort_key,
        )
        children: list[TreeNode] = []
        for kid in kids:
            # An earlier sibling's subtree may already have claimed this node.
            if kid.id in visited:
                continue
            children.append(attach(kid.id, depth + 1))
        return TreeNode(node=nodes[node_id], children=children, depth=depth)

    tree = attach(root_id, 0)

    unreachable = len(nodes) - len(visited)
    if unreachable:
        logger.debug("tree_records_unreachable", root_id=root_id, count=unreachable)

    return tree


def structural_edges(root_id: str, records: Sequence[TreeRecord]) -> list[DependencyEdge]:
    """Return every distinct parent-to-child edge named by the records."""
    known = {r.id for r in records}
    seen: set[tuple[str, str]] = set()
    edges: list[DependencyEdge] = []
    for record in records:
        parent = record.parent_id
        if record.id == root_id or not parent or parent not in known:
            continue
        if (parent, record.id) in seen:
            continue
        seen.add((parent, record.id))
        edges.append(
            DependencyEdge(source=parent, target=record.id, relation=RelationType.PARENT_CHILD)
        )
    return edges


class GraphBuilder:
    """Builds trees for a root from the tracker.

    Attributes:
        client: Typed tracker client used for every fetch.
    """

    def __init__(self, client: TrackerClient) -> None:
        self.client = client

    async def build_tree(self, root_id: str) -> TreeNode:
        """Fetch the flat listing for a root in one query and build its tree."""
        records = await self.client.tree_records(root_id)
        return await self.build_from_records(root_id, records)

    async def build_from_records(
        self,
        root_id: str,
        records: Sequence[TreeRecord],
    ) -> TreeNode:
        """Build a tree from already-fetched records.

        If the root is missing from the records (empty or malformed
        response), the root alone is fetched and returned as a childless
        tree instead of failing.
        """
        tree = assemble_tree(root_id, records)
        if tree is not None:
            return tree

        logger.warning(
            "tree_root_missing_fetching_directly",
            root_id=root_id,
            record_count=len(records),
        )
        root = await self.client.show(root_id)
        return TreeNode(node=root, depth=0)

    async def build_dependency_tree(self, issue_id: str) -> TreeNode:
        """Build a tree by walking an issue's explicit relationships.

        Each child is tagged with the relation that reached it. Targets are
        fetched one level at a time, and targets that cannot be fetched are
        skipped so the caller gets a partial tree.
        """
        root = await self.client.show(issue_id)
        fetched: dict[str, GraphNode] = {root.id: root}
        links: dict[str, list[tuple[str, RelationType]]] = defaultdict(list)
        visited: set[str] = {root.id}
        frontier: list[GraphNode] = [root]

        while frontier:
            pending: list[tuple[str, str, RelationType]] = []
            for node in frontier:
                for rel in node.relationships:
                    if rel.target_id in visited:
                        continue
                    visited.add(rel.target_id)
                    pending.append((node.id, rel.target_id, rel.relation))

            batch = await self.client.fetch_details(target for _, target, _ in pending)

            frontier = []
            for parent_id, target_id, relation in pending:
                target = batch.get(target_id)
                if target is None:
                    logger.debug(
                        "relationship_target_skipped",
                        issue_id=parent_id,
                        target_id=target_id,
                    )
                    continue
                fetched[target_id] = target
                links[parent_id].append((target_id, relation))
                frontier.append(target)

        def attach(node_id: str, depth: int, relation: RelationType | None) -> TreeNode:
            kids = sorted(links.get(node_id, []), key=lambda link: sibling_sort_key(fetched[link[0]]))
            return TreeNode(
                node=fetched[node_id],
                children=[attach(child_id, depth + 1, rel) for child_id, rel in kids],
                depth=depth,
                relation=relation,
            )

        return attach(root.id, 0, None)
