"""Tests for graph/builder.py -- tree reconstruction from flat records."""

from unittest.mock import AsyncMock, MagicMock

import pytest
from factories import make_node, make_record

from graph.aggregator import flatten
from graph.builder import GraphBuilder, assemble_tree, sibling_sort_key, structural_edges
from models.graph import IssueStatus, RelationType, TreeNode
from tracker.errors import NotFoundError


def _child_ids(tree: TreeNode) -> list[str]:
    return [c.node.id for c in tree.children]


# =========================================================================
# assemble_tree
# =========================================================================


class TestAssembleTree:
    """Flat records to a rooted tree."""

    def test_every_non_root_appears_once(self) -> None:
        records = [
            make_record("r"),
            make_record("r.1", "r"),
            make_record("r.2", "r"),
            make_record("r.1.1", "r.1"),
            make_record("r.1.2", "r.1"),
            make_record("r.2.1", "r.2"),
        ]
        tree = assemble_tree("r", records)
        assert tree is not None
        ids = [n.id for n in flatten(tree)]
        assert len(ids) == len(records) - 1
        assert sorted(ids) == sorted(r.id for r in records if r.id != "r")

    def test_siblings_closed_first_then_by_id(self) -> None:
        records = [
            make_record("r"),
            make_record("r.3", "r", IssueStatus.OPEN),
            make_record("r.1", "r", IssueStatus.IN_PROGRESS),
            make_record("r.4", "r", IssueStatus.CLOSED),
            make_record("r.2", "r", IssueStatus.CLOSED),
        ]
        tree = assemble_tree("r", records)
        assert tree is not None
        assert _child_ids(tree) == ["r.2", "r.4", "r.1", "r.3"]

    def test_order_is_independent_of_input_order(self) -> None:
        records = [
            make_record("r"),
            make_record("r.b", "r"),
            make_record("r.a", "r", IssueStatus.CLOSED),
            make_record("r.c", "r"),
        ]
        first = assemble_tree("r", records)
        second = assemble_tree("r", list(reversed(records)))
        assert first is not None and second is not None
        assert _child_ids(first) == _child_ids(second) == ["r.a", "r.b", "r.c"]

    def test_depth_is_computed_not_trusted(self) -> None:
        records = [
            make_record("r", depth=7),
            make_record("r.1", "r", depth=0),
            make_record("r.1.1", "r.1", depth=0),
        ]
        tree = assemble_tree("r", records)
        assert tree is not None
        assert tree.depth == 0
        assert tree.children[0].depth == 1
        assert tree.children[0].children[0].depth == 2

    def test_missing_root_returns_none(self) -> None:
        assert assemble_tree("r", [make_record("x.1", "x")]) is None

    def test_diamond_is_expanded_once(self) -> None:
        # d is reachable through both a and b.
        records = [
            make_record("r"),
            make_record("a", "r"),
            make_record("b", "r"),
            make_record("d", "a"),
            make_record("d", "b"),
        ]
        tree = assemble_tree("r", records)
        assert tree is not None
        assert [n.id for n in flatten(tree)].count("d") == 1

    def test_cycle_terminates(self) -> None:
        records = [
            make_record("r"),
            make_record("a", "r"),
            make_record("b", "a"),
            make_record("a", "b"),
        ]
        tree = assemble_tree("r", records)
        assert tree is not None
        assert sorted(n.id for n in flatten(tree)) == ["a", "b"]

    def test_sibling_sort_key(self) -> None:
        closed = make_node("z", IssueStatus.CLOSED)
        open_ = make_node("a", IssueStatus.OPEN)
        assert sorted([open_, closed], key=sibling_sort_key) == [closed, open_]


# =========================================================================
# structural_edges
# =========================================================================


class TestStructuralEdges:
    """Parent-to-child edges from records."""

    def test_diamond_keeps_both_edges(self) -> None:
        records = [
            make_record("r"),
            make_record("a", "r"),
            make_record("b", "r"),
            make_record("d", "a"),
            make_record("d", "b"),
            make_record("d", "b"),
        ]
        edges = structural_edges("r", records)
        keys = {(e.source, e.target) for e in edges}
        assert keys == {("r", "a"), ("r", "b"), ("a", "d"), ("b", "d")}
        assert all(e.relation == RelationType.PARENT_CHILD for e in edges)

    def test_unknown_parent_is_ignored(self) -> None:
        edges = structural_edges("r", [make_record("r"), make_record("x", "ghost")])
        assert edges == []


# =========================================================================
# GraphBuilder
# =========================================================================


class TestGraphBuilder:
    """Async building through the tracker client."""

    async def test_build_tree_uses_single_bulk_query(self, mock_client: MagicMock) -> None:
        mock_client.tree_records = AsyncMock(
            return_value=[make_record("r"), make_record("r.1", "r")]
        )
        tree = await GraphBuilder(mock_client).build_tree("r")
        assert _child_ids(tree) == ["r.1"]
        mock_client.tree_records.assert_awaited_once_with("r")
        mock_client.show.assert_not_awaited()

    async def test_missing_root_falls_back_to_show(self, mock_client: MagicMock) -> None:
        tree = await GraphBuilder(mock_client).build_from_records("r", [])
        assert tree.node.id == "r"
        assert tree.children == []
        mock_client.show.assert_awaited_once_with("r")

    async def test_dependency_tree_tags_relations_and_skips_missing(
        self, mock_client: MagicMock
    ) -> None:
        root = make_node(
            "r",
            relationships=[
                ("b", RelationType.BLOCKS),
                ("gone", RelationType.RELATED),
                ("a", RelationType.DISCOVERED_FROM),
            ],
        )
        a = make_node("a", IssueStatus.CLOSED, relationships=[("r", RelationType.RELATED)])
        b = make_node("b", relationships=[("c", RelationType.PARENT_CHILD)])
        c = make_node("c")
        nodes = {n.id: n for n in (a, b, c)}

        mock_client.show = AsyncMock(return_value=root)

        async def fetch_details(ids: object) -> dict:
            return {i: nodes[i] for i in ids if i in nodes}

        mock_client.fetch_details = AsyncMock(side_effect=fetch_details)

        tree = await GraphBuilder(mock_client).build_dependency_tree("r")

        assert _child_ids(tree) == ["a", "b"]
        assert tree.children[0].relation == RelationType.DISCOVERED_FROM
        assert tree.children[0].children == []  # back-reference to r is not expanded
        assert tree.children[1].relation == RelationType.BLOCKS
        assert _child_ids(tree.children[1]) == ["c"]
        assert tree.children[1].children[0].depth == 2

    async def test_dependency_tree_root_missing_raises(self, mock_client: MagicMock) -> None:
        mock_client.show = AsyncMock(side_effect=NotFoundError("nope"))
        with pytest.raises(NotFoundError):
            await GraphBuilder(mock_client).build_dependency_tree("nope")
