"""Graph reconstruction, progress aggregation, and rendering.

Key Components:
    - GraphBuilder: flat tracker records to a rooted tree
    - ProgressAggregator: status counts, blockers, and discovered issues
    - render_mermaid: diagram text for a tree
    - status_style: display style per issue status
"""

from graph.aggregator import (
    ProgressAggregator,
    classify,
    flatten,
    is_blocker,
    is_discovered,
    relationship_edges,
)
from graph.builder import GraphBuilder, assemble_tree, sibling_sort_key, structural_edges
from graph.diagram import render_mermaid
from graph.styles import StatusStyle, status_style

__all__ = [
    "GraphBuilder",
    "ProgressAggregator",
    "StatusStyle",
    "assemble_tree",
    "classify",
    "flatten",
    "is_blocker",
    "is_discovered",
    "relationship_edges",
    "render_mermaid",
    "sibling_sort_key",
    "status_style",
    "structural_edges",
]
