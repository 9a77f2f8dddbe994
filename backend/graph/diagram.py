"""Mermaid rendering of a root's tree."""

import re
from collections.abc import Iterable

from graph.aggregator import flatten, unique_by_id
from graph.styles import all_styles, status_style
from models.graph import DependencyEdge, RelationType, TreeNode

_SAFE_ID_CHARS = re.compile(r"[A-Za-z0-9]")


def mermaid_id(issue_id: str) -> str:
    """Mermaid-safe node identifier for an issue id.

    ASCII letters and digits are kept. Every other byte of the UTF-8
    encoding, ``_`` included, becomes ``_`` plus two hex digits, so distinct
    issue ids never share an identifier (``a-b`` is ``n_a_2db``, ``a_b`` is
    ``n_a_5fb``).
    """
    parts = [
        chr(byte) if _SAFE_ID_CHARS.fullmatch(chr(byte)) else f"_{byte:02x}"
        for byte in issue_id.encode("utf-8")
    ]
    return "n_" + "".join(parts)


def _label(issue_id: str, title: str) -> str:
    text = f"{issue_id}: {title}" if title else issue_id
    return text.replace('"', "#quot;")


def render_mermaid(
    tree: TreeNode,
    edges: Iterable[DependencyEdge] = (),
    direction: str = "TB",
) -> str:
    """Render a tree, plus any extra relationship edges, as a Mermaid graph.

    Tree edges are drawn as solid arrows. Relationship edges other than
    parent-child are drawn dotted and labelled with their relation, and
    only when both ends are part of the tree.
    """
    nodes = unique_by_id([tree.node, *flatten(tree)])
    present = {n.id for n in nodes}

    lines = [f"graph {direction}"]
    for node in nodes:
        css_class = status_style(node.status).css_class
        lines.append(f'  {mermaid_id(node.id)}["{_label(node.id, node.title)}"]:::{css_class}')

    drawn: set[tuple[str, str, RelationType]] = set()
    stack = [tree]
    while stack:
        current = stack.pop()
        for child in current.children:
            key = (current.node.id, child.node.id, RelationType.PARENT_CHILD)
            if key not in drawn:
                drawn.add(key)
                lines.append(f"  {mermaid_id(current.node.id)} --> {mermaid_id(child.node.id)}")
            stack.append(child)

    for edge in edges:
        if edge.source not in present or edge.target not in present or edge.key in drawn:
            continue
        drawn.add(edge.key)
        if edge.relation == RelationType.PARENT_CHILD:
            lines.append(f"  {mermaid_id(edge.source)} --> {mermaid_id(edge.target)}")
        else:
            lines.append(
                f"  {mermaid_id(edge.source)} -.->|{edge.relation.value}| {mermaid_id(edge.target)}"
            )

    lines.append("")
    lines.extend(f"  {style.class_def()}" for style in all_styles())
    return "\n".join(lines)
