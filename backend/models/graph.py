"""Domain models for the live dependency graph.

Issues arrive from the tracker as flat JSON records. They are validated
into ``GraphNode`` instances, arranged into ``TreeNode`` hierarchies by the
graph builder, and published as immutable ``Snapshot`` values.
"""

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


class IssueStatus(StrEnum):
    """Lifecycle status of a tracker issue."""

    OPEN = "open"
    IN_PROGRESS = "in_progress"
    BLOCKED = "blocked"
    CLOSED = "closed"


class RelationType(StrEnum):
    """Kinds of relationship between two issues."""

    BLOCKS = "blocks"
    RELATED = "related"
    PARENT_CHILD = "parent-child"
    DISCOVERED_FROM = "discovered-from"


class NodeRelationship(BaseModel):
    """An outgoing relationship held by an issue.

    ``target_status`` is the status of the target as reported alongside the
    relationship, when the tracker includes it.
    """

    model_config = ConfigDict(populate_by_name=True)

    target_id: str = Field(validation_alias=AliasChoices("target_id", "id", "depends_on_id"))
    relation: RelationType = Field(
        default=RelationType.BLOCKS,
        validation_alias=AliasChoices("relation", "dependency_type"),
    )
    target_status: IssueStatus | None = Field(
        default=None,
        validation_alias=AliasChoices("target_status", "status"),
    )


class GraphNode(BaseModel):
    """A single tracker issue."""

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(min_length=1)
    title: str = ""
    status: IssueStatus = IssueStatus.OPEN
    priority: int = Field(default=2, ge=0, le=4)
    type: str = Field(default="task", validation_alias=AliasChoices("type", "issue_type"))
    description: str = ""
    created_at: datetime | None = None
    updated_at: datetime | None = None
    assignee: str | None = None
    labels: list[str] = Field(default_factory=list)
    relationships: list[NodeRelationship] = Field(
        default_factory=list,
        validation_alias=AliasChoices("relationships", "dependencies"),
    )

    @field_validator("description", "title", mode="before")
    @classmethod
    def _none_to_empty(cls, v: Any) -> Any:
        return "" if v is None else v

    @field_validator("labels", mode="before")
    @classmethod
    def _labels_default(cls, v: Any) -> Any:
        return [] if v is None else v

    @field_validator("relationships", mode="before")
    @classmethod
    def _drop_unknown_relations(cls, v: Any) -> Any:
        """Keep only relationship entries whose type is recognised."""
        if v is None:
            return []
        if not isinstance(v, list):
            return v
        known = {r.value for r in RelationType}
        kept: list[Any] = []
        for entry in v:
            if not isinstance(entry, dict):
                kept.append(entry)
                continue
            relation = entry.get("relation", entry.get("dependency_type", RelationType.BLOCKS))
            if relation in known:
                kept.append(entry)
        return kept

    def relations_of(self, relation: RelationType) -> list[NodeRelationship]:
        """Return outgoing relationships of one type."""
        return [r for r in self.relationships if r.relation == relation]


class TreeRecord(GraphNode):
    """One entry of the flat tree listing returned by the tracker."""

    parent_id: str | None = None
    depth: int = 0
    truncated: bool = False

    @field_validator("parent_id", mode="before")
    @classmethod
    def _blank_parent(cls, v: Any) -> Any:
        return v or None


class DependencyEdge(BaseModel):
    """A directed, typed edge between two issues."""

    source: str
    target: str
    relation: RelationType

    @property
    def key(self) -> tuple[str, str, RelationType]:
        return (self.source, self.target, self.relation)


class TreeNode(BaseModel):
    """A GraphNode positioned in a rooted tree.

    Attributes:
        node: The issue at this position.
        children: Ordered child positions.
        depth: Distance from the root (root is 0).
        relation: Relationship that led from the parent to this node, when
            the tree was built by walking explicit relationships.
    """

    node: GraphNode
    children: list["TreeNode"] = Field(default_factory=list)
    depth: int = 0
    relation: RelationType | None = None


class ProgressMetrics(BaseModel):
    """Status counts over the descendants of a root."""

    total: int = 0
    completed: int = 0
    in_progress: int = 0
    blocked: int = 0
    open: int = 0
    percent_complete: int = 0


class ProgressSummary(BaseModel):
    """Metrics plus the ids of blocker and discovered descendants."""

    metrics: ProgressMetrics = Field(default_factory=ProgressMetrics)
    blockers: list[str] = Field(default_factory=list)
    discovered: list[str] = Field(default_factory=list)


class Snapshot(BaseModel):
    """Complete, immutable view of one root at one point in time.

    Snapshots are replaced wholesale by the poller and never patched.
    ``version`` is assigned by the state store and increases by one on each
    replacement for the same root.
    """

    model_config = ConfigDict(frozen=True)

    root_id: str
    version: int = 0
    tree: TreeNode
    nodes: list[GraphNode] = Field(default_factory=list)
    edges: list[DependencyEdge] = Field(default_factory=list)
    metrics: ProgressMetrics = Field(default_factory=ProgressMetrics)
    blockers: list[str] = Field(default_factory=list)
    discovered: list[str] = Field(default_factory=list)
    diagram: str = ""
    last_update: datetime = Field(default_factory=lambda: datetime.now(UTC))

    def contains(self, issue_id: str) -> bool:
        """Return True if the issue is part of this snapshot."""
        return any(n.id == issue_id for n in self.nodes)
