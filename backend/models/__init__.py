"""Models module for graph domain types and API schemas.

This module exposes the graph models and all request/response models used by the API.
"""

from models.graph import (
    DependencyEdge,
    GraphNode,
    IssueStatus,
    NodeRelationship,
    ProgressMetrics,
    ProgressSummary,
    RelationType,
    Snapshot,
    TreeNode,
    TreeRecord,
)
from models.schemas import (
    CloseRequest,
    CreateChildRequest,
    ErrorResponse,
    HealthResponse,
    MutationResponse,
    PollMetricsResponse,
    ReparentRequest,
    RootSummaryResponse,
    SetStatusRequest,
    TrackRootRequest,
)

__all__ = [
    # Graph
    "DependencyEdge",
    "GraphNode",
    "IssueStatus",
    "NodeRelationship",
    "ProgressMetrics",
    "ProgressSummary",
    "RelationType",
    "Snapshot",
    "TreeNode",
    "TreeRecord",
    # API
    "CloseRequest",
    "CreateChildRequest",
    "ErrorResponse",
    "HealthResponse",
    "MutationResponse",
    "PollMetricsResponse",
    "ReparentRequest",
    "RootSummaryResponse",
    "SetStatusRequest",
    "TrackRootRequest",
]
