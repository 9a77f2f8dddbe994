"""Pydantic schemas for API request/response models.

This module defines the data models used by the HTTP API and WebSocket handlers.
Graph domain types (GraphNode, Snapshot, ...) live in ``models.graph`` and are
returned directly where an endpoint serves them.
"""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from models.graph import IssueStatus, ProgressMetrics


class SetStatusRequest(BaseModel):
    """Request body for changing an issue's status."""

    status: IssueStatus = Field(
        description="The new status",
        examples=["in_progress", "closed"],
    )


class CreateChildRequest(BaseModel):
    """Request body for creating a child issue under a parent."""

    model_config = ConfigDict(populate_by_name=True)

    title: str = Field(
        min_length=1,
        max_length=500,
        description="Title of the new issue",
        examples=["Write migration for the orders table"],
    )
    issue_type: str = Field(
        default="task",
        alias="type",
        description="Issue type passed to the tracker",
        examples=["task", "bug", "feature", "epic"],
    )
    priority: int = Field(
        default=2,
        ge=0,
        le=4,
        description="Priority from 0 (highest) to 4 (lowest)",
    )
    description: str | None = Field(
        default=None,
        max_length=10000,
        description="Optional longer description",
    )
    status: IssueStatus | None = Field(
        default=None,
        description="Initial status; the tracker default applies when omitted",
    )


class ReparentRequest(BaseModel):
    """Request body for moving an issue under a different parent."""

    new_parent_id: str = Field(
        min_length=1,
        description="Id of the new parent issue",
        examples=["proj-1.3"],
    )


class CloseRequest(BaseModel):
    """Request body for closing an issue."""

    reason: str | None = Field(
        default=None,
        max_length=1000,
        description="Optional close reason recorded by the tracker",
        examples=["Done in #142"],
    )


class TrackRootRequest(BaseModel):
    """Request body for starting to track a root."""

    root_id: str = Field(
        min_length=1,
        description="Id of the root issue to track",
        examples=["proj-1"],
    )


class MutationResponse(BaseModel):
    """Response for a successful mutation."""

    success: bool = Field(default=True, description="Always true for successful mutations")
    issue_id: str = Field(
        description="The changed or newly created issue",
        examples=["proj-1.4"],
    )
    refreshed: bool = Field(
        default=False,
        description="True if the request waited and a follow-up poll cycle completed",
    )


class PollMetricsResponse(BaseModel):
    """Poll cycle metrics for a tracked root."""

    cycles: int = Field(default=0, ge=0, description="Completed cycles, successful or not")
    failures: int = Field(default=0, ge=0, description="Failed cycles")
    consecutive_failures: int = Field(
        default=0,
        ge=0,
        description="Failures since the last successful cycle",
    )
    unchanged_cycles: int = Field(
        default=0,
        ge=0,
        description="Cycles skipped because the tracker output was unchanged",
    )
    last_duration_ms: int = Field(default=0, ge=0, description="Duration of the latest cycle")
    last_error: str | None = Field(default=None, description="Latest failure message")
    last_success_at: float | None = Field(
        default=None,
        description="Unix timestamp of the latest successful cycle",
    )
    started_at: float | None = Field(default=None, description="Unix timestamp tracking began")


class RootSummaryResponse(BaseModel):
    """Summary information for listing tracked roots."""

    root_id: str = Field(description="Root issue id")
    title: str | None = Field(default=None, description="Root title, once polled")
    version: int = Field(
        default=0,
        ge=0,
        description="Snapshot version; 0 if the root has not been polled yet",
    )
    last_update: float | None = Field(
        default=None,
        description="Unix timestamp of the current snapshot",
    )
    subscriber_count: int = Field(default=0, ge=0, description="Connected viewers")
    progress: ProgressMetrics | None = Field(
        default=None,
        description="Progress of the current snapshot",
    )
    poll: PollMetricsResponse = Field(
        default_factory=lambda: PollMetricsResponse(),
        description="Poll cycle metrics",
    )


class ErrorResponse(BaseModel):
    """Body of an error response."""

    error: str = Field(description="Human-readable error message")
    code: str = Field(description="Stable error code", examples=["NOT_FOUND", "TIMEOUT"])
    created_id: str | None = Field(
        default=None,
        description="Issue created before a partial failure, when applicable",
    )


class HealthResponse(BaseModel):
    """Health check response."""

    status: Literal["healthy", "unhealthy"] = Field(
        description="Overall health status",
    )
    timestamp: float = Field(
        description="Current server timestamp",
    )
    version: str = Field(
        default="0.1.0",
        description="API version",
    )
    tracked_roots: int = Field(
        default=0,
        description="Number of roots currently being polled",
    )
