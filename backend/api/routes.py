"""HTTP API routes for the live dependency graph backend.

This module defines the HTTP endpoints for reading snapshots, applying
mutations, managing tracked roots, and health checks. Live updates are
handled via WebSocket in websocket.py.
"""

from __future__ import annotations

import time
from typing import TYPE_CHECKING, Annotated, NoReturn

import structlog
from fastapi import APIRouter, Body, HTTPException, Path, Query, status
from fastapi.responses import PlainTextResponse

from models.graph import GraphNode, IssueStatus, Snapshot, TreeNode
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
from tracker.errors import (
    InvalidWorkingDirectoryError,
    NotFoundError,
    PartialFailureError,
    ToolUnavailableError,
    TrackerError,
    TrackerTimeoutError,
    ValidationError,
)

if TYPE_CHECKING:
    from mutations import MutationResult
    from sync_manager import SyncManager

logger = structlog.get_logger(__name__)

router = APIRouter()

WaitQuery = Annotated[
    bool,
    Query(description="Wait for the follow-up poll cycle before responding"),
]
IssueIdPath = Annotated[str, Path(description="The issue ID", min_length=1)]

# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------


def _status_for(error: TrackerError) -> int:
    """HTTP status code for a tracker failure."""
    match error:
        case ValidationError():
            return status.HTTP_400_BAD_REQUEST
        case NotFoundError():
            return status.HTTP_404_NOT_FOUND
        case TrackerTimeoutError():
            return status.HTTP_504_GATEWAY_TIMEOUT
        case ToolUnavailableError() | InvalidWorkingDirectoryError():
            return status.HTTP_503_SERVICE_UNAVAILABLE
        case _:
            return status.HTTP_502_BAD_GATEWAY


def _raise_http(error: Exception, event: str, **context: object) -> NoReturn:
    """Log a failure and re-raise it as an HTTPException."""
    if isinstance(error, TrackerError):
        status_code = _status_for(error)
        body = ErrorResponse(
            error=error.message,
            code=error.code,
            created_id=error.created_id if isinstance(error, PartialFailureError) else None,
        )
        log = logger.warning if status_code < 500 else logger.error
        log(event, code=error.code, error=error.message, **context)
        raise HTTPException(status_code=status_code, detail=body.model_dump()) from error

    logger.error(event, error=str(error), error_type=type(error).__name__, **context)
    raise HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=ErrorResponse(error=f"Internal error: {error}", code="INTERNAL_ERROR").model_dump(),
    ) from error


def _mutation_response(result: MutationResult) -> MutationResponse:
    return MutationResponse(issue_id=result.issue_id, refreshed=result.refreshed)


def _root_summary(manager: SyncManager, root_id: str) -> RootSummaryResponse:
    snapshot = manager.get_snapshot(root_id)
    poll_data = manager.get_metrics(root_id)
    return RootSummaryResponse(
        root_id=root_id,
        title=snapshot.tree.node.title if snapshot else None,
        version=snapshot.version if snapshot else 0,
        last_update=snapshot.last_update.timestamp() if snapshot else None,
        subscriber_count=manager.broadcaster.subscriber_count(root_id),
        progress=snapshot.metrics if snapshot else None,
        poll=PollMetricsResponse(**poll_data.to_dict()) if poll_data else PollMetricsResponse(),
    )


# Sync manager dependency (set during application startup)
_sync_manager: SyncManager | None = None


def set_sync_manager(manager: SyncManager) -> None:
    """Set the sync manager instance for the routes.

    This should be called during application startup to inject the sync
    manager dependency.

    Args:
        manager: The SyncManager instance to use for all routes.
    """
    global _sync_manager
    _sync_manager = manager
    logger.info("sync_manager_configured")


def get_sync_manager() -> SyncManager:
    """Get the sync manager instance.

    Returns:
        The configured SyncManager instance.

    Raises:
        RuntimeError: If the sync manager has not been configured.
    """
    if _sync_manager is None:
        logger.error("sync_manager_not_configured")
        raise RuntimeError("SyncManager not configured. Call set_sync_manager() during startup.")
    return _sync_manager


# -----------------------------------------------------------------------------
# Snapshot reads
# -----------------------------------------------------------------------------


@router.get(
    "/api/issue/{issue_id}",
    response_model=Snapshot,
    summary="Get snapshot",
    description="Return the current snapshot for a tracked root.",
)
async def get_snapshot(issue_id: IssueIdPath) -> Snapshot:
    """Return the latest snapshot for a root.

    Raises:
        HTTPException: 404 if the root has never been polled.
    """
    manager = get_sync_manager()
    snapshot = manager.get_snapshot(issue_id)
    if snapshot is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=ErrorResponse(
                error=f"No snapshot for {issue_id}",
                code=NotFoundError.code,
            ).model_dump(),
        )
    return snapshot


@router.get(
    "/api/issue/{issue_id}/diagram",
    response_class=PlainTextResponse,
    summary="Get diagram",
    description="Return the Mermaid diagram of a tracked root's current snapshot.",
)
async def get_diagram(issue_id: IssueIdPath) -> PlainTextResponse:
    manager = get_sync_manager()
    snapshot = manager.get_snapshot(issue_id)
    if snapshot is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=ErrorResponse(
                error=f"No snapshot for {issue_id}",
                code=NotFoundError.code,
            ).model_dump(),
        )
    return PlainTextResponse(snapshot.diagram)


@router.get(
    "/api/issue/{issue_id}/dependencies",
    response_model=TreeNode,
    summary="Get dependency tree",
    description=(
        "Walk an issue's explicit relationships and return them as a tree. "
        "Each child is tagged with its relation type. This reads the tracker "
        "directly and does not require the issue to be tracked."
    ),
)
async def get_dependencies(issue_id: IssueIdPath) -> TreeNode:
    manager = get_sync_manager()
    try:
        return await manager.dependency_tree(issue_id)
    except Exception as e:
        _raise_http(e, "dependency_tree_failed", issue_id=issue_id)


@router.get(
    "/api/issue/{issue_id}/tree",
    response_model=TreeNode,
    summary="Get structural tree",
    description=(
        "Build the parent/child tree below an issue from one tracker query. "
        "Unlike the snapshot, this does not require the issue to be tracked."
    ),
)
async def get_issue_tree(issue_id: IssueIdPath) -> TreeNode:
    manager = get_sync_manager()
    try:
        return await manager.issue_tree(issue_id)
    except Exception as e:
        _raise_http(e, "issue_tree_failed", issue_id=issue_id)


@router.get(
    "/api/issues",
    response_model=list[GraphNode],
    summary="List issues",
    description="List tracker issues, for example to pick a root to track.",
)
async def list_issues(
    issue_status: Annotated[IssueStatus | None, Query(alias="status")] = None,
    issue_type: Annotated[str | None, Query(alias="type")] = None,
    assignee: str | None = None,
    label: Annotated[list[str] | None, Query()] = None,
    limit: Annotated[int | None, Query(ge=1, le=1000)] = None,
) -> list[GraphNode]:
    manager = get_sync_manager()
    try:
        return await manager.list_issues(
            status=issue_status,
            issue_type=issue_type,
            assignee=assignee,
            labels=label,
            limit=limit,
        )
    except Exception as e:
        _raise_http(e, "list_issues_failed")


# -----------------------------------------------------------------------------
# Mutations
# -----------------------------------------------------------------------------


@router.post(
    "/api/issue/{issue_id}/status",
    response_model=MutationResponse,
    summary="Set status",
    description="Change an issue's status in the tracker and refresh affected roots.",
)
async def set_status(
    issue_id: IssueIdPath,
    request: SetStatusRequest,
    wait: WaitQuery = False,
) -> MutationResponse:
    manager = get_sync_manager()
    try:
        result = await manager.mutations.set_status(issue_id, request.status, wait=wait)
    except Exception as e:
        _raise_http(e, "set_status_failed", issue_id=issue_id, status=request.status.value)
    return _mutation_response(result)


@router.post(
    "/api/issue/{issue_id}/children",
    response_model=MutationResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create child",
    description=(
        "Create an issue and link it under this one. If linking fails after "
        "creation, the response is 502 with the created id so the link can be retried."
    ),
)
async def create_child(
    issue_id: IssueIdPath,
    request: CreateChildRequest,
    wait: WaitQuery = False,
) -> MutationResponse:
    manager = get_sync_manager()
    try:
        result = await manager.mutations.create_child(
            issue_id,
            request.title,
            issue_type=request.issue_type,
            priority=request.priority,
            description=request.description,
            status=request.status,
            wait=wait,
        )
    except Exception as e:
        _raise_http(e, "create_child_failed", parent_id=issue_id)
    return _mutation_response(result)


@router.post(
    "/api/issue/{issue_id}/reparent",
    response_model=MutationResponse,
    summary="Reparent",
    description="Move an issue under a different parent.",
)
async def reparent(
    issue_id: IssueIdPath,
    request: ReparentRequest,
    wait: WaitQuery = False,
) -> MutationResponse:
    manager = get_sync_manager()
    try:
        result = await manager.mutations.reparent(issue_id, request.new_parent_id, wait=wait)
    except Exception as e:
        _raise_http(e, "reparent_failed", issue_id=issue_id, new_parent_id=request.new_parent_id)
    return _mutation_response(result)


@router.post(
    "/api/issue/{issue_id}/close",
    response_model=MutationResponse,
    summary="Close issue",
    description="Close an issue with an optional reason.",
)
async def close_issue(
    issue_id: IssueIdPath,
    request: Annotated[CloseRequest | None, Body()] = None,
    wait: WaitQuery = False,
) -> MutationResponse:
    manager = get_sync_manager()
    reason = request.reason if request else None
    try:
        result = await manager.mutations.close(issue_id, reason, wait=wait)
    except Exception as e:
        _raise_http(e, "close_issue_failed", issue_id=issue_id)
    return _mutation_response(result)


@router.post(
    "/api/issue/{issue_id}/refresh",
    response_model=MutationResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Refresh root",
    description="Request an out-of-band poll cycle for a tracked root.",
)
async def refresh_root(issue_id: IssueIdPath, wait: WaitQuery = False) -> MutationResponse:
    manager = get_sync_manager()
    try:
        refreshed = await manager.refresh_root(issue_id, wait=wait)
    except Exception as e:
        _raise_http(e, "refresh_root_failed", root_id=issue_id)
    return MutationResponse(issue_id=issue_id, refreshed=refreshed)


# -----------------------------------------------------------------------------
# Root registry
# -----------------------------------------------------------------------------


@router.get(
    "/api/roots",
    response_model=list[RootSummaryResponse],
    summary="List tracked roots",
    description="List tracked roots with snapshot version, subscribers and poll metrics.",
)
async def list_roots() -> list[RootSummaryResponse]:
    manager = get_sync_manager()
    return [_root_summary(manager, root_id) for root_id in manager.tracked_roots()]


@router.post(
    "/api/roots",
    response_model=RootSummaryResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Track a root",
    description="Start polling a root. The root must exist in the tracker.",
)
async def track_root(request: TrackRootRequest) -> RootSummaryResponse:
    manager = get_sync_manager()
    try:
        started = await manager.track_root(request.root_id)
    except Exception as e:
        _raise_http(e, "track_root_failed", root_id=request.root_id)

    logger.info("root_track_requested", root_id=request.root_id, started=started)
    return _root_summary(manager, request.root_id)


@router.delete(
    "/api/roots/{root_id}",
    status_code=status.HTTP_200_OK,
    summary="Untrack a root",
    description="Stop polling a root and disconnect its viewers.",
)
async def untrack_root(
    root_id: Annotated[str, Path(description="The root ID")],
) -> dict[str, object]:
    manager = get_sync_manager()
    if not await manager.untrack_root(root_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=ErrorResponse(
                error=f"Root {root_id} is not tracked",
                code=NotFoundError.code,
            ).model_dump(),
        )
    return {"root_id": root_id, "tracked": False}


# -----------------------------------------------------------------------------
# Health
# -----------------------------------------------------------------------------


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Health check endpoint with the number of tracked roots.",
)
async def health_check() -> HealthResponse:
    """Health check endpoint.

    Reports unhealthy until the sync manager has been configured at startup.
    """
    try:
        manager = get_sync_manager()
    except RuntimeError:
        return HealthResponse(status="unhealthy", timestamp=time.time())

    return HealthResponse(
        status="healthy",
        timestamp=time.time(),
        tracked_roots=len(manager.tracked_roots()),
    )
