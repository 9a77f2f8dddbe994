"""Tests for api/routes.py -- HTTP endpoint handlers.

Uses FastAPI TestClient (backed by httpx) with a mocked SyncManager.
No bd process is started.
"""

from collections.abc import Generator
from unittest.mock import AsyncMock, MagicMock

import pytest
from factories import make_node
from fastapi import FastAPI
from fastapi.testclient import TestClient

import api.routes as routes_module
from api.routes import router, set_sync_manager
from metrics import PollMetricsData
from models.graph import IssueStatus, ProgressMetrics, Snapshot, TreeNode
from mutations import MutationResult
from tracker.errors import (
    CliError,
    InvalidWorkingDirectoryError,
    NotFoundError,
    PartialFailureError,
    ToolUnavailableError,
    TrackerTimeoutError,
    ValidationError,
)

# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


def _make_snapshot(root_id: str = "proj-1", version: int = 3) -> Snapshot:
    root = make_node(root_id, title="Launch v2")
    return Snapshot(
        root_id=root_id,
        version=version,
        tree=TreeNode(node=root),
        nodes=[root],
        metrics=ProgressMetrics(total=4, completed=1, in_progress=2, open=1, percent_complete=25),
        diagram="graph TB\n    proj_1[\"proj-1: Launch v2\"]",
    )


@pytest.fixture()
def mock_sync_manager() -> MagicMock:
    """Create a mock SyncManager."""
    mgr = MagicMock()
    mgr.get_snapshot = MagicMock(return_value=_make_snapshot())
    mgr.get_metrics = MagicMock(return_value=PollMetricsData(cycles=3, started_at=1700000000.0))
    mgr.tracked_roots = MagicMock(return_value=["proj-1"])
    mgr.track_root = AsyncMock(return_value=True)
    mgr.untrack_root = AsyncMock(return_value=True)
    mgr.refresh_root = AsyncMock(return_value=False)
    mgr.dependency_tree = AsyncMock(return_value=TreeNode(node=make_node("proj-7")))
    mgr.issue_tree = AsyncMock(
        return_value=TreeNode(
            node=make_node("proj-7"),
            children=[TreeNode(node=make_node("proj-7.1"))],
        )
    )
    mgr.list_issues = AsyncMock(return_value=[make_node("proj-1"), make_node("proj-2")])
    mgr.broadcaster = MagicMock()
    mgr.broadcaster.subscriber_count = MagicMock(return_value=2)
    mgr.mutations = MagicMock()
    mgr.mutations.set_status = AsyncMock(return_value=MutationResult("proj-1.2"))
    mgr.mutations.create_child = AsyncMock(return_value=MutationResult("proj-1.9", refreshed=True))
    mgr.mutations.reparent = AsyncMock(return_value=MutationResult("proj-1.5"))
    mgr.mutations.close = AsyncMock(return_value=MutationResult("proj-1.2"))
    return mgr


@pytest.fixture()
def client(mock_sync_manager: MagicMock) -> Generator[TestClient, None, None]:
    """Create a FastAPI TestClient with mocked sync manager."""
    app = FastAPI()
    app.include_router(router)
    set_sync_manager(mock_sync_manager)  # type: ignore[arg-type]
    with TestClient(app) as c:
        yield c


# =========================================================================
# Health Check
# =========================================================================


class TestHealthCheck:
    """GET /health."""

    def test_health_returns_200(self, client: TestClient) -> None:
        resp = client.get("/health")
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "healthy"
        assert data["tracked_roots"] == 1
        assert data["version"] == "0.1.0"

    def test_unconfigured_manager_is_unhealthy(
        self, client: TestClient, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setattr(routes_module, "_sync_manager", None)
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "unhealthy"


# =========================================================================
# Snapshot reads
# =========================================================================


class TestSnapshotReads:
    """GET /api/issue/{id}, /diagram, /dependencies."""

    def test_get_snapshot(self, client: TestClient) -> None:
        resp = client.get("/api/issue/proj-1")
        assert resp.status_code == 200
        data = resp.json()
        assert data["root_id"] == "proj-1"
        assert data["version"] == 3
        assert data["metrics"]["percent_complete"] == 25
        assert data["tree"]["node"]["title"] == "Launch v2"

    def test_get_snapshot_not_found(
        self, client: TestClient, mock_sync_manager: MagicMock
    ) -> None:
        mock_sync_manager.get_snapshot.return_value = None
        resp = client.get("/api/issue/proj-404")
        assert resp.status_code == 404
        assert resp.json()["detail"]["code"] == "NOT_FOUND"

    def test_get_diagram(self, client: TestClient) -> None:
        resp = client.get("/api/issue/proj-1/diagram")
        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("text/plain")
        assert resp.text.startswith("graph TB")

    def test_get_diagram_not_found(
        self, client: TestClient, mock_sync_manager: MagicMock
    ) -> None:
        mock_sync_manager.get_snapshot.return_value = None
        assert client.get("/api/issue/proj-404/diagram").status_code == 404

    def test_get_dependencies(self, client: TestClient, mock_sync_manager: MagicMock) -> None:
        resp = client.get("/api/issue/proj-7/dependencies")
        assert resp.status_code == 200
        assert resp.json()["node"]["id"] == "proj-7"
        mock_sync_manager.dependency_tree.assert_awaited_once_with("proj-7")

    def test_get_dependencies_unknown_issue(
        self, client: TestClient, mock_sync_manager: MagicMock
    ) -> None:
        mock_sync_manager.dependency_tree.side_effect = NotFoundError("proj-9 not found")
        resp = client.get("/api/issue/proj-9/dependencies")
        assert resp.status_code == 404
        assert resp.json()["detail"] == {
            "error": "proj-9 not found",
            "code": "NOT_FOUND",
            "created_id": None,
        }

    def test_get_issue_tree(self, client: TestClient, mock_sync_manager: MagicMock) -> None:
        resp = client.get("/api/issue/proj-7/tree")
        assert resp.status_code == 200
        data = resp.json()
        assert data["node"]["id"] == "proj-7"
        assert [c["node"]["id"] for c in data["children"]] == ["proj-7.1"]
        mock_sync_manager.issue_tree.assert_awaited_once_with("proj-7")

    def test_get_issue_tree_unknown_issue(
        self, client: TestClient, mock_sync_manager: MagicMock
    ) -> None:
        mock_sync_manager.issue_tree.side_effect = NotFoundError("proj-9 not found")
        resp = client.get("/api/issue/proj-9/tree")
        assert resp.status_code == 404
        assert resp.json()["detail"]["code"] == "NOT_FOUND"


# =========================================================================
# Issue listing
# =========================================================================


class TestListIssues:
    """GET /api/issues."""

    def test_list_without_filters(self, client: TestClient, mock_sync_manager: MagicMock) -> None:
        resp = client.get("/api/issues")
        assert resp.status_code == 200
        assert [i["id"] for i in resp.json()] == ["proj-1", "proj-2"]
        mock_sync_manager.list_issues.assert_awaited_once_with(
            status=None, issue_type=None, assignee=None, labels=None, limit=None
        )

    def test_filters_are_forwarded(self, client: TestClient, mock_sync_manager: MagicMock) -> None:
        resp = client.get(
            "/api/issues",
            params=[
                ("status", "open"),
                ("type", "bug"),
                ("assignee", "dana"),
                ("label", "ui"),
                ("label", "backend"),
                ("limit", "5"),
            ],
        )
        assert resp.status_code == 200
        mock_sync_manager.list_issues.assert_awaited_once_with(
            status=IssueStatus.OPEN,
            issue_type="bug",
            assignee="dana",
            labels=["ui", "backend"],
            limit=5,
        )

    def test_invalid_status_is_422(self, client: TestClient) -> None:
        assert client.get("/api/issues", params={"status": "done"}).status_code == 422

    def test_limit_must_be_positive(self, client: TestClient) -> None:
        assert client.get("/api/issues", params={"limit": "0"}).status_code == 422

    def test_tracker_unavailable_is_503(
        self, client: TestClient, mock_sync_manager: MagicMock
    ) -> None:
        mock_sync_manager.list_issues.side_effect = ToolUnavailableError("bd not found")
        resp = client.get("/api/issues")
        assert resp.status_code == 503
        assert resp.json()["detail"]["code"] == "TOOL_UNAVAILABLE"


# =========================================================================
# Mutations
# =========================================================================


class TestSetStatus:
    """POST /api/issue/{id}/status."""

    def test_success(self, client: TestClient, mock_sync_manager: MagicMock) -> None:
        resp = client.post("/api/issue/proj-1.2/status", json={"status": "in_progress"})
        assert resp.status_code == 200
        assert resp.json() == {"success": True, "issue_id": "proj-1.2", "refreshed": False}
        mock_sync_manager.mutations.set_status.assert_awaited_once_with(
            "proj-1.2", IssueStatus.IN_PROGRESS, wait=False
        )

    def test_wait_flag_is_forwarded(
        self, client: TestClient, mock_sync_manager: MagicMock
    ) -> None:
        client.post("/api/issue/proj-1.2/status?wait=true", json={"status": "closed"})
        assert mock_sync_manager.mutations.set_status.await_args.kwargs["wait"] is True

    def test_invalid_status_is_422(
        self, client: TestClient, mock_sync_manager: MagicMock
    ) -> None:
        resp = client.post("/api/issue/proj-1.2/status", json={"status": "done"})
        assert resp.status_code == 422
        mock_sync_manager.mutations.set_status.assert_not_awaited()

    @pytest.mark.parametrize(
        ("error", "status_code", "code"),
        [
            (ValidationError("bad id"), 400, "VALIDATION_ERROR"),
            (NotFoundError("no such issue"), 404, "NOT_FOUND"),
            (CliError("database is locked", exit_code=1), 502, "CLI_ERROR"),
            (ToolUnavailableError("bd not found"), 503, "TOOL_UNAVAILABLE"),
            (InvalidWorkingDirectoryError("no .beads"), 503, "INVALID_WORKING_DIRECTORY"),
            (TrackerTimeoutError("bd timed out"), 504, "TIMEOUT"),
        ],
    )
    def test_tracker_errors_map_to_status_codes(
        self,
        client: TestClient,
        mock_sync_manager: MagicMock,
        error: Exception,
        status_code: int,
        code: str,
    ) -> None:
        mock_sync_manager.mutations.set_status.side_effect = error
        resp = client.post("/api/issue/proj-1.2/status", json={"status": "closed"})
        assert resp.status_code == status_code
        assert resp.json()["detail"]["code"] == code

    def test_unexpected_error_is_500(
        self, client: TestClient, mock_sync_manager: MagicMock
    ) -> None:
        mock_sync_manager.mutations.set_status.side_effect = RuntimeError("boom")
        resp = client.post("/api/issue/proj-1.2/status", json={"status": "closed"})
        assert resp.status_code == 500
        assert resp.json()["detail"]["code"] == "INTERNAL_ERROR"


class TestCreateChild:
    """POST /api/issue/{id}/children."""

    def test_success(self, client: TestClient, mock_sync_manager: MagicMock) -> None:
        resp = client.post(
            "/api/issue/proj-1/children",
            json={"title": "Add retry", "type": "bug", "priority": 1},
        )
        assert resp.status_code == 201
        assert resp.json()["issue_id"] == "proj-1.9"
        assert resp.json()["refreshed"] is True
        mock_sync_manager.mutations.create_child.assert_awaited_once_with(
            "proj-1",
            "Add retry",
            issue_type="bug",
            priority=1,
            description=None,
            status=None,
            wait=False,
        )

    def test_missing_title_is_422(self, client: TestClient) -> None:
        resp = client.post("/api/issue/proj-1/children", json={"priority": 1})
        assert resp.status_code == 422

    def test_priority_out_of_range_is_422(self, client: TestClient) -> None:
        resp = client.post("/api/issue/proj-1/children", json={"title": "x", "priority": 9})
        assert resp.status_code == 422

    def test_partial_failure_reports_created_id(
        self, client: TestClient, mock_sync_manager: MagicMock
    ) -> None:
        mock_sync_manager.mutations.create_child.side_effect = PartialFailureError(
            "created proj-1.9 but linking to proj-1 failed", created_id="proj-1.9"
        )
        resp = client.post("/api/issue/proj-1/children", json={"title": "Add retry"})
        assert resp.status_code == 502
        detail = resp.json()["detail"]
        assert detail["code"] == "PARTIAL_FAILURE"
        assert detail["created_id"] == "proj-1.9"


class TestReparentAndClose:
    """POST /api/issue/{id}/reparent and /close."""

    def test_reparent(self, client: TestClient, mock_sync_manager: MagicMock) -> None:
        resp = client.post("/api/issue/proj-1.5/reparent", json={"new_parent_id": "proj-1.b"})
        assert resp.status_code == 200
        mock_sync_manager.mutations.reparent.assert_awaited_once_with(
            "proj-1.5", "proj-1.b", wait=False
        )

    def test_reparent_requires_parent(self, client: TestClient) -> None:
        resp = client.post("/api/issue/proj-1.5/reparent", json={})
        assert resp.status_code == 422

    def test_close_with_reason(self, client: TestClient, mock_sync_manager: MagicMock) -> None:
        resp = client.post("/api/issue/proj-1.2/close", json={"reason": "shipped"})
        assert resp.status_code == 200
        mock_sync_manager.mutations.close.assert_awaited_once_with(
            "proj-1.2", "shipped", wait=False
        )

    def test_close_without_body(self, client: TestClient, mock_sync_manager: MagicMock) -> None:
        resp = client.post("/api/issue/proj-1.2/close")
        assert resp.status_code == 200
        mock_sync_manager.mutations.close.assert_awaited_once_with("proj-1.2", None, wait=False)


class TestRefresh:
    """POST /api/issue/{id}/refresh."""

    def test_refresh_accepted(self, client: TestClient, mock_sync_manager: MagicMock) -> None:
        resp = client.post("/api/issue/proj-1/refresh")
        assert resp.status_code == 202
        assert resp.json()["refreshed"] is False
        mock_sync_manager.refresh_root.assert_awaited_once_with("proj-1", wait=False)

    def test_refresh_untracked_root(
        self, client: TestClient, mock_sync_manager: MagicMock
    ) -> None:
        mock_sync_manager.refresh_root.side_effect = NotFoundError("proj-9 is not tracked")
        assert client.post("/api/issue/proj-9/refresh").status_code == 404


# =========================================================================
# Root registry
# =========================================================================


class TestRoots:
    """GET/POST /api/roots and DELETE /api/roots/{id}."""

    def test_list_roots(self, client: TestClient) -> None:
        resp = client.get("/api/roots")
        assert resp.status_code == 200
        data = resp.json()
        assert len(data) == 1
        assert data[0]["root_id"] == "proj-1"
        assert data[0]["title"] == "Launch v2"
        assert data[0]["version"] == 3
        assert data[0]["subscriber_count"] == 2
        assert data[0]["progress"]["total"] == 4
        assert data[0]["poll"]["cycles"] == 3

    def test_list_roots_before_first_poll(
        self, client: TestClient, mock_sync_manager: MagicMock
    ) -> None:
        mock_sync_manager.get_snapshot.return_value = None
        mock_sync_manager.get_metrics.return_value = None
        data = client.get("/api/roots").json()
        assert data[0]["version"] == 0
        assert data[0]["progress"] is None
        assert data[0]["poll"]["cycles"] == 0

    def test_track_root(self, client: TestClient, mock_sync_manager: MagicMock) -> None:
        resp = client.post("/api/roots", json={"root_id": "proj-1"})
        assert resp.status_code == 201
        assert resp.json()["root_id"] == "proj-1"
        mock_sync_manager.track_root.assert_awaited_once_with("proj-1")

    def test_track_unknown_root(self, client: TestClient, mock_sync_manager: MagicMock) -> None:
        mock_sync_manager.track_root.side_effect = NotFoundError("proj-404 not found")
        assert client.post("/api/roots", json={"root_id": "proj-404"}).status_code == 404

    def test_untrack_root(self, client: TestClient) -> None:
        resp = client.delete("/api/roots/proj-1")
        assert resp.status_code == 200
        assert resp.json() == {"root_id": "proj-1", "tracked": False}

    def test_untrack_unknown_root(
        self, client: TestClient, mock_sync_manager: MagicMock
    ) -> None:
        mock_sync_manager.untrack_root.return_value = False
        assert client.delete("/api/roots/proj-404").status_code == 404
