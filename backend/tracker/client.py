"""Typed tracker operations built on the subprocess gateway.

TrackerClient turns argument lists into the list/show/create/update/close
and dependency commands the rest of the backend uses, and validates the
JSON it gets back into ``models.graph`` types.
"""

import json
from collections.abc import Iterable
from typing import Any, TypeVar

import structlog
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from models.graph import GraphNode, IssueStatus, RelationType, TreeRecord
from tracker.errors import NotFoundError, ParseError, TrackerError
from tracker.gateway import TrackerGateway

logger = structlog.get_logger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


def _as_list(payload: Any) -> list[Any]:
    """Normalise a JSON payload that may be a single object or an array."""
    if payload is None:
        return []
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict):
        return [payload]
    raise ParseError(f"Expected a JSON object or array, got {type(payload).__name__}")


def parse_records(payload: Any, model: type[ModelT]) -> list[ModelT]:
    """Validate each entry of a payload, skipping entries that do not fit.

    A single malformed record never fails the whole batch.
    """
    records: list[ModelT] = []
    for entry in _as_list(payload):
        if not isinstance(entry, dict):
            logger.warning("tracker_record_skipped", reason="not_an_object")
            continue
        try:
            records.append(model.model_validate(entry))
        except PydanticValidationError as e:
            logger.warning(
                "tracker_record_skipped",
                record_id=entry.get("id"),
                error_count=e.error_count(),
            )
    return records


def parse_tree_output(raw: str) -> list[TreeRecord]:
    """Parse the stdout of a JSON tree query into flat records."""
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ParseError("Failed to parse dependency tree output") from e
    return parse_records(payload, TreeRecord)


class TrackerClient:
    """High-level tracker operations.

    Attributes:
        gateway: The gateway used for every invocation.
    """

    def __init__(self, gateway: TrackerGateway) -> None:
        self.gateway = gateway

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def show(self, issue_id: str) -> GraphNode:
        """Fetch one issue with its relationships.

        Raises:
            NotFoundError: If the tracker returns no matching issue.
        """
        payload = await self.gateway.exec_json(["show", issue_id])
        nodes = parse_records(payload, GraphNode)
        for node in nodes:
            if node.id == issue_id:
                return node
        if nodes:
            return nodes[0]
        raise NotFoundError(f"Issue {issue_id} not found")

    async def show_many(self, issue_ids: Iterable[str]) -> dict[str, GraphNode]:
        """Fetch several issues in one invocation.

        Returns:
            Mapping of issue id to node for every issue the tracker returned.
        """
        ids = list(dict.fromkeys(issue_ids))
        if not ids:
            return {}
        payload = await self.gateway.exec_json(["show", *ids])
        return {node.id: node for node in parse_records(payload, GraphNode)}

    async def fetch_details(self, issue_ids: Iterable[str]) -> dict[str, GraphNode]:
        """Fetch several issues, skipping any that cannot be fetched.

        One bulk ``show`` is attempted first. If it fails (a single missing
        id fails the whole invocation), each id is fetched on its own and
        failures are skipped.
        """
        ids = list(dict.fromkeys(issue_ids))
        if not ids:
            return {}
        try:
            return await self.show_many(ids)
        except TrackerError as e:
            logger.warning(
                "bulk_show_failed_falling_back",
                issue_count=len(ids),
                error=str(e),
            )

        details: dict[str, GraphNode] = {}
        for issue_id in ids:
            try:
                details[issue_id] = await self.show(issue_id)
            except TrackerError as e:
                logger.debug("issue_detail_skipped", issue_id=issue_id, error=str(e))
        return details

    async def list_issues(
        self,
        *,
        status: IssueStatus | None = None,
        issue_type: str | None = None,
        assignee: str | None = None,
        labels: list[str] | None = None,
        limit: int | None = None,
    ) -> list[GraphNode]:
        """List issues matching optional filters."""
        args = ["list"]
        if status is not None:
            args += ["--status", status.value]
        if issue_type:
            args += ["--type", issue_type]
        if assignee:
            args += ["--assignee", assignee]
        for label in labels or []:
            args += ["--label", label]
        if limit:
            args += ["--limit", str(limit)]
        payload = await self.gateway.exec_json(args)
        return parse_records(payload, GraphNode)

    async def fetch_tree_output(self, root_id: str) -> str:
        """Run the bulk tree query for a root and return its raw stdout.

        The tree is listed in reverse (dependents) direction so that every
        descendant of the root appears with its ``parent_id``.
        """
        result = await self.gateway.exec(["dep", "tree", root_id, "--reverse", "--json"])
        return result.stdout

    async def tree_records(self, root_id: str) -> list[TreeRecord]:
        """Fetch the flat descendant listing for a root."""
        return parse_tree_output(await self.fetch_tree_output(root_id))

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def create_issue(
        self,
        title: str,
        *,
        issue_type: str = "task",
        priority: int = 2,
        description: str | None = None,
        status: IssueStatus | None = None,
        assignee: str | None = None,
        labels: list[str] | None = None,
    ) -> GraphNode:
        """Create an issue and return it as reported by the tracker."""
        args = ["create", title, "-t", issue_type, "-p", str(priority)]
        if description:
            args += ["-d", description]
        if status is not None:
            args += ["--status", status.value]
        if assignee:
            args += ["--assignee", assignee]
        for label in labels or []:
            args += ["--label", label]

        payload = await self.gateway.exec_json(args)
        nodes = parse_records(payload, GraphNode)
        if not nodes:
            raise ParseError("Tracker did not return the created issue")
        return nodes[0]

    async def update_status(self, issue_id: str, status: IssueStatus) -> None:
        await self.gateway.exec(["update", issue_id, "--status", status.value])

    async def close_issue(self, issue_id: str, reason: str | None = None) -> None:
        args = ["close", issue_id]
        if reason:
            args += ["--reason", reason]
        await self.gateway.exec(args)

    async def add_dependency(
        self,
        issue_id: str,
        depends_on_id: str,
        relation: RelationType = RelationType.BLOCKS,
    ) -> None:
        """Record that ``issue_id`` holds a ``relation`` to ``depends_on_id``."""
        await self.gateway.exec(["dep", "add", issue_id, depends_on_id, "--type", relation.value])

    async def remove_dependency(self, issue_id: str, depends_on_id: str) -> None:
        await self.gateway.exec(["dep", "remove", issue_id, depends_on_id])
