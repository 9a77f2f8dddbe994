"""Viewer-initiated mutations applied to the tracker.

Each handler validates its input, calls the tracker to change the source of
truth, and then asks for a refresh of the affected roots. Handlers never
touch the StateStore. The new state reaches viewers through the next poll
cycle like any other change.

Failures are raised to the caller. A child that was created but could not
be linked is not rolled back: ``PartialFailureError`` carries its id so the
caller can retry the link.
"""

from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass

import structlog

from models.graph import IssueStatus, RelationType
from tracker.client import TrackerClient
from tracker.errors import NotFoundError, PartialFailureError, TrackerError, ValidationError

logger = structlog.get_logger(__name__)

# (touched issue ids, wait for the cycle) -> whether a cycle completed
RefreshRequester = Callable[[Sequence[str], bool], Awaitable[bool]]


@dataclass
class MutationResult:
    """Outcome of a successful mutation.

    Attributes:
        issue_id: The issue that was changed or created.
        refreshed: True if the caller waited and a follow-up cycle completed.
    """

    issue_id: str
    refreshed: bool = False


def _require_id(value: str, field: str) -> str:
    value = (value or "").strip()
    if not value:
        raise ValidationError(f"{field} must not be empty")
    return value


class MutationHandler:
    """Applies status changes, child creation, re-parenting and closing.

    Attributes:
        client: Typed tracker client used for every write.
    """

    def __init__(self, client: TrackerClient, refresh: RefreshRequester) -> None:
        self.client = client
        self._refresh = refresh

    async def set_status(
        self,
        issue_id: str,
        status: IssueStatus,
        *,
        wait: bool = False,
    ) -> MutationResult:
        issue_id = _require_id(issue_id, "issue_id")
        await self.client.update_status(issue_id, status)
        logger.info("issue_status_set", issue_id=issue_id, status=status.value)
        return MutationResult(issue_id, await self._refresh([issue_id], wait))

    async def create_child(
        self,
        parent_id: str,
        title: str,
        *,
        issue_type: str = "task",
        priority: int = 2,
        description: str | None = None,
        status: IssueStatus | None = None,
        wait: bool = False,
    ) -> MutationResult:
        """Create an issue and link it under ``parent_id``.

        Raises:
            ValidationError: Empty parent or title, or priority out of range.
            PartialFailureError: The issue was created but linking it failed.
        """
        parent_id = _require_id(parent_id, "parent_id")
        title = (title or "").strip()
        if not title:
            raise ValidationError("title is required")
        if not 0 <= priority <= 4:
            raise ValidationError(f"priority must be between 0 and 4, got {priority}")

        child = await self.client.create_issue(
            title,
            issue_type=issue_type,
            priority=priority,
            description=description,
            status=status,
        )
        logger.info("child_issue_created", issue_id=child.id, parent_id=parent_id)

        try:
            await self.client.add_dependency(child.id, parent_id, RelationType.PARENT_CHILD)
        except TrackerError as e:
            logger.error(
                "child_link_failed",
                issue_id=child.id,
                parent_id=parent_id,
                error=str(e),
            )
            # Still refresh: the unlinked issue exists in the tracker.
            await self._refresh([parent_id], False)
            raise PartialFailureError(
                f"Created {child.id} but failed to link it under {parent_id}: {e.message}",
                created_id=child.id,
            ) from e

        return MutationResult(child.id, await self._refresh([parent_id, child.id], wait))

    async def reparent(
        self,
        issue_id: str,
        new_parent_id: str,
        *,
        wait: bool = False,
    ) -> MutationResult:
        """Move an issue under a new parent.

        The old parent edge is removed strictly before the new one is added,
        so the issue never has two parents. An old edge that is already gone
        counts as removed. Any other removal failure aborts before the add.
        """
        issue_id = _require_id(issue_id, "issue_id")
        new_parent_id = _require_id(new_parent_id, "new_parent_id")
        if issue_id == new_parent_id:
            raise ValidationError("An issue cannot be its own parent")

        node = await self.client.show(issue_id)
        old_parents = [r.target_id for r in node.relations_of(RelationType.PARENT_CHILD)]

        if new_parent_id in old_parents:
            logger.info("reparent_noop", issue_id=issue_id, parent_id=new_parent_id)
            return MutationResult(issue_id, await self._refresh([issue_id], wait))

        for old_parent in old_parents:
            await self._remove_parent_edge(issue_id, old_parent)

        await self.client.add_dependency(issue_id, new_parent_id, RelationType.PARENT_CHILD)
        logger.info(
            "issue_reparented",
            issue_id=issue_id,
            old_parents=old_parents,
            new_parent_id=new_parent_id,
        )
        touched = [issue_id, new_parent_id, *old_parents]
        return MutationResult(issue_id, await self._refresh(touched, wait))

    async def close(
        self,
        issue_id: str,
        reason: str | None = None,
        *,
        wait: bool = False,
    ) -> MutationResult:
        issue_id = _require_id(issue_id, "issue_id")
        await self.client.close_issue(issue_id, reason)
        logger.info("issue_closed", issue_id=issue_id)
        return MutationResult(issue_id, await self._refresh([issue_id], wait))

    async def _remove_parent_edge(self, issue_id: str, parent_id: str) -> None:
        try:
            await self.client.remove_dependency(issue_id, parent_id)
            return
        except NotFoundError:
            logger.debug("parent_edge_absent", issue_id=issue_id, parent_id=parent_id)

        # Some trackers record the edge from the parent's side.
        try:
            await self.client.remove_dependency(parent_id, issue_id)
        except NotFoundError:
            logger.info("parent_edge_already_removed", issue_id=issue_id, parent_id=parent_id)
