"""Display styling per issue status."""

from dataclasses import dataclass
from typing import assert_never

from models.graph import IssueStatus


@dataclass(frozen=True)
class StatusStyle:
    """How an issue of a given status is drawn."""

    css_class: str
    label: str
    fill: str
    stroke: str
    color: str

    def class_def(self) -> str:
        """Mermaid ``classDef`` line for this style."""
        return f"classDef {self.css_class} fill:{self.fill},stroke:{self.stroke},color:{self.color};"


def status_style(status: IssueStatus) -> StatusStyle:
    """Return the display style for a status.

    Adding a member to ``IssueStatus`` without a branch here is reported by
    type checkers through ``assert_never``.
    """
    match status:
        case IssueStatus.CLOSED:
            return StatusStyle("completed", "Completed", "#d4edda", "#c3e6cb", "#155724")
        case IssueStatus.IN_PROGRESS:
            return StatusStyle("in_progress", "In progress", "#cce5ff", "#b8daff", "#004085")
        case IssueStatus.BLOCKED:
            return StatusStyle("blocked", "Blocked", "#f8d7da", "#f5c6cb", "#721c24")
        case IssueStatus.OPEN:
            return StatusStyle("open", "Open", "#f8f9fa", "#dee2e6", "#383d41")
        case _:
            assert_never(status)


def all_styles() -> list[StatusStyle]:
    return [status_style(s) for s in IssueStatus]
