"""Tracker access: subprocess gateway, typed client, and error taxonomy."""

from tracker.client import TrackerClient, parse_records, parse_tree_output
from tracker.errors import (
    CliError,
    InvalidWorkingDirectoryError,
    NotFoundError,
    OutputLimitExceededError,
    ParseError,
    PartialFailureError,
    ToolUnavailableError,
    TrackerError,
    TrackerTimeoutError,
    ValidationError,
)
from tracker.gateway import CommandResult, TrackerGateway

__all__ = [
    "CliError",
    "CommandResult",
    "InvalidWorkingDirectoryError",
    "NotFoundError",
    "OutputLimitExceededError",
    "ParseError",
    "PartialFailureError",
    "ToolUnavailableError",
    "TrackerClient",
    "TrackerError",
    "TrackerGateway",
    "TrackerTimeoutError",
    "ValidationError",
    "parse_records",
    "parse_tree_output",
]
