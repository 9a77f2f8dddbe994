"""Error taxonomy for tracker access and graph mutations.

Every failure raised by the tracker gateway, the typed client, and the
mutation handlers derives from ``TrackerError`` and carries a stable
``code`` that the HTTP layer and the push channel forward to viewers.
"""


class TrackerError(Exception):
    """Base class for all tracker and mutation failures."""

    code = "TRACKER_ERROR"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class NotFoundError(TrackerError):
    """The requested issue or relationship does not exist."""

    code = "NOT_FOUND"


class TrackerTimeoutError(TrackerError):
    """The tracker process did not finish before its deadline."""

    code = "TIMEOUT"


class ToolUnavailableError(TrackerError):
    """The tracker executable is missing or cannot be executed."""

    code = "TOOL_UNAVAILABLE"


class InvalidWorkingDirectoryError(TrackerError):
    """The working directory is missing or is not a tracker repository."""

    code = "INVALID_WORKING_DIRECTORY"


class CliError(TrackerError):
    """The tracker exited unsuccessfully for an unclassified reason."""

    code = "CLI_ERROR"

    def __init__(self, message: str, exit_code: int | None = None, stderr: str = "") -> None:
        super().__init__(message)
        self.exit_code = exit_code
        self.stderr = stderr


class OutputLimitExceededError(CliError):
    """The tracker produced more output than the configured limit."""

    code = "OUTPUT_LIMIT_EXCEEDED"


class ParseError(TrackerError):
    """Tracker output was not valid structured data."""

    code = "PARSE_ERROR"


class ValidationError(TrackerError):
    """A mutation request was malformed."""

    code = "VALIDATION_ERROR"


class PartialFailureError(TrackerError):
    """A multi-step mutation was only partially applied.

    Attributes:
        created_id: Id of the issue that was created before the failing step,
            if any. The caller is responsible for retrying the remaining step.
    """

    code = "PARTIAL_FAILURE"

    def __init__(self, message: str, created_id: str | None = None) -> None:
        super().__init__(message)
        self.created_id = created_id
