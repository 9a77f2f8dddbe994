"""Subprocess gateway to the issue tracker CLI.

This module provides the TrackerGateway class, the only place where the
external tracker executable is spawned. Each invocation is bounded by a
deadline and an output size limit, and failures are classified into the
typed errors from ``tracker.errors``.

The gateway holds no per-call state, so any number of coroutines may call
it concurrently. It performs no queuing or rate limiting of its own.

Usage:
    >>> gateway = TrackerGateway(executable="bd", cwd="/path/to/repo")
    >>> result = await gateway.exec(["update", "proj-12", "--status", "closed"])
    >>> issues = await gateway.exec_json(["list", "--status", "open"])
"""

import asyncio
import contextlib
import json
import os
import time
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

import structlog

from tracker.errors import (
    CliError,
    InvalidWorkingDirectoryError,
    NotFoundError,
    OutputLimitExceededError,
    ParseError,
    ToolUnavailableError,
    TrackerError,
    TrackerTimeoutError,
)

logger = structlog.get_logger(__name__)

JSON_FLAG = "--json"

_READ_CHUNK_BYTES = 64 * 1024

# Exit codes used by shells and wrappers when the program cannot be run.
_EXIT_NOT_EXECUTABLE = 126
_EXIT_COMMAND_NOT_FOUND = 127


@dataclass
class CommandResult:
    """Captured output of a successful tracker invocation."""

    stdout: str
    stderr: str
    exit_code: int = 0


async def _read_bounded(stream: asyncio.StreamReader | None, limit: int) -> bytes:
    """Read a stream to EOF, failing once more than ``limit`` bytes arrive."""
    if stream is None:
        return b""
    chunks: list[bytes] = []
    total = 0
    while True:
        chunk = await stream.read(_READ_CHUNK_BYTES)
        if not chunk:
            break
        total += len(chunk)
        if total > limit:
            raise OutputLimitExceededError(
                f"Tracker output exceeded {limit} bytes"
            )
        chunks.append(chunk)
    return b"".join(chunks)


class TrackerGateway:
    """Runs tracker commands and converts failures into typed errors.

    Attributes:
        executable: Name or path of the tracker executable.
        cwd: Working directory (tracker repository) for every invocation.
        timeout_seconds: Deadline for a single invocation.
        max_output_bytes: Maximum accepted size of stdout and of stderr.
    """

    def __init__(
        self,
        executable: str = "bd",
        cwd: str = ".",
        timeout_seconds: float = 30.0,
        max_output_bytes: int = 10 * 1024 * 1024,
    ) -> None:
        self.executable = executable
        self.cwd = cwd
        self.timeout_seconds = timeout_seconds
        self.max_output_bytes = max_output_bytes

    async def exec(self, args: Sequence[str]) -> CommandResult:
        """Execute a tracker command.

        Args:
            args: Command arguments (e.g., ``["list", "--status", "open"]``).

        Returns:
            The decoded stdout/stderr of the successful invocation.

        Raises:
            NotFoundError: If the tracker reports the resource as absent.
            TrackerTimeoutError: If the deadline expires (the child is killed).
            ToolUnavailableError: If the executable is missing or not runnable.
            InvalidWorkingDirectoryError: If ``cwd`` is not a tracker repository.
            CliError: For any other unsuccessful exit.
        """
        argv = list(args)
        if not os.path.isdir(self.cwd):
            raise InvalidWorkingDirectoryError(
                f"Tracker working directory does not exist: {self.cwd}"
            )

        started = time.monotonic()
        try:
            process = await asyncio.create_subprocess_exec(
                self.executable,
                *argv,
                cwd=self.cwd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as e:
            raise ToolUnavailableError(
                f"Tracker executable '{self.executable}' not found. "
                "Install it or set BD_EXECUTABLE."
            ) from e
        except PermissionError as e:
            raise ToolUnavailableError(
                f"Tracker executable '{self.executable}' is not executable"
            ) from e
        except NotADirectoryError as e:
            raise InvalidWorkingDirectoryError(
                f"Tracker working directory is not a directory: {self.cwd}"
            ) from e

        try:
            stdout_bytes, stderr_bytes, _ = await asyncio.wait_for(
                asyncio.gather(
                    _read_bounded(process.stdout, self.max_output_bytes),
                    _read_bounded(process.stderr, self.max_output_bytes),
                    process.wait(),
                ),
                timeout=self.timeout_seconds,
            )
        except TimeoutError as e:
            await self._kill(process)
            logger.warning(
                "tracker_command_timeout",
                args=argv,
                timeout_seconds=self.timeout_seconds,
            )
            raise TrackerTimeoutError(
                f"Command timed out after {self.timeout_seconds}s: "
                f"{self.executable} {' '.join(argv)}"
            ) from e
        except OutputLimitExceededError:
            await self._kill(process)
            logger.warning(
                "tracker_output_limit_exceeded",
                args=argv,
                limit_bytes=self.max_output_bytes,
            )
            raise

        stdout = stdout_bytes.decode("utf-8", errors="replace")
        stderr = stderr_bytes.decode("utf-8", errors="replace")
        exit_code = process.returncode if process.returncode is not None else -1

        logger.debug(
            "tracker_command_completed",
            args=argv,
            exit_code=exit_code,
            duration_ms=int((time.monotonic() - started) * 1000),
        )

        if exit_code != 0:
            raise self.classify_failure(argv, exit_code, stdout, stderr)

        return CommandResult(stdout=stdout, stderr=stderr, exit_code=exit_code)

    async def exec_json(self, args: Sequence[str]) -> Any:
        """Execute a tracker command and parse its JSON output.

        The ``--json`` flag is appended when the caller omitted it. The
        caller's sequence is never modified.

        Raises:
            ParseError: If stdout is not valid JSON.
            TrackerError: Any error raised by ``exec``.
        """
        argv = list(args)
        if JSON_FLAG not in argv:
            argv.append(JSON_FLAG)

        result = await self.exec(argv)

        try:
            return json.loads(result.stdout)
        except json.JSONDecodeError as e:
            logger.warning(
                "tracker_json_parse_failed",
                args=argv,
                stdout_preview=result.stdout[:200],
            )
            raise ParseError(
                f"Failed to parse JSON response from {self.executable} {' '.join(argv)}"
            ) from e

    def classify_failure(
        self,
        args: Sequence[str],
        exit_code: int,
        stdout: str,
        stderr: str,
    ) -> TrackerError:
        """Map an unsuccessful exit onto the error taxonomy."""
        text = f"{stderr}\n{stdout}".lower()
        command = f"{self.executable} {' '.join(args)}"
        detail = stderr.strip()[:500] or stdout.strip()[:500]

        if "not found" in text or "does not exist" in text:
            return NotFoundError(f"Tracker resource not found: {detail or command}")

        if "not a beads repo" in text or ".beads" in stderr or "bd init" in text:
            return InvalidWorkingDirectoryError(
                f"Not a tracker repository: {self.cwd}. Run: bd init"
            )

        if "timeout" in text or "timed out" in text:
            return TrackerTimeoutError(f"Tracker reported a timeout: {command}")

        if exit_code in (_EXIT_NOT_EXECUTABLE, _EXIT_COMMAND_NOT_FOUND):
            return ToolUnavailableError(
                f"Tracker executable could not be run (exit code {exit_code}): {command}"
            )

        return CliError(
            f"{command} failed with exit code {exit_code}: {detail}",
            exit_code=exit_code,
            stderr=stderr,
        )

    @staticmethod
    async def _kill(process: asyncio.subprocess.Process) -> None:
        """Kill a child process and reap it."""
        with contextlib.suppress(ProcessLookupError):
            process.kill()
        await process.wait()
