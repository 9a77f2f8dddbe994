"""In-memory metrics for poll cycles.

This module provides the PollMetricsCollector class that accumulates cycle
counts, failures, and timing for each tracked root. The figures are exposed
through the roots listing so operators can see which roots are stale.

Usage:
    >>> from metrics import PollMetricsCollector
    >>> collector = PollMetricsCollector()
    >>> collector.start("proj-1")
    >>> collector.record_success("proj-1", duration_seconds=0.42, changed=True)
    >>> collector.record_failure("proj-1", "bd timed out", duration_seconds=30.0)
    >>> collector.get("proj-1")  # PollMetricsData(...)
"""

import time
from dataclasses import dataclass, field

import structlog

logger = structlog.get_logger(__name__)


@dataclass
class PollMetricsData:
    """Accumulated poll metrics for a single root.

    Attributes:
        cycles: Number of completed cycles, successful or not.
        failures: Number of cycles that failed.
        consecutive_failures: Failures since the last successful cycle.
        unchanged_cycles: Successful cycles skipped by change detection.
        last_duration_ms: Duration of the most recent cycle.
        last_error: Message of the most recent failure, cleared on success.
        last_success_at: Unix timestamp of the most recent successful cycle.
        started_at: Unix timestamp when tracking began.
    """

    cycles: int = 0
    failures: int = 0
    consecutive_failures: int = 0
    unchanged_cycles: int = 0
    last_duration_ms: int = 0
    last_error: str | None = None
    last_success_at: float | None = None
    started_at: float = field(default_factory=time.time)

    def to_dict(self) -> dict[str, object]:
        """Convert to a plain dict for API responses."""
        return {
            "cycles": self.cycles,
            "failures": self.failures,
            "consecutive_failures": self.consecutive_failures,
            "unchanged_cycles": self.unchanged_cycles,
            "last_duration_ms": self.last_duration_ms,
            "last_error": self.last_error,
            "last_success_at": self.last_success_at,
            "started_at": self.started_at,
        }


class PollMetricsCollector:
    """In-memory collector that tracks per-root poll metrics.

    Attributes:
        _roots: Mapping from root id to its metrics data.
    """

    def __init__(self) -> None:
        """Initialize an empty metrics collector."""
        self._roots: dict[str, PollMetricsData] = {}
        logger.info("poll_metrics_collector_initialized")

    def start(self, root_id: str) -> None:
        """Begin tracking metrics for a root.

        If the root is already being tracked, this is a no-op.
        """
        if root_id in self._roots:
            logger.debug("poll_metrics_already_tracking", root_id=root_id)
            return
        self._roots[root_id] = PollMetricsData()

    def record_success(self, root_id: str, duration_seconds: float, *, changed: bool = True) -> None:
        """Record a successful cycle.

        If the root is not being tracked, this is a no-op with a warning.
        """
        data = self._roots.get(root_id)
        if data is None:
            logger.warning("poll_metrics_no_root", root_id=root_id)
            return

        data.cycles += 1
        data.consecutive_failures = 0
        data.last_error = None
        data.last_duration_ms = int(duration_seconds * 1000)
        data.last_success_at = time.time()
        if not changed:
            data.unchanged_cycles += 1

    def record_failure(self, root_id: str, error: str, duration_seconds: float) -> None:
        """Record a failed cycle."""
        data = self._roots.get(root_id)
        if data is None:
            logger.warning("poll_metrics_no_root", root_id=root_id)
            return

        data.cycles += 1
        data.failures += 1
        data.consecutive_failures += 1
        data.last_error = error
        data.last_duration_ms = int(duration_seconds * 1000)

        logger.debug(
            "poll_metrics_failure_recorded",
            root_id=root_id,
            consecutive_failures=data.consecutive_failures,
        )

    def finish(self, root_id: str) -> PollMetricsData | None:
        """Stop tracking a root and return its final metrics."""
        data = self._roots.pop(root_id, None)
        if data is None:
            return None

        logger.info(
            "poll_metrics_root_finished",
            root_id=root_id,
            cycles=data.cycles,
            failures=data.failures,
        )
        return data

    def get(self, root_id: str) -> PollMetricsData | None:
        """Get current metrics for a root without removing it."""
        return self._roots.get(root_id)
