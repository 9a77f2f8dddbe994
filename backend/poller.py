"""Fixed-interval polling loop for one tracked root.

The tracker offers no change notifications, so each root is refreshed by a
Poller that repeats fetch → update on its own asyncio task:

- ``start()`` runs the first cycle immediately.
- The next cycle is scheduled only after the previous one, callbacks
  included, has finished. Two cycles never overlap for the same root.
- A failed cycle is reported to ``on_error`` and the loop carries on at
  the same fixed interval. There is no backoff, so a failing root recovers
  on its own once the tracker does.
- ``stop()`` cancels the next scheduled cycle. A cycle already in flight
  finishes, but schedules nothing further.
- ``request_refresh()`` shortens the current wait so the next cycle starts
  right away. It is still serialised behind any cycle in flight.

Usage:
    >>> poller = Poller("proj-1", fetch=fetch_tree, on_update=publish, interval_seconds=5)
    >>> poller.start()
    >>> poller.request_refresh()
    >>> await poller.wait_for_cycle(timeout=10)
    >>> poller.stop()
    >>> await poller.wait_stopped()
"""

import asyncio
import contextlib
import hashlib
import inspect
import time
from collections.abc import Awaitable, Callable
from typing import Any, Generic, TypeVar

import structlog

from metrics import PollMetricsCollector

logger = structlog.get_logger(__name__)

T = TypeVar("T")

ErrorCallback = Callable[[Exception], Awaitable[None] | None]


def default_fingerprint(value: Any) -> bytes:
    """Bytes that identify fetched content for change detection."""
    if isinstance(value, bytes):
        return value
    if isinstance(value, str):
        return value.encode("utf-8")
    return repr(value).encode("utf-8")


class Poller(Generic[T]):
    """Repeats fetch → update for one root on a fixed interval.

    Attributes:
        name: Identifier used in logs and metrics (normally the root id).
        interval_seconds: Delay between the end of one cycle and the start
            of the next.
        detect_changes: If True, skip ``on_update`` when the fetched content
            hashes the same as the last successfully applied content.
    """

    def __init__(
        self,
        name: str,
        fetch: Callable[[], Awaitable[T]],
        on_update: Callable[[T], Awaitable[None]],
        interval_seconds: float,
        on_error: ErrorCallback | None = None,
        *,
        detect_changes: bool = False,
        fingerprint: Callable[[T], bytes] = default_fingerprint,
        metrics_collector: PollMetricsCollector | None = None,
    ) -> None:
        self.name = name
        self.interval_seconds = interval_seconds
        self.detect_changes = detect_changes
        self._fetch = fetch
        self._on_update = on_update
        self._on_error = on_error
        self._fingerprint = fingerprint
        self._metrics = metrics_collector
        # One stop event per start(). A stopped loop stays stopped even
        # after a later start().
        self._stop_event: asyncio.Event | None = None
        self._task: asyncio.Task[None] | None = None
        self._wake = asyncio.Event()
        self._waiters: list[asyncio.Future[bool]] = []
        self._last_digest: str | None = None
        self.cycle_count = 0

    @property
    def is_running(self) -> bool:
        return self._stop_event is not None and not self._stop_event.is_set()

    def start(self) -> None:
        """Start polling. The first cycle runs immediately.

        Must be called from a running event loop. Calling it on a poller
        that is already running is a no-op. If a stopped loop still has a
        cycle in flight, the new loop starts once that cycle has finished.
        """
        if self.is_running:
            return
        previous = self._task if self._task is not None and not self._task.done() else None
        stop_event = asyncio.Event()
        self._stop_event = stop_event
        self._task = asyncio.create_task(
            self._run(stop_event, previous), name=f"poller_{self.name}"
        )
        logger.info(
            "poller_started",
            poller=self.name,
            interval_seconds=self.interval_seconds,
            detect_changes=self.detect_changes,
        )

    def stop(self) -> None:
        """Stop scheduling cycles. A cycle in flight is allowed to finish."""
        if self._stop_event is None or self._stop_event.is_set():
            return
        self._stop_event.set()
        self._wake.set()
        logger.info("poller_stop_requested", poller=self.name)

    async def wait_stopped(self) -> None:
        """Wait for the loop task to exit after ``stop()``."""
        if self._task is not None:
            await self._task

    def request_refresh(self) -> None:
        """Run the next cycle as soon as the current one (if any) finishes."""
        self._wake.set()

    async def wait_for_cycle(self, timeout: float | None = None) -> bool:
        """Request a refresh and wait for a cycle that starts after the request.

        Returns:
            True once such a cycle has succeeded. False if that cycle failed,
            the poller stopped first, or the timeout expired.
        """
        if not self.is_running:
            return False
        future: asyncio.Future[bool] = asyncio.get_running_loop().create_future()
        self._waiters.append(future)
        self.request_refresh()
        try:
            return await asyncio.wait_for(future, timeout=timeout)
        except TimeoutError:
            logger.warning("poller_cycle_wait_timeout", poller=self.name, timeout=timeout)
            return False

    async def _run(
        self,
        stop_event: asyncio.Event,
        previous: asyncio.Task[None] | None,
    ) -> None:
        current: list[asyncio.Future[bool]] = []
        try:
            if previous is not None:
                await asyncio.wait([previous])
            while not stop_event.is_set():
                self._wake.clear()
                current, self._waiters = self._waiters, []
                succeeded = await self._poll_once()
                self._resolve(current, succeeded)
                current = []
                if stop_event.is_set():
                    break
                with contextlib.suppress(TimeoutError):
                    await asyncio.wait_for(self._wake.wait(), timeout=self.interval_seconds)
        finally:
            stop_event.set()
            self._resolve(current, False)
            # Pending waiters belong to a newer loop once start() ran again.
            if self._stop_event is stop_event:
                self._resolve(self._waiters, False)
                self._waiters = []
            logger.info("poller_stopped", poller=self.name, cycles=self.cycle_count)

    async def _poll_once(self) -> bool:
        """Run one fetch → update cycle. Returns False if it failed."""
        self.cycle_count += 1
        started = time.monotonic()
        try:
            value = await self._fetch()

            digest: str | None = None
            if self.detect_changes:
                digest = hashlib.sha256(self._fingerprint(value)).hexdigest()
                if digest == self._last_digest:
                    logger.debug("poll_content_unchanged", poller=self.name)
                    self._record_success(started, changed=False)
                    return True

            await self._on_update(value)
            if digest is not None:
                self._last_digest = digest
            self._record_success(started, changed=True)
            return True
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(
                "poll_cycle_failed",
                poller=self.name,
                cycle=self.cycle_count,
                error=str(e),
                error_type=type(e).__name__,
            )
            if self._metrics is not None:
                self._metrics.record_failure(self.name, str(e), time.monotonic() - started)
            await self._report_error(e)
            return False

    async def _report_error(self, error: Exception) -> None:
        if self._on_error is None:
            return
        try:
            result = self._on_error(error)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error("poll_error_callback_failed", poller=self.name, error=str(e))

    def _record_success(self, started: float, *, changed: bool) -> None:
        if self._metrics is not None:
            self._metrics.record_success(self.name, time.monotonic() - started, changed=changed)

    @staticmethod
    def _resolve(waiters: list[asyncio.Future[bool]], value: bool) -> None:
        for waiter in waiters:
            if not waiter.done():
                waiter.set_result(value)
