"""Periodic sync timer and manual-sync cooldown."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)

MANUAL_SYNC_COOLDOWN_MS = 10 * 60 * 1000


def now_ms() -> int:
    """Return the current UTC time as epoch milliseconds."""
    return int(datetime.now(UTC).timestamp() * 1000)


class SyncScheduler:
    """Invoke a sync callback every interval and rate-limit manual runs.

    Only one timer is ever active. Stopping cancels the timer but not a run the
    timer already started: that run is shielded and finishes on its own, and
    ``wait_idle`` can be awaited to join it.
    """

    def __init__(
        self,
        callback: Callable[[], Awaitable[Any]],
        *,
        last_run_ms: int = 0,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self._callback = callback
        self._clock = clock
        self.last_run_ms = last_run_ms
        self._timer: asyncio.Task[None] | None = None
        self._current_run: asyncio.Task[None] | None = None

    @property
    def is_running(self) -> bool:
        """True while a timer is armed."""
        return self._timer is not None and not self._timer.done()

    def start(self, interval_ms: int) -> None:
        """Arm the timer; the first tick fires after one full interval.

        Must be called from within a running event loop.
        """
        if interval_ms <= 0:
            raise ValueError("Sync interval must be a positive number of milliseconds")
        self.stop()
        self._timer = asyncio.get_running_loop().create_task(
            self._loop(interval_ms / 1000), name="plugsync-timer"
        )
        logger.info("Auto sync scheduled every %d ms", interval_ms)

    def stop(self) -> None:
        """Cancel the timer. No-op when not running."""
        if self._timer is None:
            return
        if not self._timer.done():
            self._timer.cancel()
            logger.info("Auto sync stopped")
        self._timer = None

    async def wait_idle(self) -> None:
        """Wait for a run started by the timer to finish."""
        if self._current_run is not None:
            with contextlib.suppress(asyncio.CancelledError):
                await self._current_run

    def can_run_manual_sync_now(self, now: int | None = None) -> bool:
        """Return True when the cooldown since the last recorded run has elapsed."""
        return self.cooldown_remaining(now) == 0

    def cooldown_remaining(self, now: int | None = None) -> int:
        """Milliseconds until a manual sync is allowed again."""
        current = self._clock() if now is None else now
        elapsed = current - self.last_run_ms
        return max(MANUAL_SYNC_COOLDOWN_MS - elapsed, 0)

    def record_manual_run(self, timestamp_ms: int) -> None:
        self.last_run_ms = timestamp_ms

    async def _loop(self, interval_s: float) -> None:
        while True:
            await asyncio.sleep(interval_s)
            self._current_run = asyncio.get_running_loop().create_task(
                self._tick(), name="plugsync-run"
            )
            # Cancelling the timer must not cancel the run itself.
            await asyncio.shield(self._current_run)

    async def _tick(self) -> None:
        try:
            await self._callback()
        except Exception:
            logger.exception("Scheduled sync failed")
