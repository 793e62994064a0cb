"""Debounced remote push: bursts of accepted changes collapse into one write."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable

from scenario_tracker.config import settings
from scenario_tracker.logging import get_logger

logger = get_logger("services.persistence")


class DebouncedPusher:
    """
    Runs `push` once after `delay` seconds without another `schedule()` call.

    Every `schedule()` cancels the pending timer and starts a new one.
    """

    def __init__(
        self,
        push: Callable[[], Awaitable[None]],
        delay: float | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._push = push
        self.delay = settings.PUSH_DEBOUNCE_SECONDS if delay is None else delay
        self._sleep = sleep
        self._task: asyncio.Task | None = None

    @property
    def pending(self) -> bool:
        return self._task is not None and not self._task.done()

    def schedule(self) -> None:
        self.cancel()
        self._task = asyncio.create_task(self._run_after_delay())

    async def _run_after_delay(self) -> None:
        await self._sleep(self.delay)
        # Past the quiet period: a new schedule() must not cancel this write.
        self._task = None
        try:
            await self._push()
        except Exception:
            logger.exception("Debounced push failed")

    async def flush(self) -> None:
        """Run a pending push now instead of waiting for the timer."""
        if not self.pending:
            return
        self.cancel()
        await self._push()

    def cancel(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None
