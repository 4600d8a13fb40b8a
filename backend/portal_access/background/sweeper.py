from __future__ import annotations

import asyncio
import logging
from contextlib import suppress
from typing import Callable

logger = logging.getLogger("portal.background.sweeper")


class RateLimitSweeper:
    """Periodically drops expired rate-limit entries.

    Expired entries are already reset lazily on access; the sweep only
    bounds memory for keys that are never seen again.
    """

    def __init__(self, sweep: Callable[[], int], interval_seconds: float) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be greater than 0")
        self._sweep = sweep
        self._interval = interval_seconds
        self._task: asyncio.Task[None] | None = None
        self._should_stop = False

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        if self.running:
            return
        self._should_stop = False
        self._task = asyncio.create_task(self._loop())
        logger.info("[SWEEPER] started interval=%ss", self._interval)

    async def stop(self) -> None:
        self._should_stop = True
        if self._task is None:
            return
        self._task.cancel()
        with suppress(asyncio.CancelledError):
            await self._task
        self._task = None
        logger.info("[SWEEPER] stopped")

    def run_once(self) -> int:
        try:
            removed = self._sweep()
        except Exception as exc:  # noqa: BLE001
            logger.error("[SWEEPER] sweep_failed", exc_info=exc)
            return 0
        logger.debug("[SWEEPER] swept removed=%d", removed)
        return removed

    async def _loop(self) -> None:
        while not self._should_stop:
            await asyncio.sleep(self._interval)
            if self._should_stop:
                break
            self.run_once()
