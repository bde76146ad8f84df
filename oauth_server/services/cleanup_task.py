"""Periodic background sweeps.

A CleanupTask calls one coroutine function every `interval` seconds on the
running event loop until stopped.  A failing sweep is logged and counted,
and the loop carries on; nothing propagates into request handling.

main.py runs two of them:

  sessions  provider.cleanup_sessions  every OAUTH_SESSION_CLEANUP_INTERVAL
  oauth     provider.cleanup           every OAUTH_CLEANUP_INTERVAL
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from oauth_server.core.metrics import CLEANUP_FAILURES

logger = logging.getLogger(__name__)

SweepFn = Callable[[], Awaitable[Any]]


class CleanupTask:
    def __init__(self, name: str, sweep: SweepFn, interval: float) -> None:
        if interval <= 0:
            raise ValueError(f"interval must be positive (got {interval})")
        self.name = name
        self.interval = interval
        self._sweep = sweep
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Schedule the loop on the running event loop.  No-op if already running."""
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(
            self._run(), name=f"cleanup:{self.name}"
        )
        logger.info("Cleanup task %s started  interval=%ss", self.name, self.interval)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
        logger.info("Cleanup task %s stopped", self.name)

    async def run_once(self) -> bool:
        """One sweep.  False when it raised (already logged)."""
        try:
            await self._sweep()
        except Exception:
            CLEANUP_FAILURES.labels(task=self.name).inc()
            logger.exception("Cleanup task %s failed", self.name)
            return False
        return True

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            await self.run_once()
