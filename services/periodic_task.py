# services/periodic_task.py
from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional, Set

logger = logging.getLogger(__name__)


class PeriodicTask:
    """
    Fires ``fn`` every ``interval`` seconds on the running event loop.

    Each firing runs as its own task, so ``stop()`` only cancels the timer:
    a call already in flight is allowed to finish. Overlap handling is the
    callee's business.
    """

    def __init__(
        self,
        name: str,
        interval: float,
        fn: Callable[[], Awaitable[Any]],
        *,
        run_immediately: bool = True,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.name = name
        self.interval = max(0.0, float(interval))
        self._fn = fn
        self._run_immediately = run_immediately
        self._sleep = sleep
        self._timer: Optional[asyncio.Task] = None
        self._inflight: Set[asyncio.Task] = set()

    @property
    def running(self) -> bool:
        return self._timer is not None and not self._timer.done()

    def start(self) -> None:
        if self.running:
            return
        self._timer = asyncio.get_running_loop().create_task(self._loop(), name=f"periodic:{self.name}")
        logger.info("periodic task started name=%s interval=%.1fs", self.name, self.interval)

    def stop(self) -> None:
        if self._timer is None:
            return
        self._timer.cancel()
        self._timer = None
        logger.info("periodic task stopped name=%s", self.name)

    async def wait_idle(self) -> None:
        """Wait for firings that were already in flight when stop() was called."""
        if self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)

    async def _loop(self) -> None:
        if self._run_immediately:
            self._fire()
        while True:
            await self._sleep(self.interval)
            self._fire()

    def _fire(self) -> None:
        t = asyncio.get_running_loop().create_task(self._call(), name=f"periodic:{self.name}:run")
        self._inflight.add(t)
        t.add_done_callback(self._inflight.discard)

    async def _call(self) -> None:
        try:
            await self._fn()
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("periodic task run failed name=%s", self.name)
