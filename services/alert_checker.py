from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from config.settings import get_settings
from services import alert_service
from services.periodic_task import PeriodicTask
from services.portfolio_store import PortfolioState

logger = logging.getLogger(__name__)


class AlertChecker:
    """Runs the alert evaluator against the user's latest in-memory prices."""

    def __init__(
        self,
        state: PortfolioState,
        session_factory: Callable[[], Session],
        *,
        interval: Optional[float] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.state = state
        self._session_factory = session_factory
        self._timer = PeriodicTask(
            "alert-check",
            interval if interval is not None else get_settings().alert_check_interval_sec,
            self.check_once,
            sleep=sleep,
        )
        self.last_created = 0

    @property
    def running(self) -> bool:
        return self._timer.running

    def start(self) -> None:
        self._timer.start()

    def stop(self) -> None:
        self._timer.stop()

    async def drain(self) -> None:
        await self._timer.wait_idle()

    def _check_sync(self) -> int:
        user_id = self.state.user_id
        holdings = self.state.holdings()
        if user_id is None or not holdings:
            return 0
        with self._session_factory() as db:
            try:
                return alert_service.check_alerts_and_notify(db, user_id, holdings)
            except SQLAlchemyError as e:
                db.rollback()
                logger.error("alert check failed: %s", e.__class__.__name__)
                return 0

    async def check_once(self) -> int:
        self.last_created = await asyncio.to_thread(self._check_sync)
        return self.last_created
