# services/session_manager.py
"""
Per-user composition root.

A ``PortfolioSession`` owns the user's ``PortfolioState`` and the two
background loops that work on it. The HTTP layer only starts and stops
sessions; it never drives timers itself.
"""
from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.orm import Session

from services.alert_checker import AlertChecker
from services.holding_service import PersistenceError
from services.portfolio_store import PortfolioState, SqlHoldingRepository
from services.price_refresh_scheduler import PriceRefreshScheduler, QuoteSource, RefreshConfig

logger = logging.getLogger(__name__)


class PortfolioSession:
    def __init__(
        self,
        state: PortfolioState,
        scheduler: Optional[PriceRefreshScheduler],
        alert_checker: AlertChecker,
        last_used: float = 0.0,
    ):
        self.state = state
        self.scheduler = scheduler
        self.alert_checker = alert_checker
        self.last_used = last_used

    @property
    def user_id(self) -> Optional[int]:
        return self.state.user_id

    @property
    def running(self) -> bool:
        return bool(self.scheduler and self.scheduler.running) or self.alert_checker.running

    def start(self) -> None:
        if self.scheduler is not None:
            self.scheduler.start()
        self.alert_checker.start()

    def stop(self) -> None:
        if self.scheduler is not None:
            self.scheduler.stop()
        self.alert_checker.stop()

    async def close(self) -> None:
        self.stop()
        if self.scheduler is not None:
            await self.scheduler.drain()
        await self.alert_checker.drain()

    def status(self) -> Dict[str, Any]:
        sched = self.scheduler
        return {
            "running": self.running,
            "price_refresh": {
                "available": sched is not None,
                "running": bool(sched and sched.running),
                "suspended": bool(sched and sched.suspended),
                "consecutive_rate_limits": sched.consecutive_rate_limits if sched else 0,
                "last_report": sched.last_report.to_dict() if sched and sched.last_report else None,
            },
            "alert_check": {
                "running": self.alert_checker.running,
                "last_created": self.alert_checker.last_created,
            },
        }


class SessionManager:
    """
    Sessions keyed by user id. ``get_or_create`` runs on request threads, so
    the map is guarded by a lock; loading from the database happens outside
    it and the first session stored for a user wins. Sessions whose loops are
    not running are dropped after ``idle_ttl`` seconds without a request.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        quote_source_factory: Callable[[], Optional[QuoteSource]],
        *,
        refresh_config: Optional[RefreshConfig] = None,
        alert_interval: Optional[float] = None,
        idle_ttl: Optional[float] = 1800.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._session_factory = session_factory
        self._quote_source_factory = quote_source_factory
        self._refresh_config = refresh_config
        self._alert_interval = alert_interval
        self._idle_ttl = idle_ttl
        self._clock = clock
        self._sessions: Dict[int, PortfolioSession] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._sessions)

    def get(self, user_id: int) -> Optional[PortfolioSession]:
        with self._lock:
            return self._sessions.get(user_id)

    def get_or_create(self, user_id: int) -> PortfolioSession:
        """Session with loaded state; background loops are not started here."""
        self.evict_idle()
        with self._lock:
            existing = self._sessions.get(user_id)
            if existing is not None:
                existing.last_used = self._clock()
                return existing

        session = self._build(user_id)

        with self._lock:
            winner = self._sessions.setdefault(user_id, session)
            winner.last_used = self._clock()
        if winner is not session:
            logger.debug("concurrent session build discarded user_id=%s", user_id)
        return winner

    def _build(self, user_id: int) -> PortfolioSession:
        state = PortfolioState(user_id, SqlHoldingRepository(self._session_factory))
        err = state.load()
        if err:
            raise PersistenceError(err)

        quotes = self._quote_source_factory()
        scheduler = None
        if quotes is not None:
            scheduler = PriceRefreshScheduler(state, quotes, self._refresh_config)
        else:
            logger.warning("quote provider not configured; price refresh unavailable")
        checker = AlertChecker(state, self._session_factory, interval=self._alert_interval)
        return PortfolioSession(state, scheduler, checker)

    def evict_idle(self, max_idle: Optional[float] = None) -> List[int]:
        """Drop sessions with no running loops and no request for ``max_idle`` seconds."""
        limit = self._idle_ttl if max_idle is None else max_idle
        if limit is None:
            return []
        cutoff = self._clock() - limit
        with self._lock:
            stale = [uid for uid, s in self._sessions.items() if not s.running and s.last_used < cutoff]
            for uid in stale:
                del self._sessions[uid]
        if stale:
            logger.info("evicted idle sessions count=%d", len(stale))
        return stale

    def start(self, user_id: int) -> PortfolioSession:
        session = self.get_or_create(user_id)
        session.start()
        return session

    async def stop(self, user_id: int) -> bool:
        with self._lock:
            session = self._sessions.pop(user_id, None)
        if session is None:
            return False
        await session.close()
        return True

    async def shutdown(self) -> None:
        with self._lock:
            user_ids = list(self._sessions)
        for user_id in user_ids:
            await self.stop(user_id)
