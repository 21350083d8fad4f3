# services/price_refresh_scheduler.py
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import asdict, dataclass
from decimal import Decimal
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol, Set

from config.settings import get_settings
from services.finnhub.finnhub_service import QuoteResult
from services.holding_service import PersistenceError
from services.periodic_task import PeriodicTask
from services.portfolio_store import HoldingSnapshot, PortfolioState

logger = logging.getLogger(__name__)


class QuoteSource(Protocol):
    async def get_quote(self, symbol: str, typ: str = "equity") -> QuoteResult: ...


@dataclass(frozen=True)
class RefreshConfig:
    enabled: bool = True
    interval: float = 120.0
    batch_size: int = 5
    batch_delay: float = 0.5
    max_consecutive_rate_limits: int = 3
    cooldown: float = 300.0

    @classmethod
    def from_settings(cls) -> "RefreshConfig":
        s = get_settings()
        return cls(
            enabled=s.price_refresh_enabled,
            interval=s.price_refresh_interval_sec,
            batch_size=max(1, s.price_refresh_batch_size),
            batch_delay=s.price_refresh_batch_delay_sec,
            max_consecutive_rate_limits=max(1, s.rate_limit_max_consecutive),
            cooldown=s.rate_limit_cooldown_sec,
        )


@dataclass
class RefreshReport:
    updated: int = 0
    failed: int = 0
    rate_limited: bool = False
    batches: int = 0
    skipped_reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class PriceRefreshScheduler:
    """
    Periodically quotes every held instrument and writes the prices into the
    user's ``PortfolioState``.

    Holdings are quoted in batches: concurrent inside a batch, sequential
    between batches. Ticks that hit the provider's rate limit are counted;
    after ``max_consecutive_rate_limits`` of them in a row all polling is
    suspended for ``cooldown`` seconds.
    """

    def __init__(
        self,
        state: PortfolioState,
        quotes: QuoteSource,
        config: Optional[RefreshConfig] = None,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.state = state
        self.quotes = quotes
        self.config = config or RefreshConfig.from_settings()
        self._clock = clock
        self._sleep = sleep
        self._timer = PeriodicTask("price-refresh", self.config.interval, self.tick, sleep=sleep)
        self._in_flight = False
        self._stopping = False
        self._pending_writes: Set[asyncio.Task] = set()

        self.consecutive_rate_limits = 0
        self.suspended_until: Optional[float] = None
        self.last_report: Optional[RefreshReport] = None

    # -----------------------
    # Lifecycle
    # -----------------------

    @property
    def running(self) -> bool:
        return self._timer.running

    @property
    def suspended(self) -> bool:
        return self.suspended_until is not None and self._clock() < self.suspended_until

    def start(self) -> None:
        if not self.config.enabled:
            logger.info("price refresh disabled; not starting")
            return
        self._stopping = False
        self._timer.start()

    def stop(self) -> None:
        self._stopping = True
        self._timer.stop()

    async def drain(self) -> None:
        """Wait for the in-flight tick and its pending price writes."""
        await self._timer.wait_idle()
        if self._pending_writes:
            await asyncio.gather(*list(self._pending_writes), return_exceptions=True)

    # -----------------------
    # Tick
    # -----------------------

    async def tick(self) -> RefreshReport:
        if self.suspended_until is not None:
            if self._clock() < self.suspended_until:
                remaining = self.suspended_until - self._clock()
                logger.info("price refresh suspended, resuming in %.0fs", remaining)
                return self._skip("suspended")
            self.suspended_until = None
            self.consecutive_rate_limits = 0
            logger.info("price refresh resumed after cooldown")

        if self._in_flight:
            return self._skip("in_flight")

        targets = self.state.refreshable()
        if not targets:
            return self._skip("empty")

        self._in_flight = True
        try:
            report = await self._refresh(targets)
        except Exception:
            logger.exception("price refresh tick failed")
            report = RefreshReport(failed=len(targets), rate_limited=True)
        finally:
            self._in_flight = False

        self._record(report, len(targets))
        self.last_report = report
        return report

    def _skip(self, reason: str) -> RefreshReport:
        return RefreshReport(skipped_reason=reason)

    async def _refresh(self, targets: List[HoldingSnapshot]) -> RefreshReport:
        report = RefreshReport()
        size = self.config.batch_size

        for start in range(0, len(targets), size):
            if self._stopping:
                break
            batch = targets[start:start + size]
            results = await asyncio.gather(*(self.quotes.get_quote(h.symbol, h.type) for h in batch))
            report.batches += 1

            for holding, res in zip(batch, results):
                if res.rate_limited:
                    report.rate_limited = True
                    report.failed += 1
                elif res.ok:
                    self._apply_price(holding, res.price)
                    report.updated += 1
                else:
                    report.failed += 1

            if report.rate_limited:
                logger.warning("rate limit hit; stopping this refresh after batch %d", report.batches)
                break
            if start + size < len(targets):
                await self._sleep(self.config.batch_delay)

        return report

    def _record(self, report: RefreshReport, total: int) -> None:
        limit = self.config.max_consecutive_rate_limits
        if report.rate_limited:
            self.consecutive_rate_limits += 1
            logger.warning("rate limited tick (%d/%d)", self.consecutive_rate_limits, limit)
            if self.consecutive_rate_limits >= limit:
                self.suspended_until = self._clock() + self.config.cooldown
                logger.warning("too many rate limited ticks; pausing price refresh for %.0fs", self.config.cooldown)
        elif report.updated > 0:
            self.consecutive_rate_limits = 0
            if report.updated < total:
                logger.info("prices updated %d/%d", report.updated, total)

    # -----------------------
    # Price writes
    # -----------------------

    def _apply_price(self, holding: HoldingSnapshot, price: Optional[Decimal]) -> None:
        if price is None or self.state.set_price(holding.id, price) is None:
            return
        user_id = self.state.user_id
        if user_id is None:
            return
        t = asyncio.get_running_loop().create_task(self._persist_price(user_id, holding.id, price))
        self._pending_writes.add(t)
        t.add_done_callback(self._pending_writes.discard)

    async def _persist_price(self, user_id: int, holding_id: int, price: Decimal) -> None:
        try:
            await asyncio.to_thread(self.state.repo.save_price, user_id, holding_id, price)
        except PersistenceError as e:
            logger.error("price persist failed holding_id=%s: %s", holding_id, e)
