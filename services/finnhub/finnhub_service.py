# services/finnhub/finnhub_service.py
from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx

from config.settings import get_settings
from services.cache.cache_backend import cache_get, cache_set
from services.finnhub.client import FINNHUB_BASE_URL, build_finnhub_client
from utils.common_helpers import normalize_asset_type, safe_json, to_decimal

logger = logging.getLogger(__name__)

TTL_CANDLES_SEC = 300
CRYPTO_EXCHANGE = "BINANCE"
CRYPTO_QUOTE_CURRENCY = "USDT"

Sleep = Callable[[float], Awaitable[Any]]


class FinnhubServiceError(Exception):
    """Domain-level error for the Finnhub service."""


class QuoteUnavailableError(FinnhubServiceError):
    def __init__(self, message: str, *, rate_limited: bool = False):
        super().__init__(message)
        self.rate_limited = rate_limited


def format_finnhub_symbol(symbol: str, typ: str = "") -> str:
    """
    Finnhub quote endpoint expects:
      - Stocks/ETFs/bonds: "AAPL"
      - Crypto as "EXCHANGE:PAIR" (e.g., "BINANCE:BTCUSDT")
    """
    s = (symbol or "").upper().strip()
    if not s:
        return s
    if normalize_asset_type(typ) == "crypto":
        # already qualified, e.g. "COINBASE:BTC-USD"
        if ":" in s:
            return s
        return f"{CRYPTO_EXCHANGE}:{s}{CRYPTO_QUOTE_CURRENCY}"
    return s


@dataclass(frozen=True)
class RetryPolicy:
    """
    Retry bounds for a single Finnhub request.

    429 waits rate_limit_delay * (attempt + 1); 5xx and transport errors wait
    base_delay * 2**attempt. Attempts are numbered from 0, so a request is
    sent at most max_retries + 1 times.
    """

    max_retries: int = 3
    base_delay: float = 1.0
    rate_limit_delay: float = 60.0

    @classmethod
    def from_settings(cls) -> "RetryPolicy":
        s = get_settings()
        return cls(
            max_retries=s.quote_max_retries,
            base_delay=s.quote_retry_base_delay_sec,
            rate_limit_delay=s.quote_rate_limit_delay_sec,
        )

    def can_retry(self, attempt: int) -> bool:
        return attempt < self.max_retries

    def rate_limit_wait(self, attempt: int) -> float:
        return self.rate_limit_delay * (attempt + 1)

    def backoff_wait(self, attempt: int) -> float:
        return self.base_delay * (2 ** attempt)


@dataclass
class QuoteResult:
    symbol: str
    price: Optional[Decimal] = None
    previous_close: Optional[Decimal] = None
    rate_limited: bool = False
    attempts: int = 0
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.price is not None and self.price > 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "formattedSymbol": self.symbol,
            "currentPrice": float(self.price) if self.price is not None else None,
            "previousClose": float(self.previous_close) if self.previous_close is not None else None,
            "currency": "USD",
        }


@dataclass
class _Fetch:
    response: Optional[httpx.Response] = None
    rate_limited: bool = False
    attempts: int = 0
    error: Optional[str] = None


@dataclass
class CandleSeries:
    symbol: str
    resolution: str
    status: str
    samples: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "symbol": self.symbol,
            "resolution": self.resolution,
            "status": self.status,
            "samples": self.samples,
        }


def _positive(x: Any) -> Optional[Decimal]:
    if x is None:
        return None
    d = to_decimal(x)
    return d if d > 0 else None


class FinnhubService:
    """
    Async Finnhub client for quotes and candles.

    Every request goes through one retry loop governed by ``RetryPolicy``.
    Quote failures never raise from ``get_quote``; they come back as a
    ``QuoteResult`` with ``rate_limited`` / ``error`` set so the refresh
    loop can decide what to do.
    """

    BASE_URL = FINNHUB_BASE_URL

    def __init__(
        self,
        api_key: Optional[str] = None,
        *,
        client: Optional[httpx.AsyncClient] = None,
        policy: Optional[RetryPolicy] = None,
        sleep: Sleep = asyncio.sleep,
    ):
        self.api_key = api_key or get_settings().finnhub_api_key
        if not self.api_key:
            raise FinnhubServiceError("Missing FINNHUB_API_KEY")
        self.policy = policy or RetryPolicy.from_settings()
        self._http = client
        self._sleep = sleep

    @asynccontextmanager
    async def _client(self):
        if self._http is not None:
            yield self._http
            return
        async with build_finnhub_client() as c:
            yield c

    def _auth_params(self, **params: Any) -> Dict[str, Any]:
        return {**params, "token": self.api_key}

    async def _get_with_retry(self, c: httpx.AsyncClient, path: str, params: Dict[str, Any]) -> _Fetch:
        policy = self.policy
        attempt = 0
        while True:
            try:
                r = await c.get(f"{self.BASE_URL}{path}", params=self._auth_params(**params))
            except httpx.HTTPError as e:
                if policy.can_retry(attempt):
                    await self._sleep(policy.backoff_wait(attempt))
                    attempt += 1
                    continue
                return _Fetch(attempts=attempt + 1, error=f"network error: {type(e).__name__}")

            if r.status_code == 429:
                if policy.can_retry(attempt):
                    wait = policy.rate_limit_wait(attempt)
                    logger.info("finnhub rate limited path=%s attempt=%d wait=%.1fs", path, attempt + 1, wait)
                    await self._sleep(wait)
                    attempt += 1
                    continue
                return _Fetch(rate_limited=True, attempts=attempt + 1, error="rate limited")

            if r.status_code >= 500:
                if policy.can_retry(attempt):
                    await self._sleep(policy.backoff_wait(attempt))
                    attempt += 1
                    continue
                return _Fetch(attempts=attempt + 1, error=f"server error {r.status_code}")

            if r.status_code >= 400:
                return _Fetch(attempts=attempt + 1, error=f"request failed {r.status_code}")

            return _Fetch(response=r, attempts=attempt + 1)

    # -----------------------
    # Quotes
    # -----------------------

    async def get_quote(self, symbol: str, typ: str = "equity") -> QuoteResult:
        fs = format_finnhub_symbol(symbol, typ)
        if not fs:
            return QuoteResult(symbol="", error="Missing symbol")

        async with self._client() as c:
            fetch = await self._get_with_retry(c, "/quote", {"symbol": fs})

        if fetch.response is None:
            logger.warning(
                "quote failed symbol=%s attempts=%d rate_limited=%s error=%s",
                fs, fetch.attempts, fetch.rate_limited, fetch.error,
            )
            return QuoteResult(symbol=fs, rate_limited=fetch.rate_limited, attempts=fetch.attempts, error=fetch.error)

        data = safe_json(fetch.response) or {}
        prev = _positive(data.get("pc"))
        # fall back to previous close outside market hours
        price = _positive(data.get("c")) or prev
        if price is None:
            return QuoteResult(symbol=fs, attempts=fetch.attempts, error="Price not available for this symbol")
        return QuoteResult(symbol=fs, price=price, previous_close=prev, attempts=fetch.attempts)

    async def get_price(self, symbol: str, typ: str = "equity") -> Dict[str, Any]:
        """Quote as a plain dict; raises QuoteUnavailableError when there is no price."""
        res = await self.get_quote(symbol, typ)
        if not res.ok:
            raise QuoteUnavailableError(res.error or "Price not available", rate_limited=res.rate_limited)
        return {"symbol": (symbol or "").upper().strip(), **res.to_dict()}

    # -----------------------
    # Candles
    # -----------------------

    async def get_candles(
        self,
        symbol: str,
        typ: str,
        resolution: str,
        from_ts: int,
        to_ts: int,
    ) -> CandleSeries:
        fs = format_finnhub_symbol(symbol, typ)
        if not fs:
            raise FinnhubServiceError("Missing symbol")
        if from_ts >= to_ts:
            raise FinnhubServiceError("'from' must be earlier than 'to'")

        cache_key = f"FINNHUB:CANDLES:{fs}:{resolution}:{from_ts}:{to_ts}"
        hit = cache_get(cache_key)
        if isinstance(hit, dict):
            return CandleSeries(**hit)

        path = "/crypto/candle" if normalize_asset_type(typ) == "crypto" else "/stock/candle"
        async with self._client() as c:
            fetch = await self._get_with_retry(
                c, path, {"symbol": fs, "resolution": resolution, "from": int(from_ts), "to": int(to_ts)}
            )
        if fetch.response is None:
            raise QuoteUnavailableError(fetch.error or "Candles unavailable", rate_limited=fetch.rate_limited)

        data = safe_json(fetch.response) or {}
        status = str(data.get("s") or "no_data")
        samples: List[Dict[str, Any]] = []
        if status == "ok":
            cols = [data.get(k) or [] for k in ("t", "o", "h", "l", "c", "v")]
            for t, o, h, low, cl, v in zip(*cols):
                samples.append({"t": int(t), "o": o, "h": h, "l": low, "c": cl, "v": v})

        series = CandleSeries(symbol=fs, resolution=resolution, status=status, samples=samples)
        cache_set(cache_key, series.to_dict(), ttl_seconds=TTL_CANDLES_SEC)
        return series
