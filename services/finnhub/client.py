# services/finnhub/client.py
from __future__ import annotations

import httpx

FINNHUB_BASE_URL = "https://finnhub.io/api/v1"

_shared: httpx.AsyncClient | None = None


def build_finnhub_client(**overrides) -> httpx.AsyncClient:
    opts = dict(
        base_url=FINNHUB_BASE_URL,
        timeout=httpx.Timeout(5.0, connect=2.0),
        limits=httpx.Limits(max_connections=20, max_keepalive_connections=10),
        http2=True,
    )
    opts.update(overrides)
    return httpx.AsyncClient(**opts)


def get_shared_client() -> httpx.AsyncClient:
    """Process-wide client reused by every session's price refresh."""
    global _shared
    if _shared is None or _shared.is_closed:
        _shared = build_finnhub_client()
    return _shared


async def close_shared_client() -> None:
    global _shared
    if _shared is not None and not _shared.is_closed:
        await _shared.aclose()
    _shared = None
