# routers/market_routes.py
import time

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from middleware.rate_limit import limiter
from services.finnhub.client import get_shared_client
from services.finnhub.finnhub_service import FinnhubService, FinnhubServiceError, QuoteUnavailableError
from services.supabase_auth import get_current_db_user

router = APIRouter()

CANDLE_RESOLUTIONS = {"1", "5", "15", "30", "60", "D", "W", "M"}


# ---- Dependency to get the service (API key comes from settings) ----
def get_finnhub_service() -> FinnhubService:
    try:
        return FinnhubService(client=get_shared_client())
    except FinnhubServiceError as e:
        raise HTTPException(status_code=503, detail=str(e))


def _unavailable(e: QuoteUnavailableError) -> HTTPException:
    if e.rate_limited:
        return HTTPException(status_code=429, detail="Market data provider rate limit reached")
    return HTTPException(status_code=502, detail=str(e))


@router.get("/quote")
@limiter.limit("30/minute")
async def get_quote(
    request: Request,
    symbol: str,
    type: str = "equity",
    user=Depends(get_current_db_user),
    svc: FinnhubService = Depends(get_finnhub_service),
):
    try:
        return await svc.get_price(symbol=symbol, typ=type)
    except QuoteUnavailableError as e:
        raise _unavailable(e)
    except FinnhubServiceError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get("/candles")
@limiter.limit("30/minute")
async def get_candles(
    request: Request,
    symbol: str,
    type: str = "equity",
    resolution: str = "D",
    from_ts: int | None = Query(None, alias="from"),
    to_ts: int | None = Query(None, alias="to"),
    user=Depends(get_current_db_user),
    svc: FinnhubService = Depends(get_finnhub_service),
):
    if resolution not in CANDLE_RESOLUTIONS:
        raise HTTPException(status_code=400, detail=f"Unsupported resolution: {resolution}")
    to_ts = to_ts or int(time.time())
    from_ts = from_ts or to_ts - 30 * 24 * 3600

    try:
        series = await svc.get_candles(symbol, type, resolution, from_ts, to_ts)
    except QuoteUnavailableError as e:
        raise _unavailable(e)
    except FinnhubServiceError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return series.to_dict()
