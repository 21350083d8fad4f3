# main.py
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from config.logging_config import configure_logging
from config.settings import get_settings
from database import Base, SessionLocal, engine
import models  # noqa: F401  registers every table on Base.metadata
from middleware.rate_limit import limiter
from middleware.request_logging import RequestLoggingMiddleware
from routers.alert_routes import router as alert_router
from routers.holdings_routes import router as holdings_router
from routers.market_routes import router as market_router
from routers.notification_routes import router as notification_router
from routers.session_routes import router as session_router
from routers.user_routes import router as user_router
from services.finnhub.client import close_shared_client, get_shared_client
from services.finnhub.finnhub_service import FinnhubService
from services.price_refresh_scheduler import RefreshConfig
from services.session_manager import SessionManager

configure_logging()
logger = logging.getLogger(__name__)

settings = get_settings()


def _quote_source():
    if not settings.quotes_enabled:
        return None
    return FinnhubService(client=get_shared_client())


@asynccontextmanager
async def lifespan(app: FastAPI):
    Base.metadata.create_all(bind=engine)
    app.state.session_manager = SessionManager(
        SessionLocal,
        _quote_source,
        refresh_config=RefreshConfig.from_settings(),
        alert_interval=settings.alert_check_interval_sec,
        idle_ttl=settings.session_idle_ttl_sec,
    )
    for message in settings.config_warnings():
        logger.warning(message)
    logger.info("startup complete")
    try:
        yield
    finally:
        await app.state.session_manager.shutdown()
        await close_shared_client()
        logger.info("shutdown complete")


app = FastAPI(lifespan=lifespan)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
app.add_middleware(SlowAPIMiddleware)
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)

# Include routers
app.include_router(user_router)
app.include_router(holdings_router, prefix="/api")
app.include_router(alert_router, prefix="/api")
app.include_router(notification_router, prefix="/api")
app.include_router(market_router, prefix="/api/market")
app.include_router(session_router, prefix="/api/session")


@app.get("/health")
def health():
    return {"status": "ok"}
