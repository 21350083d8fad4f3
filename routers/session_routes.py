# routers/session_routes.py
import logging

from fastapi import APIRouter, Depends, Request

from middleware.rate_limit import limiter
from models.user import User
from routers.deps import get_portfolio_session, get_session_manager
from services.session_manager import PortfolioSession, SessionManager
from services.supabase_auth import get_current_db_user

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/start")
@limiter.limit("10/minute")
async def start_session(request: Request, session: PortfolioSession = Depends(get_portfolio_session)):
    """Start background price refresh and alert checks; calling it again is harmless."""
    session.start()
    logger.info("session started user_id=%s", session.user_id)
    return session.status()


@router.post("/stop")
async def stop_session(
    user: User = Depends(get_current_db_user),
    manager: SessionManager = Depends(get_session_manager),
):
    stopped = await manager.stop(user.id)
    if stopped:
        logger.info("session stopped user_id=%s", user.id)
    return {"stopped": stopped}


@router.get("/status")
def session_status(
    user: User = Depends(get_current_db_user),
    manager: SessionManager = Depends(get_session_manager),
):
    session = manager.get(user.id)
    if session is None:
        return {"running": False, "price_refresh": None, "alert_check": None}
    return session.status()
