# routers/deps.py
from fastapi import Depends, HTTPException, Request

from models.user import User
from services.holding_service import PersistenceError
from services.portfolio_store import ActionResult, MISSING_USER, NOT_FOUND
from services.session_manager import PortfolioSession, SessionManager
from services.supabase_auth import get_current_db_user


def get_session_manager(request: Request) -> SessionManager:
    manager = getattr(request.app.state, "session_manager", None)
    if manager is None:
        raise HTTPException(status_code=503, detail="Service is starting up")
    return manager


def get_portfolio_session(
    user: User = Depends(get_current_db_user),
    manager: SessionManager = Depends(get_session_manager),
) -> PortfolioSession:
    """The caller's session, loading holdings on first use."""
    try:
        return manager.get_or_create(user.id)
    except PersistenceError as e:
        raise HTTPException(status_code=502, detail=str(e))


def raise_for_result(res: ActionResult) -> None:
    if res.ok:
        return
    if res.error == MISSING_USER:
        raise HTTPException(status_code=401, detail=res.error)
    if res.error == NOT_FOUND:
        raise HTTPException(status_code=404, detail=res.error)
    if res.error and res.error.startswith("Unsupported asset type"):
        raise HTTPException(status_code=400, detail=res.error)
    raise HTTPException(status_code=502, detail=res.error or "Could not save holding")
