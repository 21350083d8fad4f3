# routers/alert_routes.py
from typing import List

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from database import get_db
from models.user import User
from routers.deps import get_portfolio_session
from schemas.alert import AlertCreate, AlertOut
from services import alert_service
from services.session_manager import PortfolioSession
from services.supabase_auth import get_current_db_user

router = APIRouter()


@router.get("/alerts", response_model=List[AlertOut])
def list_alerts(db: Session = Depends(get_db), user: User = Depends(get_current_db_user)):
    return alert_service.list_active_alerts(db, user.id)


@router.post("/alerts", response_model=AlertOut, status_code=201)
def create_alert(
    payload: AlertCreate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_db_user),
    session: PortfolioSession = Depends(get_portfolio_session),
):
    initial = payload.initial_price
    if initial is None:
        # the in-memory price is newer than the stored one while a refresh write is pending
        live = session.state.get(payload.holding_id)
        if live is not None and live.current_price > 0:
            initial = live.current_price

    try:
        return alert_service.create_alert(
            db,
            user.id,
            holding_id=payload.holding_id,
            target_price=payload.target_price,
            initial_price=initial,
        )
    except ValueError as e:
        code = 404 if str(e) == "Holding not found" else 400
        raise HTTPException(status_code=code, detail=str(e))


@router.delete("/alerts/{alert_id}", response_model=AlertOut)
def deactivate_alert(alert_id: int, db: Session = Depends(get_db), user: User = Depends(get_current_db_user)):
    try:
        return alert_service.deactivate_alert(db, user.id, alert_id)
    except ValueError as e:
        raise HTTPException(status_code=404, detail=str(e))
