# routers/holdings_routes.py
from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from database import get_db
from models.user import User
from routers.deps import get_portfolio_session, raise_for_result
from schemas.holding import (
    BuyRequest,
    HoldingActionOut,
    HoldingCreate,
    HoldingOut,
    HoldingsResponse,
    HoldingUpdate,
    SellRequest,
    holding_payload,
)
from services.holding_service import PersistenceError, replace_all_holdings
from services.portfolio_store import HoldingSnapshot
from services.portfolio_summary import holding_metrics, summarize
from services.session_manager import PortfolioSession
from services.supabase_auth import get_current_db_user

router = APIRouter()


def _out(h: HoldingSnapshot) -> HoldingOut:
    m = holding_metrics(h)
    return HoldingOut(
        **holding_payload(h),
        value=m["value"],
        unrealized_pl=m["unrealized_pl"],
        unrealized_pl_pct=m["unrealized_pl_pct"],
        quantity_decimals=m["quantity_decimals"],
    )


@router.get("/holdings", response_model=HoldingsResponse)
def list_holdings(session: PortfolioSession = Depends(get_portfolio_session)):
    holdings = session.state.holdings()
    return {"items": [_out(h) for h in holdings], "summary": summarize(holdings)}


@router.post("/holdings", response_model=HoldingOut, status_code=201)
def create_holding(payload: HoldingCreate, session: PortfolioSession = Depends(get_portfolio_session)):
    res = session.state.add(
        symbol=payload.symbol,
        type_=payload.type,
        name=payload.name,
        quantity=payload.quantity,
        average_price=payload.average_price,
        current_price=payload.current_price,
        brokers=[b.model_dump() for b in payload.brokers],
    )
    raise_for_result(res)
    return _out(res.holding)


@router.patch("/holdings/{holding_id}", response_model=HoldingOut)
def update_holding(
    holding_id: int,
    payload: HoldingUpdate,
    session: PortfolioSession = Depends(get_portfolio_session),
):
    fields = payload.model_dump(exclude_none=True)
    res = session.state.update(holding_id, **fields)
    raise_for_result(res)
    return _out(res.holding)


@router.post("/holdings/{holding_id}/buy", response_model=HoldingActionOut)
def buy(holding_id: int, payload: BuyRequest, session: PortfolioSession = Depends(get_portfolio_session)):
    res = session.state.buy(holding_id, payload.quantity, payload.price)
    raise_for_result(res)
    return {"holding": _out(res.holding)}


@router.post("/holdings/{holding_id}/sell", response_model=HoldingActionOut)
def sell(holding_id: int, payload: SellRequest, session: PortfolioSession = Depends(get_portfolio_session)):
    res = session.state.sell(holding_id, payload.quantity)
    raise_for_result(res)
    return {"holding": _out(res.holding)}


@router.post("/holdings/{holding_id}/reset", response_model=HoldingActionOut)
def reset(holding_id: int, session: PortfolioSession = Depends(get_portfolio_session)):
    res = session.state.reset(holding_id)
    raise_for_result(res)
    return {"holding": _out(res.holding)}


@router.delete("/holdings/{holding_id}")
def delete_holding(holding_id: int, session: PortfolioSession = Depends(get_portfolio_session)):
    raise_for_result(session.state.remove(holding_id))
    return {"detail": "Deleted"}


@router.put("/holdings", response_model=HoldingsResponse)
def sync_holdings(
    payload: List[HoldingCreate],
    db: Session = Depends(get_db),
    user: User = Depends(get_current_db_user),
    session: PortfolioSession = Depends(get_portfolio_session),
):
    """Replace the whole portfolio with the given list."""
    items = [
        {**p.model_dump(exclude={"brokers"}), "brokers": [b.model_dump() for b in p.brokers]}
        for p in payload
    ]
    try:
        rows = replace_all_holdings(db, user.id, items)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except PersistenceError as e:
        raise HTTPException(status_code=502, detail=str(e))

    session.state.replace_all(HoldingSnapshot.from_row(r) for r in rows)
    holdings = session.state.holdings()
    return {"items": [_out(h) for h in holdings], "summary": summarize(holdings)}
