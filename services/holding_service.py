from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from models.holding import Holding
from services.cost_basis import BrokerPosition, Position, reconcile_brokers
from utils.common_helpers import normalize_asset_type, to_decimal

logger = logging.getLogger(__name__)

_UPDATABLE = ("name", "symbol", "type", "quantity", "average_price", "current_price", "is_price_estimated", "brokers")


class PersistenceError(Exception):
    """A write to the holdings store failed and was rolled back."""


def _normalize_symbol(value: str) -> str:
    symbol = (value or "").strip().upper()
    if not symbol or len(symbol) > 32:
        raise ValueError("symbol must be 1-32 characters")
    return symbol


def _normalize_type(value: str) -> str:
    typ = normalize_asset_type(value)
    if not typ:
        raise ValueError(f"Unsupported asset type: {value}")
    return typ


def _brokers_payload(brokers: Iterable[Any] | None) -> List[Dict[str, Any]]:
    out: List[Dict[str, Any]] = []
    for b in brokers or []:
        bp = b if isinstance(b, BrokerPosition) else BrokerPosition.from_dict(dict(b))
        if bp.broker:
            out.append(bp.to_dict())
    return out


def _check_brokers(row: Holding) -> None:
    if not row.brokers:
        return
    ok, agg = reconcile_brokers(
        Position(to_decimal(row.quantity), to_decimal(row.average_price)),
        [BrokerPosition.from_dict(b) for b in row.brokers],
    )
    if not ok:
        logger.warning(
            "broker breakdown does not reconcile holding_id=%s qty=%s broker_qty=%s",
            row.id, row.quantity, agg.quantity,
        )


def _commit(db: Session, what: str) -> None:
    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error("holding write failed op=%s: %s", what, e.__class__.__name__)
        raise PersistenceError(f"Could not {what}: {e.__class__.__name__}") from e


def get_all_holdings(db: Session, user_id: int) -> List[Holding]:
    return db.query(Holding).filter(Holding.user_id == user_id).order_by(Holding.id.asc()).all()


def get_holding(db: Session, user_id: int, holding_id: int) -> Optional[Holding]:
    return db.query(Holding).filter(Holding.user_id == user_id, Holding.id == holding_id).first()


def create_holding(
    db: Session,
    user_id: int,
    *,
    symbol: str,
    type_: str,
    name: str | None = None,
    quantity: Any = 0,
    average_price: Any = 0,
    current_price: Any = 0,
    brokers: Iterable[Any] | None = None,
) -> Holding:
    sym = _normalize_symbol(symbol)
    holding = Holding(
        user_id=user_id,
        name=(name or "").strip() or sym,
        symbol=sym,
        type=_normalize_type(type_),
        quantity=max(to_decimal(quantity), Decimal("0")),
        average_price=max(to_decimal(average_price), Decimal("0")),
        current_price=max(to_decimal(current_price), Decimal("0")),
        # no confirmed quote yet
        is_price_estimated=True,
        brokers=_brokers_payload(brokers),
    )
    db.add(holding)
    _commit(db, "create holding")
    db.refresh(holding)
    _check_brokers(holding)
    logger.info("holding created holding_id=%s symbol=%s type=%s", holding.id, holding.symbol, holding.type)
    return holding


def update_holding(db: Session, user_id: int, holding_id: int, **fields: Any) -> Holding:
    holding = get_holding(db, user_id, holding_id)
    if not holding:
        raise ValueError("Holding not found")

    for key, value in fields.items():
        if key not in _UPDATABLE or value is None:
            continue
        if key == "symbol":
            value = _normalize_symbol(value)
        elif key == "type":
            value = _normalize_type(value)
        elif key == "brokers":
            value = _brokers_payload(value)
        elif key in ("quantity", "average_price", "current_price"):
            value = max(to_decimal(value), Decimal("0"))
        setattr(holding, key, value)

    _commit(db, "update holding")
    db.refresh(holding)
    if "brokers" in fields or "quantity" in fields:
        _check_brokers(holding)
    return holding


def update_holding_price(db: Session, user_id: int, holding_id: int, price: Any) -> None:
    """Persist a confirmed market price and clear the estimated flag."""
    n = (
        db.query(Holding)
        .filter(Holding.user_id == user_id, Holding.id == holding_id)
        .update(
            {Holding.current_price: to_decimal(price), Holding.is_price_estimated: False},
            synchronize_session=False,
        )
    )
    _commit(db, "update price")
    if not n:
        logger.info("price update skipped, holding gone holding_id=%s", holding_id)


def delete_holding(db: Session, user_id: int, holding_id: int) -> None:
    holding = get_holding(db, user_id, holding_id)
    if not holding:
        raise ValueError("Holding not found")
    db.delete(holding)
    _commit(db, "delete holding")


def replace_all_holdings(db: Session, user_id: int, items: Iterable[Dict[str, Any]]) -> List[Holding]:
    """Delete every holding of the user and insert the given list in one transaction."""
    rows: List[Holding] = []
    try:
        db.query(Holding).filter(Holding.user_id == user_id).delete(synchronize_session=False)
        for it in items:
            sym = _normalize_symbol(it.get("symbol", ""))
            rows.append(
                Holding(
                    user_id=user_id,
                    name=(it.get("name") or "").strip() or sym,
                    symbol=sym,
                    type=_normalize_type(it.get("type", "")),
                    quantity=max(to_decimal(it.get("quantity")), Decimal("0")),
                    average_price=max(to_decimal(it.get("average_price")), Decimal("0")),
                    current_price=max(to_decimal(it.get("current_price")), Decimal("0")),
                    is_price_estimated=bool(it.get("is_price_estimated", True)),
                    brokers=_brokers_payload(it.get("brokers")),
                )
            )
        db.add_all(rows)
    except ValueError:
        db.rollback()
        raise
    _commit(db, "sync holdings")
    for r in rows:
        db.refresh(r)
    return rows
