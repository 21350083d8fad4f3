from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Iterable, List, Optional

from sqlalchemy.orm import Session

from config.settings import get_settings
from models.alert import PriceAlert
from services import notification_service
from services.holding_service import get_holding
from utils.common_helpers import to_decimal

logger = logging.getLogger(__name__)


def evaluate(alert: Any, current_price: Any) -> bool:
    """
    True when ``current_price`` has crossed the alert's target in the
    direction implied by target vs initial price.
    """
    current = to_decimal(current_price)
    initial = to_decimal(getattr(alert, "initial_price", None))
    target = to_decimal(getattr(alert, "target_price", None))
    if current <= 0:
        return False
    if target > initial:
        return current >= target
    if target < initial:
        return current <= target
    return False


def _fmt(x: Decimal) -> str:
    return f"{x:,.2f}"


def format_alert_message(alert: PriceAlert, current_price: Any) -> str:
    initial = to_decimal(alert.initial_price)
    target = to_decimal(alert.target_price)
    direction = "rose" if target > initial else "fell"
    return (
        f"{alert.holding_name} ({alert.holding_symbol}) {direction} and reached the alert price of "
        f"{_fmt(target)}. Current price: {_fmt(to_decimal(current_price))} "
        f"(initial price: {_fmt(initial)})"
    )


def list_active_alerts(db: Session, user_id: int) -> List[PriceAlert]:
    return (
        db.query(PriceAlert)
        .filter(PriceAlert.user_id == user_id, PriceAlert.is_active.is_(True))
        .order_by(PriceAlert.created_at.desc(), PriceAlert.id.desc())
        .all()
    )


def create_alert(
    db: Session,
    user_id: int,
    *,
    holding_id: int,
    target_price: Any,
    initial_price: Any = None,
) -> PriceAlert:
    holding = get_holding(db, user_id, holding_id)
    if not holding:
        raise ValueError("Holding not found")

    target = to_decimal(target_price)
    initial = to_decimal(initial_price) if initial_price is not None else to_decimal(holding.current_price)
    if target <= 0:
        raise ValueError("target_price must be positive")
    if initial <= 0:
        raise ValueError("initial_price is unknown; wait for a price or pass one explicitly")
    if target == initial:
        raise ValueError("target_price must differ from initial_price")

    alert = PriceAlert(
        user_id=user_id,
        holding_id=holding.id,
        holding_name=holding.name,
        holding_symbol=holding.symbol,
        initial_price=initial,
        target_price=target,
        is_active=True,
    )
    db.add(alert)
    db.commit()
    db.refresh(alert)
    logger.info(
        "alert created alert_id=%s holding_id=%s direction=%s",
        alert.id, holding.id, "up" if target > initial else "down",
    )
    return alert


def deactivate_alert(db: Session, user_id: int, alert_id: int) -> PriceAlert:
    alert = (
        db.query(PriceAlert)
        .filter(PriceAlert.user_id == user_id, PriceAlert.id == alert_id)
        .first()
    )
    if not alert:
        raise ValueError("Alert not found")
    alert.is_active = False
    db.commit()
    db.refresh(alert)
    return alert


def check_alerts_and_notify(
    db: Session,
    user_id: int,
    holdings: Iterable[Any],
    *,
    now: Optional[datetime] = None,
    dedup_hours: Optional[int] = None,
) -> int:
    """
    Evaluate every active alert against the latest known prices and create
    notifications for those that fire. At most one notification per holding
    inside the dedup window; alerts stay active.

    ``holdings`` only needs ``id`` and ``current_price``.
    """
    prices = {h.id: to_decimal(h.current_price) for h in holdings}
    if not prices:
        return 0

    now = now or datetime.now(timezone.utc)
    window = timedelta(hours=dedup_hours if dedup_hours is not None else get_settings().notification_dedup_hours)
    since = now - window

    created = 0
    for alert in list_active_alerts(db, user_id):
        current = prices.get(alert.holding_id)
        if current is None or not evaluate(alert, current):
            continue
        if notification_service.has_recent_notification(db, user_id, alert.holding_id, since):
            continue

        notification_service.create_notification(
            db,
            user_id,
            message=format_alert_message(alert, current),
            holding_id=alert.holding_id,
            holding_name=alert.holding_name,
            holding_symbol=alert.holding_symbol,
            target_price=alert.target_price,
            current_price=current,
            created_at=now,
        )
        created += 1

    if created:
        logger.info("alerts fired notifications_created=%d", created)
    return created
