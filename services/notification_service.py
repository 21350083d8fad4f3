from __future__ import annotations

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, List, Optional

from sqlalchemy.orm import Session

from models.notification import Notification
from utils.common_helpers import to_decimal

logger = logging.getLogger(__name__)

MAX_NOTIFICATIONS = 100


def list_notifications(db: Session, user_id: int, limit: int = MAX_NOTIFICATIONS) -> List[Notification]:
    return (
        db.query(Notification)
        .filter(Notification.user_id == user_id)
        .order_by(Notification.created_at.desc(), Notification.id.desc())
        .limit(max(1, min(limit, MAX_NOTIFICATIONS)))
        .all()
    )


def unread_count(db: Session, user_id: int) -> int:
    return (
        db.query(Notification)
        .filter(Notification.user_id == user_id, Notification.is_read.is_(False))
        .count()
    )


def has_recent_notification(db: Session, user_id: int, holding_id: int, since: datetime) -> bool:
    return (
        db.query(Notification.id)
        .filter(
            Notification.user_id == user_id,
            Notification.holding_id == holding_id,
            Notification.created_at >= since,
        )
        .first()
        is not None
    )


def create_notification(
    db: Session,
    user_id: int,
    *,
    message: str,
    holding_id: Optional[int] = None,
    holding_name: Optional[str] = None,
    holding_symbol: Optional[str] = None,
    target_price: Any = None,
    current_price: Any = None,
    created_at: Optional[datetime] = None,
) -> Notification:
    text = (message or "").strip()
    if not text:
        raise ValueError("message is required")

    notification = Notification(
        user_id=user_id,
        holding_id=holding_id,
        holding_name=holding_name or "System",
        holding_symbol=holding_symbol or "SYS",
        target_price=to_decimal(target_price) if target_price is not None else Decimal("0"),
        current_price=to_decimal(current_price) if current_price is not None else Decimal("0"),
        message=text,
        is_read=False,
        created_at=created_at or datetime.now(timezone.utc),
    )
    db.add(notification)
    db.commit()
    db.refresh(notification)
    return notification


def mark_all_read(db: Session, user_id: int) -> int:
    n = (
        db.query(Notification)
        .filter(Notification.user_id == user_id, Notification.is_read.is_(False))
        .update({Notification.is_read: True}, synchronize_session=False)
    )
    db.commit()
    logger.info("notifications marked read count=%d", n)
    return n
