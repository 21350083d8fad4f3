from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import Boolean, DateTime, ForeignKey, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base


class Notification(Base):
    __tablename__ = "notifications"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)
    # NULL for account/system notifications
    holding_id: Mapped[int | None] = mapped_column(
        ForeignKey("holdings.id", ondelete="CASCADE"), nullable=True, index=True
    )
    holding_name: Mapped[str] = mapped_column(String(120), default="System")
    holding_symbol: Mapped[str] = mapped_column(String(32), default="SYS")
    target_price: Mapped[Decimal] = mapped_column(Numeric(18, 8), default=Decimal("0"))
    current_price: Mapped[Decimal] = mapped_column(Numeric(18, 8), default=Decimal("0"))
    message: Mapped[str] = mapped_column(Text)
    is_read: Mapped[bool] = mapped_column(Boolean, default=False, index=True)

    # set client-side so the 24h dedup window is comparable on every backend
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), index=True
    )

    owner = relationship("User", back_populates="notifications")
