from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Numeric, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base

PRICE = Numeric(20, 8)


class Holding(Base):
    __tablename__ = "holdings"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)

    name: Mapped[str] = mapped_column(String(120))
    symbol: Mapped[str] = mapped_column(String(32), index=True)
    type: Mapped[str] = mapped_column(String(16), index=True)

    quantity: Mapped[Decimal] = mapped_column(PRICE, default=Decimal("0"))
    average_price: Mapped[Decimal] = mapped_column(PRICE, default=Decimal("0"))
    current_price: Mapped[Decimal] = mapped_column(PRICE, default=Decimal("0"))
    is_price_estimated: Mapped[bool] = mapped_column(Boolean, default=True)

    # [{"broker": "...", "quantity": "10", "average_price": "100"}]
    brokers: Mapped[list[dict[str, Any]]] = mapped_column(JSON, default=list)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    owner = relationship("User", back_populates="holdings")
    alerts = relationship("PriceAlert", back_populates="holding", cascade="all, delete-orphan", passive_deletes=True)
