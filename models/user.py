# models/user.py
from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)

    # link to Supabase auth.users.id (UUID string)
    supabase_user_id: Mapped[str] = mapped_column(unique=True, index=True)
    email: Mapped[str | None] = mapped_column(nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    holdings = relationship("Holding", back_populates="owner", cascade="all, delete-orphan", passive_deletes=True)
    alerts = relationship("PriceAlert", back_populates="owner", cascade="all, delete-orphan", passive_deletes=True)
    notifications = relationship(
        "Notification", back_populates="owner", cascade="all, delete-orphan", passive_deletes=True
    )
