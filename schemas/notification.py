from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class NotificationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    holding_id: Optional[int] = None
    holding_name: str
    holding_symbol: str
    target_price: float
    current_price: float
    message: str
    is_read: bool
    created_at: datetime


class NotificationList(BaseModel):
    items: List[NotificationOut]
    unread: int


class SystemNotificationCreate(BaseModel):
    message: str = Field(min_length=1, max_length=2000)
