from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class AlertCreate(BaseModel):
    holding_id: int
    target_price: Decimal = Field(gt=0)
    # defaults to the holding's current price
    initial_price: Optional[Decimal] = Field(default=None, gt=0)

    @model_validator(mode="after")
    def check_direction(self) -> "AlertCreate":
        if self.initial_price is not None and self.initial_price == self.target_price:
            raise ValueError("target_price must differ from initial_price")
        return self


class AlertOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    holding_id: int
    holding_name: str
    holding_symbol: str
    initial_price: float
    target_price: float
    is_active: bool
    created_at: Optional[datetime] = None
