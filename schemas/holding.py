from __future__ import annotations

from decimal import Decimal
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from utils.common_helpers import ASSET_TYPES, normalize_asset_type


def _normalize_symbol(value: str) -> str:
    symbol = (value or "").strip().upper()
    if not symbol or len(symbol) > 32:
        raise ValueError("symbol must be 1-32 characters")
    return symbol


def _normalize_type(value: str) -> str:
    typ = normalize_asset_type(value)
    if not typ:
        raise ValueError(f"type must be one of {', '.join(ASSET_TYPES)}")
    return typ


class BrokerPositionIn(BaseModel):
    broker: str = Field(min_length=1, max_length=80)
    quantity: Decimal = Field(ge=0)
    average_price: Decimal = Field(ge=0)


class HoldingCreate(BaseModel):
    symbol: str
    type: str
    name: Optional[str] = None
    quantity: Decimal = Field(default=Decimal("0"), ge=0)
    average_price: Decimal = Field(default=Decimal("0"), ge=0)
    current_price: Decimal = Field(default=Decimal("0"), ge=0)
    brokers: List[BrokerPositionIn] = Field(default_factory=list)

    @field_validator("symbol")
    @classmethod
    def validate_symbol(cls, value: str) -> str:
        return _normalize_symbol(value)

    @field_validator("type")
    @classmethod
    def validate_type(cls, value: str) -> str:
        return _normalize_type(value)


class HoldingUpdate(BaseModel):
    name: Optional[str] = None
    symbol: Optional[str] = None
    type: Optional[str] = None
    current_price: Optional[Decimal] = Field(default=None, ge=0)
    brokers: Optional[List[BrokerPositionIn]] = None

    @field_validator("symbol")
    @classmethod
    def validate_symbol(cls, value: Optional[str]) -> Optional[str]:
        return None if value is None else _normalize_symbol(value)

    @field_validator("type")
    @classmethod
    def validate_type(cls, value: Optional[str]) -> Optional[str]:
        return None if value is None else _normalize_type(value)


class BuyRequest(BaseModel):
    # non-positive values are accepted and ignored by the cost-basis rules
    quantity: Decimal
    price: Decimal


class SellRequest(BaseModel):
    quantity: Decimal


class BrokerPositionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    broker: str
    quantity: float
    average_price: float


class HoldingOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    symbol: str
    type: str
    quantity: float
    average_price: float
    current_price: float
    is_price_estimated: bool
    brokers: List[BrokerPositionOut] = Field(default_factory=list)

    # computed, not stored
    value: Optional[float] = None
    unrealized_pl: Optional[float] = None
    unrealized_pl_pct: Optional[float] = None
    quantity_decimals: int = 2


class TypeProfit(BaseModel):
    label: str
    profit: float
    is_profit: bool


class PortfolioSummaryOut(BaseModel):
    total_value: float
    total_investment: float
    total_profit: float
    profit_pct: float
    is_profit: bool
    profit_by_type: List[TypeProfit] = Field(default_factory=list)


class HoldingsResponse(BaseModel):
    items: List[HoldingOut]
    summary: PortfolioSummaryOut


class HoldingActionOut(BaseModel):
    holding: HoldingOut
    detail: Optional[str] = None


def holding_payload(h: Any) -> dict:
    """Plain dict for HoldingOut from a HoldingSnapshot (decimals as floats)."""
    return {
        "id": h.id,
        "name": h.name,
        "symbol": h.symbol,
        "type": h.type,
        "quantity": float(h.quantity),
        "average_price": float(h.average_price),
        "current_price": float(h.current_price),
        "is_price_estimated": h.is_price_estimated,
        "brokers": [
            {"broker": b.broker, "quantity": float(b.quantity), "average_price": float(b.average_price)}
            for b in h.brokers
        ],
    }
