# services/cost_basis.py
"""
Weighted-average cost basis.

Pure functions over an immutable ``Position``. Invalid input (non-positive
quantity or price) is a silent no-op: the same object comes back.
"""
from __future__ import annotations

from dataclasses import dataclass, replace
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Tuple

from utils.common_helpers import to_decimal

ZERO = Decimal("0")


@dataclass(frozen=True)
class Position:
    quantity: Decimal = ZERO
    average_price: Decimal = ZERO


@dataclass(frozen=True)
class BrokerPosition:
    broker: str
    quantity: Decimal
    average_price: Decimal

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "BrokerPosition":
        return cls(
            broker=str(d.get("broker") or d.get("broker_name") or "").strip(),
            quantity=to_decimal(d.get("quantity")),
            average_price=to_decimal(d.get("average_price", d.get("purchasePrice"))),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "broker": self.broker,
            "quantity": str(self.quantity),
            "average_price": str(self.average_price),
        }


def apply_buy(pos: Position, delta_qty: Any, price: Any) -> Position:
    q = to_decimal(delta_qty)
    p = to_decimal(price)
    if q <= ZERO or p <= ZERO:
        return pos

    if pos.quantity == ZERO:
        return replace(pos, quantity=q, average_price=p)

    new_qty = pos.quantity + q
    new_avg = (pos.quantity * pos.average_price + q * p) / new_qty
    return replace(pos, quantity=new_qty, average_price=new_avg)


def apply_sell(pos: Position, delta_qty: Any) -> Position:
    q = to_decimal(delta_qty)
    if q <= ZERO:
        return pos
    # over-selling clamps the position to zero
    return replace(pos, quantity=max(ZERO, pos.quantity - q))


def aggregate_brokers(brokers: Iterable[BrokerPosition]) -> Position:
    total_qty = ZERO
    total_cost = ZERO
    for b in brokers:
        total_qty += b.quantity
        total_cost += b.quantity * b.average_price
    if total_qty == ZERO:
        return Position()
    return Position(quantity=total_qty, average_price=total_cost / total_qty)


def reconcile_brokers(
    pos: Position,
    brokers: Iterable[BrokerPosition],
    *,
    tolerance: Decimal = Decimal("0.00000001"),
) -> Tuple[bool, Position]:
    """
    Check whether the broker breakdown adds up to the holding.
    Advisory only: returns (matches, aggregate) and never raises.
    """
    items: List[BrokerPosition] = list(brokers)
    agg = aggregate_brokers(items)
    if not items:
        return True, agg
    qty_ok = abs(agg.quantity - pos.quantity) <= tolerance
    # average only matters when something is held
    avg_ok = pos.quantity == ZERO or abs(agg.average_price - pos.average_price) <= max(
        tolerance, abs(pos.average_price) * tolerance
    )
    return qty_ok and avg_ok, agg
