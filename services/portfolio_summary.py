# services/portfolio_summary.py
from __future__ import annotations

from decimal import Decimal
from typing import Any, Dict, Iterable, List

from utils.common_helpers import asset_type_label, quantity_decimals, to_decimal

ZERO = Decimal("0")


def _pct(n: Decimal, d: Decimal) -> float:
    return float(n / d * 100) if d > 0 else 0.0


def holding_metrics(h: Any) -> Dict[str, Any]:
    qty = to_decimal(h.quantity)
    value = qty * to_decimal(h.current_price)
    cost = qty * to_decimal(h.average_price)
    profit = value - cost
    return {
        "value": float(value),
        "cost": float(cost),
        "unrealized_pl": float(profit),
        "unrealized_pl_pct": _pct(profit, cost),
        "quantity_decimals": quantity_decimals(h.type),
    }


def summarize(holdings: Iterable[Any]) -> Dict[str, Any]:
    """
    Portfolio totals plus profit grouped by display type label.
    Accepts anything with quantity / average_price / current_price / type.
    """
    total_value = ZERO
    total_investment = ZERO
    by_type: Dict[str, Decimal] = {}

    for h in holdings:
        qty = to_decimal(h.quantity)
        value = qty * to_decimal(h.current_price)
        cost = qty * to_decimal(h.average_price)
        total_value += value
        total_investment += cost
        label = asset_type_label(h.type or "equity")
        by_type[label] = by_type.get(label, ZERO) + (value - cost)

    total_profit = total_value - total_investment
    breakdown: List[Dict[str, Any]] = [
        {"label": label, "profit": float(p), "is_profit": p >= 0}
        for label, p in by_type.items()
        if p != 0
    ]
    return {
        "total_value": float(total_value),
        "total_investment": float(total_investment),
        "total_profit": float(total_profit),
        "profit_pct": round(_pct(total_profit, total_investment), 2),
        "is_profit": total_profit >= 0,
        "profit_by_type": breakdown,
    }
