from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional

import httpx

ASSET_TYPES = ("equity", "crypto", "fund", "bond")

_TYPE_ALIASES = {
    "equity": "equity",
    "stock": "equity",
    "stocks": "equity",
    "share": "equity",
    "shares": "equity",
    "accion": "equity",
    "acciones": "equity",
    "crypto": "crypto",
    "cryptocurrency": "crypto",
    "cripto": "crypto",
    "criptomoneda": "crypto",
    "fund": "fund",
    "funds": "fund",
    "etf": "fund",
    "etfs": "fund",
    "fondo": "fund",
    "fondos": "fund",
    "bond": "bond",
    "bonds": "bond",
    "bono": "bond",
    "bonos": "bond",
}

# display labels used by the summary breakdown
_TYPE_LABELS = {
    "equity": "Stocks",
    "crypto": "Crypto",
    "etf": "ETF",
    "fund": "Funds",
    "bond": "Bonds",
}


def to_decimal(x: Any) -> Decimal:
    """Lossless-ish conversion; floats go through str() so 0.1 stays 0.1."""
    if x is None:
        return Decimal("0")
    if isinstance(x, Decimal):
        return x
    try:
        d = Decimal(str(x))
    except (InvalidOperation, ValueError):
        return Decimal("0")
    return d if d.is_finite() else Decimal("0")


def safe_json(resp: httpx.Response) -> Optional[Dict[str, Any]]:
    try:
        data = resp.json()
    except ValueError:
        return None
    return data if isinstance(data, dict) else None


def normalize_asset_type(typ: Optional[str]) -> Optional[str]:
    """Map user/legacy spellings onto equity|crypto|fund|bond. None if unknown."""
    t = (typ or "").strip().lower()
    if not t:
        return None
    return _TYPE_ALIASES.get(t)


def asset_type_label(typ: Optional[str]) -> str:
    t = (typ or "").strip().lower()
    if not t:
        return "Unknown"
    if t in _TYPE_LABELS:
        return _TYPE_LABELS[t]
    normalized = _TYPE_ALIASES.get(t)
    if normalized:
        return _TYPE_LABELS[normalized]
    return t.capitalize()


def quantity_decimals(typ: Optional[str]) -> int:
    return 8 if normalize_asset_type(typ) == "crypto" else 2

