# services/portfolio_store.py
"""
In-memory portfolio state for one signed-in user.

The HTTP routes, the price-refresh scheduler and the alert checker all read
and write holdings through a single ``PortfolioState``. User actions follow
optimistic update -> remote write -> rollback on failure, and report the
outcome as an ``ActionResult``.
"""
from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from decimal import Decimal
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Protocol, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from models.holding import Holding
from services import holding_service
from services.cost_basis import BrokerPosition, Position, apply_buy, apply_sell
from services.holding_service import PersistenceError
from utils.common_helpers import normalize_asset_type, to_decimal

logger = logging.getLogger(__name__)

MISSING_USER = "User id not provided"
NOT_FOUND = "Holding not found"


@dataclass(frozen=True)
class HoldingSnapshot:
    id: int
    name: str
    symbol: str
    type: str
    quantity: Decimal = Decimal("0")
    average_price: Decimal = Decimal("0")
    current_price: Decimal = Decimal("0")
    is_price_estimated: bool = True
    brokers: Tuple[BrokerPosition, ...] = field(default_factory=tuple)

    @classmethod
    def from_row(cls, row: Holding) -> "HoldingSnapshot":
        return cls(
            id=row.id,
            name=row.name,
            symbol=row.symbol,
            type=row.type,
            quantity=to_decimal(row.quantity),
            average_price=to_decimal(row.average_price),
            current_price=to_decimal(row.current_price),
            is_price_estimated=bool(row.is_price_estimated),
            brokers=tuple(BrokerPosition.from_dict(b) for b in (row.brokers or [])),
        )

    @property
    def position(self) -> Position:
        return Position(self.quantity, self.average_price)

    def with_position(self, pos: Position) -> "HoldingSnapshot":
        return replace(self, quantity=pos.quantity, average_price=pos.average_price)


@dataclass(frozen=True)
class ActionResult:
    """
    Outcome of a user action.

    On success ``holding`` is the new state. On failure it is the reverted
    (pre-action) state, or None when there was nothing to revert.
    """

    ok: bool
    holding: Optional[HoldingSnapshot] = None
    error: Optional[str] = None


# fields a holding row stores; user actions persist only the subset they change
PERSISTED_FIELDS = ("name", "symbol", "type", "quantity", "average_price", "current_price", "brokers")


def changed_fields(before: HoldingSnapshot, after: HoldingSnapshot) -> Tuple[str, ...]:
    return tuple(f for f in PERSISTED_FIELDS if getattr(before, f) != getattr(after, f))


class HoldingRepository(Protocol):
    def load(self, user_id: int) -> List[HoldingSnapshot]: ...

    def create(self, user_id: int, **fields: Any) -> HoldingSnapshot: ...

    def save(self, user_id: int, holding: HoldingSnapshot, fields: Iterable[str]) -> None: ...

    def save_price(self, user_id: int, holding_id: int, price: Decimal) -> None: ...

    def delete(self, user_id: int, holding_id: int) -> None: ...


class SqlHoldingRepository:
    """
    HoldingRepository backed by SQLAlchemy; one short session per call.
    Every failure, reads included, surfaces as ``PersistenceError``.
    """

    def __init__(self, session_factory: Callable[[], Session]):
        self._session_factory = session_factory

    @contextmanager
    def _session(self, what: str) -> Iterator[Session]:
        try:
            with self._session_factory() as db:
                yield db
        except PersistenceError:
            raise
        except ValueError as e:
            raise PersistenceError(str(e)) from e
        except SQLAlchemyError as e:
            logger.error("holding store failed op=%s: %s", what, e.__class__.__name__)
            raise PersistenceError(f"Could not {what}: {e.__class__.__name__}") from e

    def load(self, user_id: int) -> List[HoldingSnapshot]:
        with self._session("load holdings") as db:
            return [HoldingSnapshot.from_row(r) for r in holding_service.get_all_holdings(db, user_id)]

    def create(self, user_id: int, **fields: Any) -> HoldingSnapshot:
        with self._session("create holding") as db:
            return HoldingSnapshot.from_row(holding_service.create_holding(db, user_id, **fields))

    def save(self, user_id: int, holding: HoldingSnapshot, fields: Iterable[str]) -> None:
        values: Dict[str, Any] = {f: getattr(holding, f) for f in fields}
        if "brokers" in values:
            values["brokers"] = [b.to_dict() for b in holding.brokers]
        if not values:
            return
        with self._session("update holding") as db:
            holding_service.update_holding(db, user_id, holding.id, **values)

    def save_price(self, user_id: int, holding_id: int, price: Decimal) -> None:
        with self._session("update price") as db:
            holding_service.update_holding_price(db, user_id, holding_id, price)

    def delete(self, user_id: int, holding_id: int) -> None:
        with self._session("delete holding") as db:
            holding_service.delete_holding(db, user_id, holding_id)


class PortfolioState:
    """
    Holdings of one user, shared by request threads and the event loop.

    ``_lock`` guards the in-memory map and is never held across I/O, so the
    price refresh on the loop thread never waits on the database. User
    actions additionally serialize on ``_action_lock`` for the whole
    optimistic-update/write/rollback sequence. A user action writes and
    reverts only the fields it changed, so a price landing mid-action is kept.
    """

    def __init__(self, user_id: Optional[int], repo: HoldingRepository):
        self.user_id = user_id
        self._repo = repo
        self._holdings: Dict[int, HoldingSnapshot] = {}
        self._lock = threading.Lock()
        self._action_lock = threading.Lock()
        self.loaded = False

    @property
    def repo(self) -> HoldingRepository:
        return self._repo

    # -----------------------
    # Reads
    # -----------------------

    def holdings(self) -> List[HoldingSnapshot]:
        with self._lock:
            return [self._holdings[k] for k in sorted(self._holdings)]

    def get(self, holding_id: int) -> Optional[HoldingSnapshot]:
        with self._lock:
            return self._holdings.get(holding_id)

    def refreshable(self) -> List[HoldingSnapshot]:
        """Holdings the price refresh should quote: something held and a symbol."""
        return [h for h in self.holdings() if h.quantity > 0 and (h.symbol or "").strip()]

    # -----------------------
    # Setters
    # -----------------------

    def load(self) -> Optional[str]:
        if self.user_id is None:
            return MISSING_USER
        try:
            rows = self._repo.load(self.user_id)
        except PersistenceError as e:
            logger.error("portfolio load failed: %s", e)
            return str(e)
        with self._lock:
            self._holdings = {h.id: h for h in rows}
        self.loaded = True
        return None

    def set_price(self, holding_id: int, price: Decimal) -> Optional[HoldingSnapshot]:
        """In-memory price update; persisting it is the caller's job."""
        if price is None or price <= 0:
            return None
        with self._lock:
            cur = self._holdings.get(holding_id)
            if cur is None:
                return None
            nxt = replace(cur, current_price=price, is_price_estimated=False)
            self._holdings[holding_id] = nxt
            return nxt

    def _merge(self, holding_id: int, source: HoldingSnapshot, fields: Iterable[str]) -> Optional[HoldingSnapshot]:
        """Copy ``fields`` from ``source`` onto the live snapshot. Caller holds ``_lock``."""
        cur = self._holdings.get(holding_id)
        if cur is None:
            return None
        nxt = replace(cur, **{f: getattr(source, f) for f in fields})
        self._holdings[holding_id] = nxt
        return nxt

    def apply(self, holding_id: int, action: Callable[[HoldingSnapshot], HoldingSnapshot]) -> ActionResult:
        if self.user_id is None:
            return ActionResult(False, None, MISSING_USER)

        with self._action_lock:
            with self._lock:
                before = self._holdings.get(holding_id)
                if before is None:
                    return ActionResult(False, None, NOT_FOUND)
                after = action(before)
                fields = changed_fields(before, after)
                if not fields:
                    return ActionResult(True, before)
                after = self._merge(holding_id, after, fields)

            try:
                self._repo.save(self.user_id, after, fields)
            except PersistenceError as e:
                with self._lock:
                    reverted = self._merge(holding_id, before, fields)
                logger.warning("holding write failed, rolled back holding_id=%s: %s", holding_id, e)
                return ActionResult(False, reverted, str(e))
            return ActionResult(True, self.get(holding_id) or after)

    def buy(self, holding_id: int, quantity: Any, price: Any) -> ActionResult:
        return self.apply(holding_id, lambda h: h.with_position(apply_buy(h.position, quantity, price)))

    def sell(self, holding_id: int, quantity: Any) -> ActionResult:
        return self.apply(holding_id, lambda h: h.with_position(apply_sell(h.position, quantity)))

    def reset(self, holding_id: int) -> ActionResult:
        return self.apply(holding_id, lambda h: replace(h, quantity=Decimal("0")))

    def update(self, holding_id: int, **fields: Any) -> ActionResult:
        changes: Dict[str, Any] = {}
        if fields.get("name") is not None:
            changes["name"] = fields["name"].strip()
        if fields.get("symbol") is not None:
            changes["symbol"] = fields["symbol"].strip().upper()
        if fields.get("type") is not None:
            typ = normalize_asset_type(fields["type"])
            if typ is None:
                return ActionResult(False, self.get(holding_id), f"Unsupported asset type: {fields['type']}")
            changes["type"] = typ
        if fields.get("current_price") is not None:
            changes["current_price"] = to_decimal(fields["current_price"])
        if fields.get("brokers") is not None:
            changes["brokers"] = tuple(
                b if isinstance(b, BrokerPosition) else BrokerPosition.from_dict(dict(b)) for b in fields["brokers"]
            )
        return self.apply(holding_id, lambda h: replace(h, **changes))

    def add(self, **fields: Any) -> ActionResult:
        if self.user_id is None:
            return ActionResult(False, None, MISSING_USER)
        with self._action_lock:
            try:
                created = self._repo.create(self.user_id, **fields)
            except PersistenceError as e:
                return ActionResult(False, None, str(e))
            with self._lock:
                self._holdings[created.id] = created
        return ActionResult(True, created)

    def remove(self, holding_id: int) -> ActionResult:
        if self.user_id is None:
            return ActionResult(False, None, MISSING_USER)
        with self._action_lock:
            with self._lock:
                before = self._holdings.pop(holding_id, None)
            if before is None:
                return ActionResult(False, None, NOT_FOUND)
            try:
                self._repo.delete(self.user_id, holding_id)
            except PersistenceError as e:
                with self._lock:
                    self._holdings.setdefault(holding_id, before)
                logger.warning("holding delete failed, restored holding_id=%s: %s", holding_id, e)
                return ActionResult(False, before, str(e))
        return ActionResult(True, before)

    def replace_all(self, snapshots: Iterable[HoldingSnapshot]) -> None:
        rows = {h.id: h for h in snapshots}
        with self._action_lock:
            with self._lock:
                self._holdings = rows
        self.loaded = True
