import os
import unittest
from decimal import Decimal
from unittest.mock import patch

os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

from database import Base, SessionLocal, engine
import models  # noqa: F401
from sqlalchemy.exc import OperationalError

from models.user import User
from services import holding_service
from services.holding_service import PersistenceError
from services.portfolio_store import (
    MISSING_USER,
    NOT_FOUND,
    HoldingSnapshot,
    PortfolioState,
    SqlHoldingRepository,
)


class _FailingRepo:
    """Loads fine, every write fails."""

    def __init__(self, holdings):
        self.holdings = holdings

    def load(self, user_id):
        return list(self.holdings)

    def create(self, user_id, **fields):
        raise PersistenceError("Could not create holding: OperationalError")

    def save(self, user_id, holding, fields):
        raise PersistenceError("Could not update holding: OperationalError")

    def save_price(self, user_id, holding_id, price):
        raise PersistenceError("Could not update price: OperationalError")

    def delete(self, user_id, holding_id):
        raise PersistenceError("Could not delete holding: OperationalError")


class _RacingRepo:
    """Saves succeed or fail on demand; a price lands while each save is in flight."""

    def __init__(self, holdings, fail=False):
        self.holdings = holdings
        self.fail = fail
        self.state = None
        self.saved = []

    def load(self, user_id):
        return list(self.holdings)

    def save(self, user_id, holding, fields):
        self.saved.append(tuple(fields))
        self.state.set_price(holding.id, Decimal("130"))
        if self.fail:
            raise PersistenceError("Could not update holding: OperationalError")


def _snapshot(**kw):
    base = dict(
        id=1,
        name="Apple",
        symbol="AAPL",
        type="equity",
        quantity=Decimal("10"),
        average_price=Decimal("100"),
        current_price=Decimal("120"),
    )
    base.update(kw)
    return HoldingSnapshot(**base)


class TestRollback(unittest.TestCase):
    def setUp(self):
        self.state = PortfolioState(1, _FailingRepo([_snapshot()]))
        self.assertIsNone(self.state.load())

    def test_failed_buy_reverts(self):
        res = self.state.buy(1, 10, 200)
        self.assertFalse(res.ok)
        self.assertIn("OperationalError", res.error)
        self.assertEqual(res.holding.quantity, Decimal("10"))
        self.assertEqual(self.state.get(1).quantity, Decimal("10"))
        self.assertEqual(self.state.get(1).average_price, Decimal("100"))

    def test_failed_sell_reverts(self):
        res = self.state.sell(1, 4)
        self.assertFalse(res.ok)
        self.assertEqual(self.state.get(1).quantity, Decimal("10"))

    def test_noop_does_not_write(self):
        res = self.state.buy(1, 0, 200)
        self.assertTrue(res.ok)
        self.assertEqual(res.holding, self.state.get(1))

    def test_failed_delete_restores(self):
        res = self.state.remove(1)
        self.assertFalse(res.ok)
        self.assertIsNotNone(self.state.get(1))

    def test_failed_add(self):
        res = self.state.add(symbol="MSFT", type_="equity")
        self.assertFalse(res.ok)
        self.assertEqual(len(self.state.holdings()), 1)

    def test_unknown_holding(self):
        res = self.state.sell(99, 1)
        self.assertFalse(res.ok)
        self.assertEqual(res.error, NOT_FOUND)


class TestConcurrentPrice(unittest.TestCase):
    def _state(self, fail):
        repo = _RacingRepo([_snapshot()], fail=fail)
        state = PortfolioState(1, repo)
        repo.state = state
        self.assertIsNone(state.load())
        return state, repo

    def test_buy_writes_only_position_fields(self):
        state, repo = self._state(fail=False)
        res = state.buy(1, 10, 200)
        self.assertTrue(res.ok)
        self.assertEqual(repo.saved, [("quantity", "average_price")])
        self.assertEqual(state.get(1).quantity, Decimal("20"))
        self.assertEqual(state.get(1).current_price, Decimal("130"))
        self.assertEqual(res.holding.current_price, Decimal("130"))

    def test_rollback_keeps_price_that_landed_meanwhile(self):
        state, _ = self._state(fail=True)
        res = state.buy(1, 10, 200)
        self.assertFalse(res.ok)
        self.assertEqual(state.get(1).quantity, Decimal("10"))
        self.assertEqual(state.get(1).average_price, Decimal("100"))
        self.assertEqual(state.get(1).current_price, Decimal("130"))
        self.assertFalse(state.get(1).is_price_estimated)


class TestMissingUser(unittest.TestCase):
    def test_every_action_reports_missing_user(self):
        state = PortfolioState(None, _FailingRepo([]))
        self.assertEqual(state.load(), MISSING_USER)
        self.assertEqual(state.buy(1, 1, 1).error, MISSING_USER)
        self.assertEqual(state.sell(1, 1).error, MISSING_USER)
        self.assertEqual(state.add(symbol="A", type_="equity").error, MISSING_USER)
        self.assertEqual(state.remove(1).error, MISSING_USER)


class TestSqlRepository(unittest.TestCase):
    def setUp(self):
        Base.metadata.drop_all(bind=engine)
        Base.metadata.create_all(bind=engine)
        with SessionLocal() as db:
            user = User(supabase_user_id="sub-store", email=None)
            db.add(user)
            db.commit()
            self.user_id = user.id
        self.state = PortfolioState(self.user_id, SqlHoldingRepository(SessionLocal))
        self.assertIsNone(self.state.load())

    def tearDown(self):
        Base.metadata.drop_all(bind=engine)

    def test_add_buy_sell_persist(self):
        created = self.state.add(symbol="aapl", type_="stock", quantity=10, average_price=100)
        self.assertTrue(created.ok)
        self.assertEqual(created.holding.symbol, "AAPL")
        self.assertEqual(created.holding.type, "equity")
        self.assertEqual(created.holding.name, "AAPL")
        self.assertTrue(created.holding.is_price_estimated)
        hid = created.holding.id

        self.assertTrue(self.state.buy(hid, 10, 200).ok)
        self.assertTrue(self.state.sell(hid, 5).ok)

        with SessionLocal() as db:
            row = holding_service.get_holding(db, self.user_id, hid)
            self.assertEqual(Decimal(str(row.quantity)), Decimal("15"))
            self.assertEqual(Decimal(str(row.average_price)), Decimal("150"))

    def test_reset_keeps_average(self):
        hid = self.state.add(symbol="BTC", type_="crypto", quantity="0.5", average_price=30000).holding.id
        res = self.state.reset(hid)
        self.assertTrue(res.ok)
        self.assertEqual(res.holding.quantity, Decimal("0"))
        self.assertEqual(res.holding.average_price, Decimal("30000"))

    def test_update_rejects_unknown_type(self):
        hid = self.state.add(symbol="VOO", type_="etf").holding.id
        res = self.state.update(hid, type="warrant")
        self.assertFalse(res.ok)
        self.assertEqual(self.state.get(hid).type, "fund")

    def test_save_price_clears_estimate(self):
        hid = self.state.add(symbol="AAPL", type_="equity", quantity=1).holding.id
        self.state.repo.save_price(self.user_id, hid, Decimal("187.5"))
        fresh = PortfolioState(self.user_id, SqlHoldingRepository(SessionLocal))
        fresh.load()
        self.assertEqual(fresh.get(hid).current_price, Decimal("187.5"))
        self.assertFalse(fresh.get(hid).is_price_estimated)

    def test_remove(self):
        hid = self.state.add(symbol="AAPL", type_="equity").holding.id
        self.assertTrue(self.state.remove(hid).ok)
        with SessionLocal() as db:
            self.assertEqual(holding_service.get_all_holdings(db, self.user_id), [])

    def test_replace_all(self):
        self.state.add(symbol="OLD", type_="equity")
        with SessionLocal() as db:
            rows = holding_service.replace_all_holdings(
                db,
                self.user_id,
                [
                    {"symbol": "msft", "type": "accion", "quantity": 2, "average_price": 300},
                    {"symbol": "eth", "type": "cryptocurrency", "quantity": "1.5"},
                ],
            )
            self.state.replace_all(HoldingSnapshot.from_row(r) for r in rows)
        self.assertEqual([h.symbol for h in self.state.holdings()], ["MSFT", "ETH"])
        self.assertEqual([h.type for h in self.state.holdings()], ["equity", "crypto"])

    def test_database_error_during_write_rolls_back(self):
        hid = self.state.add(symbol="AAPL", type_="equity", quantity=10, average_price=100).holding.id
        lost = OperationalError("SELECT", {}, Exception("connection lost"))
        with patch("services.holding_service.get_holding", side_effect=lost):
            res = self.state.buy(hid, 10, 200)
        self.assertFalse(res.ok)
        self.assertIn("OperationalError", res.error)
        self.assertEqual(self.state.get(hid).quantity, Decimal("10"))
        with SessionLocal() as db:
            row = holding_service.get_holding(db, self.user_id, hid)
            self.assertEqual(Decimal(str(row.quantity)), Decimal("10"))

    def test_database_error_during_load_is_reported(self):
        lost = OperationalError("SELECT", {}, Exception("connection lost"))
        fresh = PortfolioState(self.user_id, SqlHoldingRepository(SessionLocal))
        with patch("services.holding_service.get_all_holdings", side_effect=lost):
            err = fresh.load()
        self.assertIn("OperationalError", err)
        self.assertFalse(fresh.loaded)

    def test_database_error_during_price_write_raises_persistence_error(self):
        hid = self.state.add(symbol="AAPL", type_="equity", quantity=1).holding.id
        lost = OperationalError("UPDATE", {}, Exception("connection lost"))
        with patch("services.holding_service.update_holding_price", side_effect=lost):
            with self.assertRaises(PersistenceError):
                self.state.repo.save_price(self.user_id, hid, Decimal("10"))


if __name__ == "__main__":
    unittest.main()
