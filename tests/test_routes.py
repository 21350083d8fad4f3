import os
import unittest
from types import SimpleNamespace
from unittest.mock import patch

os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

from fastapi.testclient import TestClient

from database import Base, SessionLocal, engine
from main import app
from middleware.rate_limit import limiter
from models.user import User
from services.holding_service import PersistenceError
from services.portfolio_store import SqlHoldingRepository
from services.session_manager import SessionManager
from services.supabase_auth import get_current_db_user


class _RouteCase(unittest.TestCase):
    def setUp(self):
        limiter.enabled = False
        Base.metadata.drop_all(bind=engine)
        Base.metadata.create_all(bind=engine)
        with SessionLocal() as db:
            user = User(supabase_user_id="sub-routes", email=None)
            db.add(user)
            db.commit()
            self.user = user
        app.dependency_overrides[get_current_db_user] = lambda: self.user

        self.client_cm = TestClient(app)
        self.client = self.client_cm.__enter__()
        # no market data provider in tests; long alert interval
        app.state.session_manager = SessionManager(SessionLocal, lambda: None, alert_interval=3600)

    def tearDown(self):
        self.client_cm.__exit__(None, None, None)
        app.dependency_overrides.clear()
        Base.metadata.drop_all(bind=engine)
        limiter.enabled = True

    def _create(self, **body):
        payload = {"symbol": "aapl", "type": "stock", "name": "Apple", "quantity": 10, "average_price": 100}
        payload.update(body)
        r = self.client.post("/api/holdings", json=payload)
        self.assertEqual(r.status_code, 201, r.text)
        return r.json()


class TestHoldingRoutes(_RouteCase):
    def test_create_normalizes_symbol_and_type(self):
        h = self._create()
        self.assertEqual(h["symbol"], "AAPL")
        self.assertEqual(h["type"], "equity")
        self.assertTrue(h["is_price_estimated"])

    def test_unknown_type_rejected(self):
        r = self.client.post("/api/holdings", json={"symbol": "X", "type": "warrant"})
        self.assertEqual(r.status_code, 422)

    def test_buy_and_sell(self):
        hid = self._create()["id"]
        r = self.client.post(f"/api/holdings/{hid}/buy", json={"quantity": 10, "price": 200})
        self.assertEqual(r.status_code, 200, r.text)
        self.assertEqual(r.json()["holding"]["quantity"], 20.0)
        self.assertEqual(r.json()["holding"]["average_price"], 150.0)

        r = self.client.post(f"/api/holdings/{hid}/sell", json={"quantity": 50})
        self.assertEqual(r.json()["holding"]["quantity"], 0.0)
        self.assertEqual(r.json()["holding"]["average_price"], 150.0)

    def test_invalid_buy_is_noop(self):
        hid = self._create()["id"]
        r = self.client.post(f"/api/holdings/{hid}/buy", json={"quantity": -1, "price": 200})
        self.assertEqual(r.status_code, 200)
        self.assertEqual(r.json()["holding"]["quantity"], 10.0)

    def test_list_with_summary(self):
        self._create(current_price=120)
        self._create(symbol="btc", type="crypto", name="Bitcoin", quantity=0.5, average_price=40000, current_price=38000)
        body = self.client.get("/api/holdings").json()
        self.assertEqual([h["symbol"] for h in body["items"]], ["AAPL", "BTC"])
        self.assertEqual(body["items"][1]["quantity_decimals"], 8)
        self.assertAlmostEqual(body["summary"]["total_profit"], 200 - 1000)

    def test_delete_then_not_found(self):
        hid = self._create()["id"]
        self.assertEqual(self.client.delete(f"/api/holdings/{hid}").status_code, 200)
        r = self.client.post(f"/api/holdings/{hid}/sell", json={"quantity": 1})
        self.assertEqual(r.status_code, 404)

    def test_failed_write_returns_502_and_keeps_state(self):
        hid = self._create()["id"]
        with patch.object(SqlHoldingRepository, "save", side_effect=PersistenceError("Could not update holding")):
            r = self.client.post(f"/api/holdings/{hid}/buy", json={"quantity": 10, "price": 200})
        self.assertEqual(r.status_code, 502)
        items = self.client.get("/api/holdings").json()["items"]
        self.assertEqual(items[0]["quantity"], 10.0)

    def test_sync_replaces_everything(self):
        self._create()
        r = self.client.put(
            "/api/holdings",
            json=[{"symbol": "voo", "type": "etf", "quantity": 3, "average_price": 400}],
        )
        self.assertEqual(r.status_code, 200, r.text)
        self.assertEqual([h["symbol"] for h in r.json()["items"]], ["VOO"])
        self.assertEqual(r.json()["items"][0]["type"], "fund")


class TestAlertAndNotificationRoutes(_RouteCase):
    def test_alert_lifecycle(self):
        hid = self._create(current_price=100)["id"]
        r = self.client.post("/api/alerts", json={"holding_id": hid, "target_price": 100})
        self.assertEqual(r.status_code, 400)

        r = self.client.post("/api/alerts", json={"holding_id": hid, "target_price": 120})
        self.assertEqual(r.status_code, 201, r.text)
        alert_id = r.json()["id"]
        self.assertEqual(r.json()["initial_price"], 100.0)

        self.assertEqual(len(self.client.get("/api/alerts").json()), 1)
        self.assertEqual(self.client.delete(f"/api/alerts/{alert_id}").status_code, 200)
        self.assertEqual(self.client.get("/api/alerts").json(), [])

    def test_alert_for_missing_holding(self):
        r = self.client.post("/api/alerts", json={"holding_id": 999, "target_price": 10, "initial_price": 5})
        self.assertEqual(r.status_code, 404)

    def test_equal_explicit_prices_rejected_by_schema(self):
        hid = self._create()["id"]
        r = self.client.post("/api/alerts", json={"holding_id": hid, "target_price": 10, "initial_price": 10})
        self.assertEqual(r.status_code, 422)

    def test_notifications(self):
        r = self.client.post("/api/notifications", json={"message": "Welcome"})
        self.assertEqual(r.status_code, 201, r.text)
        body = self.client.get("/api/notifications").json()
        self.assertEqual(body["unread"], 1)
        self.assertEqual(body["items"][0]["holding_symbol"], "SYS")
        self.assertEqual(self.client.post("/api/notifications/read-all").json(), {"updated": 1})
        self.assertEqual(self.client.get("/api/notifications/unread-count").json(), {"unread": 0})


class TestSessionAndMarketRoutes(_RouteCase):
    def test_session_start_status_stop(self):
        self._create()
        r = self.client.post("/api/session/start")
        self.assertEqual(r.status_code, 200, r.text)
        self.assertTrue(r.json()["running"])
        self.assertFalse(r.json()["price_refresh"]["available"])

        self.assertTrue(self.client.get("/api/session/status").json()["running"])
        self.assertEqual(self.client.post("/api/session/stop").json(), {"stopped": True})
        self.assertFalse(self.client.get("/api/session/status").json()["running"])
        self.assertEqual(self.client.post("/api/session/stop").json(), {"stopped": False})

    def test_quote_without_api_key(self):
        with patch(
            "services.finnhub.finnhub_service.get_settings",
            return_value=SimpleNamespace(finnhub_api_key=None),
        ):
            r = self.client.get("/api/market/quote", params={"symbol": "AAPL"})
        self.assertEqual(r.status_code, 503)

    def test_request_id_header(self):
        r = self.client.get("/health", headers={"X-Request-ID": "abc123"})
        self.assertEqual(r.headers["X-Request-ID"], "abc123")
        self.assertTrue(self.client.get("/health").headers["X-Request-ID"])

    def test_me(self):
        r = self.client.get("/me")
        self.assertEqual(r.json()["supabase_user_id"], "sub-routes")

    def test_missing_bearer_token(self):
        app.dependency_overrides.clear()
        r = self.client.get("/api/holdings")
        self.assertEqual(r.status_code, 401)


if __name__ == "__main__":
    unittest.main()
