import os
import threading
import unittest
from unittest.mock import PropertyMock, patch

os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

from database import SessionLocal
from services.holding_service import PersistenceError
from services.portfolio_store import SqlHoldingRepository
from services.session_manager import PortfolioSession, SessionManager


class _Clock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


class TestGetOrCreate(unittest.TestCase):
    def setUp(self):
        self.clock = _Clock()
        self.manager = SessionManager(SessionLocal, lambda: None, alert_interval=3600, clock=self.clock)

    def test_reuses_session(self):
        with patch.object(SqlHoldingRepository, "load", return_value=[]):
            first = self.manager.get_or_create(7)
            self.assertIs(self.manager.get_or_create(7), first)
        self.assertIsNone(first.scheduler)

    def test_concurrent_first_requests_share_one_session(self):
        both_loading = threading.Barrier(2, timeout=5)

        def slow_load(user_id):
            both_loading.wait()
            return []

        results = []
        errors = []

        def worker():
            try:
                results.append(self.manager.get_or_create(42))
            except Exception as e:  # noqa: BLE001
                errors.append(e)

        with patch.object(SqlHoldingRepository, "load", side_effect=slow_load):
            threads = [threading.Thread(target=worker) for _ in range(2)]
            for t in threads:
                t.start()
            for t in threads:
                t.join(timeout=10)

        self.assertEqual(errors, [])
        self.assertEqual(len(results), 2)
        self.assertIs(results[0], results[1])
        self.assertIs(self.manager.get(42), results[0])
        self.assertEqual(len(self.manager), 1)

    def test_load_failure_raises_and_stores_nothing(self):
        failure = PersistenceError("Could not load holdings: OperationalError")
        with patch.object(SqlHoldingRepository, "load", side_effect=failure):
            with self.assertRaises(PersistenceError) as ctx:
                self.manager.get_or_create(3)
        self.assertIn("OperationalError", str(ctx.exception))
        self.assertIsNone(self.manager.get(3))


class TestIdleEviction(unittest.TestCase):
    def setUp(self):
        self.clock = _Clock()
        self.manager = SessionManager(
            SessionLocal, lambda: None, alert_interval=3600, idle_ttl=600, clock=self.clock
        )
        self.loader = patch.object(SqlHoldingRepository, "load", return_value=[])
        self.loader.start()

    def tearDown(self):
        self.loader.stop()

    def test_idle_session_dropped_on_next_request(self):
        self.manager.get_or_create(1)
        self.clock.now = 601
        self.manager.get_or_create(2)
        self.assertIsNone(self.manager.get(1))
        self.assertIsNotNone(self.manager.get(2))

    def test_recent_use_keeps_session(self):
        first = self.manager.get_or_create(1)
        self.clock.now = 500
        self.assertIs(self.manager.get_or_create(1), first)
        self.clock.now = 1000
        self.assertEqual(self.manager.evict_idle(), [])
        self.assertIs(self.manager.get(1), first)

    def test_running_session_is_not_evicted(self):
        self.manager.get_or_create(1)
        self.clock.now = 10_000
        with patch.object(PortfolioSession, "running", new_callable=PropertyMock, return_value=True):
            self.assertEqual(self.manager.evict_idle(), [])
        self.assertIsNotNone(self.manager.get(1))

    def test_explicit_limit(self):
        self.manager.get_or_create(1)
        self.clock.now = 30
        self.assertEqual(self.manager.evict_idle(max_idle=10), [1])
        self.assertEqual(len(self.manager), 0)


if __name__ == "__main__":
    unittest.main()
