import unittest
from decimal import Decimal

from services.cost_basis import (
    BrokerPosition,
    Position,
    aggregate_brokers,
    apply_buy,
    apply_sell,
    reconcile_brokers,
)


class TestApplyBuy(unittest.TestCase):
    def test_weighted_average(self):
        pos = apply_buy(Position(Decimal("10"), Decimal("100")), 10, 200)
        self.assertEqual(pos.quantity, Decimal("20"))
        self.assertEqual(pos.average_price, Decimal("150"))

    def test_first_buy_takes_price(self):
        pos = apply_buy(Position(Decimal("0"), Decimal("42")), 5, 10)
        self.assertEqual(pos, Position(Decimal("5"), Decimal("10")))

    def test_non_positive_input_is_noop(self):
        start = Position(Decimal("3"), Decimal("7"))
        self.assertIs(apply_buy(start, 0, 10), start)
        self.assertIs(apply_buy(start, -1, 10), start)
        self.assertIs(apply_buy(start, 1, 0), start)
        self.assertIs(apply_buy(start, "garbage", 10), start)

    def test_fractional_crypto_quantities_are_exact(self):
        pos = apply_buy(Position(), "0.1", "30000")
        pos = apply_buy(pos, "0.2", "60000")
        self.assertEqual(pos.quantity, Decimal("0.3"))
        self.assertEqual(pos.average_price, Decimal("50000"))


class TestApplySell(unittest.TestCase):
    def test_sell_keeps_average(self):
        pos = apply_sell(Position(Decimal("10"), Decimal("5")), 4)
        self.assertEqual(pos, Position(Decimal("6"), Decimal("5")))

    def test_oversell_clamps_to_zero(self):
        pos = apply_sell(Position(Decimal("3"), Decimal("5")), 10)
        self.assertEqual(pos.quantity, Decimal("0"))
        self.assertEqual(pos.average_price, Decimal("5"))

    def test_non_positive_is_noop(self):
        start = Position(Decimal("3"), Decimal("5"))
        self.assertIs(apply_sell(start, 0), start)
        self.assertIs(apply_sell(start, -2), start)


class TestBrokers(unittest.TestCase):
    def test_aggregate(self):
        agg = aggregate_brokers(
            [
                BrokerPosition("A", Decimal("1"), Decimal("100")),
                BrokerPosition("B", Decimal("3"), Decimal("200")),
            ]
        )
        self.assertEqual(agg.quantity, Decimal("4"))
        self.assertEqual(agg.average_price, Decimal("175"))

    def test_aggregate_empty(self):
        self.assertEqual(aggregate_brokers([]), Position())

    def test_reconcile(self):
        brokers = [BrokerPosition.from_dict({"broker": "A", "quantity": "2", "average_price": "10"})]
        ok, _ = reconcile_brokers(Position(Decimal("2"), Decimal("10")), brokers)
        self.assertTrue(ok)
        ok, agg = reconcile_brokers(Position(Decimal("5"), Decimal("10")), brokers)
        self.assertFalse(ok)
        self.assertEqual(agg.quantity, Decimal("2"))

    def test_broker_dict_round_trip_uses_strings(self):
        d = BrokerPosition("IBKR", Decimal("1.5"), Decimal("10.25")).to_dict()
        self.assertEqual(d, {"broker": "IBKR", "quantity": "1.5", "average_price": "10.25"})


if __name__ == "__main__":
    unittest.main()
