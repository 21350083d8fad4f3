import unittest
from decimal import Decimal
from types import SimpleNamespace

from services.portfolio_summary import holding_metrics, summarize


def _h(qty, avg, cur, typ="equity"):
    return SimpleNamespace(quantity=Decimal(qty), average_price=Decimal(avg), current_price=Decimal(cur), type=typ)


class TestPortfolioSummary(unittest.TestCase):
    def test_totals_and_breakdown(self):
        out = summarize(
            [
                _h("10", "100", "120"),
                _h("0.5", "40000", "38000", "crypto"),
                _h("5", "50", "50", "fund"),
            ]
        )
        self.assertAlmostEqual(out["total_value"], 1200 + 19000 + 250)
        self.assertAlmostEqual(out["total_investment"], 1000 + 20000 + 250)
        self.assertAlmostEqual(out["total_profit"], -800)
        self.assertFalse(out["is_profit"])
        self.assertEqual(out["profit_pct"], round(-800 / 21250 * 100, 2))

        labels = {row["label"]: row for row in out["profit_by_type"]}
        self.assertEqual(labels["Stocks"]["profit"], 200.0)
        self.assertTrue(labels["Stocks"]["is_profit"])
        self.assertEqual(labels["Crypto"]["profit"], -1000.0)
        # zero-profit types are left out
        self.assertNotIn("Funds", labels)

    def test_empty_portfolio(self):
        out = summarize([])
        self.assertEqual(out["total_value"], 0.0)
        self.assertEqual(out["profit_pct"], 0.0)
        self.assertTrue(out["is_profit"])
        self.assertEqual(out["profit_by_type"], [])

    def test_holding_metrics(self):
        m = holding_metrics(_h("2", "10", "15"))
        self.assertEqual(m["value"], 30.0)
        self.assertEqual(m["unrealized_pl"], 10.0)
        self.assertEqual(m["unrealized_pl_pct"], 50.0)
        self.assertEqual(m["quantity_decimals"], 2)
        self.assertEqual(holding_metrics(_h("0.001", "1", "1", "crypto"))["quantity_decimals"], 8)

    def test_no_cost_basis_has_zero_pct(self):
        self.assertEqual(holding_metrics(_h("1", "0", "10"))["unrealized_pl_pct"], 0.0)


if __name__ == "__main__":
    unittest.main()
