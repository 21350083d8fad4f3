import unittest

from config.settings import Settings


def _settings(**kw):
    base = dict(
        finnhub_api_key="key",
        supabase_jwt_secret="secret",
        supabase_project_url="https://abc.supabase.co",
    )
    base.update(kw)
    return Settings(**base)


class TestConfigWarnings(unittest.TestCase):
    def test_fully_configured(self):
        self.assertEqual(_settings().config_warnings(), [])

    def test_missing_project_url_with_secret(self):
        warnings = _settings(supabase_project_url="").config_warnings()
        self.assertEqual(len(warnings), 1)
        self.assertIn("SUPABASE_PROJECT_URL", warnings[0])

    def test_missing_secret_reports_only_secret(self):
        warnings = _settings(supabase_jwt_secret=None, supabase_project_url="").config_warnings()
        self.assertEqual(len(warnings), 1)
        self.assertIn("SUPABASE_JWT_SECRET", warnings[0])

    def test_missing_finnhub_key(self):
        warnings = _settings(finnhub_api_key=None).config_warnings()
        self.assertEqual(len(warnings), 1)
        self.assertIn("FINNHUB_API_KEY", warnings[0])

    def test_idle_ttl_default(self):
        self.assertEqual(_settings().session_idle_ttl_sec, 1800.0)


if __name__ == "__main__":
    unittest.main()
