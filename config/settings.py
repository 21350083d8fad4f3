"""
Runtime configuration, read once from the environment.

Every knob has a default so the service boots without a .env file. Missing
credentials (Finnhub key, Supabase secret) only disable the features that
need them.
"""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import List

from dotenv import load_dotenv

load_dotenv()


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, str(default)))
    except ValueError:
        return default


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_list(name: str, default: str) -> List[str]:
    return [x.strip() for x in os.getenv(name, default).split(",") if x.strip()]


DEFAULT_SQLITE_URL = "sqlite:///./portfolio.db"


@dataclass(frozen=True)
class Settings:
    database_url: str = field(default_factory=lambda: os.getenv("DATABASE_URL") or DEFAULT_SQLITE_URL)

    finnhub_api_key: str | None = field(default_factory=lambda: os.getenv("FINNHUB_API_KEY") or None)

    supabase_project_url: str = field(
        default_factory=lambda: os.getenv("SUPABASE_PROJECT_URL", "").rstrip("/")
    )
    supabase_jwt_secret: str | None = field(default_factory=lambda: os.getenv("SUPABASE_JWT_SECRET") or None)
    supabase_jwt_aud: str = field(default_factory=lambda: os.getenv("SUPABASE_JWT_AUD", "authenticated"))

    # price refresh
    price_refresh_enabled: bool = field(default_factory=lambda: _env_bool("PRICE_REFRESH_ENABLED", True))
    price_refresh_interval_sec: float = field(
        default_factory=lambda: _env_float("PRICE_REFRESH_INTERVAL_SEC", 120.0)
    )
    price_refresh_batch_size: int = field(default_factory=lambda: _env_int("PRICE_REFRESH_BATCH_SIZE", 5))
    price_refresh_batch_delay_sec: float = field(
        default_factory=lambda: _env_float("PRICE_REFRESH_BATCH_DELAY_SEC", 0.5)
    )
    quote_max_retries: int = field(default_factory=lambda: _env_int("QUOTE_MAX_RETRIES", 3))
    quote_retry_base_delay_sec: float = field(
        default_factory=lambda: _env_float("QUOTE_RETRY_BASE_DELAY_SEC", 1.0)
    )
    quote_rate_limit_delay_sec: float = field(
        default_factory=lambda: _env_float("QUOTE_RATE_LIMIT_DELAY_SEC", 60.0)
    )
    rate_limit_max_consecutive: int = field(default_factory=lambda: _env_int("RATE_LIMIT_MAX_CONSECUTIVE", 3))
    rate_limit_cooldown_sec: float = field(default_factory=lambda: _env_float("RATE_LIMIT_COOLDOWN_SEC", 300.0))

    # alerts
    alert_check_interval_sec: float = field(default_factory=lambda: _env_float("ALERT_CHECK_INTERVAL_SEC", 300.0))
    notification_dedup_hours: int = field(default_factory=lambda: _env_int("NOTIFICATION_DEDUP_HOURS", 24))

    # sessions
    session_idle_ttl_sec: float = field(default_factory=lambda: _env_float("SESSION_IDLE_TTL_SEC", 1800.0))

    # logging
    log_level: str = field(default_factory=lambda: (os.getenv("LOG_LEVEL") or "INFO").strip().upper())
    log_json: bool = field(default_factory=lambda: _env_bool("LOG_JSON", False))

    # http
    rate_limit_default: str = field(default_factory=lambda: os.getenv("RATE_LIMIT_DEFAULT", "60/minute"))
    redis_url: str | None = field(default_factory=lambda: os.getenv("REDIS_URL") or None)
    cors_origins: List[str] = field(
        default_factory=lambda: _env_list("CORS_ORIGINS", "http://localhost:3000,http://localhost:5173")
    )

    @property
    def quotes_enabled(self) -> bool:
        return bool(self.finnhub_api_key)

    @property
    def auth_enabled(self) -> bool:
        return bool(self.supabase_jwt_secret)

    def config_warnings(self) -> List[str]:
        """Startup warnings for missing or half-configured credentials."""
        out: List[str] = []
        if not self.quotes_enabled:
            out.append("FINNHUB_API_KEY not set; market data and price refresh disabled")
        if not self.auth_enabled:
            out.append("SUPABASE_JWT_SECRET not set; authenticated routes will answer 503")
        elif not self.supabase_project_url:
            out.append("SUPABASE_PROJECT_URL not set; token issuer check will reject every token")
        return out


_settings: Settings | None = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
