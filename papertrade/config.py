"""
Runtime configuration for the paper trading service.

All settings come from environment variables with local-development
defaults, so the app starts with nothing but a Finnhub API key.
"""

import os
from dataclasses import dataclass
from decimal import Decimal


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Settings:
    """Application settings."""

    secret_key: str
    session_cookie: str
    cookie_secure: bool

    finnhub_api_key: str
    finnhub_base_url: str
    finnhub_ws_url: str
    quote_timeout: float

    starting_cash: Decimal

    database_url: str
    sql_echo: bool

    alert_monitor_enabled: bool
    alert_monitor_interval: float
    relay_ping_interval: float
    event_bus_capacity: int
    sse_keepalive: float


def load_settings() -> Settings:
    """Build settings from the current environment."""
    return Settings(
        secret_key=os.getenv("SECRET_KEY", "change-me-in-production"),
        session_cookie=os.getenv("SESSION_COOKIE", "session"),
        cookie_secure=_env_bool("COOKIE_SECURE", "false"),
        finnhub_api_key=os.getenv("FINNHUB_API_KEY", "").strip(),
        finnhub_base_url=os.getenv("FINNHUB_BASE_URL", "https://finnhub.io/api/v1"),
        finnhub_ws_url=os.getenv("FINNHUB_WS_URL", "wss://ws.finnhub.io"),
        quote_timeout=float(os.getenv("QUOTE_TIMEOUT", "10")),
        starting_cash=Decimal(os.getenv("STARTING_CASH", "10000.00")),
        database_url=os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./papertrade.db"),
        sql_echo=_env_bool("SQLALCHEMY_ECHO", "false"),
        alert_monitor_enabled=_env_bool("ALERT_MONITOR_ENABLED", "true"),
        alert_monitor_interval=float(os.getenv("ALERT_MONITOR_INTERVAL", "5")),
        relay_ping_interval=float(os.getenv("RELAY_PING_INTERVAL", "25")),
        event_bus_capacity=int(os.getenv("EVENT_BUS_CAPACITY", "256")),
        sse_keepalive=float(os.getenv("SSE_KEEPALIVE", "20")),
    )
