"""Dependency injection for FastAPI.

Shared collaborators are created once in ``wire_services()`` (called from
the app lifespan) and attached to ``app.state``; routes receive them via
the getters below. Tests call ``wire_services()`` with fakes.
"""

from fastapi import FastAPI
from starlette.requests import HTTPConnection

from papertrade.config import Settings
from papertrade.database import AsyncSessionLocal
from papertrade.events import EventBus
from papertrade.services.alert_monitor import AlertMonitor
from papertrade.services.quotes import FinnhubClient
from papertrade.services.relay import TradeRelay
from papertrade.services.trading import TradeExecutionEngine


def wire_services(
    app: FastAPI,
    settings: Settings,
    quotes=None,
    relay: TradeRelay | None = None,
    session_factory=AsyncSessionLocal,
) -> None:
    """Create and attach shared service instances to app.state (composition root)."""
    if quotes is None:
        quotes = FinnhubClient(
            settings.finnhub_api_key,
            base_url=settings.finnhub_base_url,
            timeout=settings.quote_timeout,
        )
    if relay is None:
        relay = TradeRelay(
            settings.finnhub_api_key,
            ws_url=settings.finnhub_ws_url,
            ping_interval=settings.relay_ping_interval,
        )

    events = EventBus(capacity=settings.event_bus_capacity)

    app.state.settings = settings
    app.state.events = events
    app.state.quotes = quotes
    app.state.relay = relay
    app.state.trade_engine = TradeExecutionEngine(
        quotes, events, starting_cash=settings.starting_cash
    )
    app.state.monitor = AlertMonitor(
        session_factory, quotes, events, interval=settings.alert_monitor_interval
    )


def get_settings(conn: HTTPConnection) -> Settings:
    return conn.app.state.settings


def get_events(conn: HTTPConnection) -> EventBus:
    """Inject the shared notification bus."""
    return conn.app.state.events


def get_quotes(conn: HTTPConnection):
    """Inject the shared quote gateway."""
    return conn.app.state.quotes


def get_trade_engine(conn: HTTPConnection) -> TradeExecutionEngine:
    return conn.app.state.trade_engine


def get_monitor(conn: HTTPConnection) -> AlertMonitor:
    return conn.app.state.monitor


def get_relay(conn: HTTPConnection) -> TradeRelay:
    return conn.app.state.relay
