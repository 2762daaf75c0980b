"""
Shared pytest fixtures for testing the paper trading service.

Uses an in-memory SQLite database shared by every session of a test
(StaticPool), a fake quote gateway with call counting and a real EventBus.
"""

import asyncio
from dataclasses import replace
from decimal import Decimal

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from papertrade.config import load_settings
from papertrade.database import Base, get_session
from papertrade.deps import wire_services
from papertrade.errors import ConfigError, UpstreamError
from papertrade.events import EventBus
from papertrade.main import app
from papertrade.models import Account, Alert, AlertCondition, Position, User
from papertrade.services import ledger
from papertrade.services.quotes import Quote, SymbolMatch
from papertrade.services.relay import TradeRelay
from papertrade.services.trading import TradeExecutionEngine


# Use in-memory SQLite for tests (fast, isolated)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


class FakeQuotes:
    """Quote gateway double.

    Prices are set per symbol; symbols in ``failing`` raise UpstreamError.
    Every call is recorded in ``calls``.
    """

    def __init__(self, prices: dict[str, float] | None = None):
        self.prices = dict(prices or {})
        self.failing: set[str] = set()
        self.configured = True
        self.calls: list[str] = []
        self.search_results: list[SymbolMatch] = []
        self.closed = False

    def set_price(self, symbol: str, price: float) -> None:
        self.prices[symbol.upper()] = price

    async def quote(self, symbol: str) -> Quote:
        symbol = symbol.upper()
        self.calls.append(symbol)
        await asyncio.sleep(0)
        if not self.configured:
            raise ConfigError(detail="FINNHUB_API_KEY is not set")
        if symbol in self.failing:
            raise UpstreamError(detail=f"Finnhub /quote failed: 500 for {symbol}")
        return Quote(
            symbol=symbol,
            current=self.prices.get(symbol, 0.0),
            change=None,
            percent_change=None,
            high=None,
            low=None,
            open=None,
            previous_close=None,
            timestamp=None,
        )

    async def search(self, query: str) -> list[SymbolMatch]:
        self.calls.append(f"search:{query}")
        if not self.configured:
            raise ConfigError(detail="FINNHUB_API_KEY is not set")
        return list(self.search_results)

    async def close(self) -> None:
        self.closed = True

    def calls_for(self, symbol: str) -> int:
        return self.calls.count(symbol.upper())


@pytest.fixture(scope="session")
def anyio_backend():
    """Use asyncio backend for pytest-asyncio."""
    return "asyncio"


@pytest_asyncio.fixture
async def test_engine():
    """Create a test database engine.

    Creates tables at the start, drops them at the end.
    Each test gets a fresh database.
    """
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    """Session factory bound to the test database."""
    return async_sessionmaker(
        bind=test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


@pytest_asyncio.fixture
async def test_session(session_factory):
    """Provide a database session for a test.

    Rolls back the session after each test for isolation.
    """
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def quotes():
    """Fake quote gateway with a few known prices."""
    return FakeQuotes({"AAPL": 150.0, "TSLA": 200.0, "MSFT": 400.0})


@pytest.fixture
def events():
    return EventBus()


@pytest.fixture
def trade_engine(quotes, events):
    return TradeExecutionEngine(quotes, events)


@pytest.fixture
def test_settings():
    return replace(
        load_settings(),
        finnhub_api_key="test-key",
        alert_monitor_enabled=False,
        starting_cash=Decimal("10000.00"),
        sse_keepalive=0.05,
    )


@pytest_asyncio.fixture
async def test_client(session_factory, quotes, test_settings):
    """Provide a FastAPI test client with test database and fake collaborators.

    Overrides the get_session dependency to use our test database.
    """

    async def override_get_session():
        async with session_factory() as session:
            yield session

    wire_services(
        app,
        test_settings,
        quotes=quotes,
        relay=TradeRelay("test-key"),
        session_factory=session_factory,
    )
    app.dependency_overrides[get_session] = override_get_session

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test"
    ) as client:
        yield client

    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def logged_in_client(test_client):
    """A test client with a registered, logged-in user."""
    response = await test_client.post(
        "/register",
        data={"email": "trader@example.com", "password": "s3cret-pass", "username": "trader"},
    )
    assert response.status_code == 201
    return test_client


# --- Helper fixtures for creating test data ---


@pytest.fixture
def make_user(test_session):
    """Factory inserting a user directly (no password hashing)."""

    async def _make_user(user_id: str, email: str | None = None) -> User:
        user = User(
            id=user_id,
            email=email or f"{user_id}@example.com",
            username=user_id,
            password_hash="unused",
        )
        test_session.add(user)
        await test_session.commit()
        return user

    return _make_user


@pytest.fixture
def make_alert(test_session):
    """Factory inserting a pending alert directly."""

    async def _make_alert(
        user_id: str, symbol: str, condition: AlertCondition, target: str
    ) -> Alert:
        alert = await ledger.add_alert(test_session, user_id, symbol, condition, Decimal(target))
        await test_session.commit()
        return alert

    return _make_alert


@pytest_asyncio.fixture
async def user(test_session, make_user):
    """A user with a 10,000.00 account."""
    u = await make_user("user1")
    test_session.add(Account(user_id=u.id, cash=Decimal("10000.00")))
    await test_session.commit()
    return u


@pytest_asyncio.fixture
async def user_with_position(test_session, user):
    """user1 holding 10 AAPL at 150.00."""
    test_session.add(
        Position(user_id=user.id, symbol="AAPL", qty=10, avg_price=Decimal("150.00"))
    )
    await test_session.commit()
    return user
