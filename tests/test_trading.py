"""
Tests for the trade execution engine.

Covers the buy/sell arithmetic (weighted average cost, cents rounding),
rejections that must leave cash and positions untouched, failure
handling around the order log, and same-user serialization.
"""

import asyncio
from decimal import Decimal

import pytest
from sqlalchemy.exc import SQLAlchemyError

from papertrade.errors import (
    ConfigError,
    InsufficientFundsError,
    InsufficientSharesError,
    NoPositionError,
    QuoteError,
    StoreError,
    ValidationError,
)
from papertrade.events import CASH_UPDATED, ORDERS_UPDATED, POSITION_UPDATED
from papertrade.models import OrderSide
from papertrade.services import ledger
from papertrade.services.trading import parse_quantity


async def _cash(session, user_id):
    account = await ledger.get_account(session, user_id)
    return account.cash


class TestParseQuantity:
    """Tests for quantity parsing."""

    @pytest.mark.parametrize("raw, expected", [(1, 1), ("10", 10), (" 7 ", 7)])
    def test_valid(self, raw, expected):
        assert parse_quantity(raw) == expected

    @pytest.mark.parametrize("raw", [0, -1, "0", "-3", "1.5", "abc", "", None, True, "١٢"])
    def test_invalid(self, raw):
        with pytest.raises(ValidationError) as exc_info:
            parse_quantity(raw)
        assert exc_info.value.field == "qty"


class TestBuy:
    """Tests for market buys."""

    @pytest.mark.asyncio
    async def test_first_buy_opens_position(self, trade_engine, test_session, user):
        """Buying 10 AAPL at 150 costs 1,500.00."""
        receipt = await trade_engine.buy(test_session, user.id, "aapl", "10")

        assert receipt.symbol == "AAPL"
        assert receipt.side == OrderSide.BUY
        assert receipt.price == Decimal("150.00")
        assert receipt.total == Decimal("1500.00")
        assert receipt.cash == Decimal("8500.00")
        assert receipt.position_qty == 10
        assert receipt.avg_price == Decimal("150.00")
        assert receipt.order_id is not None

        assert await _cash(test_session, user.id) == Decimal("8500.00")
        orders = await ledger.list_orders(test_session, user.id)
        assert len(orders) == 1
        assert orders[0].id == receipt.order_id
        assert orders[0].side == OrderSide.BUY
        assert orders[0].total == Decimal("1500.00")

    @pytest.mark.asyncio
    async def test_buy_then_buy_then_sell_all(self, trade_engine, quotes, test_session, user):
        """The full scenario: 10,000 -> 8,500 -> 7,700 -> 10,250."""
        await trade_engine.buy(test_session, user.id, "AAPL", 10)

        quotes.set_price("AAPL", 160.0)
        receipt = await trade_engine.buy(test_session, user.id, "AAPL", 5)
        assert receipt.cash == Decimal("7700.00")
        assert receipt.position_qty == 15
        # (10*150 + 5*160) / 15 = 153.333...
        assert receipt.avg_price == Decimal("153.33")

        quotes.set_price("AAPL", 170.0)
        receipt = await trade_engine.sell(test_session, user.id, "AAPL", 15)
        assert receipt.total == Decimal("2550.00")
        assert receipt.cash == Decimal("10250.00")
        assert receipt.position_closed
        assert receipt.avg_price is None

        assert await ledger.get_position(test_session, user.id, "AAPL") is None
        assert await _cash(test_session, user.id) == Decimal("10250.00")
        orders = await ledger.list_orders(test_session, user.id)
        assert [o.side for o in orders] == [OrderSide.SELL, OrderSide.BUY, OrderSide.BUY]

    @pytest.mark.asyncio
    async def test_total_rounded_to_cents(self, trade_engine, quotes, test_session, user):
        """Fractional provider prices are rounded to cents before multiplying."""
        quotes.set_price("MSFT", 100.005)
        receipt = await trade_engine.buy(test_session, user.id, "MSFT", 3)

        assert receipt.price == Decimal("100.01")
        assert receipt.total == Decimal("300.03")
        assert receipt.cash == Decimal("9699.97")

    @pytest.mark.asyncio
    async def test_account_opened_on_first_trade(self, trade_engine, test_session, make_user):
        """A user without an account trades from the starting balance."""
        await make_user("newbie")

        receipt = await trade_engine.buy(test_session, "newbie", "AAPL", 1)
        assert receipt.cash == Decimal("9850.00")

    @pytest.mark.asyncio
    async def test_insufficient_funds_changes_nothing(
        self, trade_engine, events, test_session, user
    ):
        """A buy above the balance is rejected with no side effects."""
        with events.subscribe() as sub:
            with pytest.raises(InsufficientFundsError) as exc_info:
                await trade_engine.buy(test_session, user.id, "AAPL", 100)

            assert exc_info.value.field == "balance"
            assert exc_info.value.user_message == "Not enough cash."
            assert sub._queue.empty()

        assert await _cash(test_session, user.id) == Decimal("10000.00")
        assert await ledger.get_position(test_session, user.id, "AAPL") is None
        assert await ledger.list_orders(test_session, user.id) == []

    @pytest.mark.asyncio
    async def test_exact_balance_allowed(self, trade_engine, quotes, test_session, user):
        quotes.set_price("TSLA", 2000.0)
        receipt = await trade_engine.buy(test_session, user.id, "TSLA", 5)
        assert receipt.cash == Decimal("0.00")


class TestSell:
    """Tests for market sells."""

    @pytest.mark.asyncio
    async def test_partial_sell_keeps_avg_price(
        self, trade_engine, quotes, test_session, user_with_position
    ):
        """Selling part of a position leaves avg_price at cost."""
        quotes.set_price("AAPL", 180.0)
        receipt = await trade_engine.sell(test_session, user_with_position.id, "AAPL", "4")

        assert receipt.total == Decimal("720.00")
        assert receipt.cash == Decimal("10720.00")
        assert receipt.position_qty == 6
        assert receipt.avg_price == Decimal("150.00")

        position = await ledger.get_position(test_session, user_with_position.id, "AAPL")
        assert position.qty == 6
        assert position.avg_price == Decimal("150.00")

    @pytest.mark.asyncio
    async def test_sell_without_position(self, trade_engine, test_session, user):
        with pytest.raises(NoPositionError) as exc_info:
            await trade_engine.sell(test_session, user.id, "MSFT", 1)

        assert exc_info.value.user_message == "You have no position to sell."
        assert await _cash(test_session, user.id) == Decimal("10000.00")

    @pytest.mark.asyncio
    async def test_sell_more_than_held(self, trade_engine, test_session, user_with_position):
        """Overselling is rejected and the position is unchanged."""
        with pytest.raises(InsufficientSharesError):
            await trade_engine.sell(test_session, user_with_position.id, "AAPL", 11)

        position = await ledger.get_position(test_session, user_with_position.id, "AAPL")
        assert position.qty == 10
        assert await _cash(test_session, user_with_position.id) == Decimal("10000.00")
        assert await ledger.list_orders(test_session, user_with_position.id) == []


class TestQuoteFailures:
    """Trades need a usable price."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("price", [0.0, -5.0, 0.004, float("nan"), float("inf")])
    async def test_unusable_price_rejected(self, trade_engine, quotes, test_session, user, price):
        quotes.set_price("AAPL", price)

        with pytest.raises(QuoteError):
            await trade_engine.buy(test_session, user.id, "AAPL", 1)

        assert await _cash(test_session, user.id) == Decimal("10000.00")

    @pytest.mark.asyncio
    async def test_sub_cent_price_never_sells(
        self, trade_engine, quotes, test_session, user_with_position
    ):
        """A quote that rounds to 0.00 must not close a position for nothing."""
        quotes.set_price("AAPL", 0.004)

        with pytest.raises(QuoteError):
            await trade_engine.sell(test_session, user_with_position.id, "AAPL", 10)

        position = await ledger.get_position(test_session, user_with_position.id, "AAPL")
        assert position.qty == 10
        assert await _cash(test_session, user_with_position.id) == Decimal("10000.00")
        assert await ledger.list_orders(test_session, user_with_position.id) == []

    @pytest.mark.asyncio
    async def test_upstream_failure_is_quote_error(self, trade_engine, quotes, test_session, user):
        quotes.failing.add("AAPL")

        with pytest.raises(QuoteError) as exc_info:
            await trade_engine.buy(test_session, user.id, "AAPL", 1)
        assert exc_info.value.status_code == 502

    @pytest.mark.asyncio
    async def test_missing_api_key_is_config_error(self, trade_engine, quotes, test_session, user):
        quotes.configured = False

        with pytest.raises(ConfigError):
            await trade_engine.buy(test_session, user.id, "AAPL", 1)

    @pytest.mark.asyncio
    async def test_invalid_input_never_calls_provider(self, trade_engine, quotes, test_session, user):
        with pytest.raises(ValidationError):
            await trade_engine.buy(test_session, user.id, "AAPL", "0")
        with pytest.raises(ValidationError):
            await trade_engine.buy(test_session, user.id, "  ", 1)
        with pytest.raises(ValidationError):
            await trade_engine.execute(test_session, user.id, "hold", "AAPL", 1)

        assert quotes.calls == []


class TestStoreFailures:
    """Behavior when the database misbehaves."""

    @pytest.mark.asyncio
    async def test_settlement_failure_rolls_back(self, trade_engine, test_session, user, monkeypatch):
        """A failure after the debit leaves the balance untouched."""

        async def broken_upsert(*args, **kwargs):
            raise SQLAlchemyError("disk full")

        monkeypatch.setattr(ledger, "upsert_position", broken_upsert)

        with pytest.raises(StoreError) as exc_info:
            await trade_engine.buy(test_session, user.id, "AAPL", 10)

        assert exc_info.value.status_code == 500
        assert await _cash(test_session, user.id) == Decimal("10000.00")

    @pytest.mark.asyncio
    async def test_order_log_failure_keeps_trade(
        self, trade_engine, events, test_session, user, monkeypatch
    ):
        """The trade stands even if its order log entry can't be written."""

        async def broken_record(*args, **kwargs):
            raise SQLAlchemyError("orders table locked")

        monkeypatch.setattr(ledger, "record_order", broken_record)

        with events.subscribe() as sub:
            receipt = await trade_engine.buy(test_session, user.id, "AAPL", 10)
            assert sub._queue.qsize() == 3

        assert receipt.order_id is None
        assert await _cash(test_session, user.id) == Decimal("8500.00")
        position = await ledger.get_position(test_session, user.id, "AAPL")
        assert position.qty == 10


class TestEventsAndConcurrency:
    """Notifications and same-user serialization."""

    @pytest.mark.asyncio
    async def test_trade_publishes_three_events(self, trade_engine, events, test_session, user):
        with events.subscribe() as sub:
            await trade_engine.buy(test_session, user.id, "AAPL", 1)

            received = [await asyncio.wait_for(sub.get(), timeout=1) for _ in range(3)]

        assert received == [CASH_UPDATED, POSITION_UPDATED, ORDERS_UPDATED]

    @pytest.mark.asyncio
    async def test_concurrent_buys_cannot_overspend(self, trade_engine, session_factory, user):
        """Two 6,000.00 buys against 10,000.00: exactly one succeeds."""
        async with session_factory() as s1, session_factory() as s2:
            results = await asyncio.gather(
                trade_engine.buy(s1, user.id, "AAPL", 40),
                trade_engine.buy(s2, user.id, "AAPL", 40),
                return_exceptions=True,
            )

        errors = [r for r in results if isinstance(r, Exception)]
        fills = [r for r in results if not isinstance(r, Exception)]
        assert len(fills) == 1
        assert len(errors) == 1
        assert isinstance(errors[0], InsufficientFundsError)

        async with session_factory() as session:
            assert await _cash(session, user.id) == Decimal("4000.00")
            position = await ledger.get_position(session, user.id, "AAPL")
            assert position.qty == 40

    @pytest.mark.asyncio
    async def test_concurrent_sells_cannot_oversell(
        self, trade_engine, session_factory, user_with_position
    ):
        """Two 6-share sells against 10 shares: exactly one succeeds."""
        async with session_factory() as s1, session_factory() as s2:
            results = await asyncio.gather(
                trade_engine.sell(s1, user_with_position.id, "AAPL", 6),
                trade_engine.sell(s2, user_with_position.id, "AAPL", 6),
                return_exceptions=True,
            )

        assert sum(1 for r in results if isinstance(r, InsufficientSharesError)) == 1

        async with session_factory() as session:
            position = await ledger.get_position(session, user_with_position.id, "AAPL")
            assert position.qty == 4
            assert await _cash(session, user_with_position.id) == Decimal("10900.00")
