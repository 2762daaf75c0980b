"""Portfolio service - position valuation, unrealized P/L and order history."""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from sqlalchemy.ext.asyncio import AsyncSession

from papertrade.errors import ConfigError, UpstreamError, ValidationError
from papertrade.models import Order, Position
from papertrade.money import to_money
from papertrade.services import ledger

logger = logging.getLogger(__name__)

DEFAULT_ORDER_LIMIT = 20
MAX_ORDER_LIMIT = 100


@dataclass
class PositionView:
    """A position with its last price and unrealized profit/loss."""

    symbol: str
    qty: int
    avg_price: Decimal
    last_price: Decimal | None  # None if no usable quote
    market_value: Decimal | None
    pnl: Decimal | None
    pnl_pct: Decimal | None

    @property
    def cost_basis(self) -> Decimal:
        return self.avg_price * self.qty

    @property
    def pnl_class(self) -> str:
        """CSS-ish tone for the P/L figure."""
        if self.pnl is None or self.pnl == 0:
            return "neutral"
        return "gain" if self.pnl > 0 else "loss"


@dataclass
class OrderView:
    """One order-history row."""

    id: str
    created_at: datetime
    symbol: str
    side: str
    qty: int
    price: Decimal
    total: Decimal


@dataclass
class PortfolioSummary:
    """Cash plus the value of every position."""

    cash: Decimal
    holdings_value: Decimal | None  # None if any price is unavailable
    total_value: Decimal | None  # cash + holdings
    total_cost_basis: Decimal
    unrealized_pnl: Decimal | None
    positions: list[PositionView]


async def last_price(quotes, symbol: str) -> Decimal | None:
    """Latest usable price for a symbol, or None if the provider can't say."""
    try:
        quote = await quotes.quote(symbol)
    except (ConfigError, UpstreamError) as e:
        logger.debug("No price for %s: %s", symbol, e)
        return None
    if not quote.is_usable:
        return None
    return quote.price


def build_position_view(position: Position, price: Decimal | None) -> PositionView:
    if price is None:
        return PositionView(
            symbol=position.symbol,
            qty=position.qty,
            avg_price=position.avg_price,
            last_price=None,
            market_value=None,
            pnl=None,
            pnl_pct=None,
        )

    pnl = to_money((price - position.avg_price) * position.qty)
    if position.avg_price > 0:
        pnl_pct = to_money((price - position.avg_price) / position.avg_price * 100)
    else:
        pnl_pct = None

    return PositionView(
        symbol=position.symbol,
        qty=position.qty,
        avg_price=position.avg_price,
        last_price=price,
        market_value=to_money(price * position.qty),
        pnl=pnl,
        pnl_pct=pnl_pct,
    )


async def list_position_views(session: AsyncSession, quotes, user_id: str) -> list[PositionView]:
    """All of a user's positions, valued at the latest quotes.

    Quotes are fetched concurrently, one per position.
    """
    positions = await ledger.list_positions(session, user_id)
    prices = await asyncio.gather(*(last_price(quotes, p.symbol) for p in positions))
    return [build_position_view(p, price) for p, price in zip(positions, prices)]


async def get_position_view(
    session: AsyncSession, quotes, user_id: str, symbol: str
) -> PositionView | None:
    """The user's position in one symbol, or None if nothing is held."""
    position = await ledger.get_position(session, user_id, symbol)
    if position is None:
        return None
    return build_position_view(position, await last_price(quotes, position.symbol))


def clamp_order_limit(limit: int | None) -> int:
    if limit is None:
        return DEFAULT_ORDER_LIMIT
    if limit < 1:
        raise ValidationError("Limit must be at least 1.", field="limit")
    return min(limit, MAX_ORDER_LIMIT)


def build_order_view(order: Order) -> OrderView:
    return OrderView(
        id=order.id,
        created_at=order.created_at,
        symbol=order.symbol,
        side=order.side.value,
        qty=order.qty,
        price=order.price,
        total=order.total,
    )


async def list_order_views(
    session: AsyncSession, user_id: str, limit: int | None = None
) -> list[OrderView]:
    """A user's most recent orders, newest first."""
    orders = await ledger.list_orders(session, user_id, limit=clamp_order_limit(limit))
    return [build_order_view(o) for o in orders]


async def get_portfolio_summary(
    session: AsyncSession,
    quotes,
    user_id: str,
    starting_cash: Decimal = ledger.DEFAULT_STARTING_CASH,
) -> PortfolioSummary:
    """Cash, positions and totals for a user, opening the account if needed.

    Args:
        session: Database session (committed if the account was just opened)
        quotes: Quote gateway used to value positions
        user_id: The user
        starting_cash: Balance for a lazily created account

    Returns:
        PortfolioSummary; totals are None if any position lacks a price
    """
    account = await ledger.get_or_create_account(session, user_id, starting_cash)
    await session.commit()

    positions = await list_position_views(session, quotes, user_id)
    total_cost_basis = to_money(sum((p.cost_basis for p in positions), Decimal("0")))

    # Only total up if every price is available
    if all(p.market_value is not None for p in positions):
        holdings_value = to_money(sum((p.market_value for p in positions), Decimal("0")))
        total_value = account.cash + holdings_value
        unrealized_pnl = holdings_value - total_cost_basis
    else:
        holdings_value = None
        total_value = None
        unrealized_pnl = None

    return PortfolioSummary(
        cash=account.cash,
        holdings_value=holdings_value,
        total_value=total_value,
        total_cost_basis=total_cost_basis,
        unrealized_pnl=unrealized_pnl,
        positions=positions,
    )
