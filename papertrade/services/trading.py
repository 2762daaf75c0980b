"""Trade execution engine.

Executes market buys and sells at the current quote:
1. The symbol is upper-cased and the quantity must be a positive integer
2. The fill price is the latest usable quote (no slippage model)
3. A buy re-averages the position at the qty-weighted mean cost
4. A sell decrements the position and deletes it at zero; avg_price is kept
5. Cash, position and account timestamp are settled in one transaction
6. The order log entry is written afterwards in its own commit and a
   failure there is logged, not propagated

Trades for the same user are serialized by a per-user lock. Across
processes, the conditional cash debit and share decrement in the ledger
still keep cash and quantity from going negative.
"""

import asyncio
import logging
from dataclasses import dataclass
from decimal import Decimal
from weakref import WeakValueDictionary

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from papertrade import telemetry
from papertrade.errors import (
    BusinessRuleError,
    InsufficientFundsError,
    InsufficientSharesError,
    NoPositionError,
    PaperTradeError,
    StoreError,
    ValidationError,
)
from papertrade.events import CASH_UPDATED, ORDERS_UPDATED, POSITION_UPDATED, EventBus
from papertrade.models import OrderSide
from papertrade.money import to_money
from papertrade.services import ledger
from papertrade.services.quotes import get_price

logger = logging.getLogger(__name__)

TRADE_EVENTS = (CASH_UPDATED, POSITION_UPDATED, ORDERS_UPDATED)


@dataclass
class TradeReceipt:
    """Outcome of an executed trade."""

    symbol: str
    side: OrderSide
    qty: int
    price: Decimal
    total: Decimal  # cost for a buy, proceeds for a sell
    cash: Decimal  # balance after settlement
    position_qty: int  # 0 when a sell closed the position
    avg_price: Decimal | None
    order_id: str | None = None

    @property
    def position_closed(self) -> bool:
        return self.position_qty == 0


def normalize_symbol(raw: str | None) -> str:
    symbol = (raw or "").strip().upper()
    if not symbol:
        raise ValidationError("Missing symbol.", field="symbol")
    return symbol


def parse_quantity(raw) -> int:
    """Parse a share quantity: a positive whole number.

    Accepts ints and digit strings (form input). Anything else, including
    zero, negatives and fractions, is a ValidationError on ``qty``.
    """
    if isinstance(raw, bool):
        raise ValidationError("Enter a valid quantity.", field="qty")
    if isinstance(raw, int):
        qty = raw
    else:
        text = str(raw if raw is not None else "").strip()
        if not (text.isascii() and text.isdigit()):
            raise ValidationError("Enter a valid quantity.", field="qty")
        qty = int(text)
    if qty <= 0:
        raise ValidationError("Enter a valid quantity.", field="qty")
    return qty


class TradeExecutionEngine:
    """Validates and settles paper trades against the ledger."""

    def __init__(
        self,
        quotes,
        events: EventBus,
        starting_cash: Decimal = ledger.DEFAULT_STARTING_CASH,
    ):
        """Initialize the engine.

        Args:
            quotes: Quote gateway (anything with ``async quote(symbol)``)
            events: Bus that receives the cash/position/orders events
            starting_cash: Balance for lazily created accounts
        """
        self.quotes = quotes
        self.events = events
        self.starting_cash = starting_cash
        self._locks: WeakValueDictionary[str, asyncio.Lock] = WeakValueDictionary()

    def _lock_for(self, user_id: str) -> asyncio.Lock:
        lock = self._locks.get(user_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[user_id] = lock
        return lock

    async def buy(self, session: AsyncSession, user_id: str, symbol: str, qty) -> TradeReceipt:
        return await self.execute(session, user_id, OrderSide.BUY, symbol, qty)

    async def sell(self, session: AsyncSession, user_id: str, symbol: str, qty) -> TradeReceipt:
        return await self.execute(session, user_id, OrderSide.SELL, symbol, qty)

    async def execute(
        self,
        session: AsyncSession,
        user_id: str,
        side: OrderSide | str,
        symbol: str,
        qty,
    ) -> TradeReceipt:
        """Execute one market order for a user.

        Args:
            session: Database session; this method commits it
            user_id: The trading user
            side: OrderSide or "buy"/"sell"
            symbol: Ticker symbol (any case)
            qty: Share count, an int or form string

        Returns:
            TradeReceipt describing the fill and the resulting balance

        Raises:
            ValidationError: Bad symbol or quantity
            QuoteError: No usable price for the symbol
            ConfigError: Market data is not configured
            InsufficientFundsError, NoPositionError, InsufficientSharesError:
                Trade rejected; nothing was changed
            StoreError: Settlement failed and was rolled back
        """
        if not isinstance(side, OrderSide):
            try:
                side = OrderSide(str(side).strip().lower())
            except ValueError:
                raise ValidationError("Choose buy or sell.", field="side") from None

        try:
            symbol = normalize_symbol(symbol)
            qty = parse_quantity(qty)
        except ValidationError:
            telemetry.record_trade_rejected(side.value, "invalid_input")
            raise

        # Price first: no lock is held across the provider call
        price = await get_price(self.quotes, symbol)
        total = to_money(price * qty)

        async with self._lock_for(user_id):
            try:
                if side == OrderSide.BUY:
                    receipt = await self._settle_buy(session, user_id, symbol, qty, price, total)
                else:
                    receipt = await self._settle_sell(session, user_id, symbol, qty, price, total)
                await session.commit()
            except BusinessRuleError as e:
                await session.rollback()
                telemetry.record_trade_rejected(side.value, e.reason)
                logger.info(
                    "Trade rejected",
                    extra={
                        "user_id": user_id,
                        "symbol": symbol,
                        "side": side.value,
                        "qty": qty,
                        "reason": e.reason,
                    },
                )
                raise
            except PaperTradeError:
                await session.rollback()
                raise
            except SQLAlchemyError as e:
                await session.rollback()
                logger.exception(
                    "Trade settlement failed",
                    extra={"user_id": user_id, "symbol": symbol, "side": side.value},
                )
                raise StoreError(detail=f"Settlement failed: {e}") from e

            receipt.order_id = await self._record_order(session, user_id, receipt)

        self.events.publish(*TRADE_EVENTS)
        telemetry.record_trade(symbol, side.value, qty, price)

        logger.info(
            "Trade executed",
            extra={
                "user_id": user_id,
                "symbol": symbol,
                "side": side.value,
                "qty": qty,
                "price": float(price),
                "total": float(total),
                "cash": float(receipt.cash),
            },
        )
        return receipt

    async def _settle_buy(
        self,
        session: AsyncSession,
        user_id: str,
        symbol: str,
        qty: int,
        price: Decimal,
        total: Decimal,
    ) -> TradeReceipt:
        account = await ledger.get_or_create_account(session, user_id, self.starting_cash)
        if account.cash < total:
            raise InsufficientFundsError()

        position = await ledger.get_position(session, user_id, symbol)
        if position is None:
            new_qty = qty
            avg_price = price
        else:
            new_qty = position.qty + qty
            avg_price = to_money((position.avg_price * position.qty + price * qty) / new_qty)

        # Debit first: the conditional update is the authoritative funds check
        cash = await ledger.debit_cash(session, user_id, total)
        await ledger.upsert_position(session, user_id, symbol, new_qty, avg_price)

        return TradeReceipt(
            symbol=symbol,
            side=OrderSide.BUY,
            qty=qty,
            price=price,
            total=total,
            cash=cash,
            position_qty=new_qty,
            avg_price=avg_price,
        )

    async def _settle_sell(
        self,
        session: AsyncSession,
        user_id: str,
        symbol: str,
        qty: int,
        price: Decimal,
        total: Decimal,
    ) -> TradeReceipt:
        await ledger.get_or_create_account(session, user_id, self.starting_cash)

        position = await ledger.get_position(session, user_id, symbol)
        if position is None:
            raise NoPositionError()
        if qty > position.qty:
            raise InsufficientSharesError()
        avg_price = position.avg_price

        remaining = await ledger.reduce_position(session, user_id, symbol, qty)
        cash = await ledger.credit_cash(session, user_id, total)

        return TradeReceipt(
            symbol=symbol,
            side=OrderSide.SELL,
            qty=qty,
            price=price,
            total=total,
            cash=cash,
            position_qty=remaining,
            avg_price=avg_price if remaining else None,
        )

    async def _record_order(
        self, session: AsyncSession, user_id: str, receipt: TradeReceipt
    ) -> str | None:
        """Append the order log entry. Returns its id, or None if it failed."""
        try:
            order = await ledger.record_order(
                session,
                user_id,
                receipt.symbol,
                receipt.side,
                receipt.qty,
                receipt.price,
                receipt.total,
            )
            await session.commit()
        except SQLAlchemyError:
            await session.rollback()
            logger.exception(
                "Failed to record order; trade stands",
                extra={"user_id": user_id, "symbol": receipt.symbol, "side": receipt.side.value},
            )
            return None
        return order.id
