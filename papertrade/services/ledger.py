"""Ledger store - the persisted accounts, positions, orders and alerts.

All functions take the caller's session. Except for ``try_trigger_alert``
they do not commit: the caller decides where the transaction ends, so a
trade can write cash, position and order as one unit.

Cash changes are conditional UPDATEs (``cash = cash - x WHERE cash >= x``)
so the balance can never go negative even when two writers race.
"""

import logging
import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import and_, delete, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from papertrade.database import utcnow
from papertrade.errors import InsufficientFundsError, InsufficientSharesError, NotFoundError
from papertrade.models import Account, Alert, AlertCondition, Order, OrderSide, Position

logger = logging.getLogger(__name__)

DEFAULT_STARTING_CASH = Decimal("10000.00")


def generate_id() -> str:
    """Generate a unique record ID."""
    return str(uuid.uuid4())


# ============================================================================
# Accounts
# ============================================================================


async def _insert_ignore(session: AsyncSession):
    """Dialect-specific INSERT supporting ON CONFLICT DO NOTHING."""
    conn = await session.connection()
    if conn.dialect.name == "postgresql":
        return postgresql.insert
    return sqlite.insert


async def get_account(session: AsyncSession, user_id: str) -> Account | None:
    """Get an account without creating it."""
    result = await session.execute(
        select(Account)
        .where(Account.user_id == user_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_or_create_account(
    session: AsyncSession,
    user_id: str,
    starting_cash: Decimal = DEFAULT_STARTING_CASH,
) -> Account:
    """Return the user's account, creating it with the starting balance if missing.

    Creation is an INSERT ... ON CONFLICT DO NOTHING followed by a read,
    so two concurrent first accesses end up with one account.
    """
    account = await get_account(session, user_id)
    if account is not None:
        return account

    insert = await _insert_ignore(session)
    await session.execute(
        insert(Account)
        .values(user_id=user_id, cash=starting_cash, updated_at=utcnow())
        .on_conflict_do_nothing(index_elements=["user_id"])
    )
    account = await get_account(session, user_id)
    if account is None:
        raise NotFoundError(detail=f"Account for {user_id} could not be created")
    logger.info("Account opened", extra={"user_id": user_id, "cash": float(account.cash)})
    return account


async def set_cash(
    session: AsyncSession,
    user_id: str,
    cash: Decimal,
    updated_at: datetime | None = None,
) -> None:
    """Overwrite the cash balance unconditionally."""
    await session.execute(
        update(Account)
        .where(Account.user_id == user_id)
        .values(cash=cash, updated_at=updated_at or utcnow())
        .execution_options(synchronize_session=False)
    )


async def debit_cash(session: AsyncSession, user_id: str, amount: Decimal) -> Decimal:
    """Subtract ``amount`` if the balance covers it.

    Returns:
        The new balance

    Raises:
        InsufficientFundsError: If the balance is lower than ``amount``
    """
    result = await session.execute(
        update(Account)
        .where(and_(Account.user_id == user_id, Account.cash >= amount))
        .values(cash=Account.cash - amount, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise InsufficientFundsError()
    account = await get_account(session, user_id)
    return account.cash


async def credit_cash(session: AsyncSession, user_id: str, amount: Decimal) -> Decimal:
    """Add ``amount`` to the balance. Returns the new balance."""
    result = await session.execute(
        update(Account)
        .where(Account.user_id == user_id)
        .values(cash=Account.cash + amount, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise NotFoundError(detail=f"No account for {user_id}")
    account = await get_account(session, user_id)
    return account.cash


# ============================================================================
# Positions
# ============================================================================


async def get_position(session: AsyncSession, user_id: str, symbol: str) -> Position | None:
    """Get a user's position in one symbol."""
    result = await session.execute(
        select(Position)
        .where(and_(Position.user_id == user_id, Position.symbol == symbol.upper()))
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def upsert_position(
    session: AsyncSession,
    user_id: str,
    symbol: str,
    qty: int,
    avg_price: Decimal,
    updated_at: datetime | None = None,
) -> Position:
    """Replace qty/avg_price for (user, symbol), creating the row if absent."""
    position = await get_position(session, user_id, symbol)
    if position is None:
        position = Position(user_id=user_id, symbol=symbol.upper())
        session.add(position)
    position.qty = qty
    position.avg_price = avg_price
    position.updated_at = updated_at or utcnow()
    await session.flush()
    return position


async def reduce_position(session: AsyncSession, user_id: str, symbol: str, qty: int) -> int:
    """Take ``qty`` shares off a position, deleting it when none remain.

    Both paths are conditional on the quantity still held, so a position
    can't be oversold by a concurrent writer.

    Returns:
        Remaining quantity (0 if the position was removed)

    Raises:
        InsufficientSharesError: If fewer than ``qty`` shares are held
    """
    symbol = symbol.upper()
    position = await get_position(session, user_id, symbol)
    if position is None or position.qty < qty:
        raise InsufficientSharesError()

    key = and_(Position.user_id == user_id, Position.symbol == symbol)

    if position.qty == qty:
        # qty > 0 is a CHECK constraint: a fully sold position is deleted, never zeroed
        result = await session.execute(
            delete(Position)
            .where(and_(key, Position.qty == qty))
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise InsufficientSharesError()
        session.expunge(position)
        return 0

    result = await session.execute(
        update(Position)
        .where(and_(key, Position.qty > qty))
        .values(qty=Position.qty - qty, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise InsufficientSharesError()
    position = await get_position(session, user_id, symbol)
    return position.qty


async def delete_position(session: AsyncSession, user_id: str, symbol: str) -> None:
    """Remove a position."""
    position = await get_position(session, user_id, symbol)
    if position is None:
        return
    await session.delete(position)
    await session.flush()


async def list_positions(session: AsyncSession, user_id: str) -> list[Position]:
    """All of a user's positions, most recently changed first."""
    result = await session.execute(
        select(Position)
        .where(Position.user_id == user_id)
        .order_by(Position.updated_at.desc(), Position.symbol)
    )
    return list(result.scalars().all())


# ============================================================================
# Orders
# ============================================================================


async def record_order(
    session: AsyncSession,
    user_id: str,
    symbol: str,
    side: OrderSide,
    qty: int,
    price: Decimal,
    total: Decimal,
) -> Order:
    """Append an executed trade to the order log."""
    order = Order(
        id=generate_id(),
        user_id=user_id,
        symbol=symbol.upper(),
        side=side,
        qty=qty,
        price=price,
        total=total,
        created_at=utcnow(),
    )
    session.add(order)
    await session.flush()
    return order


async def list_orders(session: AsyncSession, user_id: str, limit: int = 20) -> list[Order]:
    """A user's most recent orders, newest first."""
    result = await session.execute(
        select(Order)
        .where(Order.user_id == user_id)
        .order_by(Order.created_at.desc())
        .limit(limit)
    )
    return list(result.scalars().all())


# ============================================================================
# Alerts
# ============================================================================


async def add_alert(
    session: AsyncSession,
    user_id: str,
    symbol: str,
    condition: AlertCondition,
    target_price: Decimal,
) -> Alert:
    """Insert a new, untriggered alert."""
    alert = Alert(
        id=generate_id(),
        user_id=user_id,
        symbol=symbol.upper(),
        condition=condition,
        target_price=target_price,
        created_at=utcnow(),
        triggered=False,
    )
    session.add(alert)
    await session.flush()
    return alert


async def get_alert(session: AsyncSession, alert_id: str, user_id: str) -> Alert | None:
    """Get one of a user's alerts."""
    result = await session.execute(
        select(Alert)
        .where(and_(Alert.id == alert_id, Alert.user_id == user_id))
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def list_alerts(
    session: AsyncSession,
    user_id: str,
    symbol: str | None = None,
    triggered: bool | None = None,
) -> list[Alert]:
    """A user's alerts, newest first, optionally filtered."""
    query = select(Alert).where(Alert.user_id == user_id)
    if symbol:
        query = query.where(Alert.symbol == symbol.upper())
    if triggered is not None:
        query = query.where(Alert.triggered.is_(triggered))
    query = query.order_by(Alert.created_at.desc())
    result = await session.execute(query)
    return list(result.scalars().all())


async def list_pending_alerts(session: AsyncSession) -> list[Alert]:
    """Every untriggered alert across all users."""
    result = await session.execute(
        select(Alert)
        .where(Alert.triggered.is_(False))
        .order_by(Alert.symbol, Alert.created_at)
    )
    return list(result.scalars().all())


async def delete_alert(
    session: AsyncSession,
    alert_id: str,
    user_id: str,
    symbol: str | None = None,
) -> bool:
    """Delete one of a user's alerts. Returns whether a row was removed."""
    conditions = [Alert.id == alert_id, Alert.user_id == user_id]
    if symbol:
        conditions.append(Alert.symbol == symbol.upper())
    result = await session.execute(
        delete(Alert).where(and_(*conditions)).execution_options(synchronize_session=False)
    )
    return result.rowcount > 0


async def try_trigger_alert(
    session: AsyncSession,
    alert_id: str,
    user_id: str | None = None,
) -> bool:
    """Flip an alert to triggered if, and only if, it is not triggered yet.

    This commits. Returns True when this call performed the transition
    and False when the alert was already triggered (or does not exist).
    """
    conditions = [Alert.id == alert_id, Alert.triggered.is_(False)]
    if user_id is not None:
        conditions.append(Alert.user_id == user_id)

    result = await session.execute(
        update(Alert)
        .where(and_(*conditions))
        .values(triggered=True, triggered_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    await session.commit()
    return result.rowcount == 1
