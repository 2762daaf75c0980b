"""
Order model - historical record of executed paper trades.

Orders are append-only (never modified or deleted). They exist for
history display; the settlement itself lives in accounts and positions.
"""

import enum
from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Numeric,
    String,
)
from sqlalchemy.orm import Mapped, mapped_column

from papertrade.database import Base, utcnow


class OrderSide(enum.Enum):
    """Buy or sell."""

    BUY = "buy"
    SELL = "sell"


class Order(Base):
    """An executed market order."""

    __tablename__ = "orders"

    id: Mapped[str] = mapped_column(String, primary_key=True)

    user_id: Mapped[str] = mapped_column(
        String, ForeignKey("users.id"), nullable=False
    )
    symbol: Mapped[str] = mapped_column(String(32), nullable=False)
    side: Mapped[OrderSide] = mapped_column(Enum(OrderSide), nullable=False)

    qty: Mapped[int] = mapped_column(BigInteger, nullable=False)

    # Fill price (the quote at execution time)
    price: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)

    # qty * price
    total: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow
    )

    __table_args__ = (
        CheckConstraint("qty > 0", name="check_order_qty_positive"),
        CheckConstraint("price > 0", name="check_order_price_positive"),
        Index("ix_orders_user_created", "user_id", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"Order(id={self.id!r}, {self.side.value} {self.qty} {self.symbol} "
            f"@ {self.price}, user={self.user_id!r})"
        )
