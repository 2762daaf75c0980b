"""
Position model - a user's holding in one symbol.

Uses a composite primary key (user_id, symbol). A position only exists
while its quantity is positive: when a sell brings it to zero the row
is deleted.
"""

from datetime import datetime
from decimal import Decimal

from sqlalchemy import BigInteger, CheckConstraint, DateTime, ForeignKey, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from papertrade.database import Base, utcnow


class Position(Base):
    """Shares of one symbol held by one user."""

    __tablename__ = "positions"

    user_id: Mapped[str] = mapped_column(
        String, ForeignKey("users.id"), primary_key=True
    )
    symbol: Mapped[str] = mapped_column(String(32), primary_key=True)

    qty: Mapped[int] = mapped_column(BigInteger, nullable=False)

    # Volume-weighted average acquisition price
    avg_price: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow
    )

    __table_args__ = (
        CheckConstraint("qty > 0", name="check_position_qty_positive"),
        CheckConstraint("avg_price > 0", name="check_position_avg_price_positive"),
    )

    @property
    def cost_basis(self) -> Decimal:
        """Total amount paid for the shares currently held."""
        return self.avg_price * self.qty

    def __repr__(self) -> str:
        return (
            f"Position(user={self.user_id!r}, symbol={self.symbol!r}, "
            f"qty={self.qty}, avg_price={self.avg_price})"
        )
