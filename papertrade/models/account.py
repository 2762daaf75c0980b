"""
Account model - a user's virtual cash.

One account per user, keyed by the user id. Accounts are created lazily
with the starting balance the first time they are needed and are never
deleted. Cash can never go negative.
"""

from datetime import datetime
from decimal import Decimal

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from papertrade.database import Base, utcnow


class Account(Base):
    """A user's cash account."""

    __tablename__ = "accounts"

    user_id: Mapped[str] = mapped_column(
        String, ForeignKey("users.id"), primary_key=True
    )

    # Numeric(15,2) allows up to 9,999,999,999,999.99
    cash: Mapped[Decimal] = mapped_column(
        Numeric(15, 2), nullable=False, default=Decimal("0.00")
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow
    )

    user: Mapped["User"] = relationship(back_populates="account")

    __table_args__ = (
        CheckConstraint("cash >= 0", name="check_cash_non_negative"),
    )

    def __repr__(self) -> str:
        return f"Account(user_id={self.user_id!r}, cash={self.cash})"


# Import at end to avoid circular imports
from papertrade.models.user import User
