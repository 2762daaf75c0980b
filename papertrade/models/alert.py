"""
Alert model - a one-shot price alert.

An alert fires once when the polled price crosses its target. The
triggered flag only ever goes from False to True, and only through a
conditional update that matches on triggered = False.
"""

import enum
from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    Boolean,
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


class AlertCondition(enum.Enum):
    """Which side of the target the price must reach."""

    ABOVE = "above"  # price >= target
    BELOW = "below"  # price <= target


class Alert(Base):
    """A user's price alert on one symbol."""

    __tablename__ = "alerts"

    id: Mapped[str] = mapped_column(String, primary_key=True)

    user_id: Mapped[str] = mapped_column(
        String, ForeignKey("users.id"), nullable=False
    )
    symbol: Mapped[str] = mapped_column(String(32), nullable=False)
    condition: Mapped[AlertCondition] = mapped_column(
        Enum(AlertCondition), nullable=False
    )
    target_price: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow
    )

    triggered: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    triggered_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    __table_args__ = (
        CheckConstraint("target_price > 0", name="check_alert_target_positive"),
        # Monitor scan: pending alerts grouped by symbol
        Index("ix_alerts_triggered_symbol", "triggered", "symbol"),
        Index("ix_alerts_user_created", "user_id", "created_at"),
    )

    def is_hit(self, price: Decimal) -> bool:
        """Whether ``price`` satisfies this alert's condition."""
        if self.condition == AlertCondition.ABOVE:
            return price >= self.target_price
        return price <= self.target_price

    def __repr__(self) -> str:
        return (
            f"Alert(id={self.id!r}, {self.symbol} {self.condition.value} "
            f"{self.target_price}, triggered={self.triggered})"
        )
