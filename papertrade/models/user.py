"""
User model - a registered person who can log in and trade.

The user id doubles as the primary key of the user's Account.
"""

from datetime import datetime

from sqlalchemy import DateTime, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from papertrade.database import Base, utcnow


class User(Base):
    """A registered user."""

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String, primary_key=True)

    # Stored lower-cased; unique across users
    email: Mapped[str] = mapped_column(String(320), nullable=False, unique=True)

    username: Mapped[str | None] = mapped_column(String(64), nullable=True)

    # bcrypt hash from passlib
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow
    )

    account: Mapped["Account"] = relationship(back_populates="user")

    def __repr__(self) -> str:
        return f"User(id={self.id!r}, email={self.email!r})"


# Import at end to avoid circular imports
from papertrade.models.account import Account
