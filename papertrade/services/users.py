"""User service - registration, login, profile changes and deposits."""

import logging
import re
from decimal import Decimal

from passlib.context import CryptContext
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from papertrade.errors import AuthError, NotFoundError, ValidationError
from papertrade.events import CASH_UPDATED, EventBus
from papertrade.models import User
from papertrade.money import parse_money, to_money
from papertrade.services import ledger

logger = logging.getLogger(__name__)

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
MIN_PASSWORD_LENGTH = 8

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


# ============================================================================
# Password hashing
# ============================================================================


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, stored: str) -> bool:
    """Check a password against a stored hash; unrecognised hashes never match."""
    try:
        return pwd_context.verify(password, stored)
    except ValueError:
        return False


# ============================================================================
# Validation
# ============================================================================


def normalize_email(raw: str | None) -> str:
    email = (raw or "").strip().lower()
    if not email:
        raise ValidationError("Email is required.", field="email")
    if not EMAIL_RE.match(email):
        raise ValidationError("Please enter a valid email address.", field="email")
    return email


def validate_password(password: str | None) -> str:
    password = password or ""
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(
            f"Password must be at least {MIN_PASSWORD_LENGTH} characters.", field="password"
        )
    return password


def parse_deposit_amount(raw) -> Decimal:
    """Parse a deposit: a finite decimal above zero, rounded to cents."""
    if isinstance(raw, Decimal):
        amount = raw if raw.is_finite() else None
    else:
        amount = parse_money(None if raw is None else str(raw))
    if amount is None:
        raise ValidationError("There was an error with the amount!", field="amount")
    amount = to_money(amount)
    if amount <= 0:
        raise ValidationError("Amount must be bigger than zero!", field="amount")
    return amount


# ============================================================================
# Users
# ============================================================================


async def get_user(session: AsyncSession, user_id: str) -> User | None:
    result = await session.execute(select(User).where(User.id == user_id))
    return result.scalar_one_or_none()


async def get_user_by_email(session: AsyncSession, email: str) -> User | None:
    result = await session.execute(select(User).where(User.email == email.strip().lower()))
    return result.scalar_one_or_none()


async def register(
    session: AsyncSession,
    email: str,
    password: str,
    username: str | None = None,
    starting_cash: Decimal = ledger.DEFAULT_STARTING_CASH,
) -> User:
    """Create a user and open their account.

    Raises:
        ValidationError: Bad or taken email/username, or a short password
    """
    email = normalize_email(email)
    password = validate_password(password)
    username = (username or "").strip() or None

    if await get_user_by_email(session, email) is not None:
        raise ValidationError("Email has already been taken!", field="email")
    if username is not None:
        result = await session.execute(
            select(User.id).where(func.lower(User.username) == username.lower())
        )
        if result.first() is not None:
            raise ValidationError("Username has already been taken!", field="username")

    user = User(
        id=ledger.generate_id(),
        email=email,
        username=username,
        password_hash=hash_password(password),
    )
    session.add(user)
    try:
        await session.flush()
    except IntegrityError:
        # Lost a race with a concurrent registration
        await session.rollback()
        raise ValidationError("Email has already been taken!", field="email") from None

    await ledger.get_or_create_account(session, user.id, starting_cash)
    await session.commit()

    logger.info("User registered", extra={"user_id": user.id, "email": email})
    return user


async def authenticate(session: AsyncSession, email: str, password: str) -> User:
    """Return the user for valid credentials.

    Raises:
        AuthError: Unknown email or wrong password (same message for both)
    """
    user = await get_user_by_email(session, email or "")
    if user is None or not verify_password(password or "", user.password_hash):
        logger.info("Login failed", extra={"email": (email or "").strip().lower()})
        raise AuthError()
    return user


async def _require_user(session: AsyncSession, user_id: str) -> User:
    user = await get_user(session, user_id)
    if user is None:
        raise NotFoundError("User not found.", detail=f"User {user_id} not found")
    return user


async def change_email(session: AsyncSession, user_id: str, new_email: str) -> User:
    """Change a user's email.

    Raises:
        ValidationError: Invalid, unchanged or taken email
    """
    user = await _require_user(session, user_id)
    email = normalize_email(new_email)
    if email == user.email:
        raise ValidationError(
            "New email must be different from your current email.", field="email"
        )
    if await get_user_by_email(session, email) is not None:
        raise ValidationError("This email is already in use.", field="email")

    user.email = email
    try:
        await session.commit()
    except IntegrityError:
        await session.rollback()
        raise ValidationError("This email is already in use.", field="email") from None

    logger.info("Email changed", extra={"user_id": user_id})
    return user


async def change_password(session: AsyncSession, user_id: str, new_password: str) -> None:
    """Change a user's password.

    Raises:
        ValidationError: Too short, or the same as the current password
    """
    user = await _require_user(session, user_id)
    password = validate_password(new_password)
    if verify_password(password, user.password_hash):
        raise ValidationError(
            "New password must be different from your current password.", field="password"
        )

    user.password_hash = hash_password(password)
    await session.commit()
    logger.info("Password changed", extra={"user_id": user_id})


async def deposit(
    session: AsyncSession,
    events: EventBus,
    user_id: str,
    amount,
    starting_cash: Decimal = ledger.DEFAULT_STARTING_CASH,
) -> Decimal:
    """Credit virtual cash to a user's account.

    Returns:
        The new balance

    Raises:
        ValidationError: Amount missing, malformed or not above zero
    """
    amount = parse_deposit_amount(amount)

    await ledger.get_or_create_account(session, user_id, starting_cash)
    cash = await ledger.credit_cash(session, user_id, amount)
    await session.commit()

    events.publish(CASH_UPDATED)
    logger.info(
        "Deposit",
        extra={"user_id": user_id, "amount": float(amount), "cash": float(cash)},
    )
    return cash
