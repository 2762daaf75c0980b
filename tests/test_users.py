"""
Tests for the user service: registration, login, profile changes, deposits.
"""

import asyncio
from decimal import Decimal

import pytest

from papertrade.errors import AuthError, ValidationError
from papertrade.events import CASH_UPDATED
from papertrade.services import ledger
from papertrade.services import users as users_service
from papertrade.services.users import (
    hash_password,
    normalize_email,
    parse_deposit_amount,
    verify_password,
)


class TestPasswords:
    def test_hash_and_verify(self):
        stored = hash_password("correct horse")

        assert stored.startswith("$2b$")
        assert verify_password("correct horse", stored)
        assert not verify_password("wrong horse", stored)

    def test_salted(self):
        assert hash_password("same") != hash_password("same")

    @pytest.mark.parametrize("stored", ["plain", "md5$1$aa$bb", "pbkdf2_sha256$x$zz$yy"])
    def test_unrecognised_hash_never_verifies(self, stored):
        assert not verify_password("anything", stored)


class TestValidation:
    def test_email_normalized(self):
        assert normalize_email("  Trader@Example.COM ") == "trader@example.com"

    @pytest.mark.parametrize("raw, message", [
        ("", "Email is required."),
        (None, "Email is required."),
        ("not-an-email", "Please enter a valid email address."),
        ("a@b", "Please enter a valid email address."),
    ])
    def test_bad_email(self, raw, message):
        with pytest.raises(ValidationError) as exc_info:
            normalize_email(raw)
        assert exc_info.value.user_message == message
        assert exc_info.value.field == "email"

    @pytest.mark.parametrize("raw, expected", [
        ("100", Decimal("100.00")),
        ("0.005", Decimal("0.01")),
        ("1,000.50", Decimal("1000.50")),
    ])
    def test_deposit_amount(self, raw, expected):
        assert parse_deposit_amount(raw) == expected

    @pytest.mark.parametrize("raw, message", [
        ("", "There was an error with the amount!"),
        ("abc", "There was an error with the amount!"),
        ("NaN", "There was an error with the amount!"),
        ("0", "Amount must be bigger than zero!"),
        ("-10", "Amount must be bigger than zero!"),
        ("0.004", "Amount must be bigger than zero!"),
    ])
    def test_bad_deposit_amount(self, raw, message):
        with pytest.raises(ValidationError) as exc_info:
            parse_deposit_amount(raw)
        assert exc_info.value.user_message == message
        assert exc_info.value.field == "amount"


class TestRegistration:
    """Tests for register() and authenticate()."""

    @pytest.mark.asyncio
    async def test_register_opens_account(self, test_session):
        user = await users_service.register(
            test_session, "New@Example.com", "longenough", "newbie"
        )

        assert user.email == "new@example.com"
        assert user.username == "newbie"
        assert user.password_hash != "longenough"
        account = await ledger.get_account(test_session, user.id)
        assert account.cash == Decimal("10000.00")

    @pytest.mark.asyncio
    async def test_duplicate_email(self, test_session):
        await users_service.register(test_session, "dup@example.com", "longenough")

        with pytest.raises(ValidationError) as exc_info:
            await users_service.register(test_session, "DUP@example.com", "otherpass1")
        assert exc_info.value.user_message == "Email has already been taken!"

    @pytest.mark.asyncio
    async def test_duplicate_username_case_insensitive(self, test_session):
        await users_service.register(test_session, "a@example.com", "longenough", "Trader")

        with pytest.raises(ValidationError) as exc_info:
            await users_service.register(test_session, "b@example.com", "longenough", "trader")
        assert exc_info.value.field == "username"

    @pytest.mark.asyncio
    async def test_short_password(self, test_session):
        with pytest.raises(ValidationError) as exc_info:
            await users_service.register(test_session, "a@example.com", "short")
        assert exc_info.value.field == "password"

    @pytest.mark.asyncio
    async def test_authenticate(self, test_session):
        registered = await users_service.register(test_session, "a@example.com", "longenough")

        user = await users_service.authenticate(test_session, " A@example.com ", "longenough")
        assert user.id == registered.id

    @pytest.mark.asyncio
    @pytest.mark.parametrize("email, password", [
        ("a@example.com", "wrongpass"),
        ("nobody@example.com", "longenough"),
    ])
    async def test_authenticate_failure_same_message(self, test_session, email, password):
        await users_service.register(test_session, "a@example.com", "longenough")

        with pytest.raises(AuthError) as exc_info:
            await users_service.authenticate(test_session, email, password)
        assert exc_info.value.user_message == "Invalid email or password."
        assert exc_info.value.status_code == 401


class TestProfileChanges:
    """Tests for email and password changes."""

    @pytest.mark.asyncio
    async def test_change_email(self, test_session):
        user = await users_service.register(test_session, "old@example.com", "longenough")

        await users_service.change_email(test_session, user.id, "new@example.com")

        assert await users_service.get_user_by_email(test_session, "new@example.com") is not None
        assert await users_service.get_user_by_email(test_session, "old@example.com") is None

    @pytest.mark.asyncio
    async def test_change_email_rejections(self, test_session):
        user = await users_service.register(test_session, "me@example.com", "longenough")
        await users_service.register(test_session, "taken@example.com", "longenough")

        with pytest.raises(ValidationError) as exc_info:
            await users_service.change_email(test_session, user.id, "ME@example.com")
        assert exc_info.value.user_message == "New email must be different from your current email."

        with pytest.raises(ValidationError) as exc_info:
            await users_service.change_email(test_session, user.id, "taken@example.com")
        assert exc_info.value.user_message == "This email is already in use."

    @pytest.mark.asyncio
    async def test_change_password(self, test_session):
        user = await users_service.register(test_session, "me@example.com", "longenough")

        with pytest.raises(ValidationError):
            await users_service.change_password(test_session, user.id, "longenough")

        await users_service.change_password(test_session, user.id, "evenlonger")
        await users_service.authenticate(test_session, "me@example.com", "evenlonger")
        with pytest.raises(AuthError):
            await users_service.authenticate(test_session, "me@example.com", "longenough")


class TestDeposit:
    @pytest.mark.asyncio
    async def test_deposit_credits_and_notifies(self, test_session, events, user):
        with events.subscribe() as sub:
            cash = await users_service.deposit(test_session, events, user.id, "250.50")
            assert await asyncio.wait_for(sub.get(), timeout=1) == CASH_UPDATED

        assert cash == Decimal("10250.50")

    @pytest.mark.asyncio
    async def test_bad_deposit_changes_nothing(self, test_session, events, user):
        with pytest.raises(ValidationError):
            await users_service.deposit(test_session, events, user.id, "-5")

        account = await ledger.get_account(test_session, user.id)
        assert account.cash == Decimal("10000.00")
