"""Pydantic schemas for users and cash."""

from decimal import Decimal

from pydantic import BaseModel


class UserResponse(BaseModel):
    """The logged-in user."""

    user_id: str
    email: str
    username: str | None

    model_config = {"from_attributes": True}


class CashResponse(BaseModel):
    """Current cash balance."""

    cash: Decimal


class MessageResponse(BaseModel):
    message: str
