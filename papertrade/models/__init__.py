"""
SQLAlchemy models for the paper trading service.

This module exports all models and the Base class for easy imports:
    from papertrade.models import Base, User, Account, Position, Order, Alert
"""

from papertrade.database import Base
from papertrade.models.user import User
from papertrade.models.account import Account
from papertrade.models.position import Position
from papertrade.models.order import Order, OrderSide
from papertrade.models.alert import Alert, AlertCondition

__all__ = [
    "Base",
    "User",
    "Account",
    "Position",
    "Order",
    "OrderSide",
    "Alert",
    "AlertCondition",
]
