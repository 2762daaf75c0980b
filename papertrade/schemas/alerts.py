"""Pydantic schemas for price alerts."""

from datetime import datetime
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, Field, field_validator


class AlertCondition(str, Enum):
    """Which side of the target the price must reach."""

    ABOVE = "above"
    BELOW = "below"


class AlertResponse(BaseModel):
    """A price alert."""

    id: str
    symbol: str
    condition: AlertCondition
    target_price: Decimal
    created_at: datetime
    triggered: bool
    triggered_at: datetime | None

    model_config = {"from_attributes": True}

    @field_validator("condition", mode="before")
    @classmethod
    def _enum_value(cls, v):
        # Accept the model enum as well as its value
        return getattr(v, "value", v)


class AlertListResponse(BaseModel):
    alerts: list[AlertResponse] = Field(default_factory=list)


class AlertGroupsResponse(BaseModel):
    """Alerts keyed by symbol."""

    groups: dict[str, list[AlertResponse]] = Field(default_factory=dict)


class AlertTriggerResponse(BaseModel):
    alert: AlertResponse
    triggered_now: bool
    message: str
