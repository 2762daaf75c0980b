"""Pydantic schemas for trades, positions, orders and the portfolio."""

from datetime import datetime
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, Field


class OrderSide(str, Enum):
    """Buy or sell."""

    BUY = "buy"
    SELL = "sell"


# ============================================================================
# Trades
# ============================================================================


class TradeReceiptResponse(BaseModel):
    """Result of an executed market order."""

    order_id: str | None
    symbol: str
    side: OrderSide
    qty: int
    price: Decimal
    total: Decimal = Field(..., description="Cost of a buy or proceeds of a sell")
    cash: Decimal = Field(..., description="Cash balance after settlement")
    position_qty: int
    avg_price: Decimal | None
    message: str


# ============================================================================
# Positions and orders
# ============================================================================


class PositionResponse(BaseModel):
    """A position valued at the latest quote."""

    symbol: str
    qty: int
    avg_price: Decimal
    last_price: Decimal | None
    market_value: Decimal | None
    pnl: Decimal | None
    pnl_pct: Decimal | None
    pnl_class: str

    model_config = {"from_attributes": True}


class PositionPanelResponse(BaseModel):
    """The user's position in one symbol, if any."""

    symbol: str
    position: PositionResponse | None


class PositionListResponse(BaseModel):
    positions: list[PositionResponse] = Field(default_factory=list)


class OrderResponse(BaseModel):
    """One executed order."""

    id: str
    created_at: datetime
    symbol: str
    side: OrderSide
    qty: int
    price: Decimal
    total: Decimal

    model_config = {"from_attributes": True}


class OrderListResponse(BaseModel):
    orders: list[OrderResponse] = Field(default_factory=list)


class PortfolioSummaryResponse(BaseModel):
    """Cash, positions and totals (None when any price is unavailable)."""

    cash: Decimal
    holdings_value: Decimal | None
    total_value: Decimal | None
    total_cost_basis: Decimal
    unrealized_pnl: Decimal | None
    positions: list[PositionResponse] = Field(default_factory=list)

    model_config = {"from_attributes": True}
