"""Pydantic schemas for request/response validation."""

from papertrade.schemas.account import CashResponse, MessageResponse, UserResponse
from papertrade.schemas.alerts import (
    AlertGroupsResponse,
    AlertListResponse,
    AlertResponse,
    AlertTriggerResponse,
)
from papertrade.schemas.market import QuoteResponse, SearchResponse, SymbolMatchResponse
from papertrade.schemas.trading import (
    OrderListResponse,
    OrderResponse,
    OrderSide,
    PortfolioSummaryResponse,
    PositionListResponse,
    PositionPanelResponse,
    PositionResponse,
    TradeReceiptResponse,
)

__all__ = [
    "AlertGroupsResponse",
    "AlertListResponse",
    "AlertResponse",
    "AlertTriggerResponse",
    "CashResponse",
    "MessageResponse",
    "OrderListResponse",
    "OrderResponse",
    "OrderSide",
    "PortfolioSummaryResponse",
    "PositionListResponse",
    "PositionPanelResponse",
    "PositionResponse",
    "QuoteResponse",
    "SearchResponse",
    "SymbolMatchResponse",
    "TradeReceiptResponse",
    "UserResponse",
]
