"""Trade endpoints - requires login."""

from fastapi import APIRouter, Depends, Form, Response
from sqlalchemy.ext.asyncio import AsyncSession

from papertrade.auth import CurrentUser, get_current_user
from papertrade.database import get_session
from papertrade.deps import get_quotes, get_trade_engine
from papertrade.htmx import set_hx_trigger
from papertrade.models import OrderSide
from papertrade.schemas import PositionPanelResponse, PositionResponse, TradeReceiptResponse
from papertrade.services import portfolio as portfolio_service
from papertrade.services.trading import (
    TRADE_EVENTS,
    TradeExecutionEngine,
    TradeReceipt,
    normalize_symbol,
)

router = APIRouter()


def _receipt_response(receipt: TradeReceipt) -> TradeReceiptResponse:
    if receipt.side == OrderSide.BUY:
        message = (
            f"Bought {receipt.qty} {receipt.symbol} @ {receipt.price} "
            f"(Cost: {receipt.total}, New balance: {receipt.cash})"
        )
    else:
        message = (
            f"Sold {receipt.qty} {receipt.symbol} @ {receipt.price} "
            f"(Proceeds: {receipt.total}, New balance: {receipt.cash})"
        )
    return TradeReceiptResponse(
        order_id=receipt.order_id,
        symbol=receipt.symbol,
        side=receipt.side.value,
        qty=receipt.qty,
        price=receipt.price,
        total=receipt.total,
        cash=receipt.cash,
        position_qty=receipt.position_qty,
        avg_price=receipt.avg_price,
        message=message,
    )


@router.get(
    "/positions/{symbol}",
    response_model=PositionPanelResponse,
    summary="My position in a symbol",
)
async def get_position_panel(
    symbol: str,
    user: CurrentUser = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    quotes=Depends(get_quotes),
) -> PositionPanelResponse:
    symbol = normalize_symbol(symbol)
    view = await portfolio_service.get_position_view(session, quotes, user.user_id, symbol)
    return PositionPanelResponse(
        symbol=symbol,
        position=PositionResponse.model_validate(view) if view else None,
    )


@router.post("/trade/{symbol}/buy", response_model=TradeReceiptResponse, summary="Market buy")
async def buy(
    symbol: str,
    response: Response,
    qty: str = Form(""),
    user: CurrentUser = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    engine: TradeExecutionEngine = Depends(get_trade_engine),
) -> TradeReceiptResponse:
    """Buy ``qty`` shares at the current quote."""
    receipt = await engine.buy(session, user.user_id, symbol, qty)
    set_hx_trigger(response, *TRADE_EVENTS)
    return _receipt_response(receipt)


@router.post("/trade/{symbol}/sell", response_model=TradeReceiptResponse, summary="Market sell")
async def sell(
    symbol: str,
    response: Response,
    qty: str = Form(""),
    user: CurrentUser = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    engine: TradeExecutionEngine = Depends(get_trade_engine),
) -> TradeReceiptResponse:
    """Sell ``qty`` held shares at the current quote."""
    receipt = await engine.sell(session, user.user_id, symbol, qty)
    set_hx_trigger(response, *TRADE_EVENTS)
    return _receipt_response(receipt)
