"""Portfolio endpoints - requires login."""

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from papertrade.auth import CurrentUser, get_current_user
from papertrade.config import Settings
from papertrade.database import get_session
from papertrade.deps import get_quotes, get_settings
from papertrade.schemas import (
    OrderListResponse,
    OrderResponse,
    PortfolioSummaryResponse,
    PositionListResponse,
    PositionResponse,
)
from papertrade.services import portfolio as portfolio_service

router = APIRouter()


@router.get("", response_model=PortfolioSummaryResponse, summary="Portfolio summary")
async def get_portfolio(
    user: CurrentUser = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    quotes=Depends(get_quotes),
    settings: Settings = Depends(get_settings),
) -> PortfolioSummaryResponse:
    """Cash, valued positions and totals.

    Totals are null if any position has no usable price right now.
    """
    summary = await portfolio_service.get_portfolio_summary(
        session, quotes, user.user_id, starting_cash=settings.starting_cash
    )
    return PortfolioSummaryResponse.model_validate(summary)


@router.get("/positions", response_model=PositionListResponse, summary="My positions")
async def list_positions(
    user: CurrentUser = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    quotes=Depends(get_quotes),
) -> PositionListResponse:
    views = await portfolio_service.list_position_views(session, quotes, user.user_id)
    return PositionListResponse(positions=[PositionResponse.model_validate(v) for v in views])


@router.get("/position/{symbol}", response_model=PositionResponse, summary="One position")
async def get_position(
    symbol: str,
    user: CurrentUser = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    quotes=Depends(get_quotes),
) -> PositionResponse:
    view = await portfolio_service.get_position_view(session, quotes, user.user_id, symbol)
    if view is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No position in '{symbol.upper()}'",
        )
    return PositionResponse.model_validate(view)


@router.get("/orders", response_model=OrderListResponse, summary="Recent orders")
async def list_orders(
    limit: int | None = Query(default=None, description="Max orders (default 20, capped at 100)"),
    user: CurrentUser = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> OrderListResponse:
    views = await portfolio_service.list_order_views(session, user.user_id, limit=limit)
    return OrderListResponse(orders=[OrderResponse.model_validate(v) for v in views])
