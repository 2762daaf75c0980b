"""Cash and settings endpoints - requires login."""

from fastapi import APIRouter, Depends, Form, Response
from sqlalchemy.ext.asyncio import AsyncSession

from papertrade.auth import CurrentUser, get_current_user
from papertrade.config import Settings
from papertrade.database import get_session
from papertrade.deps import get_events, get_settings
from papertrade.events import CASH_UPDATED, EventBus
from papertrade.htmx import set_hx_trigger
from papertrade.schemas import CashResponse, MessageResponse
from papertrade.services import ledger
from papertrade.services import users as users_service

router = APIRouter()


@router.get("/cash", response_model=CashResponse, summary="My cash balance")
async def get_cash(
    user: CurrentUser = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    settings: Settings = Depends(get_settings),
) -> CashResponse:
    """Current balance; opens the account with the starting cash on first access."""
    account = await ledger.get_or_create_account(session, user.user_id, settings.starting_cash)
    await session.commit()
    return CashResponse(cash=account.cash)


@router.post("/funds", response_model=CashResponse, summary="Deposit virtual cash")
async def deposit(
    response: Response,
    amount: str = Form(""),
    user: CurrentUser = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    events: EventBus = Depends(get_events),
    settings: Settings = Depends(get_settings),
) -> CashResponse:
    cash = await users_service.deposit(
        session, events, user.user_id, amount, starting_cash=settings.starting_cash
    )
    set_hx_trigger(response, CASH_UPDATED)
    return CashResponse(cash=cash)


@router.post("/settings/email", response_model=MessageResponse, summary="Change email")
async def change_email(
    email: str = Form(""),
    user: CurrentUser = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> MessageResponse:
    await users_service.change_email(session, user.user_id, email)
    return MessageResponse(message="You have changed your email successfully!")


@router.post("/settings/password", response_model=MessageResponse, summary="Change password")
async def change_password(
    password: str = Form(""),
    user: CurrentUser = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> MessageResponse:
    await users_service.change_password(session, user.user_id, password)
    return MessageResponse(message="You have changed your password successfully!")
