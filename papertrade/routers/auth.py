"""Registration, login and logout."""

from fastapi import APIRouter, Depends, Form, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from papertrade.auth import CurrentUser, get_current_user, login_session, logout_session
from papertrade.config import Settings
from papertrade.database import get_session
from papertrade.deps import get_settings
from papertrade.schemas import MessageResponse, UserResponse
from papertrade.services import users as users_service

router = APIRouter()


@router.post(
    "/register",
    response_model=UserResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Register and log in",
)
async def register(
    request: Request,
    email: str = Form(""),
    password: str = Form(""),
    username: str = Form(""),
    session: AsyncSession = Depends(get_session),
    settings: Settings = Depends(get_settings),
) -> UserResponse:
    """Create a user with a fresh account and start a session for them."""
    user = await users_service.register(
        session, email, password, username, starting_cash=settings.starting_cash
    )
    login_session(request, user)
    return UserResponse(user_id=user.id, email=user.email, username=user.username)


@router.post("/login", response_model=UserResponse, summary="Log in")
async def login(
    request: Request,
    email: str = Form(""),
    password: str = Form(""),
    session: AsyncSession = Depends(get_session),
) -> UserResponse:
    user = await users_service.authenticate(session, email, password)
    login_session(request, user)
    return UserResponse(user_id=user.id, email=user.email, username=user.username)


@router.api_route("/logout", methods=["GET", "POST"], response_model=MessageResponse)
async def logout(request: Request) -> MessageResponse:
    logout_session(request)
    return MessageResponse(message="Logged out.")


@router.get("/me", response_model=UserResponse, summary="Who am I")
async def me(user: CurrentUser = Depends(get_current_user)) -> UserResponse:
    return UserResponse(user_id=user.user_id, email=user.email, username=user.username)
