"""Session-based authentication.

The signed session cookie (Starlette's SessionMiddleware) holds only the
user id. Endpoints depend on ``get_current_user`` and receive an opaque
``CurrentUser``; nothing below the routers sees cookies.
"""

from dataclasses import dataclass

from fastapi import Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.requests import HTTPConnection

from papertrade.database import get_session
from papertrade.models import User
from papertrade.services import users as users_service

SESSION_USER_KEY = "user_id"


@dataclass(frozen=True)
class CurrentUser:
    """The authenticated user for a request."""

    user_id: str
    email: str
    username: str | None

    @classmethod
    def from_user(cls, user: User) -> "CurrentUser":
        return cls(user_id=user.id, email=user.email, username=user.username)


def login_session(conn: HTTPConnection, user: User) -> None:
    """Mark the connection's session as belonging to ``user``."""
    conn.session.clear()
    conn.session[SESSION_USER_KEY] = user.id


def logout_session(conn: HTTPConnection) -> None:
    conn.session.clear()


async def get_optional_user(
    conn: HTTPConnection,
    session: AsyncSession = Depends(get_session),
) -> CurrentUser | None:
    """Resolve the session's user, or None if not logged in."""
    user_id = conn.session.get(SESSION_USER_KEY)
    if not user_id:
        return None

    user = await users_service.get_user(session, user_id)
    if user is None:
        # Stale cookie for a user that no longer exists
        conn.session.pop(SESSION_USER_KEY, None)
        return None
    return CurrentUser.from_user(user)


async def get_current_user(
    user: CurrentUser | None = Depends(get_optional_user),
) -> CurrentUser:
    """Require a logged-in user.

    Raises:
        HTTPException: 401 if the session has no valid user
    """
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not logged in",
        )
    return user
