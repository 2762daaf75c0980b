"""API routers."""

from papertrade.routers.account import router as account_router
from papertrade.routers.alerts import router as alerts_router
from papertrade.routers.auth import router as auth_router
from papertrade.routers.market import router as market_router
from papertrade.routers.portfolio import router as portfolio_router
from papertrade.routers.realtime import router as realtime_router
from papertrade.routers.trading import router as trading_router

__all__ = [
    "account_router",
    "alerts_router",
    "auth_router",
    "market_router",
    "portfolio_router",
    "realtime_router",
    "trading_router",
]
