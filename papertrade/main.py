"""
FastAPI application entry point.

Run with: uvicorn papertrade.main:app --reload
"""

import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.middleware.sessions import SessionMiddleware

from papertrade import telemetry
from papertrade._version import VERSION
from papertrade.config import load_settings
from papertrade.database import get_session, init_db, ping_db
from papertrade.deps import wire_services
from papertrade.errors import PaperTradeError

# Import models to ensure they're registered with SQLAlchemy
from papertrade.models import Account, Alert, Order, Position, User  # noqa: F401
from papertrade.routers import (
    account_router,
    alerts_router,
    auth_router,
    market_router,
    portfolio_router,
    realtime_router,
    trading_router,
)

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

settings = load_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler.

    Startup: create tables, initialize telemetry, wire services, start the
    alert monitor.
    Shutdown: stop the monitor, end every event stream, close the quote client.
    """
    await init_db()
    logger.info("Database initialized")

    if telemetry.setup_telemetry():
        # Attach OTLP handler to root logger for log export
        handler = telemetry.get_log_handler()
        if handler:
            logging.getLogger().addHandler(handler)
        logger.info("Telemetry initialized (OTLP metrics + logs enabled)")
    else:
        logger.info("Telemetry disabled")

    wire_services(app, settings)
    if not settings.finnhub_api_key:
        logger.warning("FINNHUB_API_KEY is not set; quotes, trading and live trades are unavailable")

    if settings.alert_monitor_enabled:
        app.state.monitor.start()

    yield

    logger.info("Application shutting down")
    await app.state.monitor.stop()
    app.state.events.close()
    await app.state.quotes.close()


# Create FastAPI application
app = FastAPI(
    title="Paper Trading",
    description="Virtual-cash trading against live market data",
    version=VERSION,
    lifespan=lifespan,
)

app.add_middleware(
    SessionMiddleware,
    secret_key=settings.secret_key,
    session_cookie=settings.session_cookie,
    same_site="lax",
    https_only=settings.cookie_secure,
)


@app.exception_handler(PaperTradeError)
async def paper_trade_error_handler(request: Request, exc: PaperTradeError) -> JSONResponse:
    """Turn service errors into ``{"detail", "field"}`` responses.

    Only the user-safe message is returned; the internal detail is logged
    for upstream, config and store failures.
    """
    if exc.status_code >= 500:
        logger.warning(
            "%s on %s %s: %s",
            type(exc).__name__,
            request.method,
            request.url.path,
            exc,
        )
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.user_message, "field": exc.field},
    )


# Register routers
app.include_router(auth_router, tags=["auth"])
app.include_router(market_router, tags=["market"])
app.include_router(trading_router, tags=["trading"])
app.include_router(portfolio_router, prefix="/portfolio", tags=["portfolio"])
app.include_router(alerts_router, prefix="/alerts", tags=["alerts"])
app.include_router(account_router, tags=["account"])
app.include_router(realtime_router, tags=["realtime"])


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "ok"}


@app.get("/health/db")
async def health_db(session: AsyncSession = Depends(get_session)):
    """Database connectivity check."""
    try:
        await ping_db(session)
    except SQLAlchemyError as e:
        logger.error("Database health check failed: %s", e)
        return JSONResponse(status_code=500, content={"status": "error", "database": "unreachable"})
    return {"status": "ok", "database": "ok"}


@app.get("/api/version")
async def get_version():
    """Get API version information."""
    return {"version": VERSION}
