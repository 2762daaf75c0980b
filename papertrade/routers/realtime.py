"""Live endpoints: the SSE event stream and the trade relay websockets."""

import asyncio
import logging
from collections.abc import AsyncIterator

from fastapi import APIRouter, Depends, Query, WebSocket, status
from fastapi.responses import StreamingResponse

from papertrade.auth import CurrentUser, get_current_user
from papertrade.config import Settings
from papertrade.deps import get_events, get_relay, get_settings
from papertrade.errors import ValidationError
from papertrade.events import CLOSED, LAGGED, EventBus
from papertrade.services.relay import MAX_SYMBOLS, TradeRelay, parse_symbols

logger = logging.getLogger(__name__)

router = APIRouter()


async def sse_frames(events: EventBus, keepalive: float) -> AsyncIterator[str]:
    """Render bus events as Server-Sent Events until the bus closes.

    The subscription is opened on first iteration, so a response that is
    never streamed leaves nothing registered on the bus.

    Each event becomes ``event: <name>`` / ``data: 1``. A lagged
    subscriber gets ``event: ping`` / ``data: lagged`` so the page
    re-fetches everything. A comment line is sent when idle.
    """
    with events.subscribe() as sub:
        while True:
            try:
                name = await asyncio.wait_for(sub.get(), timeout=keepalive)
            except asyncio.TimeoutError:
                yield ": keep-alive\n\n"
                continue

            if name == CLOSED:
                return
            if name == LAGGED:
                yield "event: ping\ndata: lagged\n\n"
            else:
                yield f"event: {name}\ndata: 1\n\n"


@router.get("/events", summary="Live notification stream (SSE)")
async def sse_events(
    user: CurrentUser = Depends(get_current_user),
    events: EventBus = Depends(get_events),
    settings: Settings = Depends(get_settings),
) -> StreamingResponse:
    return StreamingResponse(
        sse_frames(events, settings.sse_keepalive),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


async def _relay(websocket: WebSocket, relay: TradeRelay, raw_symbols: str, limit: int) -> None:
    try:
        symbols = parse_symbols(raw_symbols, limit=limit)
    except ValidationError:
        logger.info("Relay rejected: no symbols")
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason="missing symbol")
        return

    await websocket.accept()
    await relay.run(websocket, symbols)


@router.websocket("/ws/trades")
async def ws_trades(
    websocket: WebSocket,
    symbol: str = Query(default=""),
    relay: TradeRelay = Depends(get_relay),
):
    """Live trades for one symbol."""
    await _relay(websocket, relay, symbol, limit=1)


@router.websocket("/ws/trades_multi")
async def ws_trades_multi(
    websocket: WebSocket,
    symbols: str = Query(default=""),
    relay: TradeRelay = Depends(get_relay),
):
    """Live trades for a comma-separated list of symbols (at most 50)."""
    await _relay(websocket, relay, symbols, limit=MAX_SYMBOLS)
