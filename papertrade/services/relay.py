"""Realtime trade relay - bridges the Finnhub trade stream to a browser socket.

One upstream websocket per client connection. After subscribing to the
requested symbols the relay runs three tasks side by side:

- forward: every upstream message goes to the client verbatim (text or bytes)
- ping: a ``{"type": "ping"}`` text frame to the client every ping interval
- watch: reads from the client only to notice it going away

Whichever finishes first (upstream closed or failed, client gone, or a
send failed) ends the session; the others are cancelled and the client
socket is closed. Upstream ping frames are answered by the websockets
library itself.
"""

import asyncio
import json
import logging
from typing import Any

import websockets
from starlette.websockets import WebSocketDisconnect
from websockets.exceptions import WebSocketException

from papertrade import telemetry
from papertrade.errors import ValidationError

logger = logging.getLogger(__name__)

MAX_SYMBOLS = 50

CONNECT_ERRORS = (OSError, asyncio.TimeoutError, WebSocketException)
CLIENT_GONE = (RuntimeError, OSError, WebSocketDisconnect)


def parse_symbols(raw: str | None, limit: int = MAX_SYMBOLS) -> list[str]:
    """Split a comma-separated symbol list: upper-cased, de-duplicated, capped.

    Raises:
        ValidationError: If no symbol remains
    """
    symbols: list[str] = []
    for part in (raw or "").split(","):
        symbol = part.strip().upper()
        if symbol and symbol not in symbols:
            symbols.append(symbol)
    if not symbols:
        raise ValidationError("Missing symbol.", field="symbol")
    return symbols[:limit]


class TradeRelay:
    """Relays upstream trade ticks to downstream client sockets."""

    def __init__(
        self,
        api_key: str,
        ws_url: str = "wss://ws.finnhub.io",
        ping_interval: float = 25.0,
        connect=websockets.connect,
    ):
        """Initialize the relay.

        Args:
            api_key: Finnhub API token
            ws_url: Streaming endpoint
            ping_interval: Seconds between liveness pings to the client
            connect: Upstream connect factory (tests substitute a fake)
        """
        self.api_key = (api_key or "").strip()
        self.ws_url = ws_url.rstrip("/")
        self.ping_interval = ping_interval
        self._connect = connect

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def upstream_url(self) -> str:
        # The slash before ?token= is required by some websocket stacks
        return f"{self.ws_url}/?token={self.api_key}"

    async def run(self, client, symbols: list[str]) -> None:
        """Bridge an accepted client socket to the upstream stream until either side ends.

        Args:
            client: Accepted Starlette WebSocket (send_text/send_bytes/receive/close)
            symbols: Symbols to subscribe to, already normalized
        """
        if not self.configured:
            await self._fail(client, "Market data is not configured.")
            return

        telemetry.record_relay_connection(len(symbols))
        logger.info("Relay connecting", extra={"symbols": symbols})

        connected = False
        try:
            async with self._connect(self.upstream_url()) as upstream:
                connected = True
                for symbol in symbols:
                    await upstream.send(json.dumps({"type": "subscribe", "symbol": symbol}))
                reason = await self._bridge(client, upstream)
                logger.info("Relay closed", extra={"symbols": symbols, "reason": reason})
        except CONNECT_ERRORS as e:
            if not connected:
                logger.error("Upstream stream connect failed", extra={"error": str(e)})
                await self._fail(client, "Live trades unavailable right now.")
                return
            logger.info("Upstream stream ended", extra={"symbols": symbols, "error": str(e)})

        await self._close(client)

    async def _bridge(self, client, upstream) -> str:
        tasks = {
            asyncio.create_task(self._forward(upstream, client), name="forward"),
            asyncio.create_task(self._ping(client), name="ping"),
            asyncio.create_task(self._watch(client), name="watch"),
        }
        done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)

        reasons = []
        for task in done:
            error = task.exception()
            if error is None:
                reasons.append(f"{task.get_name()} finished")
            else:
                reasons.append(f"{task.get_name()} failed: {error!r}")
        return "; ".join(sorted(reasons))

    async def _forward(self, upstream, client) -> None:
        async for message in upstream:
            if isinstance(message, bytes):
                await client.send_bytes(message)
            else:
                await client.send_text(message)

    async def _ping(self, client) -> None:
        # ASGI servers can't send ping frames on our behalf; use a text ping
        while True:
            await asyncio.sleep(self.ping_interval)
            await client.send_text(json.dumps({"type": "ping"}))

    async def _watch(self, client) -> None:
        while True:
            message: dict[str, Any] = await client.receive()
            if message.get("type") == "websocket.disconnect":
                return

    async def _fail(self, client, message: str) -> None:
        try:
            await client.send_text(json.dumps({"type": "error", "message": message}))
        except CLIENT_GONE:
            logger.debug("Client went away before the error was sent")
        await self._close(client)

    async def _close(self, client) -> None:
        try:
            await client.close()
        except CLIENT_GONE:
            # Already closed or disconnected
            logger.debug("Client socket already closed")
