"""Quote gateway - async HTTP client for the Finnhub market-data API.

Two operations: ``quote(symbol)`` and ``search(query)``. Both raise
``ConfigError`` when no API key is configured and ``UpstreamError`` on
transport failures or non-success responses. A returned quote may still
be unusable (Finnhub answers unknown symbols with a zero price); callers
check ``Quote.is_usable`` or use ``get_price()``.

No caching, no retries: every call goes to the provider.
"""

import logging
import math
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

import httpx

from papertrade import telemetry
from papertrade.errors import ConfigError, QuoteError, UpstreamError
from papertrade.money import to_money

logger = logging.getLogger(__name__)


@dataclass
class Quote:
    """Latest quote for a symbol."""

    symbol: str
    current: float
    change: float | None
    percent_change: float | None
    high: float | None
    low: float | None
    open: float | None
    previous_close: float | None
    timestamp: int | None

    @property
    def is_usable(self) -> bool:
        """A price we may trade or trigger on: finite and positive once rounded to cents."""
        return math.isfinite(self.current) and self.price > 0

    @property
    def price(self) -> Decimal:
        """Current price rounded to cents. Only meaningful if is_usable."""
        return to_money(self.current)


@dataclass
class SymbolMatch:
    """One symbol-search hit."""

    symbol: str
    display_symbol: str
    description: str
    kind: str


@dataclass
class SearchResult:
    """Search results ready for display."""

    query: str
    results: list[SymbolMatch]
    error: str | None = None


def _float_or_none(value: Any) -> float | None:
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


class FinnhubClient:
    """Async client for the Finnhub REST API."""

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://finnhub.io/api/v1",
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize the client.

        Args:
            api_key: Finnhub API token (empty disables all calls)
            base_url: REST base URL
            timeout: Per-request timeout in seconds
            transport: Optional httpx transport (used by tests)
        """
        self.api_key = (api_key or "").strip()
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> "FinnhubClient":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    @property
    def client(self) -> httpx.AsyncClient:
        """Get the HTTP client, creating one if needed."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _get(self, path: str, params: dict[str, str]) -> Any:
        if not self.configured:
            raise ConfigError(detail="FINNHUB_API_KEY is not set")

        try:
            resp = await self.client.get(path, params={**params, "token": self.api_key})
        except httpx.HTTPError as e:
            raise UpstreamError(detail=f"Finnhub {path} request failed: {e!r}") from e

        if resp.status_code >= 400:
            raise UpstreamError(
                detail=f"Finnhub {path} failed: {resp.status_code} {resp.text[:200]}"
            )

        try:
            return resp.json()
        except ValueError as e:
            raise UpstreamError(detail=f"Finnhub {path} returned invalid JSON") from e

    async def quote(self, symbol: str) -> Quote:
        """Fetch the latest quote for a symbol."""
        symbol = symbol.strip().upper()
        data = await self._get("/quote", {"symbol": symbol})
        if not isinstance(data, dict):
            raise UpstreamError(detail=f"Unexpected quote payload for {symbol}")

        current = _float_or_none(data.get("c"))
        ts = data.get("t")
        return Quote(
            symbol=symbol,
            current=current if current is not None else math.nan,
            change=_float_or_none(data.get("d")),
            percent_change=_float_or_none(data.get("dp")),
            high=_float_or_none(data.get("h")),
            low=_float_or_none(data.get("l")),
            open=_float_or_none(data.get("o")),
            previous_close=_float_or_none(data.get("pc")),
            timestamp=int(ts) if isinstance(ts, (int, float)) else None,
        )

    async def search(self, query: str) -> list[SymbolMatch]:
        """Search symbols matching free text."""
        data = await self._get("/search", {"q": query})
        if not isinstance(data, dict):
            raise UpstreamError(detail="Unexpected search payload")

        return [
            SymbolMatch(
                symbol=str(item.get("symbol") or ""),
                display_symbol=str(item.get("displaySymbol") or ""),
                description=str(item.get("description") or ""),
                kind=str(item.get("type") or ""),
            )
            for item in data.get("result") or []
            if isinstance(item, dict)
        ]


async def get_price(gateway, symbol: str) -> Decimal:
    """Fetch a usable price or raise QuoteError.

    Config errors propagate unchanged; any other upstream failure and any
    non-finite or non-positive price become QuoteError.
    """
    try:
        quote = await gateway.quote(symbol)
    except ConfigError:
        raise
    except UpstreamError as e:
        telemetry.record_quote_error(symbol)
        raise QuoteError(detail=str(e)) from e

    if not quote.is_usable:
        telemetry.record_quote_error(symbol)
        raise QuoteError(detail=f"Unusable price for {symbol}: {quote.current!r}")
    return quote.price


async def search_symbols(gateway, query: str, limit: int = 10) -> SearchResult:
    """Search for symbols, dropping blank hits and capping the result count.

    A blank query returns no results without calling the provider.
    Provider failures become a generic error message.
    """
    q = query.strip()
    if not q:
        return SearchResult(query="", results=[])

    try:
        matches = await gateway.search(q)
    except (ConfigError, UpstreamError) as e:
        logger.warning("Symbol search failed", extra={"query": q, "error": str(e)})
        return SearchResult(query=q, results=[], error="Search unavailable right now.")

    results = [m for m in matches if m.symbol.strip()][:limit]
    return SearchResult(query=q, results=results)
