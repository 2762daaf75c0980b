"""
Tests for the Finnhub quote gateway, using httpx.MockTransport.
"""

import math
from decimal import Decimal

import httpx
import pytest

from papertrade.errors import ConfigError, QuoteError, UpstreamError
from papertrade.services.quotes import FinnhubClient, SymbolMatch, get_price, search_symbols


def make_client(handler, api_key="test-key") -> FinnhubClient:
    return FinnhubClient(api_key, transport=httpx.MockTransport(handler))


class TestQuote:
    """Tests for FinnhubClient.quote()."""

    @pytest.mark.asyncio
    async def test_parses_quote(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={
                "c": 150.25, "d": 1.5, "dp": 1.01, "h": 151, "l": 148.5,
                "o": 149, "pc": 148.75, "t": 1700000000,
            })

        async with make_client(handler) as client:
            quote = await client.quote(" aapl ")

        assert quote.symbol == "AAPL"
        assert quote.current == 150.25
        assert quote.previous_close == 148.75
        assert quote.timestamp == 1700000000
        assert quote.is_usable
        assert quote.price == Decimal("150.25")

        assert seen[0].url.path == "/api/v1/quote"
        assert seen[0].url.params["symbol"] == "AAPL"
        assert seen[0].url.params["token"] == "test-key"

    @pytest.mark.asyncio
    async def test_unknown_symbol_is_unusable(self):
        """Finnhub answers unknown symbols with zeros."""

        def handler(request):
            return httpx.Response(200, json={"c": 0, "d": None, "dp": None, "t": 0})

        async with make_client(handler) as client:
            quote = await client.quote("NOPE")

        assert quote.current == 0
        assert not quote.is_usable

    @pytest.mark.asyncio
    async def test_missing_price_is_nan(self):
        def handler(request):
            return httpx.Response(200, json={})

        async with make_client(handler) as client:
            quote = await client.quote("AAPL")

        assert math.isnan(quote.current)
        assert not quote.is_usable

    @pytest.mark.asyncio
    async def test_no_api_key(self):
        def handler(request):
            raise AssertionError("provider must not be called")

        async with make_client(handler, api_key="  ") as client:
            assert not client.configured
            with pytest.raises(ConfigError) as exc_info:
                await client.quote("AAPL")

        assert exc_info.value.status_code == 503

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [401, 429, 500])
    async def test_error_status(self, status):
        def handler(request):
            return httpx.Response(status, text="nope")

        async with make_client(handler) as client:
            with pytest.raises(UpstreamError) as exc_info:
                await client.quote("AAPL")

        # The provider's response never reaches the user
        assert "nope" not in exc_info.value.user_message

    @pytest.mark.asyncio
    async def test_transport_failure(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        async with make_client(handler) as client:
            with pytest.raises(UpstreamError):
                await client.quote("AAPL")

    @pytest.mark.asyncio
    async def test_invalid_json(self):
        def handler(request):
            return httpx.Response(200, text="<html>")

        async with make_client(handler) as client:
            with pytest.raises(UpstreamError):
                await client.quote("AAPL")


class TestGetPrice:
    """Tests for get_price()."""

    @pytest.mark.asyncio
    async def test_rounds_to_cents(self, quotes):
        quotes.set_price("AAPL", 150.125)
        assert await get_price(quotes, "AAPL") == Decimal("150.13")

    @pytest.mark.asyncio
    async def test_unusable_price(self, quotes):
        quotes.set_price("AAPL", 0.0)
        with pytest.raises(QuoteError):
            await get_price(quotes, "AAPL")

    @pytest.mark.asyncio
    async def test_upstream_error_becomes_quote_error(self, quotes):
        quotes.failing.add("AAPL")
        with pytest.raises(QuoteError):
            await get_price(quotes, "AAPL")

    @pytest.mark.asyncio
    async def test_config_error_propagates(self, quotes):
        quotes.configured = False
        with pytest.raises(ConfigError):
            await get_price(quotes, "AAPL")


class TestSearch:
    """Tests for symbol search."""

    @pytest.mark.asyncio
    async def test_search_maps_results(self):
        def handler(request):
            assert request.url.params["q"] == "apple"
            return httpx.Response(200, json={"count": 2, "result": [
                {"symbol": "AAPL", "displaySymbol": "AAPL", "description": "APPLE INC", "type": "Common Stock"},
                {"symbol": "APLE", "displaySymbol": "APLE", "description": "APPLE HOSPITALITY", "type": "REIT"},
            ]})

        async with make_client(handler) as client:
            matches = await client.search("apple")

        assert [m.symbol for m in matches] == ["AAPL", "APLE"]
        assert matches[0].description == "APPLE INC"
        assert matches[1].kind == "REIT"

    @pytest.mark.asyncio
    async def test_blank_query_skips_provider(self, quotes):
        result = await search_symbols(quotes, "   ")

        assert result.results == []
        assert result.error is None
        assert quotes.calls == []

    @pytest.mark.asyncio
    async def test_drops_blank_symbols_and_caps(self, quotes):
        quotes.search_results = [SymbolMatch("", "", "junk", "")] + [
            SymbolMatch(f"S{i}", f"S{i}", f"Stock {i}", "Common Stock") for i in range(15)
        ]

        result = await search_symbols(quotes, "s", limit=10)

        assert len(result.results) == 10
        assert result.results[0].symbol == "S0"

    @pytest.mark.asyncio
    async def test_provider_failure_becomes_message(self, quotes):
        quotes.configured = False

        result = await search_symbols(quotes, "apple")

        assert result.results == []
        assert result.error == "Search unavailable right now."
