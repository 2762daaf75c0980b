"""Symbol search and quote endpoints."""

from fastapi import APIRouter, Depends, Query

from papertrade.deps import get_quotes
from papertrade.schemas import QuoteResponse, SearchResponse, SymbolMatchResponse
from papertrade.services.quotes import search_symbols
from papertrade.services.trading import normalize_symbol

router = APIRouter()


@router.get("/search/results", response_model=SearchResponse, summary="Search symbols")
async def search(
    q: str = Query(default="", description="Free-text query"),
    quotes=Depends(get_quotes),
) -> SearchResponse:
    """Search for symbols. A blank query returns no results."""
    result = await search_symbols(quotes, q)
    return SearchResponse(
        query=result.query,
        results=[SymbolMatchResponse.model_validate(m) for m in result.results],
        error=result.error,
    )


@router.get("/details/{symbol}/quote", response_model=QuoteResponse, summary="Latest quote")
async def get_quote(symbol: str, quotes=Depends(get_quotes)) -> QuoteResponse:
    """Latest quote for a symbol.

    Provider failures surface as 502 (503 when market data isn't configured).
    """
    quote = await quotes.quote(normalize_symbol(symbol))
    return QuoteResponse.model_validate(quote)
