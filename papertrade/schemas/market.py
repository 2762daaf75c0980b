"""Pydantic schemas for symbol search and quotes."""

from pydantic import BaseModel, Field


class SymbolMatchResponse(BaseModel):
    """One symbol-search hit."""

    symbol: str
    display_symbol: str
    description: str
    kind: str

    model_config = {"from_attributes": True}


class SearchResponse(BaseModel):
    """Symbol search results."""

    query: str
    results: list[SymbolMatchResponse] = Field(default_factory=list)
    error: str | None = None


class QuoteResponse(BaseModel):
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

    model_config = {"from_attributes": True}
