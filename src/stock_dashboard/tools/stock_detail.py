"""Stock detail view."""

import asyncio
from time import perf_counter
from typing import Any

from stock_dashboard.data.market_client import MarketDataClient
from stock_dashboard.data.mock_data import mock_debt_maturity
from stock_dashboard.utils.provenance import build_meta, build_provenance
from stock_dashboard.utils.validators import normalize_symbol


def _first(*values: Any) -> Any:
    return next((v for v in values if v is not None), None)


def merge_header(symbol: str, quote: dict[str, Any], profile: dict[str, Any]) -> dict[str, Any]:
    """
    Combine quote and profile into the detail page header.

    Precedence: trailing P/E from the quote, then the profile. Forward P/E
    and PEG only exist on the profile. Name and market cap prefer the
    profile.
    """
    return {
        "symbol": symbol,
        "name": _first(profile.get("name"), quote.get("name"), symbol),
        "price": quote.get("price"),
        "change": quote.get("change"),
        "changePercent": quote.get("changePercent"),
        "volume": quote.get("volume"),
        "marketCap": _first(profile.get("marketCap"), quote.get("marketCap")),
        "sector": profile.get("sector"),
        "industry": profile.get("industry"),
        "description": profile.get("description"),
        "trailingPE": _first(quote.get("pe"), profile.get("peRatio")),
        "forwardPE": profile.get("forwardPE"),
        "pegRatio": profile.get("pegRatio"),
        "dividendYield": profile.get("dividendYield"),
        "beta": profile.get("beta"),
        "yearHigh": quote.get("yearHigh"),
        "yearLow": quote.get("yearLow"),
    }


async def stock_detail(client: MarketDataClient, symbol: str) -> dict[str, Any]:
    """
    Everything the detail page shows for one symbol.

    Args:
        client: Market data client
        symbol: Stock ticker symbol

    Returns:
        Dict with header, daily history, news and debt maturity schedule
    """
    start_time = perf_counter()
    ticker = normalize_symbol(symbol)

    quote, profile, history, news = await asyncio.gather(
        client.get_quote(ticker),
        client.get_profile(ticker),
        client.get_daily_history(ticker),
        client.get_news(ticker),
    )

    duration_ms = (perf_counter() - start_time) * 1000

    return {
        "meta": build_meta("stock_detail", duration_ms),
        "data_provenance": {
            "market": build_provenance(client.live, symbol=ticker),
            "debt_maturity": build_provenance(False, note="Illustrative schedule"),
        },
        "header": merge_header(ticker, quote, profile),
        "history": history,
        "news": news,
        "debt_maturity": mock_debt_maturity(ticker),
    }
