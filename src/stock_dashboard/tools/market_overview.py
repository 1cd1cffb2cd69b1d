"""Market overview view: major indices and macro indicators."""

import asyncio
from time import perf_counter
from typing import Any

from stock_dashboard.data.market_client import MarketDataClient
from stock_dashboard.utils.provenance import build_meta, build_provenance

# (display name, index symbol, tracking ETF). Index quotes carry the level,
# ETFs carry period changes and P/E.
INDICES: tuple[tuple[str, str, str], ...] = (
    ("S&P 500", "^GSPC", "SPY"),
    ("Nasdaq 100", "^NDX", "QQQ"),
    ("Dow Jones", "^DJI", "DIA"),
)

GOLD_PROXY = "GLD"
OIL_PROXY = "USO"


def _fed_rate(rates: dict[str, Any]) -> float | None:
    """Short-end proxy for the policy rate: 3-month, else 1-month, else 2-year."""
    return rates.get("month3") or rates.get("month1") or rates.get("year2")


async def market_overview(client: MarketDataClient) -> dict[str, Any]:
    """
    Build the market overview.

    One batch quote call covers indices, ETFs and macro proxies; ETF period
    changes and treasury rates are fetched concurrently with it.

    Args:
        client: Market data client

    Returns:
        Dict with index rows and macro stats
    """
    start_time = perf_counter()

    index_symbols = [index for _, index, _ in INDICES]
    etf_symbols = [etf for _, _, etf in INDICES]
    all_symbols = [*index_symbols, *etf_symbols, GOLD_PROXY, OIL_PROXY]

    quotes, changes, rates = await asyncio.gather(
        client.get_batch_quotes(all_symbols),
        client.get_batch_price_changes(etf_symbols),
        client.get_treasury_rates(),
    )

    indices = []
    for name, index_symbol, etf_symbol in INDICES:
        index_quote = quotes.get(index_symbol) or {}
        etf_quote = quotes.get(etf_symbol) or {}
        indices.append(
            {
                "name": name,
                "index_symbol": index_symbol,
                "etf_symbol": etf_symbol,
                "index_price": index_quote.get("price"),
                "etf_price": etf_quote.get("price"),
                "metrics": changes.get(etf_symbol) or {},
                # Forward P/E would need a profile call per ETF
                "pe": {"trailing": etf_quote.get("pe"), "forward": None},
            }
        )

    macro = {
        "fed": _fed_rate(rates),
        "bond": rates.get("year10"),
        "gold": (quotes.get(GOLD_PROXY) or {}).get("price"),
        "oil": (quotes.get(OIL_PROXY) or {}).get("price"),
    }

    duration_ms = (perf_counter() - start_time) * 1000

    return {
        "meta": build_meta("market_overview", duration_ms),
        "data_provenance": {
            "market": build_provenance(client.live, symbols=all_symbols),
        },
        "indices": indices,
        "macro": macro,
        "treasury_date": rates.get("date"),
    }
