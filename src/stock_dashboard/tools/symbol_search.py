"""Symbol search tool."""

from time import perf_counter
from typing import Any

from stock_dashboard.data.market_client import MarketDataClient
from stock_dashboard.utils.provenance import build_meta, build_provenance


async def symbol_lookup(client: MarketDataClient, query: str) -> dict[str, Any]:
    """
    Search for stock symbols.

    Args:
        client: Market data client
        query: Search query (company name or ticker)

    Returns:
        Dict with search results and exact match info
    """
    start_time = perf_counter()

    results = await client.search_symbols(query)

    # Exact ticker match, which need not be the first result
    normalized_query = query.upper().strip()
    exact_match = next(
        (r["symbol"] for r in results if (r.get("symbol") or "").upper() == normalized_query),
        None,
    )

    duration_ms = (perf_counter() - start_time) * 1000

    return {
        "meta": build_meta("symbol_lookup", duration_ms),
        "data_provenance": {
            "search": build_provenance(client.live, query=query),
        },
        "results": results,
        "exact_match": exact_match,
    }
