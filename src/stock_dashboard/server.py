"""Stock Dashboard MCP Server using FastMCP."""

import asyncio
import json
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from functools import partial
from typing import Any

from fastmcp import FastMCP

from stock_dashboard import SCHEMA_VERSION, SERVER_VERSION
from stock_dashboard.data.curated_store import (
    STOCKS_TABLE,
    THESIS_TABLE,
    CuratedStore,
    connect_curated_store,
)
from stock_dashboard.data.market_client import MarketDataClient, build_market_client
from stock_dashboard.settings import Settings
from stock_dashboard.tools import (
    PortfolioState,
    PortfolioWatch,
    market_overview,
    portfolio_snapshot,
    stock_detail,
    symbol_lookup,
    watch_portfolio,
)
from stock_dashboard.utils.provenance import build_error_response, build_meta, build_provenance
from stock_dashboard.utils.validators import CacheKey, normalize_symbol

logger = logging.getLogger(__name__)

StoreFactory = Callable[[], Awaitable[CuratedStore]]


def _dumps(result: Any) -> str:
    return json.dumps(result, indent=2, default=str)


def _market_response(view: str, client: MarketDataClient, data: dict[str, Any], **prov: Any) -> str:
    return _dumps(
        {
            "meta": build_meta(view),
            "data_provenance": {"market": build_provenance(client.live, **prov)},
            **data,
        }
    )


def create_server(
    client: MarketDataClient,
    store_factory: StoreFactory | None = None,
) -> FastMCP:
    """
    Build the MCP server around an already constructed client.

    Args:
        client: Market data client shared by every tool
        store_factory: Connects to the curated-list backend on first use.
            Without it the curated-list tools report the backend as unavailable.
            With it the first portfolio read starts a realtime mirror of the
            list, stopped when the server shuts down.

    Returns:
        FastMCP server instance
    """
    store_holder: dict[str, Any] = {}
    store_lock = asyncio.Lock()
    watch_lock = asyncio.Lock()

    @asynccontextmanager
    async def lifespan(server: FastMCP) -> AsyncIterator[None]:
        try:
            yield
        finally:
            watch = store_holder.pop("watch", None)
            if watch is not None:
                await watch.stop()

    mcp = FastMCP(name="stock-dashboard", lifespan=lifespan)

    async def get_store() -> CuratedStore | None:
        if store_factory is None:
            return None
        async with store_lock:
            if "store" not in store_holder:
                store_holder["store"] = await store_factory()
        return store_holder["store"]

    async def get_watch(store: CuratedStore) -> PortfolioWatch:
        async with watch_lock:
            if "watch" not in store_holder:
                state = PortfolioState(client, store)
                await state.refresh()
                store_holder["watch"] = await watch_portfolio(store, state)
        return store_holder["watch"]

    def backend_unavailable() -> str:
        return _dumps(
            build_error_response(
                error_type="backend_unavailable",
                message="Curated list backend is not configured (set SUPABASE_URL and SUPABASE_KEY)",
            )
        )

    async def curated_write(
        action: str,
        table: str,
        write: Callable[[CuratedStore], Awaitable[Any]],
    ) -> str:
        store = await get_store()
        if store is None:
            return backend_unavailable()
        try:
            result = await write(store)
        except ValueError as e:
            return _dumps(build_error_response(error_type="invalid_parameters", message=str(e)))
        except Exception as e:
            return _dumps(build_error_response(error_type="backend_error", message=f"Failed to {action}: {e}"))
        watch = store_holder.get("watch")
        if watch is not None:
            watch.notify(table)
        payload: dict[str, Any] = {"meta": build_meta(action), "ok": True}
        if result is not None:
            payload["result"] = result.to_dict()
        return _dumps(payload)

    # ========================================================================
    # DASHBOARD VIEWS
    # ========================================================================

    @mcp.tool
    async def get_market_overview() -> str:
        """
        Get the market overview: major indices with period changes and macro stats.

        Returns:
            JSON with S&P 500 / Nasdaq 100 / Dow rows (level, ETF price, 1D-YTD
            changes, P/E) and fed funds, 10Y yield, gold and oil
        """
        return _dumps(await market_overview(client))

    @mcp.tool
    async def get_portfolio() -> str:
        """
        Get the curated stock list with quotes and thesis entries.

        Returns:
            JSON with curated stocks in display order
        """
        store = await get_store()
        if store is None:
            return backend_unavailable()
        watch = await get_watch(store)
        await watch.settle()
        return _dumps(await portfolio_snapshot(client, store, watch.state))

    @mcp.tool
    async def get_stock_detail(symbol: str) -> str:
        """
        Get everything the detail page shows for a stock.

        Args:
            symbol: Stock ticker symbol (e.g., AAPL, NVDA)

        Returns:
            JSON with header (price, valuation, profile), 100-day history,
            news and debt maturity schedule
        """
        try:
            return _dumps(await stock_detail(client, symbol))
        except ValueError as e:
            return _dumps(build_error_response(error_type="invalid_symbol", message=str(e), symbol=symbol))

    @mcp.tool
    async def search_symbol(query: str) -> str:
        """
        Search for stock symbols by company name or ticker.

        Args:
            query: Search query (company name or ticker symbol)

        Returns:
            JSON with search results and exact match info
        """
        try:
            return _dumps(await symbol_lookup(client, query))
        except ValueError as e:
            return _dumps(build_error_response(error_type="invalid_parameters", message=str(e)))

    # ========================================================================
    # MARKET DATA
    # ========================================================================

    @mcp.tool
    async def get_quotes(symbols: list[str]) -> str:
        """
        Get quotes and period changes (1D/1W/1M/3M/6M/1Y/YTD) for several symbols.

        Args:
            symbols: Stock ticker symbols

        Returns:
            JSON with quotes and price changes keyed by symbol
        """
        try:
            quotes, changes = await asyncio.gather(
                client.get_batch_quotes(symbols),
                client.get_batch_price_changes(symbols),
            )
        except ValueError as e:
            return _dumps(build_error_response(error_type="invalid_parameters", message=str(e)))
        return _market_response("get_quotes", client, {"quotes": quotes, "price_changes": changes})

    @mcp.tool
    async def get_financials(symbol: str) -> str:
        """
        Get the last four quarterly statements plus latest key metrics and ratios.

        Args:
            symbol: Stock ticker symbol

        Returns:
            JSON with income statement, balance sheet, cash flow, key metrics and ratios
        """
        try:
            ticker = normalize_symbol(symbol)
        except ValueError as e:
            return _dumps(build_error_response(error_type="invalid_symbol", message=str(e), symbol=symbol))
        income, balance, cash_flow, metrics, ratios = await asyncio.gather(
            client.get_income_statement(ticker),
            client.get_balance_sheet(ticker),
            client.get_cash_flow(ticker),
            client.get_key_metrics(ticker),
            client.get_financial_ratios(ticker),
        )
        return _market_response(
            "get_financials",
            client,
            {
                "symbol": ticker,
                "income_statement": income,
                "balance_sheet": balance,
                "cash_flow": cash_flow,
                "key_metrics": metrics,
                "ratios": ratios,
            },
            symbol=ticker,
        )

    @mcp.tool
    async def get_technicals(symbol: str, sma_period: int = 50) -> str:
        """
        Get daily RSI(14) and SMA series (most recent 30 values each).

        Args:
            symbol: Stock ticker symbol
            sma_period: SMA window in days (default: 50)

        Returns:
            JSON with rsi and sma series, oldest first
        """
        try:
            ticker = normalize_symbol(symbol)
            rsi, sma = await asyncio.gather(
                client.get_technical_rsi(ticker),
                client.get_technical_sma(ticker, period=sma_period),
            )
        except ValueError as e:
            return _dumps(build_error_response(error_type="invalid_parameters", message=str(e), symbol=symbol))
        return _market_response(
            "get_technicals", client, {"symbol": ticker, "rsi": rsi, "sma": sma}, symbol=ticker
        )

    @mcp.tool
    async def get_ownership(symbol: str) -> str:
        """
        Get analyst price targets, share float and top institutional holders.

        Args:
            symbol: Stock ticker symbol

        Returns:
            JSON with price target consensus, float and top 10 holders
        """
        try:
            ticker = normalize_symbol(symbol)
        except ValueError as e:
            return _dumps(build_error_response(error_type="invalid_symbol", message=str(e), symbol=symbol))
        target, shares_float, holders = await asyncio.gather(
            client.get_price_target(ticker),
            client.get_shares_float(ticker),
            client.get_institutional_holders(ticker),
        )
        return _market_response(
            "get_ownership",
            client,
            {
                "symbol": ticker,
                "price_target": target,
                "shares_float": shares_float,
                "institutional_holders": holders,
            },
            symbol=ticker,
        )

    @mcp.tool
    async def get_macro() -> str:
        """
        Get treasury yields, fed funds and 10Y indicators, and sector performance.

        Returns:
            JSON with treasury curve, economic indicators and sector snapshot
        """
        rates, fed_funds, treasury_yield, sectors = await asyncio.gather(
            client.get_treasury_rates(),
            client.get_economic_indicator("FEDERAL_FUNDS_RATE"),
            client.get_economic_indicator("TREASURY_YIELD"),
            client.get_sector_performance(),
        )
        return _market_response(
            "get_macro",
            client,
            {
                "treasury_rates": rates,
                "indicators": {"FEDERAL_FUNDS_RATE": fed_funds, "TREASURY_YIELD": treasury_yield},
                "sector_performance": sectors,
            },
        )

    # ========================================================================
    # CURATED LIST
    # ========================================================================

    @mcp.tool
    async def add_curated_stock(ticker: str, notes: str = "") -> str:
        """
        Add a stock to the end of the curated list.

        Args:
            ticker: Stock ticker symbol
            notes: Optional free-text notes

        Returns:
            JSON with the created record
        """
        return await curated_write(
            "add_curated_stock", STOCKS_TABLE, lambda store: store.add_stock(ticker, notes)
        )

    @mcp.tool
    async def update_stock_notes(stock_id: str, notes: str) -> str:
        """
        Replace the notes of a curated stock.

        Args:
            stock_id: Curated stock id
            notes: New notes

        Returns:
            JSON with the updated record
        """
        return await curated_write(
            "update_stock_notes", STOCKS_TABLE, lambda store: store.update_stock_notes(stock_id, notes)
        )

    @mcp.tool
    async def remove_curated_stock(stock_id: str) -> str:
        """
        Remove a stock from the curated list.

        Args:
            stock_id: Curated stock id

        Returns:
            JSON confirmation
        """
        return await curated_write(
            "remove_curated_stock", STOCKS_TABLE, lambda store: store.remove_stock(stock_id)
        )

    @mcp.tool
    async def reorder_curated_stocks(stock_ids: list[str]) -> str:
        """
        Set the display order of the curated list.

        Args:
            stock_ids: Every curated stock id, in the new order

        Returns:
            JSON confirmation
        """

        async def reorder(store: CuratedStore) -> None:
            by_id = {str(stock.id): stock for stock in await store.list_stocks()}
            unknown = [sid for sid in stock_ids if str(sid) not in by_id]
            if unknown:
                raise ValueError(f"Unknown stock ids: {unknown}")
            await store.reorder_stocks([by_id[str(sid)] for sid in stock_ids])

        return await curated_write("reorder_curated_stocks", STOCKS_TABLE, reorder)

    @mcp.tool
    async def add_thesis_entry(stock_id: str, content: str) -> str:
        """
        Add a dated thesis note to a curated stock.

        Args:
            stock_id: Curated stock id
            content: Note text

        Returns:
            JSON with the created entry
        """
        return await curated_write(
            "add_thesis_entry", THESIS_TABLE, lambda store: store.add_thesis_entry(stock_id, content)
        )

    @mcp.tool
    async def delete_thesis_entry(entry_id: str) -> str:
        """
        Delete a thesis note.

        Args:
            entry_id: Thesis entry id

        Returns:
            JSON confirmation
        """
        return await curated_write(
            "delete_thesis_entry", THESIS_TABLE, lambda store: store.delete_thesis_entry(entry_id)
        )

    # ========================================================================
    # RESOURCES
    # ========================================================================

    @mcp.resource("history://{symbol}")
    def get_cached_history(symbol: str) -> str:
        """
        Get cached daily history as JSON (fresh or stale, never fetched).

        Must call get_stock_detail first to populate the cache.
        """
        try:
            key = CacheKey.for_symbol("history", symbol)
        except ValueError as e:
            return f"Error: {e}"
        history = client.cache.get_stale(key)
        if history is None:
            return f"Resource not cached. Call get_stock_detail('{symbol}') first."
        return _dumps(history)

    return mcp


# ============================================================================
# ENTRY POINT
# ============================================================================


def main() -> None:
    """Run the MCP server."""
    settings = Settings.from_env()
    logging.basicConfig(level=getattr(logging, settings.log_level, logging.INFO))

    client = build_market_client(settings)
    store_factory = partial(connect_curated_store, settings) if settings.has_curated_backend else None

    logger.info(f"Starting Stock Dashboard MCP Server v{SERVER_VERSION} (schema v{SCHEMA_VERSION})")
    try:
        create_server(client, store_factory).run()
    finally:
        client.close()


if __name__ == "__main__":
    main()
