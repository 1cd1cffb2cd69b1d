"""Curated portfolio view and its local bookkeeping."""

import asyncio
import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from time import perf_counter
from typing import Any

from stock_dashboard.data.curated_store import (
    STOCKS_TABLE,
    CuratedStock,
    CuratedStore,
    RefreshQueue,
    RefreshRequest,
    ThesisEntry,
    Unsubscribe,
)
from stock_dashboard.data.market_client import MarketDataClient
from stock_dashboard.utils.provenance import build_meta, build_provenance

logger = logging.getLogger(__name__)


def group_thesis_entries(entries: Iterable[ThesisEntry]) -> dict[Any, list[ThesisEntry]]:
    """Group entries by stock, keeping their (newest-first) order."""
    grouped: dict[Any, list[ThesisEntry]] = {}
    for entry in entries:
        grouped.setdefault(entry.stock_id, []).append(entry)
    return grouped


class PortfolioState:
    """
    Local mirror of the curated list: stocks, their thesis entries and quotes.

    Mutations go to the backend first, then the affected part of the mirror
    is re-read.
    """

    def __init__(self, client: MarketDataClient, store: CuratedStore):
        self._client = client
        self._store = store
        self.stocks: list[CuratedStock] = []
        self.thesis: dict[Any, list[ThesisEntry]] = {}
        self.quotes: dict[str, dict[str, Any]] = {}

    async def refresh_quotes(self) -> None:
        """One batch quote call for the mirrored tickers."""
        tickers = [stock.ticker for stock in self.stocks]
        self.quotes = await self._client.get_batch_quotes(tickers) if tickers else {}

    async def _load_thesis(self) -> None:
        self.thesis = group_thesis_entries(await self._store.list_all_thesis_entries())

    async def refresh(self) -> None:
        """Re-read stocks and entries concurrently, then one batch quote call."""
        stocks, entries = await asyncio.gather(
            self._store.list_stocks(),
            self._store.list_all_thesis_entries(),
        )
        self.stocks = stocks
        self.thesis = group_thesis_entries(entries)
        await self.refresh_quotes()

    async def handle_refresh(self, request: RefreshRequest) -> None:
        """Refresh consumer for change events from the backend."""
        logger.debug(f"Refreshing portfolio after {request.table} change ({request.event})")
        if request.table == STOCKS_TABLE:
            await self.refresh()
        else:
            await self._load_thesis()

    async def add_stock(self, ticker: str, notes: str = "") -> CuratedStock:
        stock = await self._store.add_stock(ticker, notes)
        await self.refresh()
        return stock

    async def remove_stock(self, stock_id: Any) -> None:
        await self._store.remove_stock(stock_id)
        self.stocks = await self._store.list_stocks()
        self.thesis.pop(stock_id, None)

    async def add_thesis_entry(self, stock_id: Any, content: str) -> ThesisEntry:
        entry = await self._store.add_thesis_entry(stock_id, content)
        await self._load_thesis()
        return entry

    async def delete_thesis_entry(self, entry_id: Any) -> None:
        await self._store.delete_thesis_entry(entry_id)
        await self._load_thesis()

    def rows(self) -> list[dict[str, Any]]:
        return [
            {
                **stock.to_dict(),
                "quote": self.quotes.get(stock.ticker),
                "thesis_entries": [entry.to_dict() for entry in self.thesis.get(stock.id, [])],
            }
            for stock in self.stocks
        ]


@dataclass
class PortfolioWatch:
    """Realtime subscriptions feeding a `PortfolioState` through one refresh consumer."""

    state: PortfolioState
    queue: RefreshQueue
    consumer: "asyncio.Task[None]"
    unsubscribes: list[Unsubscribe] = field(default_factory=list)

    def notify(self, table: str) -> None:
        """Queue a refresh for a change this process made itself."""
        self.queue.request(table)

    async def settle(self) -> None:
        """Wait for queued refreshes to finish."""
        await self.queue.join()

    async def stop(self) -> None:
        """Unsubscribe from both tables and stop the consumer."""
        for unsubscribe in self.unsubscribes:
            try:
                await unsubscribe()
            except Exception as e:
                logger.warning(f"Failed to unsubscribe from curated list changes: {e}")
        self.consumer.cancel()
        try:
            await self.consumer
        except asyncio.CancelledError:
            pass


async def watch_portfolio(store: CuratedStore, state: PortfolioState) -> PortfolioWatch:
    """
    Keep `state` in step with the backend.

    Subscribes to stock and thesis changes and starts the task that turns
    queued change events into `state.handle_refresh` calls.

    Returns:
        Handle whose `stop()` undoes both subscriptions and the consumer task
    """
    queue = RefreshQueue()
    unsubscribes = [
        await store.subscribe_to_stocks(queue),
        await store.subscribe_to_thesis_entries(queue),
    ]
    consumer = asyncio.create_task(queue.run(state.handle_refresh))
    logger.info("Watching curated list for changes")
    return PortfolioWatch(state=state, queue=queue, consumer=consumer, unsubscribes=unsubscribes)


async def portfolio_snapshot(
    client: MarketDataClient,
    store: CuratedStore,
    state: PortfolioState | None = None,
) -> dict[str, Any]:
    """
    Curated stocks in display order with their quotes and thesis entries.

    Args:
        client: Market data client
        store: Curated list backend
        state: Mirror kept current by `watch_portfolio`. Only its quotes are
            reloaded. Without one the whole list is read from the backend.

    Returns:
        Dict with one row per curated stock
    """
    start_time = perf_counter()

    if state is None:
        state = PortfolioState(client, store)
        await state.refresh()
    else:
        await state.refresh_quotes()

    duration_ms = (perf_counter() - start_time) * 1000

    return {
        "meta": build_meta("portfolio_snapshot", duration_ms),
        "data_provenance": {
            "quotes": build_provenance(client.live, symbols=[s.ticker for s in state.stocks]),
        },
        "stocks": state.rows(),
    }
