"""Curated stock list and thesis notes, stored in Supabase."""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any

from supabase import AsyncClient, acreate_client

from stock_dashboard.settings import Settings

logger = logging.getLogger(__name__)

STOCKS_TABLE = "curated_stocks"
THESIS_TABLE = "thesis_entries"

Unsubscribe = Callable[[], Awaitable[None]]


@dataclass(frozen=True)
class CuratedStock:
    id: Any
    ticker: str
    notes: str = ""
    position: int = 0
    created_at: str | None = None
    updated_at: str | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "CuratedStock":
        return cls(
            id=row["id"],
            ticker=str(row.get("ticker") or "").upper(),
            notes=row.get("notes") or "",
            position=int(row.get("position") or 0),
            created_at=row.get("created_at"),
            updated_at=row.get("updated_at"),
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class ThesisEntry:
    id: Any
    stock_id: Any
    content: str
    created_at: str | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "ThesisEntry":
        return cls(
            id=row["id"],
            stock_id=row.get("stock_id"),
            content=row.get("content") or "",
            created_at=row.get("created_at"),
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class RefreshRequest:
    """One request to re-read curated-list state, raised by a change event."""

    table: str
    event: str | None = None


class RefreshQueue:
    """
    Change events become refresh requests on a queue.

    Subscription callbacks only enqueue; a single consumer (see `run`)
    performs the actual re-fetch.
    """

    def __init__(self) -> None:
        self._queue: asyncio.Queue[RefreshRequest] = asyncio.Queue()

    def request(self, table: str, payload: Any = None) -> None:
        event = None
        if isinstance(payload, dict):
            data = payload.get("data")
            event = payload.get("eventType") or (data.get("type") if isinstance(data, dict) else None)
        self._queue.put_nowait(RefreshRequest(table=table, event=str(event) if event else None))

    def pending(self) -> int:
        return self._queue.qsize()

    async def get(self) -> RefreshRequest:
        return await self._queue.get()

    async def join(self) -> None:
        """Wait until every queued request has been handled."""
        await self._queue.join()

    async def run(self, refresh: Callable[[RefreshRequest], Awaitable[Any]]) -> None:
        """Consume requests forever. A failed refresh is logged and the loop continues."""
        while True:
            request = await self._queue.get()
            try:
                await refresh(request)
            except Exception:
                logger.exception(f"Refresh after {request.table} change failed")
            finally:
                self._queue.task_done()


class CuratedStore:
    """
    CRUD and change subscriptions for curated stocks and thesis entries.

    Reads log failures and return an empty list. Writes log and re-raise.
    Nothing here is cached or retried.
    """

    def __init__(self, client: AsyncClient):
        self._client = client

    # -- curated stocks ------------------------------------------------

    async def list_stocks(self) -> list[CuratedStock]:
        """All curated stocks ordered by position."""
        try:
            response = await self._client.table(STOCKS_TABLE).select("*").order("position").execute()
        except Exception as e:
            logger.error(f"Error fetching curated stocks: {e}")
            return []
        return [CuratedStock.from_row(row) for row in response.data or []]

    async def _next_position(self) -> int:
        response = (
            await self._client.table(STOCKS_TABLE)
            .select("position")
            .order("position", desc=True)
            .limit(1)
            .execute()
        )
        rows = response.data or []
        if not rows or rows[0].get("position") is None:
            return 0
        return int(rows[0]["position"]) + 1

    async def add_stock(self, ticker: str, notes: str = "") -> CuratedStock:
        """Append a stock at the end of the list (position = max + 1, or 0)."""
        normalized = (ticker or "").upper().strip()
        if not normalized:
            raise ValueError("Ticker must be a non-empty string")
        try:
            position = await self._next_position()
            response = (
                await self._client.table(STOCKS_TABLE)
                .insert({"ticker": normalized, "notes": notes, "position": position})
                .execute()
            )
        except Exception as e:
            logger.error(f"Error adding stock {normalized}: {e}")
            raise
        return CuratedStock.from_row(response.data[0])

    async def update_stock_notes(self, stock_id: Any, notes: str) -> CuratedStock:
        updated_at = datetime.now(timezone.utc).isoformat()
        try:
            response = (
                await self._client.table(STOCKS_TABLE)
                .update({"notes": notes, "updated_at": updated_at})
                .eq("id", stock_id)
                .execute()
            )
        except Exception as e:
            logger.error(f"Error updating notes for stock {stock_id}: {e}")
            raise
        return CuratedStock.from_row(response.data[0])

    async def remove_stock(self, stock_id: Any) -> None:
        try:
            await self._client.table(STOCKS_TABLE).delete().eq("id", stock_id).execute()
        except Exception as e:
            logger.error(f"Error removing stock {stock_id}: {e}")
            raise

    async def reorder_stocks(self, stocks: Sequence[CuratedStock]) -> None:
        """Rewrite positions so they follow the given order (0, 1, 2, ...)."""
        updates = [
            {"id": stock.id, "ticker": stock.ticker, "notes": stock.notes, "position": index}
            for index, stock in enumerate(stocks)
        ]
        if not updates:
            return
        try:
            await self._client.table(STOCKS_TABLE).upsert(updates).execute()
        except Exception as e:
            logger.error(f"Error reordering stocks: {e}")
            raise

    # -- thesis entries ------------------------------------------------

    async def list_thesis_entries(self, stock_id: Any) -> list[ThesisEntry]:
        """Entries for one stock, newest first."""
        try:
            response = (
                await self._client.table(THESIS_TABLE)
                .select("*")
                .eq("stock_id", stock_id)
                .order("created_at", desc=True)
                .execute()
            )
        except Exception as e:
            logger.error(f"Error fetching thesis entries for stock {stock_id}: {e}")
            return []
        return [ThesisEntry.from_row(row) for row in response.data or []]

    async def list_all_thesis_entries(self) -> list[ThesisEntry]:
        """Every entry, newest first."""
        try:
            response = await self._client.table(THESIS_TABLE).select("*").order("created_at", desc=True).execute()
        except Exception as e:
            logger.error(f"Error fetching all thesis entries: {e}")
            return []
        return [ThesisEntry.from_row(row) for row in response.data or []]

    async def add_thesis_entry(self, stock_id: Any, content: str) -> ThesisEntry:
        try:
            response = (
                await self._client.table(THESIS_TABLE)
                .insert({"stock_id": stock_id, "content": content})
                .execute()
            )
        except Exception as e:
            logger.error(f"Error adding thesis entry for stock {stock_id}: {e}")
            raise
        return ThesisEntry.from_row(response.data[0])

    async def delete_thesis_entry(self, entry_id: Any) -> None:
        try:
            await self._client.table(THESIS_TABLE).delete().eq("id", entry_id).execute()
        except Exception as e:
            logger.error(f"Error deleting thesis entry {entry_id}: {e}")
            raise

    # -- realtime ------------------------------------------------------

    async def _subscribe(self, table: str, queue: RefreshQueue) -> Unsubscribe:
        channel = self._client.channel(f"{table}_changes")
        channel.on_postgres_changes(
            "*",
            schema="public",
            table=table,
            callback=lambda payload: queue.request(table, payload),
        )
        await channel.subscribe()
        logger.debug(f"Subscribed to {table} changes")

        async def unsubscribe() -> None:
            await self._client.remove_channel(channel)
            logger.debug(f"Unsubscribed from {table} changes")

        return unsubscribe

    async def subscribe_to_stocks(self, queue: RefreshQueue) -> Unsubscribe:
        """Enqueue one refresh request per curated-stock row change."""
        return await self._subscribe(STOCKS_TABLE, queue)

    async def subscribe_to_thesis_entries(self, queue: RefreshQueue) -> Unsubscribe:
        """Enqueue one refresh request per thesis-entry row change."""
        return await self._subscribe(THESIS_TABLE, queue)


async def connect_curated_store(settings: Settings) -> CuratedStore:
    """
    Connect to the curated-list backend.

    Raises:
        ValueError: If SUPABASE_URL or SUPABASE_KEY is not configured
    """
    if not settings.has_curated_backend:
        raise ValueError("SUPABASE_URL and SUPABASE_KEY must be set for the curated stock list")
    client = await acreate_client(settings.supabase_url, settings.supabase_key)
    return CuratedStore(client)
