"""Pytest configuration and fixtures."""

import asyncio
from collections.abc import Callable
from typing import Any

import pandas as pd
import pytest

from stock_dashboard.data.cache import MarketCache
from stock_dashboard.data.curated_store import CuratedStore
from stock_dashboard.data.fmp_client import FetchResult, classify_payload
from stock_dashboard.data.market_client import MarketDataClient


class FakeClock:
    """Settable clock in epoch seconds."""

    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeFMP:
    """
    Stands in for FMPClient. Responses are registered per endpoint as a raw
    JSON payload, a FetchResult, or a callable taking the query params.
    Unregistered endpoints fail like a transport error. Every call yields to
    the event loop once, as a real request would.
    """

    def __init__(self) -> None:
        self.responses: dict[str, Any] = {}
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self.closed = False

    def respond(self, endpoint: str, response: Any) -> None:
        self.responses[endpoint] = response

    def fail(self, endpoint: str, reason: str = "connection refused") -> None:
        self.responses[endpoint] = FetchResult.failure(reason)

    def calls_to(self, endpoint: str) -> list[dict[str, Any]]:
        return [params for ep, params in self.calls if ep == endpoint]

    async def get(self, endpoint: str, **params: Any) -> FetchResult:
        self.calls.append((endpoint, params))
        await asyncio.sleep(0)
        if endpoint not in self.responses:
            return FetchResult.failure(f"{endpoint} failed after 1 attempts: connection refused")
        response = self.responses[endpoint]
        if callable(response):
            response = response(params)
        if isinstance(response, FetchResult):
            return response
        return classify_payload(response)

    def close(self) -> None:
        self.closed = True


class FakeResponse:
    def __init__(self, data: list[dict[str, Any]]):
        self.data = data


class FakeQuery:
    """Chainable query over one in-memory table, applied on execute()."""

    def __init__(self, db: "FakeSupabase", table: str):
        self.db = db
        self.table = table
        self.op = "select"
        self.payload: Any = None
        self.filters: list[tuple[str, Any]] = []
        self.ordering: tuple[str, bool] | None = None
        self.max_rows: int | None = None

    def select(self, *columns: str) -> "FakeQuery":
        return self

    def insert(self, payload: dict[str, Any]) -> "FakeQuery":
        self.op, self.payload = "insert", payload
        return self

    def update(self, payload: dict[str, Any]) -> "FakeQuery":
        self.op, self.payload = "update", payload
        return self

    def upsert(self, payload: list[dict[str, Any]]) -> "FakeQuery":
        self.op, self.payload = "upsert", payload
        return self

    def delete(self) -> "FakeQuery":
        self.op = "delete"
        return self

    def eq(self, column: str, value: Any) -> "FakeQuery":
        self.filters.append((column, value))
        return self

    def order(self, column: str, desc: bool = False) -> "FakeQuery":
        self.ordering = (column, desc)
        return self

    def limit(self, count: int) -> "FakeQuery":
        self.max_rows = count
        return self

    def _matches(self, row: dict[str, Any]) -> bool:
        return all(row.get(column) == value for column, value in self.filters)

    async def execute(self) -> FakeResponse:
        self.db.executed.append((self.table, self.op, self.payload))
        if self.table in self.db.failing:
            raise RuntimeError(f"{self.table} unavailable")
        rows = self.db.tables.setdefault(self.table, [])

        if self.op == "insert":
            self.db.next_id += 1
            row = {"id": self.db.next_id, "created_at": f"2024-01-01T00:00:{self.db.next_id:02d}", **self.payload}
            rows.append(row)
            return FakeResponse([dict(row)])
        if self.op == "update":
            changed = [row for row in rows if self._matches(row)]
            for row in changed:
                row.update(self.payload)
            return FakeResponse([dict(row) for row in changed])
        if self.op == "upsert":
            for record in self.payload:
                existing = next((row for row in rows if row["id"] == record["id"]), None)
                if existing is None:
                    rows.append(dict(record))
                else:
                    existing.update(record)
            return FakeResponse([dict(record) for record in self.payload])
        if self.op == "delete":
            removed = [row for row in rows if self._matches(row)]
            self.db.tables[self.table] = [row for row in rows if not self._matches(row)]
            return FakeResponse(removed)

        selected = [dict(row) for row in rows if self._matches(row)]
        if self.ordering is not None:
            column, desc = self.ordering
            selected.sort(key=lambda row: row.get(column), reverse=desc)
        if self.max_rows is not None:
            selected = selected[: self.max_rows]
        return FakeResponse(selected)


class FakeChannel:
    def __init__(self, name: str):
        self.name = name
        self.handlers: list[tuple[str, dict[str, Any]]] = []
        self.subscribed = False

    def on_postgres_changes(self, event: str, **kwargs: Any) -> "FakeChannel":
        self.handlers.append((event, kwargs))
        return self

    async def subscribe(self) -> "FakeChannel":
        self.subscribed = True
        return self

    def emit(self, payload: dict[str, Any]) -> None:
        for _, kwargs in self.handlers:
            kwargs["callback"](payload)


class FakeSupabase:
    """In-memory stand-in for the Supabase async client."""

    def __init__(self) -> None:
        self.tables: dict[str, list[dict[str, Any]]] = {}
        self.executed: list[tuple[str, str, Any]] = []
        self.failing: set[str] = set()
        self.channels: dict[str, FakeChannel] = {}
        self.removed: list[FakeChannel] = []
        self.next_id = 0

    def table(self, name: str) -> FakeQuery:
        return FakeQuery(self, name)

    def channel(self, name: str) -> FakeChannel:
        self.channels[name] = FakeChannel(name)
        return self.channels[name]

    async def remove_channel(self, channel: FakeChannel) -> None:
        self.removed.append(channel)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def backend() -> dict[str, Any]:
    """In-memory storage behind the cache."""
    return {}


@pytest.fixture
def cache(backend: dict[str, Any], clock: FakeClock) -> MarketCache:
    return MarketCache(backend=backend, clock=clock)


@pytest.fixture
def fmp() -> FakeFMP:
    return FakeFMP()


@pytest.fixture
def client(fmp: FakeFMP, cache: MarketCache) -> MarketDataClient:
    """Client with a credential configured (live mode) over a fake upstream."""
    return MarketDataClient(fmp=fmp, cache=cache)


@pytest.fixture
def offline_client(cache: MarketCache) -> MarketDataClient:
    """Client without a credential (mock-only mode)."""
    return MarketDataClient(fmp=None, cache=cache)


@pytest.fixture
def make_bars() -> Callable[..., list[dict[str, Any]]]:
    """Builder for raw end-of-day bars, newest first like the upstream."""

    def _make(count: int, start: str = "2024-01-01", base: float = 100.0) -> list[dict[str, Any]]:
        dates = pd.bdate_range(start, periods=count)
        bars = [
            {
                "symbol": "TEST",
                "date": d.strftime("%Y-%m-%d"),
                "open": base + i - 0.5,
                "high": base + i + 1.0,
                "low": base + i - 1.0,
                "close": base + i,
                "volume": 1_000_000 + i,
                "change": 0.5,
                "changePercent": 0.5,
                "vwap": base + i,
            }
            for i, d in enumerate(dates)
        ]
        return list(reversed(bars))

    return _make


@pytest.fixture
def sample_price_series() -> pd.Series:
    """Sample price series for indicator testing."""
    return pd.Series(
        [100.0, 101.0, 102.0, 101.5, 103.0, 104.0, 103.5, 105.0, 106.0, 105.5,
         107.0, 108.0, 107.5, 109.0, 110.0, 109.5, 111.0, 112.0, 111.5, 113.0,
         114.0, 113.5, 115.0, 116.0, 115.5, 117.0, 118.0, 117.5, 119.0, 120.0]
    )


@pytest.fixture
def supabase() -> FakeSupabase:
    return FakeSupabase()


@pytest.fixture
def store(supabase: FakeSupabase) -> CuratedStore:
    return CuratedStore(supabase)
