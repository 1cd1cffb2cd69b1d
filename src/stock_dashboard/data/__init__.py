"""Data access: cache store, upstream transport, fallback data and curated lists."""

from stock_dashboard.data.cache import MarketCache
from stock_dashboard.data.curated_store import (
    CuratedStock,
    CuratedStore,
    RefreshQueue,
    RefreshRequest,
    ThesisEntry,
    connect_curated_store,
)
from stock_dashboard.data.fmp_client import FetchResult, FetchStatus, FMPClient, FMPRequestError
from stock_dashboard.data.market_client import MarketDataClient, build_market_client

__all__ = [
    "MarketCache",
    "CuratedStock",
    "CuratedStore",
    "RefreshQueue",
    "RefreshRequest",
    "ThesisEntry",
    "connect_curated_store",
    "FetchResult",
    "FetchStatus",
    "FMPClient",
    "FMPRequestError",
    "MarketDataClient",
    "build_market_client",
]
