"""Market data client: cache-first resolution with stale and mock fallback.

Every operation resolves through the same chain:

1. No credential configured -> mock data, no cache or network access
2. Fresh cache hit -> cached value
3. Live fetch -> normalize -> write-through -> value
4. Fetch failure, empty response or unusable payload -> stale cache value
5. Nothing cached at all -> mock data

Market-data operations never raise for upstream problems.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable
from functools import partial
from typing import Any

from stock_dashboard.data import mock_data
from stock_dashboard.data.cache import MarketCache
from stock_dashboard.data.fmp_client import FetchResult, FMPClient
from stock_dashboard.settings import Settings
from stock_dashboard.utils.normalize import (
    normalize_balance_sheets,
    normalize_cash_flows,
    normalize_history,
    normalize_income_statements,
    normalize_indicator,
    normalize_institutional_holders,
    normalize_key_metrics,
    normalize_news,
    normalize_price_change,
    normalize_price_target,
    normalize_profile,
    normalize_quote,
    normalize_ratios,
    normalize_search_results,
    normalize_sector_performance,
    normalize_shares_float,
    normalize_treasury_rates,
)
from stock_dashboard.utils.validators import CacheKey, normalize_symbol

logger = logging.getLogger(__name__)

# Payload shapes we did not expect surface as one of these from a normalizer
NORMALIZE_ERRORS = (KeyError, TypeError, ValueError, AttributeError, IndexError)

# Economic indicator name -> treasury tenor it is read from
ECONOMIC_INDICATORS: dict[str, str] = {
    "FEDERAL_FUNDS_RATE": "month1",
    "TREASURY_YIELD": "year10",
}

Records = list[dict[str, Any]]

# Fields that identify a record rather than carry data
_IDENTITY_FIELDS = frozenset({"symbol", "date", "period"})

# Marks a live fetch that produced nothing worth caching
_NO_DATA = object()


def _with_symbol(record: dict[str, Any], symbol: str) -> dict[str, Any]:
    if not record.get("symbol"):
        record["symbol"] = symbol
    return record


def _history_bars(records: Records) -> Records:
    """Bars from either a flat list or a `{"historical": [...]}` envelope."""
    if len(records) == 1 and isinstance(records[0].get("historical"), list):
        return records[0]["historical"]
    return records


def _latest(records: Records) -> dict[str, Any]:
    return max(records, key=lambda r: str(r.get("date") or ""))


def has_data(value: Any, required: str | None = None) -> bool:
    """
    Whether a normalized value carries anything worth serving.

    Lists must be non-empty. Records must have `required` set, or when no
    field is required, at least one non-identity field set.
    """
    if isinstance(value, list):
        return bool(value)
    if isinstance(value, dict):
        if required is not None:
            return value.get(required) is not None
        return any(v is not None for k, v in value.items() if k not in _IDENTITY_FIELDS)
    return value is not None


class MarketDataClient:
    """
    Resolves market data for the dashboard.

    Args:
        fmp: Upstream transport, or None for offline (mock-only) mode
        cache: Cache store shared by all operations
    """

    def __init__(self, fmp: FMPClient | None, cache: MarketCache):
        self._fmp = fmp
        self._cache = cache
        # Cache key -> live fetch in progress, shared by concurrent callers
        self._inflight: dict[str, asyncio.Task[Any]] = {}

    @property
    def live(self) -> bool:
        return self._fmp is not None

    @property
    def cache(self) -> MarketCache:
        return self._cache

    # ------------------------------------------------------------------
    # Resolution chain
    # ------------------------------------------------------------------

    async def _resolve(
        self,
        key: CacheKey,
        fetch: Callable[[], Awaitable[FetchResult]],
        normalize: Callable[[Records], Any],
        fallback: Callable[[], Any],
        required: str | None = None,
    ) -> Any:
        """
        Run the five-step chain for one cache key.

        Concurrent misses on the same key share one live fetch.

        Args:
            key: Cache key (its label determines the TTL kind)
            fetch: Issues the live request
            normalize: Turns the fetched records into the cached shape
            fallback: Produces mock data of the same shape
            required: Field a normalized record must have set to count as data

        Returns:
            Normalized value from cache, live data, stale cache or mock
        """
        if self._fmp is None:
            return fallback()

        storage_key = key.to_key()
        cached = self._cache.get(key)
        if cached is not None:
            logger.debug(f"Cache hit: {storage_key}")
            return cached

        task = self._inflight.get(storage_key)
        if task is None or task.done():
            logger.debug(f"Cache miss: {storage_key}")
            task = asyncio.create_task(self._fetch_and_store(key, fetch, normalize, required))
            self._inflight[storage_key] = task
            task.add_done_callback(partial(self._forget_inflight, storage_key))
        else:
            logger.debug(f"Cache miss: {storage_key}, joining fetch in progress")

        # A cancelled caller must not cancel the fetch other callers share
        value = await asyncio.shield(task)
        if value is _NO_DATA:
            return self._fall_back(key, fallback)
        return value

    def _forget_inflight(self, storage_key: str, task: "asyncio.Task[Any]") -> None:
        if self._inflight.get(storage_key) is task:
            del self._inflight[storage_key]

    async def _fetch_and_store(
        self,
        key: CacheKey,
        fetch: Callable[[], Awaitable[FetchResult]],
        normalize: Callable[[Records], Any],
        required: str | None,
    ) -> Any:
        """Step 3: live fetch, normalize, write-through. _NO_DATA on any failure."""
        result = await fetch()
        if not result.is_ok:
            logger.warning(f"FMP error for {key.to_key()}: {result.reason}")
            return _NO_DATA
        try:
            value = normalize(result.data or [])
        except NORMALIZE_ERRORS as e:
            logger.warning(f"FMP error for {key.to_key()}: unusable payload ({e})")
            return _NO_DATA
        if not has_data(value, required):
            logger.warning(f"FMP error for {key.to_key()}: NO_DATA after normalization")
            return _NO_DATA
        self._cache.set(key, value)
        return value

    def _fall_back(self, key: CacheKey, fallback: Callable[[], Any]) -> Any:
        stale = self._cache.get_stale(key)
        if stale is not None:
            logger.info(f"Serving stale cache for {key.to_key()}")
            return stale
        logger.info(f"No cached data for {key.to_key()}, serving mock data")
        return fallback()

    async def _resolve_batch(
        self,
        symbols: Iterable[str],
        label: str,
        endpoint: str,
        param: str,
        normalize: Callable[[dict[str, Any]], dict[str, Any]],
        fallback: Callable[[str], Any],
        required: str | None = None,
    ) -> dict[str, Any]:
        """
        Resolve many symbols with one combined request for the uncached ones.

        Each returned record is cached under its own symbol key. Symbols the
        combined request did not deliver resolve through stale-then-mock
        individually. Records without `required` set count as not delivered.

        Returns:
            Mapping of normalized symbol -> value, in request order
        """
        tickers = list(dict.fromkeys(normalize_symbol(s) for s in symbols))
        if not tickers:
            return {}
        if self._fmp is None:
            return {t: fallback(t) for t in tickers}

        results: dict[str, Any] = {}
        missing: list[str] = []
        for ticker in tickers:
            cached = self._cache.get(CacheKey.for_symbol(label, ticker))
            if cached is not None:
                results[ticker] = cached
            else:
                missing.append(ticker)

        if missing:
            logger.debug(f"Batch {label}: {len(tickers) - len(missing)} cached, fetching {missing}")
            result = await self._fmp.get(endpoint, **{param: ",".join(missing)})
            if result.is_ok:
                wanted = set(missing)
                for record in result.data or []:
                    try:
                        value = normalize(record)
                        ticker = normalize_symbol(value.get("symbol") or "")
                    except NORMALIZE_ERRORS as e:
                        logger.warning(f"FMP error for batch {label}: skipping unusable record ({e})")
                        continue
                    if not has_data(value, required):
                        logger.warning(f"FMP error for batch {label} {ticker}: NO_DATA after normalization")
                        continue
                    if ticker in wanted and ticker not in results:
                        self._cache.set(CacheKey.for_symbol(label, ticker), value)
                        results[ticker] = value
            else:
                logger.warning(f"FMP error for batch {label} {missing}: {result.reason}")

            for ticker in missing:
                if ticker not in results:
                    results[ticker] = self._fall_back(
                        CacheKey.for_symbol(label, ticker), lambda t=ticker: fallback(t)
                    )

        return {t: results[t] for t in tickers}

    async def _get(self, endpoint: str, **params: Any) -> FetchResult:
        return await self._fmp.get(endpoint, **params)

    # ------------------------------------------------------------------
    # Quotes and prices
    # ------------------------------------------------------------------

    async def get_quote(self, symbol: str) -> dict[str, Any]:
        ticker = normalize_symbol(symbol)
        return await self._resolve(
            CacheKey.for_symbol("quote", ticker),
            lambda: self._get("quote", symbol=ticker),
            lambda records: _with_symbol(normalize_quote(records[0]), ticker),
            lambda: mock_data.mock_quote(ticker),
            required="price",
        )

    async def get_batch_quotes(self, symbols: Iterable[str]) -> dict[str, dict[str, Any]]:
        """Quotes for many symbols, keyed by upper-cased symbol."""
        return await self._resolve_batch(
            symbols, "quote", "batch-quote", "symbols", normalize_quote, mock_data.mock_quote,
            required="price",
        )

    async def get_price_change(self, symbol: str) -> dict[str, float | None]:
        ticker = normalize_symbol(symbol)
        return await self._resolve(
            CacheKey.for_symbol("pricechange", ticker),
            lambda: self._get("stock-price-change", symbol=ticker),
            lambda records: normalize_price_change(records[0]),
            lambda: mock_data.mock_price_change(ticker),
        )

    async def get_batch_price_changes(self, symbols: Iterable[str]) -> dict[str, dict[str, float | None]]:
        """
        Period changes for many symbols.

        There is no upstream batch endpoint: every symbol is cache-checked
        first, then the remaining single-symbol requests run concurrently.
        """
        tickers = list(dict.fromkeys(normalize_symbol(s) for s in symbols))
        if self._fmp is None:
            return {t: mock_data.mock_price_change(t) for t in tickers}

        results: dict[str, Any] = {}
        missing: list[str] = []
        for ticker in tickers:
            cached = self._cache.get(CacheKey.for_symbol("pricechange", ticker))
            if cached is not None:
                results[ticker] = cached
            else:
                missing.append(ticker)

        fetched = await asyncio.gather(*(self.get_price_change(t) for t in missing))
        results.update(zip(missing, fetched))
        return {t: results[t] for t in tickers}

    async def get_daily_history(self, symbol: str) -> list[dict[str, Any]]:
        """Most recent 100 end-of-day points, oldest -> newest."""
        ticker = normalize_symbol(symbol)
        return await self._resolve(
            CacheKey.for_symbol("history", ticker),
            lambda: self._get("historical-price-eod/full", symbol=ticker),
            lambda records: normalize_history(_history_bars(records)),
            lambda: mock_data.mock_history_for(ticker),
        )

    # ------------------------------------------------------------------
    # Company data
    # ------------------------------------------------------------------

    async def get_profile(self, symbol: str) -> dict[str, Any]:
        ticker = normalize_symbol(symbol)
        return await self._resolve(
            CacheKey.for_symbol("profile", ticker),
            lambda: self._get("profile", symbol=ticker),
            lambda records: _with_symbol(normalize_profile(records[0]), ticker),
            lambda: mock_data.mock_profile(ticker),
            required="price",
        )

    async def get_batch_profiles(self, symbols: Iterable[str]) -> dict[str, dict[str, Any]]:
        """Profiles for many symbols, keyed by upper-cased symbol."""
        return await self._resolve_batch(
            symbols, "profile", "profile", "symbol", normalize_profile, mock_data.mock_profile,
            required="price",
        )

    async def get_income_statement(self, symbol: str) -> list[dict[str, Any]]:
        ticker = normalize_symbol(symbol)
        return await self._resolve(
            CacheKey.for_symbol("income", ticker),
            lambda: self._get("income-statement", symbol=ticker, limit=4),
            normalize_income_statements,
            lambda: mock_data.mock_income_statements(ticker),
        )

    async def get_balance_sheet(self, symbol: str) -> list[dict[str, Any]]:
        ticker = normalize_symbol(symbol)
        return await self._resolve(
            CacheKey.for_symbol("balance", ticker),
            lambda: self._get("balance-sheet-statement", symbol=ticker, limit=4),
            normalize_balance_sheets,
            lambda: mock_data.mock_balance_sheets(ticker),
        )

    async def get_cash_flow(self, symbol: str) -> list[dict[str, Any]]:
        ticker = normalize_symbol(symbol)
        return await self._resolve(
            CacheKey.for_symbol("cashflow", ticker),
            lambda: self._get("cash-flow-statement", symbol=ticker, limit=4),
            normalize_cash_flows,
            lambda: mock_data.mock_cash_flows(ticker),
        )

    async def get_key_metrics(self, symbol: str) -> dict[str, Any]:
        ticker = normalize_symbol(symbol)
        return await self._resolve(
            CacheKey.for_symbol("metrics", ticker),
            lambda: self._get("key-metrics", symbol=ticker, limit=1),
            lambda records: normalize_key_metrics(records[0]),
            lambda: mock_data.mock_key_metrics(ticker),
        )

    async def get_financial_ratios(self, symbol: str) -> dict[str, Any]:
        ticker = normalize_symbol(symbol)
        return await self._resolve(
            CacheKey.for_symbol("ratios", ticker),
            lambda: self._get("ratios", symbol=ticker, limit=1),
            lambda records: normalize_ratios(records[0]),
            lambda: mock_data.mock_ratios(ticker),
        )

    async def get_price_target(self, symbol: str) -> dict[str, Any]:
        ticker = normalize_symbol(symbol)
        return await self._resolve(
            CacheKey.for_symbol("target", ticker),
            lambda: self._get("price-target-consensus", symbol=ticker),
            lambda records: _with_symbol(normalize_price_target(records[0]), ticker),
            lambda: mock_data.mock_price_target(ticker),
        )

    async def get_shares_float(self, symbol: str) -> dict[str, Any]:
        ticker = normalize_symbol(symbol)
        return await self._resolve(
            CacheKey.for_symbol("float", ticker),
            lambda: self._get("shares-float", symbol=ticker),
            lambda records: _with_symbol(normalize_shares_float(records[0]), ticker),
            lambda: mock_data.mock_shares_float(ticker),
        )

    async def get_institutional_holders(self, symbol: str) -> list[dict[str, Any]]:
        ticker = normalize_symbol(symbol)
        return await self._resolve(
            CacheKey.for_symbol("holders", ticker),
            lambda: self._get("institutional-holder", symbol=ticker),
            normalize_institutional_holders,
            lambda: mock_data.mock_institutional_holders(ticker),
        )

    # ------------------------------------------------------------------
    # Technicals
    # ------------------------------------------------------------------

    async def get_technical_rsi(self, symbol: str) -> list[dict[str, Any]]:
        """14-period daily RSI, most recent 30 values."""
        ticker = normalize_symbol(symbol)
        return await self._resolve(
            CacheKey.for_symbol("rsi", ticker),
            lambda: self._get("technical-indicators/rsi", symbol=ticker, periodLength=14, timeframe="1day"),
            lambda records: normalize_indicator(records, "rsi"),
            lambda: mock_data.mock_technical_rsi(ticker),
        )

    async def get_technical_sma(self, symbol: str, period: int = 50) -> list[dict[str, Any]]:
        """Daily SMA over `period` days, most recent 30 values."""
        ticker = normalize_symbol(symbol)
        if period < 1:
            raise ValueError(f"SMA period must be positive, got {period}")
        return await self._resolve(
            CacheKey("sma", f"{ticker}_{period}"),
            lambda: self._get("technical-indicators/sma", symbol=ticker, periodLength=period, timeframe="1day"),
            lambda records: normalize_indicator(records, "sma"),
            lambda: mock_data.mock_technical_sma(ticker, period),
        )

    # ------------------------------------------------------------------
    # Macro, news and search
    # ------------------------------------------------------------------

    async def get_treasury_rates(self) -> dict[str, Any]:
        return await self._resolve(
            CacheKey("treasury", "rates"),
            lambda: self._get("treasury-rates"),
            lambda records: normalize_treasury_rates(_latest(records)),
            mock_data.mock_treasury_rates,
        )

    async def get_economic_indicator(self, name: str) -> dict[str, Any]:
        """
        Latest value of a rate indicator, read from the treasury curve.

        Args:
            name: FEDERAL_FUNDS_RATE or TREASURY_YIELD

        Returns:
            {"value": ..., "date": ...}

        Raises:
            ValueError: If the indicator is not supported
        """
        tenor = ECONOMIC_INDICATORS.get((name or "").upper().strip())
        if tenor is None:
            raise ValueError(
                f"Unknown economic indicator '{name}'. Must be one of: {list(ECONOMIC_INDICATORS)}"
            )
        rates = await self.get_treasury_rates()
        return {"value": rates.get(tenor), "date": rates.get("date")}

    async def get_sector_performance(self) -> list[dict[str, Any]]:
        return await self._resolve(
            CacheKey("sector", "performance"),
            lambda: self._get("sector-performance-snapshot"),
            normalize_sector_performance,
            mock_data.mock_sector_performance,
        )

    async def get_news(self, symbol: str) -> list[dict[str, Any]]:
        ticker = normalize_symbol(symbol)
        return await self._resolve(
            CacheKey.for_symbol("news", ticker),
            lambda: self._get("news/stock", symbols=ticker, limit=10),
            normalize_news,
            lambda: mock_data.mock_news(ticker),
        )

    async def search_symbols(self, query: str) -> list[dict[str, Any]]:
        """Symbol search by ticker or company name (up to 10 matches)."""
        text = (query or "").strip()
        if not text:
            raise ValueError("Search query must be a non-empty string")
        return await self._resolve(
            CacheKey("search", text.lower()),
            lambda: self._get("search", query=text, limit=10),
            normalize_search_results,
            lambda: mock_data.mock_search(text),
        )

    def close(self) -> None:
        if self._fmp is not None:
            self._fmp.close()


def build_market_client(settings: Settings, cache: MarketCache | None = None) -> MarketDataClient:
    """
    Build the client from settings.

    Without FMP_API_KEY the client runs offline and never touches the
    cache or the network.
    """
    if cache is None:
        cache = MarketCache.on_disk(settings.cache_dir)

    if settings.offline:
        logger.info("FMP_API_KEY not set, serving mock market data")
        return MarketDataClient(fmp=None, cache=cache)

    fmp = FMPClient(
        api_key=settings.fmp_api_key,
        base_url=settings.fmp_base_url,
        timeout=settings.fmp_timeout,
        max_retries=settings.fmp_max_retries,
        max_workers=settings.fmp_max_workers,
    )
    return MarketDataClient(fmp=fmp, cache=cache)
