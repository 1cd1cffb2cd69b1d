"""Tests for the market data client resolution chain."""

import asyncio
import json
import logging

import pytest

from conftest import FakeClock, FakeFMP
from stock_dashboard.data import mock_data
from stock_dashboard.data.cache import MarketCache
from stock_dashboard.data.fmp_client import FetchResult
from stock_dashboard.data.market_client import MarketDataClient, build_market_client
from stock_dashboard.settings import Settings
from stock_dashboard.utils.normalize import PROFILE_FIELDS, QUOTE_FIELDS
from stock_dashboard.utils.ohlcv import HISTORY_FIELDS
from stock_dashboard.utils.validators import CacheKey


class TestLiveFetch:
    """Tests for steps 2-3: fresh cache, then live fetch with write-through."""

    def test_quote_scenario(self, client: MarketDataClient, fmp: FakeFMP) -> None:
        """Test a live quote is normalized, cached and served from cache within 15 minutes."""
        fmp.respond("quote", [{"price": 101.5, "change": 1.5, "changesPercentage": 1.5}])

        first = asyncio.run(client.get_quote("ABC"))
        second = asyncio.run(client.get_quote("ABC"))

        assert first["price"] == 101.5
        assert first["change"] == 1.5
        assert first["changePercent"] == 1.5
        assert first["symbol"] == "ABC"
        assert first["volume"] is None
        assert second == first
        assert len(fmp.calls_to("quote")) == 1

    def test_refetch_after_expiry(self, client: MarketDataClient, fmp: FakeFMP, clock: FakeClock) -> None:
        """Test a read after expiry triggers exactly one new fetch."""
        fmp.respond("quote", [{"symbol": "ABC", "price": 1.0}])
        asyncio.run(client.get_quote("ABC"))

        clock.advance(15 * 60 + 1)
        fmp.respond("quote", [{"symbol": "ABC", "price": 2.0}])
        refreshed = asyncio.run(client.get_quote("ABC"))
        again = asyncio.run(client.get_quote("ABC"))

        assert refreshed["price"] == 2.0
        assert again["price"] == 2.0
        assert len(fmp.calls_to("quote")) == 2

    def test_symbol_normalized_for_request_and_key(
        self, client: MarketDataClient, fmp: FakeFMP, cache: MarketCache
    ) -> None:
        fmp.respond("quote", [{"symbol": "AAPL", "price": 215.0}])
        asyncio.run(client.get_quote("  aapl "))

        assert fmp.calls_to("quote") == [{"symbol": "AAPL"}]
        assert cache.get(CacheKey.for_symbol("quote", "AAPL"))["price"] == 215.0

    def test_normalization_is_byte_identical(
        self, client: MarketDataClient, fmp: FakeFMP, backend: dict, clock: FakeClock
    ) -> None:
        """Test re-normalizing the same payload stores the same value bytes."""
        payload = [{"symbol": "MSFT", "companyName": "Microsoft", "price": 430, "lastDiv": 3.0, "mktCap": 3.1e12}]
        fmp.respond("profile", payload)

        asyncio.run(client.get_profile("MSFT"))
        first = backend["fmp_api_profile_MSFT"]
        clock.advance(31 * 86400)
        asyncio.run(client.get_profile("MSFT"))
        second = backend["fmp_api_profile_MSFT"]

        first_expiry = str(json.loads(first)["expiry"])
        second_expiry = str(json.loads(second)["expiry"])
        assert first_expiry != second_expiry
        assert first.replace(first_expiry, "") == second.replace(second_expiry, "")


class TestFallback:
    """Tests for steps 4-5: stale cache before mock."""

    def test_stale_before_mock(self, client: MarketDataClient, fmp: FakeFMP, cache: MarketCache, clock: FakeClock) -> None:
        """Test an expired entry is served when the live fetch fails."""
        cache.set(CacheKey.for_symbol("quote", "XYZ"), {"price": 50})
        clock.advance(86400)
        fmp.fail("quote")

        assert asyncio.run(client.get_quote("XYZ")) == {"price": 50}

    def test_stale_served_is_logged(
        self, client: MarketDataClient, fmp: FakeFMP, cache: MarketCache, clock: FakeClock, caplog: pytest.LogCaptureFixture
    ) -> None:
        cache.set(CacheKey.for_symbol("news", "XYZ"), [{"title": "old"}])
        clock.advance(7 * 3600)
        fmp.fail("news/stock")

        with caplog.at_level(logging.INFO, logger="stock_dashboard.data.market_client"):
            asyncio.run(client.get_news("XYZ"))

        assert "Serving stale cache for news_XYZ" in caplog.text
        assert "FMP error for news_XYZ" in caplog.text

    def test_mock_as_last_resort(self, client: MarketDataClient, fmp: FakeFMP) -> None:
        """Test a failed fetch with nothing cached yields mock data with the live field set."""
        fmp.fail("quote")
        quote = asyncio.run(client.get_quote("NVDA"))

        assert quote == mock_data.mock_quote("NVDA")
        assert set(quote) == set(QUOTE_FIELDS)

    @pytest.mark.parametrize(
        "response",
        [[], {"Error Message": "Limit Reach"}, FetchResult.empty(), "<html>"],
    )
    def test_no_data_is_failure(self, client: MarketDataClient, fmp: FakeFMP, cache: MarketCache, clock: FakeClock, response) -> None:
        """Test empty arrays and error messages take the same path as transport errors."""
        cache.set(CacheKey.for_symbol("profile", "ABC"), {"name": "cached"})
        clock.advance(31 * 86400)
        fmp.respond("profile", response)

        assert asyncio.run(client.get_profile("ABC")) == {"name": "cached"}

    def test_empty_array_same_as_transport_error(self, client: MarketDataClient, fmp: FakeFMP) -> None:
        """Test [] with nothing cached falls through to mock, like a thrown error."""
        fmp.respond("quote", [])
        empty = asyncio.run(client.get_quote("TSLA"))
        fmp.fail("quote")
        failed = asyncio.run(client.get_quote("TSLA"))

        assert empty == failed == mock_data.mock_quote("TSLA")

    def test_failure_not_cached(self, client: MarketDataClient, fmp: FakeFMP, cache: MarketCache) -> None:
        """Test mock output is never written to the cache."""
        fmp.fail("quote")
        asyncio.run(client.get_quote("NVDA"))
        assert not cache.exists(CacheKey.for_symbol("quote", "NVDA"))

    def test_unusable_payload_falls_back(self, client: MarketDataClient, fmp: FakeFMP) -> None:
        """Test bars without any dates are treated as a failed fetch."""
        fmp.respond("historical-price-eod/full", [{"close": 1.0}])
        history = asyncio.run(client.get_daily_history("AAPL"))

        assert len(history) == 100
        assert history[-1]["price"] == 215.0

    def test_search_without_symbols_serves_stale(
        self, client: MarketDataClient, fmp: FakeFMP, cache: MarketCache, clock: FakeClock
    ) -> None:
        """Test results that normalize to nothing are not cached over a stale list."""
        key = CacheKey("search", "apple")
        cache.set(key, [{"symbol": "AAPL"}])
        clock.advance(31 * 86400)
        fmp.respond("search", [{"name": "Apple Inc"}])

        assert asyncio.run(client.search_symbols("apple")) == [{"symbol": "AAPL"}]
        assert cache.get(key) is None

    def test_quote_without_price_serves_stale(
        self, client: MarketDataClient, fmp: FakeFMP, cache: MarketCache, clock: FakeClock
    ) -> None:
        """Test an all-empty quote record does not hide the last known price."""
        key = CacheKey.for_symbol("quote", "XYZ")
        cache.set(key, {"price": 50})
        clock.advance(86400)
        fmp.respond("quote", [{}])

        assert asyncio.run(client.get_quote("XYZ")) == {"price": 50}
        assert cache.get(key) is None

    def test_treasury_without_rates_falls_back(self, client: MarketDataClient, fmp: FakeFMP) -> None:
        fmp.respond("treasury-rates", [{"date": "2024-05-03"}])
        assert asyncio.run(client.get_treasury_rates()) == mock_data.mock_treasury_rates()


class TestConcurrentMisses:
    """Tests for callers that miss the cache at the same time."""

    def test_one_fetch_per_key(self, client: MarketDataClient, fmp: FakeFMP) -> None:
        """Test concurrent readers of the treasury curve share one request."""
        fmp.respond("treasury-rates", [{"date": "2024-05-03", "month1": 5.31, "year10": 4.5}])

        async def read_all() -> list:
            return await asyncio.gather(
                client.get_treasury_rates(),
                client.get_economic_indicator("FEDERAL_FUNDS_RATE"),
                client.get_economic_indicator("TREASURY_YIELD"),
            )

        rates, fed, ten_year = asyncio.run(read_all())

        assert len(fmp.calls_to("treasury-rates")) == 1
        assert rates["month1"] == 5.31
        assert fed == {"value": 5.31, "date": "2024-05-03"}
        assert ten_year == {"value": 4.5, "date": "2024-05-03"}

    def test_shared_failure_falls_back_for_everyone(self, client: MarketDataClient, fmp: FakeFMP) -> None:
        fmp.fail("quote")

        async def read_twice() -> list:
            return await asyncio.gather(client.get_quote("NVDA"), client.get_quote("nvda"))

        first, second = asyncio.run(read_twice())

        assert first == second == mock_data.mock_quote("NVDA")
        assert len(fmp.calls_to("quote")) == 1

    def test_distinct_keys_fetch_separately(self, client: MarketDataClient, fmp: FakeFMP) -> None:
        fmp.respond("quote", lambda params: [{"symbol": params["symbol"], "price": 1.0}])

        async def read_both() -> list:
            return await asyncio.gather(client.get_quote("AAA"), client.get_quote("BBB"))

        asyncio.run(read_both())

        assert fmp.calls_to("quote") == [{"symbol": "AAA"}, {"symbol": "BBB"}]


class TestOffline:
    """Tests for step 1: no credential configured."""

    def test_no_network_no_cache(self, offline_client: MarketDataClient, cache: MarketCache, backend: dict) -> None:
        """Test offline mode returns mock data without touching the cache."""
        cache.set(CacheKey.for_symbol("quote", "AAPL"), {"price": 1})

        quote = asyncio.run(offline_client.get_quote("AAPL"))

        assert quote == mock_data.mock_quote("AAPL")
        assert list(backend) == ["fmp_api_quote_AAPL"]

    def test_any_symbol_gets_a_shape(self, offline_client: MarketDataClient) -> None:
        """Test unknown symbols still get complete records."""
        quote = asyncio.run(offline_client.get_quote("NOPE"))
        profile = asyncio.run(offline_client.get_profile("NOPE"))
        history = asyncio.run(offline_client.get_daily_history("NOPE"))

        assert set(quote) == set(QUOTE_FIELDS)
        assert set(profile) == set(PROFILE_FIELDS)
        assert all(set(point) == set(HISTORY_FIELDS) for point in history)

    def test_not_live(self, offline_client: MarketDataClient, client: MarketDataClient) -> None:
        assert not offline_client.live
        assert client.live

    def test_build_without_key_is_offline(self, cache: MarketCache) -> None:
        client = build_market_client(Settings(fmp_api_key=None), cache=cache)
        assert not client.live

    def test_build_with_key_is_live(self, cache: MarketCache) -> None:
        client = build_market_client(Settings(fmp_api_key="k"), cache=cache)
        assert client.live
        client.close()


class TestOperations:
    """Tests for per-operation normalization and keys."""

    def test_price_change(self, client: MarketDataClient, fmp: FakeFMP, cache: MarketCache) -> None:
        """Test 5D maps to 1W, values round to 2dp and zero becomes None."""
        fmp.respond(
            "stock-price-change",
            [{"symbol": "SPY", "1D": 0.123456, "5D": -1.005, "1M": 0, "3M": 2.5, "6M": None, "1Y": 20.0, "ytd": 10.456}],
        )
        changes = asyncio.run(client.get_price_change("spy"))

        assert changes == {
            "1D": 0.12,
            "1W": round(-1.005, 2),
            "1M": None,
            "3M": 2.5,
            "6M": None,
            "1Y": 20.0,
            "YTD": 10.46,
        }
        assert cache.get(CacheKey.for_symbol("pricechange", "SPY")) == changes

    def test_daily_history(self, client: MarketDataClient, fmp: FakeFMP, make_bars) -> None:
        """Test history keeps the latest 100 bars, oldest first, close as price."""
        bars = make_bars(150)
        bars.append(dict(bars[0]))  # duplicate of the newest bar
        fmp.respond("historical-price-eod/full", bars)

        history = asyncio.run(client.get_daily_history("TEST"))

        dates = [p["date"] for p in history]
        assert len(history) == 100
        assert dates == sorted(dates)
        assert len(set(dates)) == 100
        assert history[-1]["price"] == 249.0
        assert set(history[0]) == set(HISTORY_FIELDS)

    def test_daily_history_envelope(self, client: MarketDataClient, fmp: FakeFMP, make_bars) -> None:
        """Test the {"historical": [...]} response form is accepted."""
        fmp.respond("historical-price-eod/full", {"symbol": "TEST", "historical": make_bars(5)})
        history = asyncio.run(client.get_daily_history("TEST"))
        assert [p["price"] for p in history] == [100.0, 101.0, 102.0, 103.0, 104.0]

    def test_treasury_uses_latest_date(self, client: MarketDataClient, fmp: FakeFMP) -> None:
        fmp.respond(
            "treasury-rates",
            [
                {"date": "2024-05-01", "month1": 5.3, "year10": 4.6},
                {"date": "2024-05-03", "month1": 5.31, "year10": 4.5},
            ],
        )
        rates = asyncio.run(client.get_treasury_rates())
        assert rates["date"] == "2024-05-03"
        assert rates["year10"] == 4.5
        assert rates["year30"] is None

    def test_economic_indicator(self, client: MarketDataClient, fmp: FakeFMP) -> None:
        """Test indicators are read from the treasury curve with one fetch."""
        fmp.respond("treasury-rates", [{"date": "2024-05-03", "month1": 5.31, "year10": 4.5}])

        fed = asyncio.run(client.get_economic_indicator("federal_funds_rate"))
        ten_year = asyncio.run(client.get_economic_indicator("TREASURY_YIELD"))

        assert fed == {"value": 5.31, "date": "2024-05-03"}
        assert ten_year == {"value": 4.5, "date": "2024-05-03"}
        assert len(fmp.calls_to("treasury-rates")) == 1

    def test_unknown_indicator_raises(self, offline_client: MarketDataClient) -> None:
        with pytest.raises(ValueError, match="Unknown economic indicator"):
            asyncio.run(offline_client.get_economic_indicator("CPI"))

    def test_missing_indicator_name_raises(self, offline_client: MarketDataClient) -> None:
        with pytest.raises(ValueError, match="Unknown economic indicator"):
            asyncio.run(offline_client.get_economic_indicator(None))

    def test_search(self, client: MarketDataClient, fmp: FakeFMP, cache: MarketCache) -> None:
        fmp.respond(
            "search",
            [
                {"symbol": "AAPL", "name": "Apple Inc.", "exchangeShortName": "NASDAQ"},
                {"symbol": "APLE", "name": "Apple Hospitality", "type": "REIT", "exchange": "NYSE"},
            ],
        )
        results = asyncio.run(client.search_symbols(" Apple "))

        assert results == [
            {"symbol": "AAPL", "name": "Apple Inc.", "type": "Equity", "exchange": "NASDAQ"},
            {"symbol": "APLE", "name": "Apple Hospitality", "type": "REIT", "exchange": "NYSE"},
        ]
        assert fmp.calls_to("search") == [{"query": "Apple", "limit": 10}]
        assert cache.exists(CacheKey("search", "apple"))

    def test_search_offline_matches_table(self, offline_client: MarketDataClient) -> None:
        results = asyncio.run(offline_client.search_symbols("micro"))
        assert [r["symbol"] for r in results] == ["MSFT"]

    def test_empty_search_raises(self, offline_client: MarketDataClient) -> None:
        with pytest.raises(ValueError):
            asyncio.run(offline_client.search_symbols("  "))

    def test_income_statement_percent_margins(self, client: MarketDataClient, fmp: FakeFMP) -> None:
        fmp.respond(
            "income-statement",
            [{"date": "2024-03-31", "period": "Q1", "revenue": 1000, "grossProfitRatio": 0.45, "netIncomeRatio": None}],
        )
        [row] = asyncio.run(client.get_income_statement("AAPL"))

        assert row["revenue"] == 1000
        assert row["grossMargin"] == pytest.approx(45.0)
        assert row["netMargin"] is None
        assert fmp.calls_to("income-statement") == [{"symbol": "AAPL", "limit": 4}]

    def test_technical_sma_key_includes_period(self, client: MarketDataClient, fmp: FakeFMP, cache: MarketCache) -> None:
        fmp.respond(
            "technical-indicators/sma",
            [{"date": f"2024-01-{d:02d}", "sma": 100 + d} for d in range(31, 0, -1)],
        )
        series = asyncio.run(client.get_technical_sma("AAPL", period=20))

        assert len(series) == 30
        assert series[0]["date"] == "2024-01-02"
        assert series[-1] == {"date": "2024-01-31", "sma": 131}
        assert cache.exists(CacheKey("sma", "AAPL_20"))
        assert fmp.calls_to("technical-indicators/sma")[0]["periodLength"] == 20

    def test_institutional_holders_top_ten(self, client: MarketDataClient, fmp: FakeFMP) -> None:
        fmp.respond("institutional-holder", [{"holder": f"Fund {i}", "shares": i * 100} for i in range(15)])
        holders = asyncio.run(client.get_institutional_holders("AAPL"))

        assert len(holders) == 10
        assert holders[0]["holder"] == "Fund 14"

    def test_close_closes_transport(self, client: MarketDataClient, fmp: FakeFMP) -> None:
        client.close()
        assert fmp.closed
