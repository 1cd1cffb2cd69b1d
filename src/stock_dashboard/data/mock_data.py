"""Synthetic market data used when no live source is configured or reachable.

Output shapes match the normalized live shapes field-for-field, so the
presentation layer cannot tell the two apart.
"""

import math
import random
import zlib
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any

import pandas as pd
import pytz

from stock_dashboard.utils.indicators import (
    calculate_change_percent,
    calculate_rsi,
    calculate_sma,
    calculate_ytd_change_percent,
)
from stock_dashboard.utils.normalize import (
    BALANCE_SHEET_MAP,
    CASH_FLOW_MAP,
    INCOME_RATIO_MAP,
    INCOME_STATEMENT_MAP,
    KEY_METRICS_MAP,
    PRICE_CHANGE_PERIODS,
    RATIOS_MAP,
    round_percent,
)
from stock_dashboard.utils.ohlcv import history_frame


@dataclass(frozen=True)
class MockStock:
    ticker: str
    name: str
    price: float
    change: float = 0.0
    change_percent: float = 0.0
    market_cap: float | None = None
    sector: str | None = None
    pe_ratio: float | None = None
    dividend_yield: float | None = None
    is_etf: bool = False


# Portfolio + watchlist demo names, plus the index ETFs used by the overview
MOCK_STOCKS: dict[str, MockStock] = {
    s.ticker: s
    for s in (
        MockStock("NVDA", "Nvidia Corp", 135.58, 2.15, 1.61, 3.34e12, "Technology"),
        MockStock("AAPL", "Apple Inc", 215.00, -1.25, -0.58, 3.29e12, "Technology"),
        MockStock("JPM", "JPMorgan Chase", 198.50, 1.10, 0.56, 5.70e11, "Financial"),
        MockStock("TSLA", "Tesla Inc", 250.00, 5.50, 2.25, 7.80e11, None, 65.4),
        MockStock("MSFT", "Microsoft Corp", 430.00, 0.50, 0.12, 3.15e12, None, 36.5, 0.7),
        MockStock("GOOGL", "Alphabet Inc", 175.25, -0.80, -0.45, 2.18e12, None, 26.8, 0.5),
        MockStock("AMZN", "Amazon.com Inc", 185.00, 1.25, 0.68, 1.95e12, None, 45.2),
        MockStock("SPY", "SPDR S&P 500", 545.00, sector="ETF", is_etf=True),
        MockStock("QQQ", "Invesco QQQ", 480.00, sector="ETF", is_etf=True),
        MockStock("DIA", "SPDR Dow Jones", 405.00, sector="ETF", is_etf=True),
    )
}

GENERIC_PRICE = 150.0

MOCK_TREASURY_YIELDS: dict[str, float | None] = {
    "month1": 5.30,
    "month3": 5.25,
    "year2": 4.35,
    "year5": 4.20,
    "year10": 4.45,
    "year30": None,
}

# Billions per maturity bucket, nearest year first
_DEBT_MATURITY_AMOUNTS = (2.5, 3.1, 1.8, 4.2, 12.5)


def _today() -> date:
    """Current trading date (US Eastern)."""
    return datetime.now(pytz.timezone("America/New_York")).date()


def _seed(symbol: str) -> int:
    """Stable per-symbol seed (str hash is randomized per process)."""
    return zlib.crc32(symbol.upper().strip().encode("utf-8"))


def get_mock_stock(symbol: str) -> MockStock | None:
    return MOCK_STOCKS.get(symbol.upper().strip())


def mock_quote(symbol: str) -> dict[str, Any]:
    """Plausible quote from the static table, or a fixed generic quote."""
    ticker = symbol.upper().strip()
    stock = get_mock_stock(ticker)
    if stock is None:
        return {
            "symbol": ticker,
            "name": None,
            "price": GENERIC_PRICE,
            "change": 1.5,
            "changePercent": 1.0,
            "volume": 1_000_000,
            "avgVolume": None,
            "prevClose": 148.5,
            "dayHigh": None,
            "dayLow": None,
            "yearHigh": None,
            "yearLow": None,
            "marketCap": None,
            "pe": None,
            "eps": None,
        }

    price = stock.price
    return {
        "symbol": ticker,
        "name": stock.name,
        "price": price,
        "change": stock.change,
        "changePercent": stock.change_percent,
        "volume": 1_500_000,
        "avgVolume": None,
        "prevClose": round(price - stock.change, 2),
        "dayHigh": round(price * 1.02, 2),
        "dayLow": round(price * 0.98, 2),
        "yearHigh": round(price * 1.3, 2),
        "yearLow": round(price * 0.7, 2),
        "marketCap": stock.market_cap,
        "pe": stock.pe_ratio,
        "eps": None,
    }


def mock_profile(symbol: str) -> dict[str, Any]:
    """Plausible company profile from the static table, or a generic one."""
    ticker = symbol.upper().strip()
    stock = get_mock_stock(ticker)
    profile: dict[str, Any] = {
        "symbol": ticker,
        "name": ticker,
        "sector": "Unknown",
        "industry": None,
        "description": "Mock Description",
        "ceo": None,
        "website": None,
        "employees": None,
        "marketCap": None,
        "peRatio": None,
        "trailingPE": None,
        "forwardPE": None,
        "pegRatio": None,
        "dividendYield": None,
        "beta": None,
        "price": GENERIC_PRICE,
        "exchange": None,
        "country": None,
        "ipoDate": None,
        "image": None,
    }
    if stock is None:
        return profile

    sector = stock.sector or "Technology"
    profile.update(
        name=stock.name,
        sector=sector,
        industry="Unknown",
        description=f"(Mock Data) {stock.name} is a company in the {sector} sector.",
        ceo="Unknown",
        marketCap=stock.market_cap,
        peRatio=stock.pe_ratio,
        trailingPE=stock.pe_ratio,
        dividendYield=stock.dividend_yield,
        price=stock.price,
    )
    return profile


def mock_history(
    base_price: float,
    days: int = 100,
    rng: random.Random | None = None,
    end_date: date | None = None,
) -> list[dict[str, Any]]:
    """
    Synthetic daily series, oldest -> newest, ending exactly at base_price.

    A random walk starts at 90% of base_price. Each point carries synthetic
    technicals (sinusoidal 50-day MA, bounded RSI, volume with occasional
    spikes) and fundamentals derived from a slowly compounding revenue.

    Args:
        base_price: Price of the final point
        days: Number of points
        rng: Random source (module-level random if omitted)
        end_date: Date after the final point (defaults to today)

    Returns:
        List of history points with the full history field set
    """
    if days < 1:
        return []
    rng = rng or random.Random()
    end = end_date or _today()

    data: list[dict[str, Any]] = []
    current_price = base_price * 0.9
    base_revenue = base_price * 1_000_000

    for i in range(days):
        point_date = end - timedelta(days=days - i)
        open_price = current_price

        current_price += (rng.random() - 0.48) * 5

        ma50 = current_price * (1 + math.sin(i / 5) * 0.05)
        is_volume_spike = rng.random() > 0.9
        volume = int(rng.random() * 1_000_000) + (2_000_000 if is_volume_spike else 500_000)
        rsi = 50 + math.sin(i / 3) * 20 + rng.random() * 10
        pe = current_price / (base_price / 25) if base_price else None

        growth_factor = 1 + i * 0.001
        revenue = base_revenue * growth_factor * (1 + rng.random() * 0.05)
        gross_margin = 0.45 + rng.random() * 0.02
        ebitda_margin = 0.30 + rng.random() * 0.02
        net_margin = 0.20 + rng.random() * 0.02

        earnings = revenue * net_margin
        ebitda = revenue * ebitda_margin
        ocf = ebitda * 0.9
        capex = revenue * 0.05
        fcf = ocf - capex
        total_debt = revenue * 0.8
        cash = revenue * 0.3

        data.append(
            {
                "date": point_date.isoformat(),
                "price": round(current_price, 2),
                "open": round(open_price, 2),
                "high": None,
                "low": None,
                "volume": volume,
                "change": None,
                "changePercent": None,
                "vwap": None,
                "ma50": round(ma50, 2),
                "rsi": round(rsi, 2),
                "pe": round(pe, 2) if pe is not None else None,
                "revenue": revenue,
                "earnings": earnings,
                "ebitda": ebitda,
                "grossMargin": gross_margin * 100,
                "netMargin": net_margin * 100,
                "ocf": ocf,
                "fcf": fcf,
                "capex": capex,
                "totalDebt": total_debt,
                "cash": cash,
                "netDebt": total_debt - cash,
            }
        )

    data[-1]["price"] = base_price

    for point in data:
        price, open_price = point["price"], point["open"]
        point["high"] = round(max(price, open_price) * 1.005, 2)
        point["low"] = round(min(price, open_price) * 0.995, 2)
        point["change"] = round(price - open_price, 2)
        point["changePercent"] = round((price - open_price) / open_price * 100, 2) if open_price else None
        point["vwap"] = round((point["high"] + point["low"] + price) / 3, 2)

    return data


def mock_history_for(symbol: str, days: int = 100) -> list[dict[str, Any]]:
    """Symbol-seeded synthetic history ending at the symbol's mock price."""
    return mock_history(mock_quote(symbol)["price"], days=days, rng=random.Random(_seed(symbol)))


def _mock_closes(symbol: str, days: int) -> pd.Series:
    return history_frame(mock_history_for(symbol, days=days))["price"].astype(float)


def mock_price_change(symbol: str) -> dict[str, float | None]:
    """Period changes computed from a year of symbol-seeded synthetic closes."""
    closes = _mock_closes(symbol, days=260)
    lookbacks = {"1D": 1, "1W": 5, "1M": 21, "3M": 63, "6M": 126, "1Y": 252}
    changes: dict[str, float | None] = {}
    for label, _ in PRICE_CHANGE_PERIODS:
        if label == "YTD":
            raw = calculate_ytd_change_percent(closes)
        else:
            raw = calculate_change_percent(closes, lookbacks[label])
        changes[label] = round_percent(raw)
    return changes


def mock_technical_rsi(symbol: str, limit: int = 30) -> list[dict[str, Any]]:
    closes = _mock_closes(symbol, days=100)
    rsi = calculate_rsi(closes).dropna().tail(limit)
    return [{"date": d.strftime("%Y-%m-%d"), "rsi": round(float(v), 2)} for d, v in rsi.items()]


def mock_technical_sma(symbol: str, period: int = 50, limit: int = 30) -> list[dict[str, Any]]:
    closes = _mock_closes(symbol, days=max(100, period + limit))
    sma = calculate_sma(closes, period).dropna().tail(limit)
    return [{"date": d.strftime("%Y-%m-%d"), "sma": round(float(v), 2)} for d, v in sma.items()]


def mock_treasury_rates() -> dict[str, Any]:
    return {"date": _today().isoformat(), **MOCK_TREASURY_YIELDS}


def mock_news(symbol: str) -> list[dict[str, Any]]:
    ticker = symbol.upper().strip()
    stock = get_mock_stock(ticker)
    name = stock.name if stock else ticker
    published = f"{_today().isoformat()} 09:30:00"
    return [
        {
            "title": f"(Mock Data) {name} market update",
            "url": None,
            "publishedDate": published,
            "site": "Mock Data",
            "text": f"Live news for {ticker} is unavailable. This is placeholder content.",
            "image": None,
        }
    ]


def mock_search(query: str) -> list[dict[str, Any]]:
    """Substring match on ticker or name over the static table."""
    needle = query.strip()
    if not needle:
        return []
    return [
        {
            "symbol": stock.ticker,
            "name": stock.name,
            "type": "ETF" if stock.is_etf else "Equity",
            "exchange": "US",
        }
        for stock in MOCK_STOCKS.values()
        if needle.upper() in stock.ticker or needle.lower() in stock.name.lower()
    ]


def _quarter_ends(count: int) -> list[str]:
    """Most recent `count` completed quarter-end dates, newest first."""
    today = _today()
    year, quarter = today.year, (today.month - 1) // 3
    ends = []
    for _ in range(count):
        if quarter == 0:
            year, quarter = year - 1, 4
        month = quarter * 3
        next_month = date(year + (month == 12), month % 12 + 1, 1)
        ends.append((next_month - timedelta(days=1)).isoformat())
        quarter -= 1
    return ends


def _mock_revenue(symbol: str) -> float:
    return mock_quote(symbol)["price"] * 1_000_000


def _statement_rows(mapping: dict[str, str], count: int = 4) -> list[dict[str, Any]]:
    rows = []
    for i, quarter_end in enumerate(_quarter_ends(count)):
        row: dict[str, Any] = {field: None for field in mapping}
        row["date"] = quarter_end
        row["period"] = f"Q{(int(quarter_end[5:7]) - 1) // 3 + 1}"
        row["_index"] = i
        rows.append(row)
    return rows


def mock_income_statements(symbol: str) -> list[dict[str, Any]]:
    revenue = _mock_revenue(symbol)
    rows = []
    for row in _statement_rows(INCOME_STATEMENT_MAP):
        quarter_revenue = revenue / (1 + row.pop("_index") * 0.02)
        row.update(
            revenue=quarter_revenue,
            grossProfit=quarter_revenue * 0.45,
            operatingIncome=quarter_revenue * 0.30,
            netIncome=quarter_revenue * 0.20,
            ebitda=quarter_revenue * 0.30,
        )
        row.update({field: None for field in INCOME_RATIO_MAP})
        row.update(grossMargin=45.0, operatingMargin=30.0, netMargin=20.0)
        rows.append(row)
    return rows


def mock_balance_sheets(symbol: str) -> list[dict[str, Any]]:
    revenue = _mock_revenue(symbol)
    rows = []
    for row in _statement_rows(BALANCE_SHEET_MAP):
        row.pop("_index")
        total_debt, cash = revenue * 0.8, revenue * 0.3
        row.update(totalDebt=total_debt, cashAndEquivalents=cash, netDebt=total_debt - cash)
        rows.append(row)
    return rows


def mock_cash_flows(symbol: str) -> list[dict[str, Any]]:
    revenue = _mock_revenue(symbol)
    rows = []
    for row in _statement_rows(CASH_FLOW_MAP):
        row.pop("_index")
        ocf, capex = revenue * 0.30 * 0.9, revenue * 0.05
        row.update(operatingCashFlow=ocf, capitalExpenditure=-capex, freeCashFlow=ocf - capex)
        rows.append(row)
    return rows


def mock_key_metrics(symbol: str) -> dict[str, Any]:
    metrics: dict[str, Any] = {field: None for field in KEY_METRICS_MAP}
    metrics["date"] = _quarter_ends(1)[0]
    return metrics


def mock_ratios(symbol: str) -> dict[str, Any]:
    ratios: dict[str, Any] = {field: None for field in RATIOS_MAP}
    ratios["date"] = _quarter_ends(1)[0]
    ratios["peRatio"] = mock_quote(symbol)["pe"]
    return ratios


def mock_price_target(symbol: str) -> dict[str, Any]:
    price = mock_quote(symbol)["price"]
    return {
        "symbol": symbol.upper().strip(),
        "targetHigh": round(price * 1.25, 2),
        "targetLow": round(price * 0.8, 2),
        "targetConsensus": round(price * 1.1, 2),
        "targetMedian": round(price * 1.08, 2),
    }


def mock_shares_float(symbol: str) -> dict[str, Any]:
    return {
        "symbol": symbol.upper().strip(),
        "freeFloat": None,
        "floatShares": None,
        "outstandingShares": None,
        "date": _today().isoformat(),
    }


def mock_institutional_holders(symbol: str) -> list[dict[str, Any]]:
    return []


def mock_sector_performance() -> list[dict[str, Any]]:
    return []


def mock_debt_maturity(symbol: str) -> list[dict[str, Any]]:
    """Static debt maturity schedule (billions) for the detail page."""
    start = _today().year
    schedule = [
        {"year": str(start + i), "amount": amount}
        for i, amount in enumerate(_DEBT_MATURITY_AMOUNTS[:-1])
    ]
    schedule.append({"year": f"{start + len(schedule)}+", "amount": _DEBT_MATURITY_AMOUNTS[-1]})
    return schedule
