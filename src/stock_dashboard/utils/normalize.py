"""Normalization of upstream records into the dashboard's data shapes.

Every normalizer is a pure function: the same upstream payload always yields
the same output, so cached values are reproducible byte-for-byte.

The normalization contract:
1. Every record carries its full field set; unknown values are None, never 0
2. Numbers are coerced to int/float; NaN, inf and unparseable strings become None
3. Period-change percentages are rounded to 2 decimals; falsy values become None
4. Series are ordered oldest -> newest
5. Free text is sanitized
"""

from __future__ import annotations

import json
import math
from typing import Any

from stock_dashboard.utils.ohlcv import latest_by_date, standardize_history
from stock_dashboard.utils.sanitize import sanitize_text

QUOTE_FIELDS: tuple[str, ...] = (
    "symbol",
    "name",
    "price",
    "change",
    "changePercent",
    "volume",
    "avgVolume",
    "prevClose",
    "dayHigh",
    "dayLow",
    "yearHigh",
    "yearLow",
    "marketCap",
    "pe",
    "eps",
)

# Display label -> upstream field. FMP reports a week as 5 trading days.
PRICE_CHANGE_PERIODS: tuple[tuple[str, str], ...] = (
    ("1D", "1D"),
    ("1W", "5D"),
    ("1M", "1M"),
    ("3M", "3M"),
    ("6M", "6M"),
    ("1Y", "1Y"),
    ("YTD", "ytd"),
)

PROFILE_FIELDS: tuple[str, ...] = (
    "symbol",
    "name",
    "sector",
    "industry",
    "description",
    "ceo",
    "website",
    "employees",
    "marketCap",
    "peRatio",
    "trailingPE",
    "forwardPE",
    "pegRatio",
    "dividendYield",
    "beta",
    "price",
    "exchange",
    "country",
    "ipoDate",
    "image",
)

TREASURY_FIELDS: tuple[str, ...] = ("date", "month1", "month3", "year2", "year5", "year10", "year30")

NEWS_FIELDS: tuple[str, ...] = ("title", "url", "publishedDate", "site", "text", "image")

SEARCH_FIELDS: tuple[str, ...] = ("symbol", "name", "type", "exchange")

PRICE_TARGET_FIELDS: tuple[str, ...] = (
    "symbol",
    "targetHigh",
    "targetLow",
    "targetConsensus",
    "targetMedian",
)

SHARES_FLOAT_FIELDS: tuple[str, ...] = (
    "symbol",
    "freeFloat",
    "floatShares",
    "outstandingShares",
    "date",
)

HOLDER_FIELDS: tuple[str, ...] = ("holder", "shares", "dateReported", "change", "changePercent")

SECTOR_FIELDS: tuple[str, ...] = ("date", "sector", "exchange", "averageChange")

# Output field -> upstream field
INCOME_STATEMENT_MAP: dict[str, str] = {
    "date": "date",
    "period": "period",
    "revenue": "revenue",
    "grossProfit": "grossProfit",
    "operatingIncome": "operatingIncome",
    "netIncome": "netIncome",
    "eps": "eps",
    "epsDiluted": "epsdiluted",
    "ebitda": "ebitda",
    "researchAndDevelopment": "researchAndDevelopmentExpenses",
    "sellingAndMarketing": "sellingAndMarketingExpenses",
}
# Ratio fields reported as fractions upstream, shown as percent
INCOME_RATIO_MAP: dict[str, str] = {
    "grossMargin": "grossProfitRatio",
    "operatingMargin": "operatingIncomeRatio",
    "netMargin": "netIncomeRatio",
}

BALANCE_SHEET_MAP: dict[str, str] = {
    "date": "date",
    "period": "period",
    "totalAssets": "totalAssets",
    "totalLiabilities": "totalLiabilities",
    "totalEquity": "totalStockholdersEquity",
    "cashAndEquivalents": "cashAndCashEquivalents",
    "shortTermInvestments": "shortTermInvestments",
    "totalDebt": "totalDebt",
    "longTermDebt": "longTermDebt",
    "shortTermDebt": "shortTermDebt",
    "netDebt": "netDebt",
    "inventory": "inventory",
    "accountsReceivable": "netReceivables",
    "accountsPayable": "accountPayables",
    "goodwill": "goodwill",
    "intangibleAssets": "intangibleAssets",
}

CASH_FLOW_MAP: dict[str, str] = {
    "date": "date",
    "period": "period",
    "operatingCashFlow": "operatingCashFlow",
    "capitalExpenditure": "capitalExpenditure",
    "freeCashFlow": "freeCashFlow",
    "dividendsPaid": "dividendsPaid",
    "stockRepurchased": "commonStockRepurchased",
    "debtRepayment": "debtRepayment",
    "netCashFromOperations": "netCashProvidedByOperatingActivities",
    "netCashFromInvesting": "netCashUsedForInvestingActivites",
    "netCashFromFinancing": "netCashUsedProvidedByFinancingActivities",
    "netChangeInCash": "netChangeInCash",
}

KEY_METRICS_MAP: dict[str, str] = {
    "date": "date",
    "revenuePerShare": "revenuePerShare",
    "netIncomePerShare": "netIncomePerShare",
    "operatingCashFlowPerShare": "operatingCashFlowPerShare",
    "freeCashFlowPerShare": "freeCashFlowPerShare",
    "bookValuePerShare": "bookValuePerShare",
    "tangibleBookValuePerShare": "tangibleBookValuePerShare",
    "enterpriseValue": "enterpriseValue",
    "evToSales": "evToSales",
    "evToEbitda": "enterpriseValueOverEBITDA",
    "evToFreeCashFlow": "evToFreeCashFlow",
    "debtToEquity": "debtToEquity",
    "debtToAssets": "debtToAssets",
    "currentRatio": "currentRatio",
    "interestCoverage": "interestCoverage",
    "roe": "roe",
    "roa": "returnOnTangibleAssets",
    "roic": "roic",
    "dividendYield": "dividendYield",
    "payoutRatio": "payoutRatio",
    "priceToSales": "priceToSalesRatio",
    "priceToBook": "pbRatio",
    "priceToFreeCashFlow": "pfcfRatio",
}

RATIOS_MAP: dict[str, str] = {
    "date": "date",
    "currentRatio": "currentRatio",
    "quickRatio": "quickRatio",
    "cashRatio": "cashRatio",
    "grossProfitMargin": "grossProfitMargin",
    "operatingProfitMargin": "operatingProfitMargin",
    "netProfitMargin": "netProfitMargin",
    "roe": "returnOnEquity",
    "roa": "returnOnAssets",
    "roic": "returnOnCapitalEmployed",
    "debtEquityRatio": "debtEquityRatio",
    "debtRatio": "debtRatio",
    "interestCoverage": "interestCoverage",
    "assetTurnover": "assetTurnover",
    "inventoryTurnover": "inventoryTurnover",
    "receivablesTurnover": "receivablesTurnover",
    "payablesTurnover": "payablesTurnover",
    "peRatio": "priceEarningsRatio",
    "pegRatio": "priceEarningsToGrowthRatio",
    "priceToSales": "priceToSalesRatio",
    "priceToBook": "priceToBookRatio",
    "priceToCashFlow": "priceCashFlowRatio",
    "priceToFreeCashFlow": "priceToFreeCashFlowsRatio",
    "evMultiple": "enterpriseValueMultiple",
    "dividendYield": "dividendYield",
    "payoutRatio": "payoutRatio",
}

# String-valued fields in the maps above
_TEXT_FIELDS = {"date", "period"}


def canonical_dumps(obj: Any) -> str:
    """Produce canonical JSON string with sorted keys and minimal separators.

    Uses allow_nan=False to fail fast if NaN/inf values slip through
    normalization.
    """
    return json.dumps(
        obj,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        allow_nan=False,
    )


def to_number(value: Any) -> int | float | None:
    """Coerce to int/float. None for missing, NaN, inf or non-numeric input."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(number) or math.isinf(number):
        return None
    return number


def to_text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def first_present(record: dict[str, Any], *keys: str) -> Any:
    """First value among keys that is not None."""
    for key in keys:
        value = record.get(key)
        if value is not None:
            return value
    return None


def round_percent(value: Any) -> float | None:
    """Round a percentage to 2 decimals. Zero or missing is "unknown" (None)."""
    number = to_number(value)
    if not number:
        return None
    return round(float(number), 2)


def _map_fields(record: dict[str, Any], mapping: dict[str, str]) -> dict[str, Any]:
    return {
        out: to_text(record.get(src)) if out in _TEXT_FIELDS else to_number(record.get(src))
        for out, src in mapping.items()
    }


def normalize_quote(record: dict[str, Any]) -> dict[str, Any]:
    """Normalize one quote record (quote and batch-quote endpoints)."""
    return {
        "symbol": to_text(record.get("symbol")),
        "name": sanitize_text(record.get("name"), max_length=200),
        "price": to_number(record.get("price")),
        "change": to_number(record.get("change")),
        "changePercent": to_number(first_present(record, "changesPercentage", "changePercentage")),
        "volume": to_number(record.get("volume")),
        "avgVolume": to_number(record.get("avgVolume")),
        "prevClose": to_number(record.get("previousClose")),
        "dayHigh": to_number(record.get("dayHigh")),
        "dayLow": to_number(record.get("dayLow")),
        "yearHigh": to_number(record.get("yearHigh")),
        "yearLow": to_number(record.get("yearLow")),
        "marketCap": to_number(record.get("marketCap")),
        "pe": to_number(record.get("pe")),
        "eps": to_number(record.get("eps")),
    }


def normalize_price_change(record: dict[str, Any]) -> dict[str, float | None]:
    """Normalize a stock-price-change record into period label -> percent."""
    return {label: round_percent(record.get(src)) for label, src in PRICE_CHANGE_PERIODS}


def normalize_profile(record: dict[str, Any]) -> dict[str, Any]:
    """Normalize one company profile record (single and batch endpoints)."""
    price = to_number(record.get("price"))
    last_div = to_number(first_present(record, "lastDiv", "lastDividend"))
    dividend_yield = None
    if last_div and price:
        dividend_yield = round(last_div / price * 100, 2)

    pe = to_number(record.get("pe")) or None
    return {
        "symbol": to_text(record.get("symbol")),
        "name": sanitize_text(first_present(record, "companyName", "name"), max_length=200),
        "sector": sanitize_text(record.get("sector"), max_length=100),
        "industry": sanitize_text(record.get("industry"), max_length=100),
        "description": sanitize_text(record.get("description"), max_length=2000),
        "ceo": sanitize_text(record.get("ceo"), max_length=100),
        "website": to_text(record.get("website")),
        "employees": to_number(record.get("fullTimeEmployees")),
        "marketCap": to_number(first_present(record, "mktCap", "marketCap")),
        "peRatio": pe,
        "trailingPE": pe,
        "forwardPE": to_number(record.get("forwardPE")) or None,
        "pegRatio": to_number(record.get("peg")) or None,
        "dividendYield": dividend_yield,
        "beta": to_number(record.get("beta")),
        "price": price,
        "exchange": to_text(first_present(record, "exchangeShortName", "exchange")),
        "country": to_text(record.get("country")),
        "ipoDate": to_text(record.get("ipoDate")),
        "image": to_text(record.get("image")),
    }


def normalize_history(records: list[dict[str, Any]], limit: int = 100) -> list[dict[str, Any]]:
    """Most recent `limit` end-of-day bars, oldest -> newest."""
    return standardize_history(records, limit=limit)


def normalize_income_statements(records: list[dict[str, Any]]) -> list[dict[str, Any]]:
    result = []
    for stmt in records:
        row = _map_fields(stmt, INCOME_STATEMENT_MAP)
        for out, src in INCOME_RATIO_MAP.items():
            ratio = to_number(stmt.get(src))
            row[out] = ratio * 100 if ratio is not None else None
        result.append(row)
    return result


def normalize_balance_sheets(records: list[dict[str, Any]]) -> list[dict[str, Any]]:
    return [_map_fields(stmt, BALANCE_SHEET_MAP) for stmt in records]


def normalize_cash_flows(records: list[dict[str, Any]]) -> list[dict[str, Any]]:
    return [_map_fields(stmt, CASH_FLOW_MAP) for stmt in records]


def normalize_key_metrics(record: dict[str, Any]) -> dict[str, Any]:
    return _map_fields(record, KEY_METRICS_MAP)


def normalize_ratios(record: dict[str, Any]) -> dict[str, Any]:
    return _map_fields(record, RATIOS_MAP)


def normalize_treasury_rates(record: dict[str, Any]) -> dict[str, Any]:
    """Latest treasury yields at the standard tenors."""
    return {
        field: to_text(record.get(field)) if field == "date" else to_number(record.get(field))
        for field in TREASURY_FIELDS
    }


def normalize_news(records: list[dict[str, Any]]) -> list[dict[str, Any]]:
    return [
        {
            "title": sanitize_text(article.get("title"), max_length=300),
            "url": to_text(article.get("url")),
            "publishedDate": to_text(article.get("publishedDate")),
            "site": sanitize_text(article.get("site"), max_length=100),
            "text": sanitize_text(article.get("text"), max_length=1000),
            "image": to_text(article.get("image")),
        }
        for article in records
    ]


def normalize_search_results(records: list[dict[str, Any]]) -> list[dict[str, Any]]:
    return [
        {
            "symbol": to_text(match.get("symbol")),
            "name": sanitize_text(match.get("name"), max_length=200),
            "type": to_text(match.get("type")) or "Equity",
            "exchange": to_text(first_present(match, "exchangeShortName", "exchange")),
        }
        for match in records
        if match.get("symbol")
    ]


def normalize_sector_performance(records: list[dict[str, Any]]) -> list[dict[str, Any]]:
    return [
        {
            "date": to_text(row.get("date")),
            "sector": sanitize_text(row.get("sector"), max_length=100),
            "exchange": to_text(row.get("exchange")),
            "averageChange": to_number(first_present(row, "averageChange", "changesPercentage")),
        }
        for row in records
    ]


def normalize_price_target(record: dict[str, Any]) -> dict[str, Any]:
    return {
        "symbol": to_text(record.get("symbol")),
        "targetHigh": to_number(record.get("targetHigh")),
        "targetLow": to_number(record.get("targetLow")),
        "targetConsensus": to_number(record.get("targetConsensus")),
        "targetMedian": to_number(record.get("targetMedian")),
    }


def normalize_shares_float(record: dict[str, Any]) -> dict[str, Any]:
    return {
        "symbol": to_text(record.get("symbol")),
        "freeFloat": to_number(record.get("freeFloat")),
        "floatShares": to_number(record.get("floatShares")),
        "outstandingShares": to_number(record.get("outstandingShares")),
        "date": to_text(record.get("date")),
    }


def normalize_institutional_holders(
    records: list[dict[str, Any]], limit: int = 10
) -> list[dict[str, Any]]:
    """Top holders by shares held, largest first."""
    ranked = sorted(records, key=lambda h: to_number(h.get("shares")) or 0, reverse=True)
    return [
        {
            "holder": sanitize_text(holder.get("holder"), max_length=200),
            "shares": to_number(holder.get("shares")),
            "dateReported": to_text(holder.get("dateReported")),
            "change": to_number(holder.get("change")),
            "changePercent": to_number(holder.get("changePercent")),
        }
        for holder in ranked[:limit]
    ]


def normalize_indicator(
    records: list[dict[str, Any]], field: str, limit: int = 30
) -> list[dict[str, Any]]:
    """Most recent `limit` indicator values, oldest -> newest."""
    latest = latest_by_date(records, limit=limit)
    return [{"date": row["date"], field: to_number(row.get(field))} for row in latest]

