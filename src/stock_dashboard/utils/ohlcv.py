"""Daily history standardization utilities."""

import math
from typing import Any

import numpy as np
import pandas as pd

# Full field set of a history point. Live bars leave the synthetic technical
# and fundamental fields empty; synthetic series fill all of them.
HISTORY_FIELDS: tuple[str, ...] = (
    "date",
    "price",
    "open",
    "high",
    "low",
    "volume",
    "change",
    "changePercent",
    "vwap",
    "ma50",
    "rsi",
    "pe",
    "revenue",
    "earnings",
    "ebitda",
    "grossMargin",
    "netMargin",
    "ocf",
    "fcf",
    "capex",
    "totalDebt",
    "cash",
    "netDebt",
)


def _to_builtin(value: Any) -> Any:
    """numpy scalar -> Python scalar; NaN/NA -> None."""
    if value is None or value is pd.NA or value is pd.NaT:
        return None
    if isinstance(value, np.generic):
        value = value.item()
    if isinstance(value, float) and (math.isnan(value) or math.isinf(value)):
        return None
    return value


def df_to_rows(df: pd.DataFrame) -> list[dict[str, Any]]:
    """Convert to list of plain-Python dicts (JSON safe, no numpy types)."""
    return [
        {col: _to_builtin(val) for col, val in row.items()}
        for row in df.to_dict("records")
    ]


def _dated_frame(records: list[dict[str, Any]]) -> pd.DataFrame:
    """
    Frame of records with a parsed `date` column, newest first, one row per date.

    Raises:
        ValueError: If no record carries a parseable date
    """
    df = pd.DataFrame.from_records(records)
    if df.empty or "date" not in df.columns:
        raise ValueError("No dated records in payload")

    df["date"] = pd.to_datetime(df["date"], errors="coerce")
    df = df.dropna(subset=["date"])
    if df.empty:
        raise ValueError("No parseable dates in payload")

    # Stable sort so the first upstream record wins on duplicate dates
    df = df.sort_values("date", ascending=False, kind="mergesort")
    return df.drop_duplicates(subset="date", keep="first")


def standardize_history(records: list[dict[str, Any]], limit: int = 100) -> list[dict[str, Any]]:
    """
    Standardize end-of-day bars to the history schema.

    Keeps the most recent `limit` trading days, ordered oldest -> newest,
    with no duplicate dates. `close` is exposed as `price`. All
    HISTORY_FIELDS are present, missing ones as None.

    Args:
        records: Raw bars from the historical-price endpoint (any order)
        limit: Number of most recent bars to keep

    Returns:
        List of history points
    """
    df = _dated_frame(records).head(limit)
    df = df.sort_values("date", kind="mergesort").reset_index(drop=True)
    df["date"] = df["date"].dt.strftime("%Y-%m-%d")

    if "close" in df.columns:
        if "price" in df.columns:
            df["price"] = df["close"].where(df["close"].notna(), df["price"])
            df = df.drop(columns=["close"])
        else:
            df = df.rename(columns={"close": "price"})

    # Schema stability: every field present, nothing extra, fixed order
    for col in HISTORY_FIELDS:
        if col not in df.columns:
            df[col] = None
    df = df[list(HISTORY_FIELDS)]

    return df_to_rows(df)


def latest_by_date(records: list[dict[str, Any]], limit: int) -> list[dict[str, Any]]:
    """Most recent `limit` records, oldest -> newest, date as YYYY-MM-DD."""
    df = _dated_frame(records).head(limit)
    df = df.sort_values("date", kind="mergesort")
    df["date"] = df["date"].dt.strftime("%Y-%m-%d")
    return df_to_rows(df)


def history_frame(history: list[dict[str, Any]]) -> pd.DataFrame:
    """History points -> DataFrame indexed by date, for indicator math."""
    df = pd.DataFrame.from_records(history, columns=list(HISTORY_FIELDS))
    df["date"] = pd.to_datetime(df["date"])
    return df.set_index("date").sort_index()
