"""Utility modules."""

from stock_dashboard.utils.indicators import (
    calculate_change_percent,
    calculate_rsi,
    calculate_sma,
    calculate_ytd_change_percent,
)
from stock_dashboard.utils.ohlcv import df_to_rows, history_frame, standardize_history
from stock_dashboard.utils.provenance import build_error_response, build_meta, build_provenance
from stock_dashboard.utils.sanitize import sanitize_text
from stock_dashboard.utils.validators import CacheKey, DataKind, normalize_symbol, ttl_for

__all__ = [
    "calculate_change_percent",
    "calculate_rsi",
    "calculate_sma",
    "calculate_ytd_change_percent",
    "df_to_rows",
    "history_frame",
    "standardize_history",
    "build_error_response",
    "build_meta",
    "build_provenance",
    "sanitize_text",
    "CacheKey",
    "DataKind",
    "normalize_symbol",
    "ttl_for",
]
