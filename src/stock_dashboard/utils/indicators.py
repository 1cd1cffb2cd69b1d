"""Technical indicator calculations."""

import numpy as np
import pandas as pd


def calculate_sma(prices: pd.Series, period: int) -> pd.Series:
    """
    Calculate Simple Moving Average.

    Args:
        prices: Price series (typically close prices)
        period: Number of periods for the average

    Returns:
        SMA series
    """
    return prices.rolling(window=period, min_periods=period).mean()


def calculate_rsi(prices: pd.Series, period: int = 14) -> pd.Series:
    """
    Calculate Relative Strength Index with Wilder's smoothing.

    Returns:
        RSI series (0-100 scale)
    """
    delta = prices.diff()

    gain = delta.where(delta > 0, 0.0)
    loss = (-delta).where(delta < 0, 0.0)

    avg_gain = gain.ewm(alpha=1 / period, min_periods=period, adjust=False).mean()
    avg_loss = loss.ewm(alpha=1 / period, min_periods=period, adjust=False).mean()

    rs = avg_gain / avg_loss
    rsi = 100 - (100 / (1 + rs))

    # avg_loss == 0 -> only gains
    return rsi.replace([np.inf, -np.inf], 100)


def calculate_change_percent(prices: pd.Series, periods: int) -> float | None:
    """
    Percent change over the last `periods` bars.

    Args:
        prices: Price series, oldest first
        periods: Number of bars to look back

    Returns:
        Change in percent (1.5 = +1.5%), or None if insufficient data
    """
    if periods < 1 or len(prices) < periods + 1:
        return None

    current = prices.iloc[-1]
    past = prices.iloc[-periods - 1]

    if pd.isna(current) or pd.isna(past) or past == 0:
        return None

    return float((current - past) / past * 100)


def calculate_ytd_change_percent(prices: pd.Series) -> float | None:
    """Percent change from the first bar of the latest calendar year (DatetimeIndex required)."""
    if prices.empty or not isinstance(prices.index, pd.DatetimeIndex):
        return None

    this_year = prices[prices.index.year == prices.index[-1].year]
    if len(this_year) < 2:
        return None

    start = this_year.iloc[0]
    if pd.isna(start) or start == 0:
        return None
    return float((this_year.iloc[-1] - start) / start * 100)
