"""Dashboard view builders."""

from stock_dashboard.tools.market_overview import market_overview
from stock_dashboard.tools.portfolio import (
    PortfolioState,
    PortfolioWatch,
    group_thesis_entries,
    portfolio_snapshot,
    watch_portfolio,
)
from stock_dashboard.tools.stock_detail import merge_header, stock_detail
from stock_dashboard.tools.symbol_search import symbol_lookup

__all__ = [
    "market_overview",
    "PortfolioState",
    "PortfolioWatch",
    "group_thesis_entries",
    "portfolio_snapshot",
    "watch_portfolio",
    "merge_header",
    "stock_detail",
    "symbol_lookup",
]
