"""Data kinds, cache TTLs and canonical cache keys."""

from dataclasses import dataclass
from enum import Enum


class DataKind(str, Enum):
    """Content class of a cached payload. Determines its expiry duration."""

    QUOTE = "quote"
    PRICE_CHANGE = "priceChange"
    HISTORY = "history"
    NEWS = "news"
    MACRO = "macro"
    PROFILE = "profile"
    SEARCH = "search"
    FINANCIALS = "financials"


_MINUTE = 60
_HOUR = 60 * _MINUTE
_DAY = 24 * _HOUR

# Seconds. Long TTLs keep us inside the free-tier daily request budget.
CACHE_TTL: dict[DataKind, int] = {
    DataKind.QUOTE: 15 * _MINUTE,
    DataKind.PRICE_CHANGE: 15 * _MINUTE,
    DataKind.HISTORY: 12 * _HOUR,
    DataKind.NEWS: 6 * _HOUR,
    DataKind.MACRO: 24 * _HOUR,
    DataKind.PROFILE: 30 * _DAY,
    DataKind.SEARCH: 30 * _DAY,
    DataKind.FINANCIALS: 30 * _DAY,
}

# Key label -> kind. A label names the endpoint family, the kind its TTL.
KEY_LABELS: dict[str, DataKind] = {
    "quote": DataKind.QUOTE,
    "pricechange": DataKind.PRICE_CHANGE,
    "profile": DataKind.PROFILE,
    "history": DataKind.HISTORY,
    "income": DataKind.FINANCIALS,
    "balance": DataKind.FINANCIALS,
    "cashflow": DataKind.FINANCIALS,
    "metrics": DataKind.FINANCIALS,
    "ratios": DataKind.FINANCIALS,
    "holders": DataKind.FINANCIALS,
    "news": DataKind.NEWS,
    "search": DataKind.SEARCH,
    "target": DataKind.PROFILE,
    "float": DataKind.MACRO,
    "treasury": DataKind.MACRO,
    "sector": DataKind.MACRO,
    "rsi": DataKind.HISTORY,
    "sma": DataKind.HISTORY,
}


def ttl_for(kind: DataKind | str) -> int:
    """
    Look up the TTL in seconds for a data kind.

    Raises:
        ValueError: If the kind is not one of DataKind
    """
    try:
        return CACHE_TTL[DataKind(kind)]
    except ValueError:
        raise ValueError(
            f"Unknown data kind '{kind}'. Must be one of: {[k.value for k in DataKind]}"
        ) from None


def normalize_symbol(symbol: str) -> str:
    """Uppercase and strip a ticker. Rejects empty input."""
    normalized = (symbol or "").upper().strip()
    if not normalized:
        raise ValueError("Symbol must be a non-empty string")
    return normalized


@dataclass(frozen=True)
class CacheKey:
    """Immutable cache key. Used for cache lookup + write-through."""

    label: str
    scope: str = ""

    def __post_init__(self) -> None:
        label = self.label.lower().strip()
        if label not in KEY_LABELS:
            raise ValueError(f"Invalid key label '{self.label}'. Must be one of: {set(KEY_LABELS)}")
        object.__setattr__(self, "label", label)
        object.__setattr__(self, "scope", self.scope.strip())

    @classmethod
    def for_symbol(cls, label: str, symbol: str) -> "CacheKey":
        return cls(label=label, scope=normalize_symbol(symbol))

    @property
    def kind(self) -> DataKind:
        return KEY_LABELS[self.label]

    def to_key(self) -> str:
        """Canonical string key (without the store prefix)."""
        if not self.scope:
            return self.label
        return f"{self.label}_{self.scope}"
