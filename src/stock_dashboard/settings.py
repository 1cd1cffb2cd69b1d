"""Environment configuration."""

import os
from dataclasses import dataclass

DEFAULT_FMP_BASE_URL = "https://financialmodelingprep.com/stable"


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got '{raw}'") from None


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got '{raw}'") from None


@dataclass(frozen=True)
class Settings:
    """Process configuration. Built once at startup and passed explicitly."""

    fmp_api_key: str | None = None
    fmp_base_url: str = DEFAULT_FMP_BASE_URL
    fmp_timeout: float = 10.0
    fmp_max_retries: int = 1
    fmp_max_workers: int = 4
    cache_dir: str = ".cache/market"
    supabase_url: str | None = None
    supabase_key: str | None = None
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            fmp_api_key=os.environ.get("FMP_API_KEY", "").strip() or None,
            fmp_base_url=os.environ.get("FMP_BASE_URL", DEFAULT_FMP_BASE_URL),
            fmp_timeout=_env_float("FMP_TIMEOUT", 10.0),
            fmp_max_retries=_env_int("FMP_MAX_RETRIES", 1),
            fmp_max_workers=_env_int("FMP_MAX_WORKERS", 4),
            cache_dir=os.environ.get("CACHE_DIR", ".cache/market"),
            supabase_url=os.environ.get("SUPABASE_URL", "").strip() or None,
            supabase_key=os.environ.get("SUPABASE_KEY", "").strip() or None,
            log_level=os.environ.get("LOG_LEVEL", "INFO").upper(),
        )

    @property
    def offline(self) -> bool:
        """No market-data credential: every market-data call serves mock data."""
        return not self.fmp_api_key

    @property
    def has_curated_backend(self) -> bool:
        return bool(self.supabase_url and self.supabase_key)
