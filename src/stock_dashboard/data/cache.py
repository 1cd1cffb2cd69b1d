"""Persistent market data cache with per-kind expiry and stale reads."""

import json
import logging
import sqlite3
import time
from collections.abc import Callable, MutableMapping
from typing import Any

import diskcache

from stock_dashboard.utils.normalize import canonical_dumps
from stock_dashboard.utils.validators import CacheKey, DataKind, ttl_for

logger = logging.getLogger(__name__)

CACHE_PREFIX = "fmp_api_"

# Errors a storage backend may raise on read/write (disk full, locked db, ...)
_STORAGE_ERRORS = (OSError, sqlite3.Error)


class MarketCache:
    """
    Key/value cache storing `{"value": ..., "expiry": <epoch-millis>}` as JSON.

    Entries are never deleted on expiry: `get` ignores them, `get_stale`
    still serves them as a fallback when the upstream is failing. All keys
    written here share CACHE_PREFIX so they can be evicted together.

    Storage problems never reach the caller. Reads degrade to a miss,
    writes are dropped.
    """

    def __init__(
        self,
        backend: MutableMapping[str, Any] | None = None,
        clock: Callable[[], float] = time.time,
        prefix: str = CACHE_PREFIX,
    ):
        self._backend = backend if backend is not None else {}
        self._clock = clock
        self._prefix = prefix

    @classmethod
    def on_disk(cls, cache_dir: str, **kwargs: Any) -> "MarketCache":
        """Build a cache persisted in a diskcache directory."""
        return cls(backend=diskcache.Cache(cache_dir), **kwargs)

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def _storage_key(self, key: CacheKey | str) -> str:
        raw = key.to_key() if isinstance(key, CacheKey) else key
        return self._prefix + raw

    def _read_entry(self, key: CacheKey | str) -> dict[str, Any] | None:
        storage_key = self._storage_key(key)
        try:
            raw = self._backend.get(storage_key)
        except _STORAGE_ERRORS as e:
            logger.warning(f"Cache read failed for {storage_key}: {e}")
            return None
        if raw is None:
            return None
        try:
            entry = json.loads(raw)
        except (TypeError, ValueError):
            logger.debug(f"Ignoring corrupt cache entry {storage_key}")
            return None
        if not isinstance(entry, dict) or "value" not in entry or "expiry" not in entry:
            logger.debug(f"Ignoring malformed cache entry {storage_key}")
            return None
        return entry

    def get(self, key: CacheKey | str) -> Any | None:
        """
        Return the cached value if it has not expired.

        Args:
            key: Cache key

        Returns:
            Cached value, or None on miss, expiry or corrupt entry
        """
        entry = self._read_entry(key)
        if entry is None:
            return None
        try:
            expired = self._now_ms() > int(entry["expiry"])
        except (TypeError, ValueError):
            return None
        if expired:
            logger.debug(f"Cache expired: {self._storage_key(key)}")
            return None
        return entry["value"]

    def get_stale(self, key: CacheKey | str) -> Any | None:
        """Return the cached value regardless of expiry (None if never written)."""
        entry = self._read_entry(key)
        if entry is None:
            return None
        return entry["value"]

    def set(self, key: CacheKey | str, value: Any, kind: DataKind | str | None = None) -> None:
        """
        Write a value with expiry = now + TTL[kind].

        On a storage failure every prefixed entry is evicted and the write is
        abandoned.

        Args:
            key: Cache key
            value: JSON-serializable payload
            kind: Data kind; defaults to the kind of a CacheKey
        """
        if kind is None:
            if not isinstance(key, CacheKey):
                raise ValueError("A data kind is required for plain string keys")
            kind = key.kind
        expiry = self._now_ms() + ttl_for(kind) * 1000
        storage_key = self._storage_key(key)
        try:
            payload = canonical_dumps({"value": value, "expiry": expiry})
        except (TypeError, ValueError) as e:
            logger.warning(f"Not caching {storage_key}: value is not JSON serializable ({e})")
            return

        try:
            self._backend[storage_key] = payload
        except _STORAGE_ERRORS as e:
            logger.warning(f"Cache storage full writing {storage_key} ({e}), clearing {self._prefix}* entries")
            self.evict_all()

    def evict_all(self) -> int:
        """Delete every entry written under this cache's prefix. Returns count removed."""
        removed = 0
        try:
            keys = [k for k in list(self._backend) if isinstance(k, str) and k.startswith(self._prefix)]
        except _STORAGE_ERRORS as e:
            logger.warning(f"Cache eviction could not list keys: {e}")
            return 0
        for k in keys:
            try:
                del self._backend[k]
                removed += 1
            except KeyError:
                continue
            except _STORAGE_ERRORS as e:
                logger.warning(f"Cache eviction failed for {k}: {e}")
        return removed

    def exists(self, key: CacheKey | str) -> bool:
        """Check if a key was ever written (fresh or stale)."""
        return self._read_entry(key) is not None
