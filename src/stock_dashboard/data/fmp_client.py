"""Async Financial Modeling Prep client with bounded concurrency and retry logic."""

import asyncio
import logging
import random
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum
from typing import Any

import requests
from requests.exceptions import ConnectionError, HTTPError, Timeout

logger = logging.getLogger(__name__)

FMP_BASE_URL = "https://financialmodelingprep.com/stable"

# Upstream error payloads look like {"Error Message": "..."}
_ERROR_FIELDS = ("Error Message", "error")


class FetchStatus(str, Enum):
    OK = "ok"
    EMPTY = "empty"
    FAILURE = "failure"


@dataclass(frozen=True)
class FetchResult:
    """
    Outcome of one upstream request.

    `ok` carries a non-empty list of records. `empty` is a well-formed
    response with no records. `failure` covers transport errors, non-2xx
    responses, malformed bodies and explicit upstream error messages.
    """

    status: FetchStatus
    data: list[dict[str, Any]] | None = None
    reason: str | None = None

    @classmethod
    def ok(cls, data: list[dict[str, Any]]) -> "FetchResult":
        return cls(FetchStatus.OK, data=data)

    @classmethod
    def empty(cls) -> "FetchResult":
        return cls(FetchStatus.EMPTY, reason="NO_DATA")

    @classmethod
    def failure(cls, reason: str) -> "FetchResult":
        return cls(FetchStatus.FAILURE, reason=reason)

    @property
    def is_ok(self) -> bool:
        return self.status is FetchStatus.OK


class FMPRequestError(Exception):
    """Raised when an upstream request fails after all retries."""

    def __init__(self, message: str, last_error: Exception | None = None):
        super().__init__(message)
        self.last_error = last_error


def classify_payload(payload: Any) -> FetchResult:
    """
    Map a decoded JSON body onto a FetchResult.

    A bare non-error object is treated as a one-record list.
    """
    if isinstance(payload, dict):
        for field in _ERROR_FIELDS:
            if payload.get(field):
                return FetchResult.failure(str(payload[field]))
        if not payload:
            return FetchResult.empty()
        return FetchResult.ok([payload])
    if isinstance(payload, list):
        if not payload:
            return FetchResult.empty()
        records = [item for item in payload if isinstance(item, dict)]
        if not records:
            return FetchResult.failure("Malformed payload: no records")
        return FetchResult.ok(records)
    return FetchResult.failure(f"Malformed payload: {type(payload).__name__}")


def _is_retryable_error(error: Exception) -> bool:
    """Rate limits, server errors and connection problems are transient."""
    if isinstance(error, HTTPError) and error.response is not None:
        status_code = error.response.status_code
        return status_code == 429 or 500 <= status_code < 600
    if isinstance(error, (ConnectionError, Timeout)):
        return True
    error_str = str(error).lower()
    return any(p in error_str for p in ("rate limit", "too many requests", "timeout", "temporary"))


class FMPClient:
    """
    Thin async wrapper over the FMP REST API.

    Requests run on a small thread pool so the event loop never blocks;
    a semaphore bounds how many are in flight at once.
    """

    def __init__(
        self,
        api_key: str,
        base_url: str = FMP_BASE_URL,
        timeout: float = 10.0,
        max_retries: int = 1,
        base_delay: float = 1.0,
        max_delay: float = 30.0,
        max_workers: int = 4,
        session: requests.Session | None = None,
    ):
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._max_retries = max_retries
        self._base_delay = base_delay
        self._max_delay = max_delay
        self._session = session or requests.Session()
        self._executor = ThreadPoolExecutor(max_workers=max_workers)
        self._semaphore = asyncio.Semaphore(max_workers)

    def _calculate_backoff(self, attempt: int) -> float:
        """Exponential backoff with +/-25% jitter, capped at max_delay."""
        delay = self._base_delay * (2**attempt)
        jitter = delay * 0.25 * (2 * random.random() - 1)
        return min(delay + jitter, self._max_delay)

    def _get_json(self, endpoint: str, params: dict[str, Any]) -> Any:
        url = f"{self._base_url}/{endpoint.lstrip('/')}"
        response = self._session.get(
            url,
            params={**params, "apikey": self._api_key},
            timeout=self._timeout,
        )
        response.raise_for_status()
        return response.json()

    async def _get_with_retry(self, endpoint: str, params: dict[str, Any]) -> Any:
        """
        Execute a GET with retry on transient errors.

        Raises:
            FMPRequestError: On a non-retryable error or when retries run out
        """
        operation = f"{endpoint}({params.get('symbol') or params.get('symbols') or params.get('query') or ''})"
        last_error: Exception | None = None

        for attempt in range(self._max_retries + 1):
            try:
                loop = asyncio.get_running_loop()
                return await loop.run_in_executor(self._executor, self._get_json, endpoint, params)
            except (requests.RequestException, ValueError) as e:
                last_error = e
                if not _is_retryable_error(e) or attempt >= self._max_retries:
                    raise FMPRequestError(
                        f"{operation} failed after {attempt + 1} attempts: {e}",
                        last_error=e,
                    ) from e
                delay = self._calculate_backoff(attempt)
                logger.info(f"{operation}: Attempt {attempt + 1} failed ({e}). Retrying in {delay:.1f}s...")
                await asyncio.sleep(delay)

        raise FMPRequestError(f"{operation} failed", last_error=last_error)

    async def get(self, endpoint: str, **params: Any) -> FetchResult:
        """
        Fetch an endpoint and classify the outcome. Never raises for upstream problems.

        Args:
            endpoint: Path below the base URL (e.g. "quote", "historical-price-eod/full")
            **params: Query parameters (apikey is added automatically)

        Returns:
            FetchResult
        """
        async with self._semaphore:
            try:
                payload = await self._get_with_retry(endpoint, params)
            except FMPRequestError as e:
                return FetchResult.failure(str(e))
        return classify_payload(payload)

    def close(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)
        self._session.close()
