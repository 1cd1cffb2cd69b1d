"""Response metadata and provenance blocks."""

from datetime import datetime, timezone
from typing import Any

from stock_dashboard import SCHEMA_VERSION, SERVER_VERSION


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def build_meta(view: str, duration_ms: float | None = None) -> dict[str, Any]:
    """
    Build standard metadata block for responses.

    Args:
        view: Name of the view or tool producing this response
        duration_ms: Execution time in milliseconds (optional)

    Returns:
        Metadata dict with version info
    """
    meta: dict[str, Any] = {
        "server_version": SERVER_VERSION,
        "schema_version": SCHEMA_VERSION,
        "view": view,
    }
    if duration_ms is not None:
        meta["duration_ms"] = round(duration_ms, 1)
    return meta


def build_provenance(live: bool, **kwargs: Any) -> dict[str, Any]:
    """
    Build data provenance block for market data.

    Args:
        live: Whether a market-data credential is configured. Offline
            responses are entirely synthetic.
        **kwargs: Additional provenance fields

    Returns:
        Provenance dict
    """
    prov: dict[str, Any] = {
        "source": "fmp" if live else "mock",
        "as_of": _utc_now(),
    }
    prov.update(kwargs)
    if not live:
        prov.setdefault("warnings", []).append("No market data credential configured; showing synthetic data")
    prov.setdefault("warnings", [])
    return prov


def build_error_response(
    error_type: str,
    message: str,
    symbol: str | None = None,
) -> dict[str, Any]:
    """
    Build standardized error response.

    Args:
        error_type: Type of error (invalid_parameters, backend_unavailable, backend_error)
        message: Human-readable error message
        symbol: Symbol that caused the error (if applicable)

    Returns:
        Error response dict
    """
    response: dict[str, Any] = {
        "error": True,
        "error_type": error_type,
        "message": message,
        "meta": build_meta("error"),
    }

    if symbol is not None:
        response["symbol"] = symbol

    return response
