"""Stock dashboard data-access layer."""

import os


def get_server_version() -> str:
    """Get version with fallback for dev mode."""
    if version := os.environ.get("SERVER_VERSION"):
        return version
    try:
        from importlib.metadata import version as pkg_version

        return pkg_version("stock-dashboard")
    except Exception:
        return "dev"


SERVER_VERSION = get_server_version()
# Bump when a view's output structure changes (new, renamed or moved fields)
SCHEMA_VERSION = "1"
