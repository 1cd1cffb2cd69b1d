"""Text sanitization utilities."""

import re
from typing import Any

_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f-\x9f]")
_WHITESPACE_RUNS = re.compile(r"\s+")


def sanitize_text(value: Any, max_length: int = 500) -> str | None:
    """
    Sanitize an untrusted upstream text field.

    Non-string values (upstream sometimes sends numbers for names) are
    stringified. Control characters are removed, runs of whitespace
    (including newlines) collapse to one space, and the result is
    truncated to max_length.

    Args:
        value: Raw field value (may be None)
        max_length: Maximum length before truncation

    Returns:
        Sanitized text, or None if input was None or blank
    """
    if value is None:
        return None

    text = _CONTROL_CHARS.sub("", str(value))
    text = _WHITESPACE_RUNS.sub(" ", text).strip()
    if not text:
        return None

    if len(text) > max_length:
        text = text[:max_length].rstrip() + "..."

    return text
