"""Tests for text sanitization."""

import pytest

from stock_dashboard.utils.sanitize import sanitize_text


class TestSanitizeText:
    """Tests for sanitize_text function."""

    def test_sanitize_none(self) -> None:
        assert sanitize_text(None) is None

    def test_sanitize_basic(self) -> None:
        assert sanitize_text("Apple Inc.") == "Apple Inc."

    def test_sanitize_strips_whitespace(self) -> None:
        assert sanitize_text("  Apple Inc.  ") == "Apple Inc."

    def test_sanitize_removes_control_chars(self) -> None:
        """Test control characters are removed."""
        assert sanitize_text("Hello\x00World\x1f!") == "HelloWorld!"
        assert sanitize_text("Hello\x7fWorld\x9f!") == "HelloWorld!"

    def test_sanitize_collapses_line_breaks(self) -> None:
        """Test newlines and carriage returns collapse into single spaces."""
        assert sanitize_text("Record\r\nquarter\n\n  results") == "Record quarter results"

    def test_sanitize_truncates_long_text(self) -> None:
        """Test long headlines are truncated with an ellipsis."""
        result = sanitize_text("x" * 400, max_length=300)
        assert result == "x" * 300 + "..."

    def test_sanitize_exact_length_untouched(self) -> None:
        assert sanitize_text("abc", max_length=3) == "abc"

    @pytest.mark.parametrize("value", ["", "   ", "\x00\x01", "\n\t"])
    def test_sanitize_blank_is_none(self, value: str) -> None:
        assert sanitize_text(value) is None

    def test_sanitize_non_string(self) -> None:
        """Test numeric names from upstream are stringified."""
        assert sanitize_text(3333) == "3333"
