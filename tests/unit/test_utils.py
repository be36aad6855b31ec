"""Unit tests for utils module."""

from chatbridge.utils import (
    clean_capture,
    collapse_whitespace,
    expand_env_vars,
    format_cost,
    format_token_count,
    max_message_chars,
    split_for_platform,
    split_message,
    strip_ansi_codes,
    truncate,
)


class TestExpandEnvVars:
    """Tests for expand_env_vars() function."""

    def test_expand_simple_env_var(self, monkeypatch):
        monkeypatch.setenv("CHATBRIDGE_TEST_VAR", "test_value")

        assert expand_env_vars("Hello ${CHATBRIDGE_TEST_VAR}!") == "Hello test_value!"

    def test_expand_nonexistent_env_var(self):
        """Unknown variables are kept as-is."""
        assert expand_env_vars("Hello ${CHATBRIDGE_NONEXISTENT}!") == "Hello ${CHATBRIDGE_NONEXISTENT}!"

    def test_expand_nested_config(self, monkeypatch):
        monkeypatch.setenv("CHATBRIDGE_TEST_HOME", "/home/test")

        result = expand_env_vars({"projects": {"app": {"path": "${CHATBRIDGE_TEST_HOME}/app", "instances": [1]}}})

        assert result == {"projects": {"app": {"path": "/home/test/app", "instances": [1]}}}


class TestTerminalText:
    def test_strip_ansi_codes(self):
        assert strip_ansi_codes("\x1b[1;32mok\x1b[0m \x1b]0;title\x07done") == "ok done"

    def test_clean_capture_normalizes_line_endings(self):
        assert clean_capture("\x1b[2Kline one  \r\nline two\r\n\n\n") == "line one\nline two"

    def test_collapse_whitespace(self):
        assert collapse_whitespace("  fix   the\n\tbug ") == "fix the bug"

    def test_truncate(self):
        assert truncate("short", 10) == "short"
        assert truncate("abcdefghij", 5) == "abcd…"


class TestFormatting:
    def test_format_token_count(self):
        assert format_token_count(8234) == "8,234"
        assert format_token_count(12) == "12"

    def test_format_cost(self):
        assert format_cost(0.0312) == "$0.03"
        assert format_cost(1.5) == "$1.50"


class TestSplitMessage:
    def test_short_text_is_one_chunk(self):
        assert split_message("hello", 10) == ["hello"]

    def test_blank_text_yields_nothing(self):
        assert split_message("   ", 10) == []

    def test_splits_on_line_boundaries(self):
        assert split_message("aaaa\nbbbb\ncccc", 9) == ["aaaa\nbbbb", "cccc"]

    def test_hard_wraps_long_line(self):
        chunks = split_message("x" * 25, 10)

        assert chunks == ["x" * 10, "x" * 10, "x" * 5]

    def test_chunks_respect_limit(self):
        text = "\n".join(f"line {index}" for index in range(200))

        chunks = split_message(text, 100)

        assert all(len(chunk) <= 100 for chunk in chunks)
        assert "\n".join(chunks) == text

    def test_platform_limits(self):
        assert max_message_chars("discord") == 1900
        assert max_message_chars("slack") == 3900
        assert max_message_chars("irc") == 1900
        assert len(split_for_platform("y" * 2000, "discord")) == 2
