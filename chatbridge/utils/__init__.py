"""Utility functions for chatbridge."""

import os
import re

from chatbridge.constants import DEFAULT_MESSAGE_MAX_CHARS, MESSAGE_MAX_CHARS

_ANSI_PATTERN = re.compile(
    r"\x1b"  # ESC
    r"(?:"
    r"\[[0-9;?]*[a-zA-Z]"  # CSI sequences (ESC[...m, ESC[...H, ESC[?25l, etc.)
    r"|"
    r"\][^\x07\x1b]*(?:\x07|\x1b\\)"  # OSC sequences (ESC]...BEL or ESC]...ST)
    r"|"
    r"[=>]"  # Simple sequences (ESC=, ESC>)
    r")"
)
_WHITESPACE_RE = re.compile(r"\s+")


def expand_env_vars(config: object) -> object:
    """Recursively expand environment variables in config.

    Replaces ${VAR} patterns with environment variable values.

    Args:
        config: Configuration object (dict, list, str, or primitive)

    Returns:
        Configuration with all ${VAR} patterns replaced
    """
    if isinstance(config, dict):
        return {k: expand_env_vars(v) for k, v in config.items()}  # type: ignore[misc]
    if isinstance(config, list):
        return [expand_env_vars(item) for item in config]
    if isinstance(config, str):

        def replace_env_var(match: re.Match[str]) -> str:
            env_var = match.group(1)
            return os.getenv(env_var, match.group(0))

        return re.sub(r"\$\{([^}]+)\}", replace_env_var, config)
    return config


def strip_ansi_codes(text: str) -> str:
    """Strip ANSI escape codes from text.

    Args:
        text: Text with ANSI escape codes

    Returns:
        Text with ANSI codes removed
    """
    return _ANSI_PATTERN.sub("", text)


def clean_capture(text: str) -> str:
    """Normalize a raw terminal capture: no ANSI codes, no CRs, no trailing blank lines."""
    cleaned = strip_ansi_codes(text).replace("\r\n", "\n").replace("\r", "")
    lines = [line.rstrip() for line in cleaned.split("\n")]
    while lines and not lines[-1].strip():
        lines.pop()
    return "\n".join(lines)


def collapse_whitespace(text: str) -> str:
    """Collapse runs of whitespace to single spaces and trim."""
    return _WHITESPACE_RE.sub(" ", text).strip()


def truncate(text: str, max_chars: int, ellipsis: str = "…") -> str:
    """Clip text to max_chars, replacing the last char with an ellipsis when clipped."""
    if len(text) <= max_chars:
        return text
    return text[: max_chars - len(ellipsis)] + ellipsis


def format_token_count(count: int) -> str:
    """Format a token count with thousands separators (8234 -> "8,234")."""
    return f"{count:,}"


def format_cost(cost_usd: float) -> str:
    """Format a USD cost with two decimals ("$0.03")."""
    return f"${cost_usd:.2f}"


def max_message_chars(platform: str) -> int:
    """Message length ceiling for a chat platform."""
    return MESSAGE_MAX_CHARS.get(platform, DEFAULT_MESSAGE_MAX_CHARS)


def split_message(text: str, max_chars: int) -> list[str]:
    """Split text into chunks no longer than max_chars.

    Splits on line boundaries where possible; a single line longer than the
    limit is hard-wrapped. Empty chunks are dropped.

    Args:
        text: Text to split
        max_chars: Maximum characters per chunk

    Returns:
        Ordered list of chunks
    """
    if len(text) <= max_chars:
        return [text] if text.strip() else []

    chunks: list[str] = []
    current = ""
    for line in text.split("\n"):
        while len(line) > max_chars:
            if current:
                chunks.append(current)
                current = ""
            chunks.append(line[:max_chars])
            line = line[max_chars:]

        candidate = f"{current}\n{line}" if current else line
        if len(candidate) > max_chars:
            chunks.append(current)
            current = line
        else:
            current = candidate

    if current:
        chunks.append(current)
    return [chunk for chunk in chunks if chunk.strip()]


def split_for_platform(text: str, platform: str) -> list[str]:
    """Split text using the platform's message length policy."""
    return split_message(text, max_message_chars(platform))
