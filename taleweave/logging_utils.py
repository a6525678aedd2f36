"""Logging utilities for Taleweave sessions.

Provides color-coded console output so rule-driven engine steps, text-generation
calls and warnings are easy to tell apart while a scene is running.
"""

import os
from enum import Enum


class Color(Enum):
    """ANSI color codes for terminal output."""

    # Colors for operation types
    BLUE = "\033[94m"      # Deterministic engine steps (transition, trust map)
    YELLOW = "\033[93m"    # Text-generation calls
    RED = "\033[91m"       # Warnings, errors and retries
    GREEN = "\033[92m"     # Success/completion
    CYAN = "\033[96m"      # Info/metadata

    # Formatting
    BOLD = "\033[1m"
    RESET = "\033[0m"


# Markers for operation types (color-blind accessible)
LOG_TAG_DETERMINISTIC = "[•]"
LOG_TAG_LLM = "[AI]"
LOG_TAG_WARNING = "[?]"
LOG_TAG_ERROR = "[!]"
LOG_TAG_SUCCESS = "[✓]"
LOG_TAG_INFO = "[i]"


def colored(text: str, color: Color, bold: bool = False) -> str:
    """Wrap text in ANSI color codes if colors are enabled.

    Args:
        text: Text to colorize
        color: Color to apply
        bold: Whether to make text bold

    Returns:
        Colorized text if TALEWEAVE_NO_COLOR is not set, otherwise plain text
    """
    if os.getenv("TALEWEAVE_NO_COLOR"):
        return text

    prefix = color.value
    if bold:
        prefix = Color.BOLD.value + prefix

    return f"{prefix}{text}{Color.RESET.value}"


def _quiet() -> bool:
    return bool(os.getenv("TALEWEAVE_QUIET"))


def log_deterministic(message: str) -> None:
    """Log a deterministic engine step (blue)."""
    if _quiet():
        return
    print(colored(f"{LOG_TAG_DETERMINISTIC} {message}", Color.BLUE))


def log_llm(message: str) -> None:
    """Log a text-generation operation (yellow)."""
    print(colored(f"{LOG_TAG_LLM} {message}", Color.YELLOW))


def log_warning(message: str) -> None:
    """Log a recoverable problem such as a missing agent or item (red)."""
    print(colored(f"{LOG_TAG_WARNING} {message}", Color.RED))


def log_error(message: str) -> None:
    """Log an error or retry (red, bold)."""
    print(colored(f"{LOG_TAG_ERROR} {message}", Color.RED, bold=True))


def log_success(message: str) -> None:
    """Log a success (green)."""
    print(colored(f"{LOG_TAG_SUCCESS} {message}", Color.GREEN))


def log_info(message: str) -> None:
    """Log metadata/info (cyan)."""
    if _quiet():
        return
    print(colored(f"{LOG_TAG_INFO} {message}", Color.CYAN))


__all__ = [
    "Color",
    "colored",
    "log_deterministic",
    "log_llm",
    "log_warning",
    "log_error",
    "log_success",
    "log_info",
    "LOG_TAG_DETERMINISTIC",
    "LOG_TAG_LLM",
    "LOG_TAG_WARNING",
    "LOG_TAG_ERROR",
    "LOG_TAG_SUCCESS",
    "LOG_TAG_INFO",
]
