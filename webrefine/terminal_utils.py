"""
Terminal helpers for the progress display and the single-page spinner.

Provides:
- Detection of terminal size and emoji support
- Display symbols with ASCII fallbacks
- Duration, ETA and URL formatting
"""

import locale
import logging
import os
import sys
from dataclasses import dataclass
from typing import Mapping, Optional, Tuple
from urllib.parse import urlparse

# DO NOT hardcode terminal values here - add new constants to config.py
from webrefine.config import (
    DEFAULT_TERMINAL_HEIGHT,
    DEFAULT_TERMINAL_WIDTH,
    URL_TRUNCATE_MAX_LENGTH,
)

logger = logging.getLogger(__name__)

# TERM_PROGRAM values of terminals known to render emoji
_EMOJI_TERMINALS: Tuple[str, ...] = (
    "iterm",
    "kitty",
    "wezterm",
    "vscode",
    "apple_terminal",
)


@dataclass
class TerminalCapabilities:
    """What the attached terminal can show"""

    width: int = DEFAULT_TERMINAL_WIDTH
    height: int = DEFAULT_TERMINAL_HEIGHT
    unicode: bool = True
    emoji: bool = True


class Symbols:
    """
    (emoji, ascii) pairs for job stages and panel decorations.

    Symbols.get() picks the variant matching the detected terminal.
    """

    IDLE = ("⏳", "[..]")
    PROCESSING = ("🔄", "[~~]")
    COMPLETE = ("✅", "[OK]")
    FAILED = ("❌", "[X!]")
    EXTRACTING = ("🌐", "[WEB]")
    TRANSFORMING = ("✨", "[TRF]")

    BAR_FILLED = ("█", "#")
    BAR_EMPTY = ("░", "-")

    CHART = ("📊", "[=]")
    FILE = ("📄", "[F]")
    WARNING = ("⚠️", "[!]")

    _use_ascii: bool = False

    @classmethod
    def set_ascii_mode(cls, use_ascii: bool) -> None:
        cls._use_ascii = use_ascii

    @classmethod
    def get(cls, pair: Tuple[str, str]) -> str:
        emoji, ascii_text = pair
        return ascii_text if cls._use_ascii else emoji

    @classmethod
    def make_progress_bar(cls, percent: float, width: int = 30) -> str:
        """Fixed-width bar; percent is clamped to 0-100."""
        filled = round(max(0.0, min(100.0, percent)) / 100 * width)
        return cls.get(cls.BAR_FILLED) * filled + cls.get(cls.BAR_EMPTY) * (width - filled)


def _encoding_is_utf8() -> bool:
    candidates = [
        getattr(sys.stdout, "encoding", None),
        os.environ.get("LC_ALL"),
        os.environ.get("LANG"),
    ]
    try:
        candidates.append(locale.getpreferredencoding(False))
    except Exception as e:
        logger.debug(f"Could not read preferred encoding: {e}")
    return any(value and "utf" in value.lower() for value in candidates)


def _emoji_likely(env: Mapping[str, str]) -> bool:
    """Heuristic: there is no reliable way to ask a terminal about emoji."""
    if any(name in env.get("TERM_PROGRAM", "").lower() for name in _EMOJI_TERMINALS):
        return True
    if env.get("WT_SESSION"):
        return True
    if env.get("SSH_CLIENT") or env.get("SSH_TTY"):
        return False
    return env.get("TERM", "").lower() != "dumb"


def detect_terminal_capabilities() -> TerminalCapabilities:
    """
    Inspect the current terminal and switch Symbols to ASCII when needed.

    Returns:
        TerminalCapabilities; size falls back to the configured defaults
        when stdout is not a terminal
    """
    caps = TerminalCapabilities()
    try:
        caps.width, caps.height = os.get_terminal_size()
    except OSError:
        pass

    caps.unicode = _encoding_is_utf8()
    caps.emoji = caps.unicode and _emoji_likely(os.environ)
    Symbols.set_ascii_mode(not caps.emoji)

    logger.debug(
        f"Terminal: {caps.width}x{caps.height}, unicode={caps.unicode}, emoji={caps.emoji}"
    )
    return caps


def format_duration(seconds: float) -> str:
    """
    "45.0s", "1m 30s" or "2h 15m".

    Raises:
        ValueError: If seconds is negative
    """
    if seconds < 0:
        raise ValueError(f"format_duration received negative seconds={seconds}")
    if seconds < 60:
        return f"{seconds:.1f}s"
    minutes, secs = divmod(int(seconds), 60)
    if minutes < 60:
        return f"{minutes}m {secs}s"
    hours, minutes = divmod(minutes, 60)
    return f"{hours}h {minutes}m"


def calculate_eta(completed: int, total: int, elapsed_seconds: float) -> Optional[float]:
    """
    Seconds left, assuming the remaining jobs take the average time so far.

    Returns None before the first job finishes and once all are done.
    """
    if elapsed_seconds < 0:
        raise ValueError(f"calculate_eta received negative elapsed_seconds={elapsed_seconds}")
    if completed <= 0 or completed >= total:
        return None
    return elapsed_seconds / completed * (total - completed)


def truncate_url(url: str, max_length: int = URL_TRUNCATE_MAX_LENGTH) -> str:
    """
    Shorten a URL for a table cell, keeping the host and the end of the path.

    e.g. "https://example.com...ucts/blue-widget.html"
    """
    if len(url) <= max_length:
        return url

    parsed = urlparse(url)
    head = f"{parsed.scheme}://{parsed.netloc}" if parsed.netloc else ""
    tail_room = max_length - len(head) - 3
    # Host alone is too long to leave any path visible
    if not head or tail_room < 8:
        return url[: max_length - 3] + "..."
    return head + "..." + url[-tail_room:]
