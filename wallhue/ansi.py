"""ANSI styling of terminal output.

Colors are only emitted for TTYs, unless NO_COLOR disables them or
FORCE_COLOR forces them.
"""

import logging
import os
import sys
from enum import StrEnum
from typing import TextIO

__all__ = ["LEVEL_STYLES", "Sgr", "color_enabled", "paint", "sgr_wrap"]


class Sgr(StrEnum):
    """Select Graphic Rendition codes."""

    RESET = "0"
    BOLD = "1"
    DIM = "2"
    RED = "31"
    GREEN = "32"
    YELLOW = "33"


LEVEL_STYLES: dict[int, tuple[Sgr, ...]] = {
    logging.WARNING: (Sgr.YELLOW, Sgr.DIM),
    logging.ERROR: (Sgr.RED, Sgr.DIM),
    logging.CRITICAL: (Sgr.RED, Sgr.BOLD),
}


def color_enabled(stream: TextIO | None = None) -> bool:
    """Tell whether `stream` (stderr by default) should receive colors."""
    if os.environ.get("NO_COLOR"):
        return False
    if os.environ.get("FORCE_COLOR"):
        return True
    target = sys.stderr if stream is None else stream
    isatty = getattr(target, "isatty", None)
    return bool(isatty and isatty())


def sgr_wrap(*codes: Sgr) -> tuple[str, str]:
    """Return the (start, end) escape sequences for `codes`."""
    start = f"\x1b[{';'.join(codes)}m" if codes else ""
    return start, f"\x1b[{Sgr.RESET}m"


def paint(text: str, *codes: Sgr) -> str:
    """Return `text` styled with `codes` (unchanged without codes)."""
    if not codes:
        return text
    start, end = sgr_wrap(*codes)
    return f"{start}{text}{end}"
