"""Logging setup.

`init_logger` builds the handlers once (stream, plus an optional file);
`get_logger` hands out non-propagating loggers sharing them.
"""

import logging

from .ansi import LEVEL_STYLES, color_enabled, sgr_wrap
from .debug import DEBUG

__all__ = ["LogObjects", "ScreenLogFormatter", "get_logger", "init_logger"]

FILE_FORMAT = r"%(asctime)s [%(levelname)s] %(name)s :: %(message)s :: %(filename)s:%(lineno)d"
DEBUG_SCREEN_FORMAT = r"%(name)22s - %(message)s // %(filename)s:%(lineno)d"
SCREEN_FORMAT = r"%(message)s"


class LogObjects:
    """Handlers shared by every wallhue logger."""

    handlers: list[logging.Handler] = []


class ScreenLogFormatter(logging.Formatter):
    """Terminal formatter: plain for info and debug, styled from warnings up."""

    def __init__(self) -> None:
        super().__init__()
        base = DEBUG_SCREEN_FORMAT if DEBUG else SCREEN_FORMAT
        use_color = color_enabled()
        self._plain = logging.Formatter(base)
        self._styled: dict[int, logging.Formatter] = {}
        for level, codes in LEVEL_STYLES.items():
            start, end = sgr_wrap(*codes) if use_color else ("", "")
            self._styled[level] = logging.Formatter(f"{start}{base}{end}")

    def format(self, record: logging.LogRecord) -> str:
        return self._styled.get(record.levelno, self._plain).format(record)


def init_logger(filename: str | None = None, force_debug: bool = False) -> None:
    """(Re)build the shared handlers.

    Args:
        filename: Also log to this file
        force_debug: Turn debug logging on regardless of WALLHUE_DEBUG
    """
    if force_debug:
        DEBUG.enabled = True

    LogObjects.handlers.clear()
    if filename:
        file_handler = logging.FileHandler(filename)
        file_handler.setFormatter(logging.Formatter(fmt=FILE_FORMAT))
        LogObjects.handlers.append(file_handler)
    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(ScreenLogFormatter())
    LogObjects.handlers.append(stream_handler)


def get_logger(name: str = "wallhue", level: int | None = None) -> logging.Logger:
    """Return a named logger wired to the shared handlers.

    Args:
        name: Logger name, `wallhue.<component>` by convention
        level: Explicit level; DEBUG in debug mode, WARNING otherwise
    """
    logger = logging.getLogger(name)
    if level is None:
        level = logging.DEBUG if DEBUG else logging.WARNING
    logger.setLevel(level)
    logger.propagate = False
    for handler in LogObjects.handlers:
        if handler not in logger.handlers:
            logger.addHandler(handler)
    return logger
