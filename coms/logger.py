"""Colourised console logging to standard output."""

from __future__ import annotations

import logging
import sys
import time

_LOGGER = logging.getLogger("coms")

_LEVEL_TAGS = {
    logging.DEBUG: "\033[36m[DEBUG]\033[0m",
    logging.INFO: "\033[32m[INFO] \033[0m",
    logging.WARNING: "\033[33m[WARN] \033[0m",
    logging.ERROR: "\033[31m[ERROR]\033[0m",
    logging.CRITICAL: "\033[35m[FATAL]\033[0m",
}


class ColorFormatter(logging.Formatter):
    """Tab-separated lines of time, coloured level, caller and message."""

    def formatTime(self, record: logging.LogRecord, datefmt: str | None = None) -> str:
        moment = time.localtime(record.created)
        if datefmt:
            return time.strftime(datefmt, moment)
        hundredths = int((record.created % 1) * 100)
        return f"{time.strftime('%Y/%m/%d-%H:%M:%S', moment)}.{hundredths:02d}"

    def format(self, record: logging.LogRecord) -> str:
        stamp = self.formatTime(record, self.datefmt)
        level = _LEVEL_TAGS.get(record.levelno, "")
        caller = f"{record.filename}:{record.lineno}"
        line = f"{stamp}\t{level}\t{caller}\t{record.getMessage()}"
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


def init() -> logging.Logger:
    """Route the package logger to the current standard output at INFO level."""
    for handler in list(_LOGGER.handlers):
        _LOGGER.removeHandler(handler)
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(ColorFormatter())
    _LOGGER.addHandler(handler)
    _LOGGER.setLevel(logging.INFO)
    _LOGGER.propagate = False
    return _LOGGER


def _logger() -> logging.Logger:
    if not _LOGGER.handlers:
        init()
    return _LOGGER


def infof(fmt: str, *args: object) -> None:
    """Log a printf-style message at INFO level."""
    _logger().info(fmt, *args, stacklevel=2)


def info(msg: str) -> None:
    """Log a plain message at INFO level."""
    _logger().info("%s", msg, stacklevel=2)


def error(err: BaseException | str) -> None:
    """Log the text of an error at ERROR level."""
    _logger().error("%s", err, stacklevel=2)