"""Console logging setup for the rpvakit entry points.

Library modules only ever call ``logging.getLogger("rpvakit")``; the CLI
and the web server call :func:`configure_logging` once to attach a
colored console handler.  ``SUCCESS`` sits between INFO and WARNING and
marks completed conversions.
"""

from __future__ import annotations

import logging
import sys

SUCCESS = 25
logging.addLevelName(SUCCESS, "SUCCESS")

_RESET = "\x1b[0m"
_STYLES = {
    logging.DEBUG: ("\x1b[34m", "·"),
    logging.INFO: ("\x1b[36m", "ℹ"),
    SUCCESS: ("\x1b[32m", "✓"),
    logging.WARNING: ("\x1b[33m", "⚠"),
    logging.ERROR: ("\x1b[31m", "✗"),
    logging.CRITICAL: ("\x1b[1m\x1b[31m", "✗"),
}


class ColorFormatter(logging.Formatter):
    """Prefix each line with a level symbol, colored when *use_color*."""

    def __init__(self, use_color: bool = True) -> None:
        super().__init__("%(message)s")
        self.use_color = use_color

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        color, symbol = _STYLES.get(record.levelno, ("", "-"))
        if not self.use_color:
            return f"{symbol} {message}"
        return f"{color}{symbol} {message}{_RESET}"


def configure_logging(level: int = logging.INFO, stream=None) -> logging.Logger:
    """Attach a single colored console handler to the ``rpvakit`` logger."""
    stream = stream if stream is not None else sys.stderr
    logger = logging.getLogger("rpvakit")
    for handler in list(logger.handlers):
        if getattr(handler, "_rpvakit_console", False):
            logger.removeHandler(handler)

    handler = logging.StreamHandler(stream)
    handler.setFormatter(ColorFormatter(use_color=hasattr(stream, "isatty") and stream.isatty()))
    handler._rpvakit_console = True  # type: ignore[attr-defined]
    logger.addHandler(handler)
    logger.setLevel(level)
    return logger
