"""
Logging setup for carematch.

Modules log through `logging.getLogger(__name__)`, or through `get_logger`
when every line should carry the same identifiers (booking, account, ...).
"""

import logging
import sys
from typing import Any

ROOT_LOGGER = "carematch"
LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class ContextLoggerAdapter(logging.LoggerAdapter):
    """Appends `key=value` context pairs to every message."""

    def process(self, msg: Any, kwargs: Any) -> tuple[Any, Any]:
        context = " ".join(
            f"{key}={value}"
            for key, value in (self.extra or {}).items()
            if value is not None
        )
        if context:
            msg = f"{msg} | {context}"
        return msg, kwargs


def configure_logging(level: str = "INFO") -> logging.Logger:
    """Install a single stdout handler on the package logger."""
    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT))
    logger.addHandler(handler)
    return logger


def get_logger(name: str, **context: Any) -> ContextLoggerAdapter:
    return ContextLoggerAdapter(logging.getLogger(name), context)
