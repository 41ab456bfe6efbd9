"""
Logging for the pricecart package.

Every module logs through `get_logger(__name__)`, so all records land under
the "pricecart" logger. A console handler is attached to that logger only
when the host application has not configured logging itself.

Usage:
    from pricecart.logging import get_logger
    logger = get_logger(__name__)

    logger.info(f"Added {product_id} to cart {scope}")
    logger.warning("Cart read failed", exc_info=True)
"""

import logging
import os
import sys
from functools import cache

PACKAGE_LOGGER = "pricecart"

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_FORMAT_SIMPLE = "%(levelname)s - %(name)s - %(message)s"

# Transport loggers of the Upstash REST client
QUIET_LOGGERS = ("httpx", "httpcore", "upstash_redis")


def _get_log_level() -> int:
    """PRICECART_LOG_LEVEL, then LOG_LEVEL, then INFO."""
    level_name = os.environ.get("PRICECART_LOG_LEVEL") or os.environ.get("LOG_LEVEL", "INFO")
    return getattr(logging, level_name.upper(), logging.INFO)


def _configure_package_logger() -> None:
    package_logger = logging.getLogger(PACKAGE_LOGGER)
    package_logger.setLevel(_get_log_level())

    if package_logger.handlers or logging.getLogger().handlers:
        return

    handler = logging.StreamHandler(sys.stdout)
    is_production = os.environ.get("PRICECART_ENV") == "production"
    handler.setFormatter(logging.Formatter(LOG_FORMAT_SIMPLE if is_production else LOG_FORMAT))
    package_logger.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


_configure_package_logger()


@cache
def get_logger(name: str) -> logging.Logger:
    """
    Get the logger for a pricecart module.

    Args:
        name: Module name (typically __name__)

    Returns:
        Logger under the package logger
    """
    return logging.getLogger(name)


def _escape_log_injection(value: str) -> str:
    """Escape characters that could inject fake log entries (CWE-117)."""
    return (
        value.replace("\n", "\\n")
        .replace("\r", "\\r")
        .replace("\t", "\\t")
        .replace("\x00", "")
    )


def sanitize_id_for_logging(id_value: str | None, keep: int = 8) -> str:
    """
    Shorten a user id or cart identifier before it is logged.

    Session ids and `user_<id>` identifiers are client-controlled, so only
    an escaped prefix is written.

    Args:
        id_value: Identifier to log (can be None)
        keep: Number of characters to keep

    Returns:
        Escaped prefix, or "N/A" when empty
    """
    if not id_value:
        return "N/A"
    return _escape_log_injection(str(id_value))[:keep]


__all__ = [
    "LOG_FORMAT",
    "LOG_FORMAT_SIMPLE",
    "PACKAGE_LOGGER",
    "get_logger",
    "sanitize_id_for_logging",
]
