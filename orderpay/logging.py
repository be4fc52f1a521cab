"""
Logging setup shared by every orderpay module.

    from orderpay.logging import get_logger
    logger = get_logger(__name__)

The root logger gets one stdout handler the first time this module is
imported. LOG_LEVEL picks the level (INFO by default); ENVIRONMENT=production
drops the timestamp because the platform's collector adds its own.
"""
import logging
import os
import sys
from functools import cache

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_FORMAT_SIMPLE = "%(levelname)s - %(name)s - %(message)s"

# Libraries that log every HTTP request at INFO
QUIET_LOGGERS = ("httpx", "httpcore", "aiogram.event")

_CONTROL_CHARS = {"\n": "\\n", "\r": "\\r", "\t": "\\t", "\x00": ""}


def _level_from_env() -> int:
    return getattr(logging, os.environ.get("LOG_LEVEL", "INFO").upper(), logging.INFO)


def _configure_root_logger() -> None:
    root = logging.getLogger()
    if root.handlers:
        return

    level = _level_from_env()
    production = os.environ.get("ENVIRONMENT", "").lower() == "production"

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(LOG_FORMAT_SIMPLE if production else LOG_FORMAT))

    root.setLevel(level)
    root.addHandler(handler)
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


_configure_root_logger()


@cache
def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def _strip_control_chars(value: str) -> str:
    """CWE-117: a callback field must not be able to start a new log line."""
    for char, replacement in _CONTROL_CHARS.items():
        value = value.replace(char, replacement)
    return value


def sanitize_id_for_logging(id_value: str | int | None, max_length: int = 16) -> str:
    """
    Loggable form of an identifier read from an inbound gateway message.

    Callback fields are attacker-controlled until the signature checks
    out, so order numbers and transaction ids are escaped and truncated.
    """
    if id_value is None or id_value == "":
        return "N/A"
    return _strip_control_chars(str(id_value))[:max_length]


def sanitize_string_for_logging(value: str | None, max_length: int = 50) -> str:
    """Loggable form of free text such as a gateway error message."""
    if not value:
        return "N/A"
    safe_value = _strip_control_chars(str(value))
    if len(safe_value) <= max_length:
        return safe_value
    return safe_value[:max_length] + "..."


__all__ = [
    "LOG_FORMAT",
    "LOG_FORMAT_SIMPLE",
    "get_logger",
    "sanitize_id_for_logging",
    "sanitize_string_for_logging",
]
