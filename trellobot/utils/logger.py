"""Logging utilities for the Trello Slack bot.

Logging is configured once for the process. The level comes from
``LOG_LEVEL`` and falls back to DEBUG when ``DEBUG`` is on, INFO otherwise;
the app re-applies the loaded settings' level at startup.

Event helpers (``log_info`` and friends) write one JSON object per record so
lines can be grepped by ``user_id`` or ``request_id``.
"""

import json
import logging
import os
import uuid
from typing import Any, Dict, Optional

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
EVENTS_LOGGER = "trellobot.events"

_TRUTHY = {"1", "true", "yes", "y"}


def default_log_level() -> str:
    explicit = os.getenv("LOG_LEVEL")
    if explicit:
        return explicit.strip().upper()
    if os.getenv("DEBUG", "false").lower() in _TRUTHY:
        return "DEBUG"
    return "INFO"


def configure_logging(level: Optional[str] = None) -> None:
    """Install the console handler (once) and set the root level."""

    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(format=LOG_FORMAT)
    root.setLevel((level or default_log_level()).upper())


def get_logger(name: Optional[str] = None) -> logging.Logger:
    if not logging.getLogger().handlers:
        configure_logging()
    return logging.getLogger(name or "trellobot")


def generate_request_id() -> str:
    """Generate a unique request identifier for correlating logs."""

    return str(uuid.uuid4())


def _emit(
    level: int,
    msg: str,
    user_id: Optional[str],
    request_id: Optional[str],
    extra: Dict[str, Any],
) -> None:
    logger = get_logger(EVENTS_LOGGER)
    if not logger.isEnabledFor(level):
        return

    record: Dict[str, Any] = {"message": f"[TRELLOBOT] {msg}"}
    for key, value in (("user_id", user_id), ("request_id", request_id)):
        if value is not None:
            record[key] = value
    if extra:
        record["extra"] = extra
    logger.log(level, json.dumps(record, default=str))


def log_debug(msg: str, user_id: Optional[str] = None, request_id: Optional[str] = None, **extra: Any) -> None:
    _emit(logging.DEBUG, msg, user_id, request_id, extra)


def log_info(msg: str, user_id: Optional[str] = None, request_id: Optional[str] = None, **extra: Any) -> None:
    _emit(logging.INFO, msg, user_id, request_id, extra)


def log_warn(msg: str, user_id: Optional[str] = None, request_id: Optional[str] = None, **extra: Any) -> None:
    _emit(logging.WARNING, msg, user_id, request_id, extra)


def log_error(msg: str, user_id: Optional[str] = None, request_id: Optional[str] = None, **extra: Any) -> None:
    _emit(logging.ERROR, msg, user_id, request_id, extra)
