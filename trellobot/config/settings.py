"""Runtime settings for the Trello Slack bot.

Everything is read from the process environment (optionally seeded from a
``.env`` file). Missing credentials abort startup.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from functools import lru_cache
from typing import List, Optional

from dotenv import load_dotenv

from trellobot.utils.logger import default_log_level


_TRUTHY = {"1", "true", "yes", "y"}


@dataclass
class Settings:
    slack_bot_token: str
    trello_key: str
    trello_secret: str
    slack_signing_secret: Optional[str] = None
    redis_url: str = "redis://localhost:6379/0"
    redis_users_key: str = "trellobot:users"
    port: int = 3000
    hostname: Optional[str] = None  # public host Trello calls back for webhooks
    debug: bool = False
    debug_users: List[str] = field(default_factory=list)  # Slack names, roster sweep
    debug_user_ids: List[str] = field(default_factory=list)  # Slack ids, late tasks
    timezone: str = "UTC"
    late_tasks_cron: str = "30 10 * * *"
    check_users_cron: str = "30 9 * * mon"
    delivery_interval: float = 1.1
    log_level: str = "INFO"

    @property
    def webhook_callback_url(self) -> Optional[str]:
        if not self.hostname:
            return None
        return f"http://{self.hostname}/trello/webhook"


def _split_env(name: str) -> List[str]:
    raw = os.getenv(name) or ""
    return [part.strip() for part in raw.split(",") if part.strip()]


def _float_env(name: str, default: float) -> float:
    val = os.getenv(name)
    if not val:
        return default
    try:
        return float(val)
    except ValueError:
        return default


def _int_env(name: str, default: int) -> int:
    val = os.getenv(name)
    if not val:
        return default
    try:
        return int(val)
    except ValueError:
        return default


def load_settings() -> Settings:
    """Load settings from environment variables / .env file."""

    load_dotenv()

    slack_bot_token = os.getenv("SLACK_BOT_TOKEN")
    if not slack_bot_token:
        raise RuntimeError("SLACK_BOT_TOKEN must be set in environment or .env file.")

    trello_key = os.getenv("TRELLO_KEY")
    trello_secret = os.getenv("TRELLO_SECRET")
    if not trello_key or not trello_secret:
        raise RuntimeError("TRELLO_KEY and TRELLO_SECRET must be set in environment or .env file.")

    debug = os.getenv("DEBUG", "false").lower() in _TRUTHY

    return Settings(
        slack_bot_token=slack_bot_token,
        trello_key=trello_key,
        trello_secret=trello_secret,
        slack_signing_secret=os.getenv("SLACK_SIGNING_SECRET") or None,
        redis_url=os.getenv("REDIS_URL", "redis://localhost:6379/0"),
        redis_users_key=os.getenv("REDIS_USERS_KEY", "trellobot:users"),
        port=_int_env("PORT", 3000),
        hostname=os.getenv("HOSTNAME") or None,
        debug=debug,
        debug_users=_split_env("DEBUG_USER"),
        debug_user_ids=_split_env("DEBUG_USER_ID"),
        timezone=os.getenv("TIMEZONE", "UTC"),
        late_tasks_cron=os.getenv("LATE_TASKS_CRON", "30 10 * * *"),
        check_users_cron=os.getenv("CHECK_USERS_CRON", "30 9 * * mon"),
        delivery_interval=_float_env("DELIVERY_INTERVAL", 1.1),
        log_level=default_log_level(),
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return the process-wide settings, loading them on first use."""

    return load_settings()
