"""Configuration package for the Trello Slack bot."""

from trellobot.config.settings import (
    Settings,
    get_settings,
    load_settings,
)

__all__ = [
    "Settings",
    "get_settings",
    "load_settings",
]
