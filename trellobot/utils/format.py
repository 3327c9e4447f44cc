"""Formatting helpers for the Trello Slack bot.

Small utilities for reading loosely-shaped API payloads and rendering
Trello timestamps into the text we post to Slack.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from zoneinfo import ZoneInfo


def safe_get(d: Dict[str, Any], path: List[Any], default: Optional[Any] = None) -> Any:
    """Safely traverse a nested dict using a list path.

    Similar to lodash's ``get`` helper. Returns ``default`` if any step in the
    path is missing or not a mapping.
    """

    current: Any = d
    for key in path:
        if not isinstance(current, dict) or key not in current:
            return default
        current = current[key]
    return current


def parse_trello_datetime(value: Any) -> Optional[datetime]:
    """Parse a Trello ISO-8601 timestamp (``2024-03-01T17:00:00.000Z``).

    Returns an aware UTC datetime, or None for empty/unparseable values.
    """

    if not isinstance(value, str) or not value.strip():
        return None

    raw = value.strip()
    if raw.endswith("Z"):
        raw = raw[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(raw)
    except ValueError:
        return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def format_due_date(due: datetime, tz_name: str = "UTC") -> str:
    """Render a due date as ``Mar 1, 2024 @ 5:00pm`` in the given timezone."""

    try:
        local = due.astimezone(ZoneInfo(tz_name))
    except Exception:  # noqa: BLE001
        local = due.astimezone(timezone.utc)

    hour = local.hour % 12 or 12
    meridiem = "am" if local.hour < 12 else "pm"
    return f"{local.strftime('%b')} {local.day}, {local.year} @ {hour}:{local.minute:02d}{meridiem}"


def slack_link(url: str, label: str) -> str:
    """Return Slack mrkdwn link markup."""

    return f"<{url}|{label}>"
