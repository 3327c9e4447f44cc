"""Slack Events API intake.

Normalizes ``event_callback`` payloads and routes direct messages: an open
username verification session gets first claim on the text, then the
command table.
"""

from __future__ import annotations

from collections import deque
from typing import Any, Deque, Dict, Optional, Set

from trellobot.core.commands import dispatch_command
from trellobot.core.verification_flow import handle_verification_turn
from trellobot.utils.format import safe_get
from trellobot.utils.logger import log_debug
from trellobot.utils.logger import log_error
from trellobot.utils.logger import log_info
from trellobot.utils.logger import log_warn


# Slack retries deliveries it thinks timed out; remember recent event ids.
_SEEN_MAX = 500
_SEEN_ORDER: Deque[str] = deque()
_SEEN: Set[str] = set()


def _already_seen(event_id: Optional[str]) -> bool:
    if not event_id:
        return False
    if event_id in _SEEN:
        return True
    _SEEN.add(event_id)
    _SEEN_ORDER.append(event_id)
    if len(_SEEN_ORDER) > _SEEN_MAX:
        _SEEN.discard(_SEEN_ORDER.popleft())
    return False


def reset_seen_events() -> None:
    _SEEN.clear()
    _SEEN_ORDER.clear()


def extract_direct_message(payload: Dict[str, Any]) -> Optional[Dict[str, str]]:
    """Return ``{user_id, channel, text}`` for a human DM event, else None."""

    event = payload.get("event")
    if not isinstance(event, dict) or event.get("type") != "message":
        return None
    if event.get("channel_type") != "im":
        return None
    # edits, joins, bot echoes and our own messages all carry one of these
    if event.get("subtype") or event.get("bot_id"):
        return None

    user_id = event.get("user")
    channel = event.get("channel")
    if not user_id or not channel:
        return None

    return {"user_id": str(user_id), "channel": str(channel), "text": str(event.get("text") or "")}


async def handle_direct_message(user_id: str, channel: str, text: str) -> None:
    if await handle_verification_turn(user_id, text):
        return
    await dispatch_command(user_id, channel, text)


async def handle_slack_event(payload: Dict[str, Any], request_id: Optional[str] = None) -> None:
    """Handle one Events API ``event_callback`` payload."""

    if not isinstance(payload, dict) or payload.get("type") != "event_callback":
        log_warn("Ignoring non event_callback Slack payload", request_id=request_id)
        return

    event_id = payload.get("event_id")
    if _already_seen(event_id):
        log_info("Dropping duplicate Slack event", request_id=request_id, event_id=event_id)
        return

    message = extract_direct_message(payload)
    if message is None:
        log_debug(
            "Ignoring Slack event that is not a direct message",
            request_id=request_id,
            event_type=safe_get(payload, ["event", "type"]),
        )
        return

    log_info(
        "Incoming direct message",
        user_id=message["user_id"],
        request_id=request_id,
        event_type=safe_get(payload, ["event", "type"]),
    )

    try:
        await handle_direct_message(message["user_id"], message["channel"], message["text"])
    except Exception as exc:  # noqa: BLE001
        log_error(
            "Error while handling direct message",
            user_id=message["user_id"],
            request_id=request_id,
            error=repr(exc),
        )
