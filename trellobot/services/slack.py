"""Slack service integration for the Trello Slack bot.

Thin async wrapper over ``slack_sdk``'s ``AsyncWebClient`` for the handful of
Web API calls the bot makes: listing the team roster, opening direct
messages and posting messages. Failures are logged and reported as
``None``/``False`` so callers can carry on with other users.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Any, Dict, List, Optional, Sequence

from slack_sdk.errors import SlackApiError
from slack_sdk.web.async_client import AsyncWebClient

from trellobot.config import get_settings
from trellobot.utils.logger import log_error
from trellobot.utils.logger import log_info


@lru_cache(maxsize=1)
def get_slack_client() -> AsyncWebClient:
    return AsyncWebClient(token=get_settings().slack_bot_token)


def _api_error(exc: SlackApiError) -> str:
    return str(exc.response.get("error", "unknown")) if exc.response is not None else repr(exc)


def is_teammate(user: Dict[str, Any]) -> bool:
    """True for active, full members of the workspace.

    ``is_bot`` is False for slackbot, so it is filtered by name.
    """

    return not (
        user.get("is_bot")
        or user.get("is_restricted")
        or user.get("is_ultra_restricted")
        or user.get("deleted")
        or user.get("name") == "slackbot"
    )


async def list_teammates(allowed_names: Optional[Sequence[str]] = None) -> List[Dict[str, Any]]:
    """Return the team's human members, optionally narrowed to ``allowed_names``."""

    client = get_slack_client()
    members: List[Dict[str, Any]] = []
    cursor: Optional[str] = None

    while True:
        try:
            resp = await client.users_list(limit=200, cursor=cursor)
        except SlackApiError as exc:
            log_error("Couldn't retrieve Slack user list", error=_api_error(exc))
            return []

        members.extend(u for u in resp.get("members", []) if is_teammate(u))

        cursor = (resp.get("response_metadata") or {}).get("next_cursor") or None
        if not cursor:
            break

    if allowed_names:
        allowed = set(allowed_names)
        members = [u for u in members if u.get("name") in allowed]

    return members


async def open_direct_message(user_id: str) -> Optional[str]:
    """Open (or reuse) the DM channel with ``user_id`` and return its id."""

    try:
        resp = await get_slack_client().conversations_open(users=user_id)
    except SlackApiError as exc:
        log_error("Couldn't open a conversation", user_id=user_id, error=_api_error(exc))
        return None

    channel = (resp.get("channel") or {}).get("id")
    if not channel:
        log_error("conversations.open returned no channel", user_id=user_id)
        return None
    return str(channel)


async def send_message(
    channel: str,
    text: str,
    attachments: Optional[List[Dict[str, Any]]] = None,
) -> bool:
    """Post a message (with optional legacy attachments) to ``channel``."""

    kwargs: Dict[str, Any] = {"channel": channel, "text": text}
    if attachments:
        kwargs["attachments"] = attachments

    try:
        await get_slack_client().chat_postMessage(**kwargs)
    except SlackApiError as exc:
        log_error("Couldn't post Slack message", channel=channel, error=_api_error(exc))
        return False

    return True


async def send_direct_message(
    user_id: str,
    text: str,
    attachments: Optional[List[Dict[str, Any]]] = None,
) -> bool:
    """Open a DM with ``user_id`` and post ``text`` into it."""

    channel = await open_direct_message(user_id)
    if not channel:
        return False

    sent = await send_message(channel, text, attachments)
    if sent:
        log_info("Sent direct message", user_id=user_id, channel=channel)
    return sent
