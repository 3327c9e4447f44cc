"""Trello comment notifications.

Users opt in with ``notifications on``: the bot registers a Trello webhook on
their member, and Trello then posts every action to ``/trello/webhook``.
Comments left by someone else are forwarded to the user as a Slack DM.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from trellobot.config import get_settings
from trellobot.core.verification_flow import start_verification
from trellobot.models.trello import TrelloCommentWebhook
from trellobot.services.directory import get_directory
from trellobot.services.slack import send_direct_message
from trellobot.services.slack import send_message
from trellobot.services.trello import trello_create_webhook
from trellobot.services.trello import trello_delete_webhook
from trellobot.services.trello import trello_get_member
from trellobot.utils.logger import log_error
from trellobot.utils.logger import log_info
from trellobot.utils.logger import log_warn


COMMENT_COLOR = "#838C91"
# Trello answers 404 for a webhook deleted outside the bot
WEBHOOK_GONE_ERROR = "API_ERROR: 404"

NOTIFICATIONS_ON_TEXT = "Trello notifications have been turned *on*."
NOTIFICATIONS_OFF_TEXT = "Trello notifications have been turned *off*."
ALREADY_OFF_TEXT = "Trello notifications are already *off*."
NO_USERNAME_TEXT = "I don't know your Trello username yet."
ALREADY_ON_TEXT = "Trello notifications are already *on*."
ON_FAILED_TEXT = "Sorry, I couldn't turn Trello notifications on. Please try again later."
OFF_FAILED_TEXT = "Sorry, I couldn't turn Trello notifications off. Please try again later."


async def notifications_on(user_id: str, channel: str) -> bool:
    settings = get_settings()
    callback_url = settings.webhook_callback_url
    if not callback_url:
        log_error("HOSTNAME is not set; cannot register Trello webhooks", user_id=user_id)
        await send_message(channel, ON_FAILED_TEXT)
        return False

    directory = get_directory()
    record = await directory.get(user_id)
    if record is None or not record.trello_username:
        await send_message(channel, NO_USERNAME_TEXT)
        await start_verification(user_id, channel)
        return False

    if record.webhook_id:
        await send_message(channel, ALREADY_ON_TEXT)
        return False

    member = await trello_get_member(record.trello_username)
    member_id = (member.get("data") or {}).get("id") if member.get("success") else None
    if not member_id:
        log_error("Error looking up Trello member", user_id=user_id, error=member.get("error"))
        await send_message(channel, ON_FAILED_TEXT)
        return False

    created = await trello_create_webhook(callback_url, str(member_id))
    webhook_id = (created.get("data") or {}).get("id") if created.get("success") else None
    if not webhook_id:
        log_error("Error creating webhook", user_id=user_id, error=created.get("error"), body=created.get("body"))
        await send_message(channel, ON_FAILED_TEXT)
        return False

    await directory.save(record.with_webhook(str(webhook_id)))
    await send_message(channel, NOTIFICATIONS_ON_TEXT)
    log_info("Trello notifications on", user_id=user_id, webhook_id=webhook_id)
    return True


async def notifications_off(user_id: str, channel: str) -> bool:
    directory = get_directory()
    record = await directory.get(user_id)
    if record is None or not record.webhook_id:
        await send_message(channel, ALREADY_OFF_TEXT)
        return False

    result = await trello_delete_webhook(record.webhook_id)
    if not result.get("success"):
        if result.get("error") != WEBHOOK_GONE_ERROR:
            log_error("Error deleting webhook", user_id=user_id, error=result.get("error"))
            await send_message(channel, OFF_FAILED_TEXT)
            return False
        log_warn("Webhook was already removed on Trello", user_id=user_id, webhook_id=record.webhook_id)

    await directory.save(record.with_webhook(None))
    await send_message(channel, NOTIFICATIONS_OFF_TEXT)
    log_info("Trello notifications off", user_id=user_id)
    return True


def format_comment_message(event: TrelloCommentWebhook) -> Dict[str, Any]:
    """Build the Slack text and attachment for a card comment."""

    commenter = event.action.memberCreator.username
    card_url = f"https://trello.com/c/{event.action.data.card.shortLink}"
    attachments: List[Dict[str, Any]] = [
        {
            "fallback": f"*{commenter}* commented: {card_url}",
            "text": event.action.data.text,
            "fields": [
                {"title": "Card", "value": event.action.data.card.name, "short": True},
                {"title": "Board", "value": event.action.data.board.name, "short": True},
            ],
            "color": COMMENT_COLOR,
        }
    ]
    return {"text": f"*{commenter}* <{card_url}|commented>", "attachments": attachments}


def parse_comment_webhook(payload: Any) -> Optional[TrelloCommentWebhook]:
    """Return the parsed payload for ``commentCard`` actions, else None."""

    if not isinstance(payload, dict):
        return None
    action = payload.get("action")
    if not isinstance(action, dict) or action.get("type") != "commentCard":
        return None

    try:
        return TrelloCommentWebhook.model_validate(payload)
    except ValidationError as exc:
        log_warn("Ignoring malformed commentCard webhook", error=str(exc))
        return None


async def handle_trello_webhook(payload: Any, request_id: Optional[str] = None) -> bool:
    """Forward a card comment to the watched member. Returns True if sent."""

    event = parse_comment_webhook(payload)
    if event is None:
        return False

    watched = event.model.username
    if watched.casefold() == event.action.memberCreator.username.casefold():
        return False

    user = await get_directory().find_by_trello(watched)
    if user is None:
        log_info(f"No Slack user for Trello member {watched}", request_id=request_id)
        return False

    message = format_comment_message(event)
    return await send_direct_message(user.id, message["text"], message["attachments"])
