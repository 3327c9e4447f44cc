"""Trello service integration for the Trello Slack bot.

This module exposes a small set of async helpers for working with Trello via
its REST API. Every helper returns a normalized result dict: ``success`` plus
either ``data`` or ``error`` (and the response ``body`` for API errors).
"""

from __future__ import annotations

from typing import Any, Dict, Optional
from urllib.parse import quote

import httpx

from trellobot.config import get_settings


_TRELLO_BASE_URL = "https://api.trello.com/1"
_TIMEOUT_SECONDS = 15.0


def _auth_params() -> Dict[str, str]:
    """Return Trello auth query parameters built from settings."""

    settings = get_settings()
    return {"key": settings.trello_key, "token": settings.trello_secret}


async def _trello_request(
    method: str,
    path: str,
    params: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    query: Dict[str, Any] = _auth_params()
    if params:
        query.update(params)

    try:
        async with httpx.AsyncClient(timeout=_TIMEOUT_SECONDS) as client:
            resp = await client.request(method, f"{_TRELLO_BASE_URL}{path}", params=query)
        resp.raise_for_status()
    except httpx.RequestError as exc:
        return {"success": False, "error": f"HTTP_ERROR: {exc!r}"}
    except httpx.HTTPStatusError as exc:
        return {"success": False, "error": f"API_ERROR: {exc.response.status_code}", "body": exc.response.text}

    body: Any
    try:
        body = resp.json()
    except ValueError:
        body = resp.text

    return {"success": True, "data": body}


def _member_path(username: str) -> str:
    return f"/members/{quote(username.strip(), safe='')}"


async def trello_get_my_boards() -> Dict[str, Any]:
    """Return boards for the authorized Trello user."""

    return await _trello_request("GET", "/members/me/boards")


async def trello_get_board_lists(board_id: str) -> Dict[str, Any]:
    """List lists on a given Trello board."""

    return await _trello_request("GET", f"/boards/{board_id}/lists")


async def trello_get_member(username: str) -> Dict[str, Any]:
    """Return the Trello member profile for ``username``."""

    return await _trello_request("GET", _member_path(username))


async def trello_get_member_cards(username: str) -> Dict[str, Any]:
    """Return all cards the member is assigned to.

    A 404 here is how Trello reports an unknown username.
    """

    return await _trello_request("GET", f"{_member_path(username)}/cards")


async def trello_create_webhook(callback_url: str, id_model: str, description: str | None = None) -> Dict[str, Any]:
    """Register a webhook that posts ``id_model`` activity to ``callback_url``."""

    params = {"callbackURL": callback_url, "idModel": id_model}
    if description:
        params["description"] = description
    return await _trello_request("PUT", "/webhooks", params=params)


async def trello_delete_webhook(webhook_id: str) -> Dict[str, Any]:
    """Delete a previously registered webhook."""

    return await _trello_request("DELETE", f"/webhooks/{webhook_id}")
