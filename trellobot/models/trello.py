"""Trello models for the Trello Slack bot.

Boards and cards are transient snapshots built from the REST API on every
pipeline run. The pydantic models describe the subset of Trello webhook
payloads the bot reacts to.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

from trellobot.utils.format import parse_trello_datetime, safe_get


@dataclass
class Board:
    """A board and its list-name index (list id -> lowercased list name)."""

    id: str
    name: str
    lists: Dict[str, str] = field(default_factory=dict)

    def list_name(self, list_id: Optional[str]) -> Optional[str]:
        if not list_id:
            return None
        return self.lists.get(list_id)


@dataclass(frozen=True)
class Card:
    id: str
    board_id: str
    list_id: str
    due: Optional[datetime]
    short_url: str
    name: str

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "Card":
        # ``badges.due`` mirrors ``due`` on older API responses.
        due_raw = data.get("due") or safe_get(data, ["badges", "due"])
        return cls(
            id=str(data.get("id") or ""),
            board_id=str(data.get("idBoard") or ""),
            list_id=str(data.get("idList") or ""),
            due=parse_trello_datetime(due_raw),
            short_url=str(data.get("shortUrl") or data.get("url") or ""),
            name=str(data.get("name") or ""),
        )


class _TrelloModel(BaseModel):
    model_config = ConfigDict(extra="ignore")


class TrelloMemberRef(_TrelloModel):
    username: str


class TrelloCardRef(_TrelloModel):
    shortLink: str
    name: str = ""


class TrelloBoardRef(_TrelloModel):
    name: str = ""


class TrelloActionData(_TrelloModel):
    text: str = ""
    card: TrelloCardRef
    board: TrelloBoardRef = Field(default_factory=TrelloBoardRef)


class TrelloAction(_TrelloModel):
    type: str
    memberCreator: TrelloMemberRef
    data: TrelloActionData


class TrelloCommentWebhook(_TrelloModel):
    """Webhook body for a ``commentCard`` action on a watched member."""

    action: TrelloAction
    model: TrelloMemberRef
