"""Directory records for the Trello Slack bot.

One record per Slack user, stored as JSON with the keys ``id``, ``trello``
and ``trelloWebhook``. Absent values are omitted rather than stored as null.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class UserRecord:
    """Maps a Slack user to their Trello identity."""

    id: str
    trello_username: Optional[str] = None
    webhook_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"id": self.id}
        if self.trello_username:
            data["trello"] = self.trello_username
        if self.webhook_id:
            data["trelloWebhook"] = self.webhook_id
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UserRecord":
        trello = data.get("trello")
        webhook = data.get("trelloWebhook")
        return cls(
            id=str(data["id"]),
            trello_username=str(trello) if trello else None,
            webhook_id=str(webhook) if webhook else None,
        )

    def with_username(self, username: str) -> "UserRecord":
        return replace(self, trello_username=username)

    def with_webhook(self, webhook_id: Optional[str]) -> "UserRecord":
        return replace(self, webhook_id=webhook_id)
