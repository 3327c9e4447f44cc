"""User directory backed by Redis.

Records live in a single Redis hash: field = Slack user id, value = the
record's JSON. There are no transactions; the last write wins.
"""

from __future__ import annotations

import json
from functools import lru_cache
from typing import Any, List, Optional

import redis.asyncio as redis

from trellobot.config import get_settings
from trellobot.models.records import UserRecord
from trellobot.utils.logger import get_logger


logger = get_logger("trellobot.directory")


class UserDirectory:
    """get/save/list access to :class:`UserRecord` values."""

    def __init__(self, client: Any, key: str = "trellobot:users") -> None:
        self.client = client
        self.key = key

    async def get(self, user_id: str) -> Optional[UserRecord]:
        try:
            raw = await self.client.hget(self.key, user_id)
        except redis.RedisError as exc:
            logger.error(f"Could not find user data for {user_id}: {exc!r}")
            return None

        if not raw:
            return None
        return self._decode(raw)

    async def save(self, record: UserRecord) -> bool:
        try:
            await self.client.hset(self.key, record.id, json.dumps(record.to_dict()))
        except redis.RedisError as exc:
            logger.error(f"Could not save user data for {record.id}: {exc!r}")
            return False
        return True

    async def all(self) -> List[UserRecord]:
        try:
            raw_map = await self.client.hgetall(self.key)
        except redis.RedisError as exc:
            logger.error(f"Couldn't retrieve users: {exc!r}")
            return []

        records: List[UserRecord] = []
        for raw in raw_map.values():
            record = self._decode(raw)
            if record is not None:
                records.append(record)
        return records

    async def find_by_trello(self, username: str) -> Optional[UserRecord]:
        """Trello usernames are case-insensitive; match them that way."""

        wanted = username.casefold()
        for record in await self.all():
            if record.trello_username and record.trello_username.casefold() == wanted:
                return record
        return None

    @staticmethod
    def _decode(raw: Any) -> Optional[UserRecord]:
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        try:
            data = json.loads(raw)
            return UserRecord.from_dict(data)
        except (ValueError, KeyError, TypeError) as exc:
            logger.error(f"Skipping malformed user record: {exc!r}")
            return None


@lru_cache(maxsize=1)
def get_directory() -> UserDirectory:
    settings = get_settings()
    client = redis.from_url(settings.redis_url, decode_responses=True)
    return UserDirectory(client, key=settings.redis_users_key)
