"""Direct-message commands understood by the bot."""

from __future__ import annotations

import re
from typing import Awaitable, Callable, List, Optional, Tuple

from trellobot.core.late_tasks import run_late_tasks
from trellobot.core.notifications import notifications_off
from trellobot.core.notifications import notifications_on
from trellobot.core.verification_flow import check_user_trello
from trellobot.utils.logger import log_info


Handler = Callable[[str, str], Awaitable[object]]


async def _check_users(user_id: str, channel: str) -> None:
    await check_user_trello()


async def _late(user_id: str, channel: str) -> None:
    await run_late_tasks(user_id)


async def _announce(user_id: str, channel: str) -> None:
    await run_late_tasks()


COMMANDS: List[Tuple[re.Pattern, Handler]] = [
    (re.compile(r"^notifications on$", re.IGNORECASE), notifications_on),
    (re.compile(r"^notifications off$", re.IGNORECASE), notifications_off),
    (re.compile(r"^check users$", re.IGNORECASE), _check_users),
    (re.compile(r"^late$", re.IGNORECASE), _late),
    (re.compile(r"^announce$", re.IGNORECASE), _announce),
]


def match_command(text: str) -> Optional[Handler]:
    cleaned = (text or "").strip()
    for pattern, handler in COMMANDS:
        if pattern.match(cleaned):
            return handler
    return None


async def dispatch_command(user_id: str, channel: str, text: str) -> bool:
    """Run the command matching ``text``. Returns False if nothing matched."""

    handler = match_command(text)
    if handler is None:
        return False

    log_info(f"Command {text.strip()!r}", user_id=user_id)
    await handler(user_id, channel)
    return True
