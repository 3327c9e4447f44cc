"""Late-task pipeline.

Finds Trello cards that are past due and not sitting in a "finished" list,
groups them per board, and queues one private summary per affected user.

A run goes through these steps:

1. build the board index (every board of the bot's Trello member, with a
   list id -> list name map fetched concurrently per board);
2. resolve the users to check (one on-demand user, or the whole directory);
3. fetch each user's cards concurrently;
4. classify the cards against the index;
5. build and enqueue the delivery jobs.

The board index is a plain value built once per run and handed to the
classification step; nothing is cached between runs.
"""

from __future__ import annotations

import asyncio
import re
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Tuple

from trellobot.config import Settings, get_settings
from trellobot.core.delivery import DeliveryJob, DeliveryQueue, get_delivery_queue
from trellobot.models.records import UserRecord
from trellobot.models.trello import Board, Card
from trellobot.services.directory import get_directory
from trellobot.services.trello import trello_get_board_lists
from trellobot.services.trello import trello_get_member_cards
from trellobot.services.trello import trello_get_my_boards
from trellobot.utils.format import format_due_date, slack_link
from trellobot.utils.logger import log_error
from trellobot.utils.logger import log_info
from trellobot.utils.logger import log_warn


FINISHED_LIST_RE = re.compile(r"completed|done|shipped|ready for qa|ready to ship", re.IGNORECASE)
ATTACHMENT_COLOR = "#838C91"

LATE_TASKS_TEXT = (
    "Hey! A few of your tasks are recently past due. Could you go through "
    "and add comments or update the expected completion dates?"
)
NO_LATE_TASKS_TEXT = "You don't have any late tasks right now!"

BoardIndex = Dict[str, Board]


async def build_board_index() -> Optional[BoardIndex]:
    """Fetch the bot member's boards and their lists.

    Returns None when the boards themselves can't be listed. A board whose
    lists can't be fetched is left out, so its cards are skipped later.
    """

    result = await trello_get_my_boards()
    if not result.get("success"):
        log_error("Couldn't fetch Trello boards", error=result.get("error"))
        return None

    boards = [b for b in (result.get("data") or []) if isinstance(b, dict) and b.get("id")]
    list_results = await asyncio.gather(
        *(trello_get_board_lists(str(b["id"])) for b in boards),
        return_exceptions=True,
    )

    index: BoardIndex = {}
    for board, lists in zip(boards, list_results):
        board_id = str(board["id"])
        if isinstance(lists, BaseException) or not lists.get("success"):
            error = repr(lists) if isinstance(lists, BaseException) else lists.get("error")
            log_error(f"Couldn't fetch lists for board {board_id}", error=error)
            continue

        index[board_id] = Board(
            id=board_id,
            name=str(board.get("name") or ""),
            lists={
                str(item["id"]): str(item.get("name") or "").lower()
                for item in (lists.get("data") or [])
                if isinstance(item, dict) and item.get("id")
            },
        )

    return index


async def resolve_users(target_user: Optional[str], settings: Settings) -> List[UserRecord]:
    """Return the directory records to check, minus those without a username."""

    directory = get_directory()

    if target_user:
        record = await directory.get(target_user)
        users = [record] if record else []
    else:
        users = await directory.all()
        if settings.debug and settings.debug_user_ids:
            allowed = set(settings.debug_user_ids)
            users = [u for u in users if u.id in allowed]

    return [u for u in users if u.trello_username]


async def fetch_user_cards(users: List[UserRecord]) -> List[Tuple[UserRecord, List[Card]]]:
    """Fetch every user's cards concurrently; failed users are logged and dropped."""

    results = await asyncio.gather(
        *(trello_get_member_cards(str(u.trello_username)) for u in users),
        return_exceptions=True,
    )

    fetched: List[Tuple[UserRecord, List[Card]]] = []
    for user, result in zip(users, results):
        if isinstance(result, BaseException) or not result.get("success"):
            error = repr(result) if isinstance(result, BaseException) else result.get("error")
            log_error(
                f"Couldn't fetch cards for Trello user {user.trello_username}",
                user_id=user.id,
                error=error,
            )
            continue

        cards = [Card.from_api(c) for c in (result.get("data") or []) if isinstance(c, dict)]
        fetched.append((user, cards))

    return fetched


def is_late(card: Card, list_name: str, now: datetime) -> bool:
    if card.due is None:
        return False
    return card.due < now and not FINISHED_LIST_RE.search(list_name)


def format_late_card(card: Card, tz_name: str) -> str:
    return f"{format_due_date(card.due, tz_name)}: {slack_link(card.short_url, card.name)}"


def classify_cards(
    cards: Iterable[Card],
    boards: BoardIndex,
    now: datetime,
    tz_name: str = "UTC",
) -> Tuple[Dict[str, List[str]], int]:
    """Group late cards per board id, keeping the API's card order.

    Cards whose board or list is missing from ``boards`` are skipped.
    """

    out: Dict[str, List[str]] = {board_id: [] for board_id in boards}
    late_count = 0

    for card in cards:
        board = boards.get(card.board_id)
        if board is None:
            continue
        list_name = board.list_name(card.list_id)
        if list_name is None:
            continue
        if is_late(card, list_name, now):
            out[card.board_id].append(format_late_card(card, tz_name))
            late_count += 1

    return out, late_count


def build_delivery_job(
    user: UserRecord,
    boards: BoardIndex,
    late_lines: Dict[str, List[str]],
    late_count: int,
    on_demand: bool,
) -> Optional[DeliveryJob]:
    """Build the message for one user, or None when there's nothing to send."""

    if not late_count:
        if on_demand:
            return DeliveryJob(user_id=user.id, text=NO_LATE_TASKS_TEXT)
        return None

    attachments = []
    for board_id, board in boards.items():
        lines = late_lines.get(board_id) or []
        if not lines:
            continue
        attachments.append(
            {
                "fallback": f"{board.name}: {len(lines)} tasks",
                "title": board.name,
                "text": "\n".join(lines),
                "color": ATTACHMENT_COLOR,
            }
        )

    return DeliveryJob(
        user_id=user.id,
        text=LATE_TASKS_TEXT,
        attachments=attachments,
        late_count=late_count,
    )


async def collect_late_tasks(
    target_user: Optional[str] = None,
    now: Optional[datetime] = None,
    settings: Optional[Settings] = None,
) -> List[DeliveryJob]:
    """Run the pipeline up to job building and return the jobs in user order."""

    settings = settings or get_settings()
    now = now or datetime.now(timezone.utc)

    boards = await build_board_index()
    if boards is None:
        return []

    users = await resolve_users(target_user, settings)
    if not users:
        log_warn("No users with a Trello username to check", user_id=target_user)
        return []

    jobs: List[DeliveryJob] = []
    for user, cards in await fetch_user_cards(users):
        late_lines, late_count = classify_cards(cards, boards, now, settings.timezone)
        job = build_delivery_job(user, boards, late_lines, late_count, on_demand=bool(target_user))
        if job is not None:
            jobs.append(job)

    return jobs


async def run_late_tasks(
    target_user: Optional[str] = None,
    queue: Optional[DeliveryQueue] = None,
) -> int:
    """Check for late cards and queue the notifications. Returns jobs queued."""

    try:
        jobs = await collect_late_tasks(target_user)
        queue = queue or get_delivery_queue()
        for job in jobs:
            queue.push(job)
    except Exception as exc:  # noqa: BLE001
        log_error("Late task check failed", user_id=target_user, error=repr(exc))
        return 0

    log_info(
        "Queued late task notifications",
        user_id=target_user,
        jobs=len(jobs),
        late_cards=sum(j.late_count for j in jobs),
    )
    return len(jobs)
