"""Trello username verification over Slack DMs.

The conversation is modelled as a small state machine,
:class:`UsernameVerification`, whose ``next`` method maps an event to the
new state plus a list of effects. It performs no I/O; a
:class:`VerificationSession` runs the effects against Slack, Trello and the
directory and feeds the lookup outcome back in.

There is no retry cap: the user is asked again until a username resolves.
Sessions are held in memory and expire after ``SESSION_TTL_SECONDS``; the
roster sweep restarts any session it finds, so an ignored prompt is repeated.
"""

from __future__ import annotations

import asyncio
import re
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple, Union

from trellobot.config import get_settings
from trellobot.models.records import UserRecord
from trellobot.services.directory import get_directory
from trellobot.services.slack import list_teammates
from trellobot.services.slack import open_direct_message
from trellobot.services.slack import send_message
from trellobot.services.trello import trello_get_member_cards
from trellobot.utils.logger import log_error
from trellobot.utils.logger import log_info


ASK_PROMPT = "Hey, real quick: what's your Trello username?"
RETRY_PROMPT = "Hmm...I couldn't find that user. Could you check again?"
CHECKING_MESSAGE = "Hold on, let me check that..."
CONFIRMED_MESSAGE = "Great, thanks!"

# below the weekly sweep interval
SESSION_TTL_SECONDS = 3 * 24 * 60 * 60

FILLER_RE = re.compile(
    r"^((u[mh]+)|(hold on)|((one|a) sec(ond)?)|(\bwait\b)|(^ok)|(got it)|(no|nope))$",
    re.IGNORECASE,
)


class VerificationState(str, Enum):
    ASK_USERNAME = "ask_username"
    CHECKING = "checking"
    DONE = "done"


@dataclass(frozen=True)
class Reply:
    text: str


@dataclass(frozen=True)
class LookupResult:
    username: str
    found: bool


Event = Union[Reply, LookupResult]


@dataclass(frozen=True)
class Say:
    text: str


@dataclass(frozen=True)
class LookupUsername:
    username: str


@dataclass(frozen=True)
class SaveUsername:
    username: str


Effect = Union[Say, LookupUsername, SaveUsername]


@dataclass(frozen=True)
class Transition:
    state: VerificationState
    effects: Tuple[Effect, ...] = ()


def is_filler(text: str) -> bool:
    return bool(FILLER_RE.match((text or "").strip()))


@dataclass
class UsernameVerification:
    """Pure state machine for one user's verification conversation."""

    state: VerificationState = VerificationState.ASK_USERNAME
    prompt: str = ASK_PROMPT
    candidate: Optional[str] = None

    @property
    def done(self) -> bool:
        return self.state is VerificationState.DONE

    def start(self) -> Transition:
        return Transition(self.state, (Say(self.prompt),))

    def next(self, event: Event) -> Transition:
        if self.state is VerificationState.ASK_USERNAME and isinstance(event, Reply):
            text = (event.text or "").strip()
            if not text or is_filler(text):
                return Transition(self.state)
            self.state = VerificationState.CHECKING
            self.candidate = text
            return Transition(self.state, (Say(CHECKING_MESSAGE), LookupUsername(text)))

        if (
            self.state is VerificationState.CHECKING
            and isinstance(event, LookupResult)
            and event.username == self.candidate
        ):
            if event.found:
                self.state = VerificationState.DONE
                return Transition(self.state, (Say(CONFIRMED_MESSAGE), SaveUsername(event.username)))
            self.state = VerificationState.ASK_USERNAME
            self.prompt = RETRY_PROMPT
            self.candidate = None
            return Transition(self.state, (Say(self.prompt),))

        return Transition(self.state)


@dataclass
class VerificationSession:
    """Runs a :class:`UsernameVerification` in one user's DM channel."""

    user_id: str
    channel: str
    machine: UsernameVerification = field(default_factory=UsernameVerification)
    started_at: float = field(default_factory=lambda: _clock())

    def expired(self, now: float) -> bool:
        return now - self.started_at > SESSION_TTL_SECONDS

    async def start(self) -> None:
        await self._run(self.machine.start())

    async def feed(self, text: str) -> None:
        await self._run(self.machine.next(Reply(text)))

    async def _run(self, transition: Transition) -> None:
        pending: List[Effect] = list(transition.effects)
        while pending:
            effect = pending.pop(0)
            if isinstance(effect, Say):
                await send_message(self.channel, effect.text)
            elif isinstance(effect, LookupUsername):
                found = await self._lookup(effect.username)
                pending.extend(self.machine.next(LookupResult(effect.username, found)).effects)
            elif isinstance(effect, SaveUsername):
                await self._save(effect.username)

    async def _lookup(self, username: str) -> bool:
        result = await trello_get_member_cards(username)
        if not result.get("success"):
            log_info(
                f"Trello username {username!r} did not resolve",
                user_id=self.user_id,
                error=result.get("error"),
            )
            return False
        return True

    async def _save(self, username: str) -> None:
        directory = get_directory()
        existing = await directory.get(self.user_id)
        record = (existing or UserRecord(id=self.user_id)).with_username(username)
        if await directory.save(record):
            log_info(f"Saved Trello username {username!r}", user_id=self.user_id)


_SESSIONS: Dict[str, VerificationSession] = {}
_LOCK = asyncio.Lock()
_clock = time.monotonic


def has_active_session(user_id: str) -> bool:
    return user_id in _SESSIONS


def clear_sessions() -> None:
    _SESSIONS.clear()


async def start_verification(user_id: str, channel: Optional[str] = None, restart: bool = False) -> bool:
    """Ask ``user_id`` for their Trello username.

    A live session is left alone unless ``restart`` is set, in which case it
    is replaced and the first prompt is sent again.
    """

    async with _LOCK:
        existing = _SESSIONS.get(user_id)
        if existing is not None and not restart and not existing.expired(_clock()):
            return False

        if channel is None and existing is not None:
            channel = existing.channel
        if channel is None:
            channel = await open_direct_message(user_id)
            if not channel:
                log_error("Couldn't send a Trello username request", user_id=user_id)
                return False

        session = VerificationSession(user_id=user_id, channel=channel)
        _SESSIONS[user_id] = session

    await session.start()
    return True


async def handle_verification_turn(user_id: str, text: str) -> bool:
    """Route a DM into the user's open session. Returns True if consumed."""

    session = _SESSIONS.get(user_id)
    if session is None:
        return False
    if session.expired(_clock()):
        _SESSIONS.pop(user_id, None)
        log_info("Dropped expired username verification", user_id=user_id)
        return False

    try:
        await session.feed(text)
    finally:
        if session.machine.done and _SESSIONS.get(user_id) is session:
            _SESSIONS.pop(user_id, None)
    return True


async def check_user_trello() -> int:
    """Ask every teammate without a saved Trello username for it."""

    settings = get_settings()
    allowed = settings.debug_users if settings.debug else None
    teammates = await list_teammates(allowed_names=allowed)
    directory = get_directory()

    started = 0
    for user in teammates:
        user_id = str(user.get("id") or "")
        if not user_id:
            continue

        record = await directory.get(user_id)
        if record and record.trello_username:
            continue

        log_info(f"No trello data for {user.get('name')}", user_id=user_id)
        try:
            if await start_verification(user_id, restart=True):
                started += 1
        except Exception as exc:  # noqa: BLE001
            log_error("Couldn't start username verification", user_id=user_id, error=repr(exc))

    return started
