"""Recurring jobs for the Trello Slack bot.

Two cron jobs run inside the web process's event loop: the weekly sweep that
asks teammates for missing Trello usernames and the daily late-task check.
"""

from __future__ import annotations

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from trellobot.config import Settings
from trellobot.core.late_tasks import run_late_tasks
from trellobot.core.verification_flow import check_user_trello
from trellobot.utils.logger import log_error
from trellobot.utils.logger import log_info


async def scheduled_check_users() -> None:
    try:
        started = await check_user_trello()
    except Exception as exc:  # noqa: BLE001
        log_error("Scheduled username sweep failed", error=repr(exc))
        return
    log_info("Scheduled username sweep finished", conversations_started=started)


async def scheduled_late_tasks() -> None:
    await run_late_tasks()


def build_scheduler(settings: Settings) -> AsyncIOScheduler:
    """Create (but don't start) the scheduler with both cron jobs."""

    scheduler = AsyncIOScheduler(timezone=settings.timezone)
    scheduler.add_job(
        scheduled_check_users,
        CronTrigger.from_crontab(settings.check_users_cron, timezone=settings.timezone),
        id="check_users",
        replace_existing=True,
    )
    scheduler.add_job(
        scheduled_late_tasks,
        CronTrigger.from_crontab(settings.late_tasks_cron, timezone=settings.timezone),
        id="late_tasks",
        replace_existing=True,
    )
    return scheduler
