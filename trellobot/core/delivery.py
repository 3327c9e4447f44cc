"""Throttled delivery of private Slack messages.

Jobs are queued FIFO and drained by a single consumer. Each job start waits
on a :class:`RateLimiter`, so consecutive deliveries are spaced at least
``interval`` seconds apart regardless of how long a send takes.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

from trellobot.config import get_settings
from trellobot.services.slack import open_direct_message
from trellobot.services.slack import send_message
from trellobot.utils.logger import log_error
from trellobot.utils.ratelimiter import DEFAULT_INTERVAL_SECONDS, RateLimiter


@dataclass
class DeliveryJob:
    """One private message to one user."""

    user_id: str
    text: str
    attachments: List[Dict[str, Any]] = field(default_factory=list)
    late_count: int = 0


async def deliver_job(job: DeliveryJob) -> bool:
    channel = await open_direct_message(job.user_id)
    if not channel:
        log_error("Could not start conversation; dropping delivery", user_id=job.user_id)
        return False
    return await send_message(channel, job.text, job.attachments or None)


Deliver = Callable[[DeliveryJob], Awaitable[Any]]


class DeliveryQueue:
    """Single-consumer queue with a minimum gap between job starts."""

    def __init__(
        self,
        deliver: Deliver = deliver_job,
        interval: float = DEFAULT_INTERVAL_SECONDS,
        limiter: Optional[RateLimiter] = None,
    ) -> None:
        self._deliver = deliver
        self._limiter = limiter or RateLimiter(interval)
        self._queue: "asyncio.Queue[DeliveryJob]" = asyncio.Queue()
        self._worker: Optional[asyncio.Task] = None

    def push(self, job: DeliveryJob) -> None:
        self._queue.put_nowait(job)

    @property
    def running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    def start(self) -> None:
        if self.running:
            return
        self._worker = asyncio.create_task(self._run(), name="delivery-queue")

    async def stop(self) -> None:
        if self._worker is None:
            return
        self._worker.cancel()
        try:
            await self._worker
        except asyncio.CancelledError:
            pass
        self._worker = None

    async def join(self) -> None:
        """Wait until every queued job has been attempted."""

        await self._queue.join()

    async def _run(self) -> None:
        while True:
            job = await self._queue.get()
            try:
                await self._limiter.acquire()
                await self._deliver(job)
            except asyncio.CancelledError:
                raise
            except Exception as exc:  # noqa: BLE001
                log_error("Delivery failed", user_id=job.user_id, error=repr(exc))
            finally:
                self._queue.task_done()


_QUEUE: Optional[DeliveryQueue] = None


def get_delivery_queue() -> DeliveryQueue:
    """Return the process-wide delivery queue."""

    global _QUEUE
    if _QUEUE is None:
        _QUEUE = DeliveryQueue(interval=get_settings().delivery_interval)
    return _QUEUE
