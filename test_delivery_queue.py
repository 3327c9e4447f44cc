import asyncio
import time
import unittest
from unittest.mock import AsyncMock, patch

from trellobot.core.delivery import DeliveryJob, DeliveryQueue, deliver_job
from trellobot.utils.ratelimiter import RateLimiter


class FakeClock:
    def __init__(self, start=1000.0):
        self.now = start

    def __call__(self):
        return self.now

    async def sleep(self, seconds):
        self.now += seconds


class TestDeliveryQueue(unittest.TestCase):
    def _drain(self, jobs, deliver_side_effect=None, send_time=0.3):
        clock = FakeClock()
        started = []

        async def deliver(job):
            started.append((job.user_id, clock()))
            clock.now += send_time
            if deliver_side_effect:
                deliver_side_effect(job)

        async def run():
            queue = DeliveryQueue(deliver=deliver, limiter=RateLimiter(1.1, clock=clock, sleep=clock.sleep))
            for job in jobs:
                queue.push(job)
            queue.start()
            await queue.join()
            await queue.stop()

        asyncio.run(run())
        return started

    def test_jobs_run_in_fifo_order_with_minimum_gap(self):
        jobs = [DeliveryJob(f"U{i}", "hi") for i in range(5)]
        started = self._drain(jobs)

        self.assertEqual([user for user, _ in started], ["U0", "U1", "U2", "U3", "U4"])
        for (_, first), (_, second) in zip(started, started[1:]):
            self.assertGreaterEqual(round(second - first, 6), 1.1)

    def test_slow_sends_do_not_add_extra_wait(self):
        started = self._drain([DeliveryJob("U1", "hi"), DeliveryJob("U2", "hi")], send_time=2.0)

        self.assertAlmostEqual(started[1][1] - started[0][1], 2.0)

    def test_failed_job_does_not_stop_the_queue(self):
        def explode(job):
            if job.user_id == "U2":
                raise RuntimeError("channel_not_found")

        jobs = [DeliveryJob("U1", "hi"), DeliveryJob("U2", "hi"), DeliveryJob("U3", "hi")]
        with patch("trellobot.core.delivery.log_error") as log_error:
            started = self._drain(jobs, deliver_side_effect=explode)

        self.assertEqual([user for user, _ in started], ["U1", "U2", "U3"])
        log_error.assert_called_once()

    def test_real_clock_spacing(self):
        starts = []

        async def deliver(job):
            starts.append(time.monotonic())

        async def run():
            queue = DeliveryQueue(deliver=deliver, interval=0.05)
            queue.start()
            for i in range(3):
                queue.push(DeliveryJob(f"U{i}", "hi"))
            await queue.join()
            await queue.stop()

        asyncio.run(run())

        self.assertEqual(len(starts), 3)
        for first, second in zip(starts, starts[1:]):
            self.assertGreaterEqual(second - first, 0.045)


class TestDeliverJob(unittest.TestCase):
    def test_unopened_conversation_is_abandoned(self):
        send_mock = AsyncMock(return_value=True)

        async def run():
            with patch("trellobot.core.delivery.open_direct_message", AsyncMock(return_value=None)), patch(
                "trellobot.core.delivery.send_message", send_mock
            ):
                return await deliver_job(DeliveryJob("U1", "hi"))

        self.assertFalse(asyncio.run(run()))
        send_mock.assert_not_awaited()

    def test_job_is_posted_with_attachments(self):
        send_mock = AsyncMock(return_value=True)
        attachments = [{"title": "Board", "text": "line", "color": "#838C91"}]

        async def run():
            with patch("trellobot.core.delivery.open_direct_message", AsyncMock(return_value="D1")), patch(
                "trellobot.core.delivery.send_message", send_mock
            ):
                return await deliver_job(DeliveryJob("U1", "late", attachments, 1))

        self.assertTrue(asyncio.run(run()))
        send_mock.assert_awaited_once_with("D1", "late", attachments)


if __name__ == "__main__":
    unittest.main()
