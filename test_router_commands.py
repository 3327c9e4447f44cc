import asyncio
import unittest
from unittest.mock import AsyncMock, patch

from trellobot.core import notifications
from trellobot.core.commands import dispatch_command, match_command
from trellobot.core.router import extract_direct_message, handle_slack_event, reset_seen_events


def dm_event(text, event_id="Ev1", **event_overrides):
    event = {"type": "message", "channel_type": "im", "user": "U1", "channel": "D1", "text": text}
    event.update(event_overrides)
    return {"type": "event_callback", "event_id": event_id, "event": event}


class TestCommandTable(unittest.TestCase):
    def test_notification_commands(self):
        self.assertIs(match_command("notifications on"), notifications.notifications_on)
        self.assertIs(match_command("Notifications OFF "), notifications.notifications_off)

    def test_commands_are_anchored(self):
        for text in ("am I late?", "please announce", "check users now", "notifications"):
            self.assertIsNone(match_command(text), text)

    def test_late_runs_pipeline_for_sender(self):
        with patch("trellobot.core.commands.run_late_tasks", AsyncMock(return_value=1)) as run_mock:
            handled = asyncio.run(dispatch_command("U1", "D1", "late"))

        self.assertTrue(handled)
        run_mock.assert_awaited_once_with("U1")

    def test_announce_runs_pipeline_for_everyone(self):
        with patch("trellobot.core.commands.run_late_tasks", AsyncMock(return_value=3)) as run_mock:
            asyncio.run(dispatch_command("U1", "D1", "announce"))

        run_mock.assert_awaited_once_with()

    def test_check_users_runs_sweep(self):
        with patch("trellobot.core.commands.check_user_trello", AsyncMock(return_value=0)) as sweep_mock:
            asyncio.run(dispatch_command("U1", "D1", "check users"))

        sweep_mock.assert_awaited_once_with()

    def test_unknown_text_is_not_handled(self):
        self.assertFalse(asyncio.run(dispatch_command("U1", "D1", "hello there")))


class TestSlackEventRouting(unittest.TestCase):
    def setUp(self):
        reset_seen_events()

    def test_extract_direct_message(self):
        self.assertEqual(
            extract_direct_message(dm_event("late")),
            {"user_id": "U1", "channel": "D1", "text": "late"},
        )

    def test_non_dm_and_bot_messages_are_ignored(self):
        self.assertIsNone(extract_direct_message(dm_event("late", channel_type="channel")))
        self.assertIsNone(extract_direct_message(dm_event("late", bot_id="B1")))
        self.assertIsNone(extract_direct_message(dm_event("late", subtype="message_changed")))
        self.assertIsNone(extract_direct_message({"type": "event_callback", "event": {"type": "app_mention"}}))

    def _route(self, payloads, verification_consumes=False):
        turn_mock = AsyncMock(return_value=verification_consumes)
        dispatch_mock = AsyncMock(return_value=True)

        async def run():
            with patch("trellobot.core.router.handle_verification_turn", turn_mock), patch(
                "trellobot.core.router.dispatch_command", dispatch_mock
            ):
                for payload in payloads:
                    await handle_slack_event(payload)

        asyncio.run(run())
        return turn_mock, dispatch_mock

    def test_dm_goes_to_commands_when_no_session(self):
        turn_mock, dispatch_mock = self._route([dm_event("late")])

        turn_mock.assert_awaited_once_with("U1", "late")
        dispatch_mock.assert_awaited_once_with("U1", "D1", "late")

    def test_open_session_takes_priority(self):
        _, dispatch_mock = self._route([dm_event("late")], verification_consumes=True)

        dispatch_mock.assert_not_awaited()

    def test_duplicate_events_are_dropped(self):
        turn_mock, _ = self._route([dm_event("late", "Ev7"), dm_event("late", "Ev7"), dm_event("late", "Ev8")])

        self.assertEqual(turn_mock.await_count, 2)

    def test_handler_errors_are_contained(self):
        async def run():
            with patch(
                "trellobot.core.router.handle_verification_turn", AsyncMock(side_effect=RuntimeError("boom"))
            ), patch("trellobot.core.router.log_error") as log_error:
                await handle_slack_event(dm_event("late"))
                return log_error

        log_error = asyncio.run(run())
        log_error.assert_called_once()


if __name__ == "__main__":
    unittest.main()
