import hashlib
import hmac
import json
import time
import unittest
from unittest.mock import AsyncMock, MagicMock, patch

from fastapi.testclient import TestClient

import main
from trellobot.config import Settings
from trellobot.models.records import UserRecord


SETTINGS = Settings(slack_bot_token="x", trello_key="k", trello_secret="s")
SIGNED_SETTINGS = Settings(slack_bot_token="x", trello_key="k", trello_secret="s", slack_signing_secret="shh")


class FakeDirectory:
    def __init__(self, records=()):
        self.records = {r.id: r for r in records}

    async def find_by_trello(self, username):
        for record in self.records.values():
            if record.trello_username == username:
                return record
        return None


def _comment(action_type):
    return {
        "action": {
            "type": action_type,
            "memberCreator": {"username": "bob"},
            "data": {"text": "hi", "card": {"shortLink": "abc", "name": "Card"}, "board": {"name": "Board"}},
        },
        "model": {"username": "alice"},
    }


class TestTrelloWebhookEndpoint(unittest.TestCase):
    def setUp(self):
        # no context manager: the lifespan (queue + scheduler) is not started
        self.client = TestClient(main.app)

    def _post(self, **kwargs):
        send_mock = AsyncMock(return_value=True)
        with patch(
            "trellobot.core.notifications.get_directory", return_value=FakeDirectory([UserRecord("U1", "alice")])
        ), patch("trellobot.core.notifications.send_direct_message", send_mock):
            resp = self.client.post("/trello/webhook", **kwargs)
        return resp, send_mock

    def test_get_returns_ok(self):
        resp = self.client.get("/trello/webhook")

        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.text, "ok")

    def test_head_returns_ok(self):
        self.assertEqual(self.client.head("/trello/webhook").status_code, 200)

    def test_ping_sends_nothing(self):
        resp, send_mock = self._post(json=_comment("ping"))

        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.text, "ok")
        send_mock.assert_not_awaited()

    def test_comment_is_forwarded(self):
        resp, send_mock = self._post(json=_comment("commentCard"))

        self.assertEqual(resp.text, "ok")
        send_mock.assert_awaited_once()
        self.assertEqual(send_mock.await_args.args[0], "U1")

    def test_garbage_body_still_ok(self):
        resp, send_mock = self._post(content=b"not json", headers={"content-type": "application/json"})

        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.text, "ok")
        send_mock.assert_not_awaited()


class TestSlackEventsEndpoint(unittest.TestCase):
    def setUp(self):
        self.client = TestClient(main.app)

    def test_url_verification_echoes_challenge(self):
        with patch("main.get_settings", return_value=SETTINGS):
            resp = self.client.post("/slack/events", json={"type": "url_verification", "challenge": "c-123"})

        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json(), {"challenge": "c-123"})

    def test_event_callback_is_handed_off(self):
        payload = {"type": "event_callback", "event_id": "Ev1", "event": {"type": "message"}}
        handler = AsyncMock()
        with patch("main.get_settings", return_value=SETTINGS), patch("main.handle_slack_event", handler):
            resp = self.client.post("/slack/events", json=payload)

        self.assertEqual(resp.text, "ok")
        handler.assert_awaited_once()
        self.assertEqual(handler.await_args.args[0], payload)

    def test_bad_signature_is_rejected(self):
        handler = AsyncMock()
        headers = {"X-Slack-Request-Timestamp": str(int(time.time())), "X-Slack-Signature": "v0=bogus"}
        with patch("main.get_settings", return_value=SIGNED_SETTINGS), patch("main.handle_slack_event", handler):
            resp = self.client.post("/slack/events", json={"type": "event_callback"}, headers=headers)

        self.assertEqual(resp.status_code, 401)
        handler.assert_not_awaited()

    def test_valid_signature_is_accepted(self):
        body = json.dumps({"type": "url_verification", "challenge": "signed"}).encode()
        timestamp = str(int(time.time()))
        digest = hmac.new(b"shh", f"v0:{timestamp}:".encode() + body, hashlib.sha256).hexdigest()
        headers = {
            "X-Slack-Request-Timestamp": timestamp,
            "X-Slack-Signature": f"v0={digest}",
            "content-type": "application/json",
        }
        with patch("main.get_settings", return_value=SIGNED_SETTINGS):
            resp = self.client.post("/slack/events", content=body, headers=headers)

        self.assertEqual(resp.json(), {"challenge": "signed"})


class TestLifespan(unittest.TestCase):
    def test_startup_applies_settings_log_level(self):
        settings = Settings(slack_bot_token="x", trello_key="k", trello_secret="s", debug=True, log_level="DEBUG")
        queue = MagicMock()
        queue.stop = AsyncMock()
        scheduler = MagicMock()

        with patch("main.get_settings", return_value=settings), patch(
            "main.get_delivery_queue", return_value=queue
        ), patch("main.build_scheduler", return_value=scheduler), patch("main.configure_logging") as configure:
            with TestClient(main.app) as client:
                client.get("/health")

        configure.assert_called_once_with("DEBUG")
        queue.start.assert_called_once_with()
        scheduler.start.assert_called_once_with()
        scheduler.shutdown.assert_called_once_with(wait=False)
        queue.stop.assert_awaited_once_with()


class TestHealth(unittest.TestCase):
    def test_health(self):
        resp = TestClient(main.app).get("/health")
        self.assertEqual(resp.json(), {"status": "ok"})


if __name__ == "__main__":
    unittest.main()
