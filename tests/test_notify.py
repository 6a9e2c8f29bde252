"""
Tests for the notification presenter.

- every payload field falls back to its default independently
- non-JSON payloads become the notification body
- a click focuses an in-scope window and routes it, or opens a new one
"""

import json
import unittest

from fermitoday import config
from fermitoday.config import WorkerConfig
from fermitoday.effects import Notification, NotificationClickEvent, NotificationCloseEvent, PushEvent
from fermitoday.model import NotificationData
from fermitoday.notify import NOTIFICATION_CLICKED, default_payload, parse_push_payload
from fermitoday.platform import Platform
from fermitoday.worker import ServiceWorker

APP = "https://app.test"


class NoNetwork:
    def fetch(self, request):
        raise AssertionError("network not expected")


def make_worker():
    cfg = WorkerConfig(cache_version="fermitoday-v1.0.0", origin=APP, backend_url="https://api.test")
    platform = Platform(network=NoNetwork())
    return ServiceWorker(cfg, platform), platform, cfg


class TestParsePayload(unittest.TestCase):
    def setUp(self) -> None:
        _, _, self.cfg = make_worker()
        self.defaults = default_payload(self.cfg, timestamp=1)

    def test_empty_payload_uses_defaults(self) -> None:
        for raw in (None, b"", "   "):
            payload = parse_push_payload(raw, self.cfg, timestamp=1)
            self.assertEqual(payload, self.defaults)
        self.assertEqual(self.defaults.title, config.APP_NAME)
        self.assertEqual(self.defaults.body, config.DEFAULT_BODY)
        self.assertEqual(self.defaults.tag, "default")
        self.assertEqual(self.defaults.icon, config.DEFAULT_ICON)
        self.assertFalse(self.defaults.require_interaction)
        self.assertFalse(self.defaults.silent)
        self.assertEqual(self.defaults.vibrate, config.DEFAULT_VIBRATE)

    def test_title_only_overrides_title(self) -> None:
        payload = parse_push_payload(b'{"title": "X"}', self.cfg, timestamp=1)
        self.assertEqual(payload, self.defaults.with_changes(title="X"))

    def test_plain_text_becomes_body(self) -> None:
        payload = parse_push_payload(b"Variazione per la 5A {", self.cfg, timestamp=1)
        self.assertEqual(payload, self.defaults.with_changes(body="Variazione per la 5A {"))

    def test_full_payload(self) -> None:
        raw = json.dumps(
            {
                "title": "5A",
                "body": "Entrata alle 9",
                "tag": "variazioni-5A",
                "data": {"url": "/?section=5A", "section": "5A"},
                "requireInteraction": True,
                "timestamp": 1736496000000,
                "vibrate": [200, 100, 200],
                "actions": [{"action": "open", "title": "Apri"}, {"title": "no action"}],
            }
        )
        payload = parse_push_payload(raw, self.cfg, timestamp=1)
        self.assertEqual(payload.tag, "variazioni-5A")
        self.assertEqual(payload.data, NotificationData(url="/?section=5A", section="5A"))
        self.assertTrue(payload.require_interaction)
        self.assertEqual(payload.timestamp, 1736496000000)
        self.assertEqual(payload.vibrate, (200, 100, 200))
        self.assertEqual([a.action for a in payload.actions], ["open"])

    def test_wrong_types_fall_back_per_field(self) -> None:
        payload = parse_push_payload(b'{"silent": "yes", "vibrate": "long", "data": 3}', self.cfg, timestamp=1)
        self.assertEqual(payload, self.defaults)

    def test_json_scalars_and_lists_keep_default_body(self) -> None:
        for raw in (b"null", b"[1]", b"42", b"true"):
            self.assertEqual(parse_push_payload(raw, self.cfg, timestamp=1), self.defaults)
        payload = parse_push_payload(b'"Entrata alle 9"', self.cfg, timestamp=1)
        self.assertEqual(payload.body, "Entrata alle 9")

    def test_timestamp_defaults_to_delivery_time(self) -> None:
        payload = parse_push_payload(b"{}", self.cfg)
        self.assertGreater(payload.timestamp, 0)


class TestWorkerNotifications(unittest.TestCase):
    def test_push_shows_notification(self) -> None:
        worker, platform, _ = make_worker()
        token = worker.dispatch(PushEvent(b'{"title": "Nuova variazione"}'))
        self.assertTrue(token.settled)
        self.assertEqual(token.started, ["ShowNotification"])
        self.assertEqual([n.title for n in platform.notifications.history], ["Nuova variazione"])

    def _click(self, worker, platform, cfg, data):
        payload = default_payload(cfg).with_changes(tag="t", data=data)
        platform.notifications.show(payload)
        return worker.dispatch(NotificationClickEvent(Notification(tag="t", payload=payload)))

    def test_click_focuses_open_window_and_routes(self) -> None:
        worker, platform, cfg = make_worker()
        client = platform.clients.add(APP + "/")
        self._click(worker, platform, cfg, NotificationData(section="5A"))

        self.assertEqual(platform.notifications.active(), [])
        self.assertTrue(client.focused)
        self.assertEqual(
            client.messages,
            [{"type": NOTIFICATION_CLICKED, "data": {"url": "/", "section": "5A"}}],
        )
        self.assertEqual(len(platform.clients.match_all()), 1)

    def test_click_without_window_opens_one(self) -> None:
        worker, platform, cfg = make_worker()
        platform.clients.add("https://elsewhere.test/")
        self._click(worker, platform, cfg, NotificationData(url="/?professor=ROSSI", professor="ROSSI"))

        urls = [c.url for c in platform.clients.match_all()]
        self.assertEqual(urls, ["https://elsewhere.test/", APP + "/?professor=ROSSI"])
        self.assertTrue(platform.clients.match_all()[-1].focused)

    def test_close_is_logged_only(self) -> None:
        worker, _, cfg = make_worker()
        with self.assertLogs("fermitoday.notify", level="INFO"):
            token = worker.dispatch(NotificationCloseEvent(Notification(tag="t", payload=default_payload(cfg))))
        self.assertEqual(token.started, [])


if __name__ == "__main__":
    unittest.main()
