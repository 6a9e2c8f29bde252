"""
Tests for the backend client (HTTP mocked with unittest.mock).
"""

import unittest
from datetime import date
from unittest import mock

import requests

from fermitoday.api import BackendClient
from fermitoday.errors import BackendRejected, KeyUnavailable, NetworkUnavailable
from fermitoday.model import Event, Preferences, PushSubscriptionRecord, SubscriptionKeys

BASE = "https://api.test"
RECORD = PushSubscriptionRecord(
    endpoint="https://push.example.net/send/abc",
    keys=SubscriptionKeys(p256dh="BPk", auth="c2VjcmV0"),
)


def http_response(status: int = 200, payload=None, url: str = BASE) -> mock.Mock:
    resp = mock.Mock()
    resp.status_code = status
    resp.ok = 200 <= status < 300
    resp.url = url
    if isinstance(payload, Exception):
        resp.json.side_effect = payload
    else:
        resp.json.return_value = payload
    return resp


class BackendTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.session = mock.Mock(spec=requests.Session)
        self.client = BackendClient(BASE, session=self.session, timeout=5)


class TestPublicKey(BackendTestCase):
    def test_key_returned(self) -> None:
        self.session.get.return_value = http_response(payload={"publicKey": " BEl62iUYgU "})
        self.assertEqual(self.client.fetch_server_public_key(), "BEl62iUYgU")
        self.session.get.assert_called_once_with(
            BASE + "/vapid-public-key", params=None, headers={"Accept": "application/json"}, timeout=5
        )

    def test_network_failure(self) -> None:
        self.session.get.side_effect = requests.ConnectionError("dns")
        with self.assertRaises(KeyUnavailable):
            self.client.fetch_server_public_key()

    def test_not_json(self) -> None:
        self.session.get.return_value = http_response(payload=ValueError("html"))
        with self.assertRaises(KeyUnavailable):
            self.client.fetch_server_public_key()

    def test_missing_field(self) -> None:
        self.session.get.return_value = http_response(payload={"key": "x"})
        with self.assertRaises(KeyUnavailable):
            self.client.fetch_server_public_key()

    def test_http_error(self) -> None:
        self.session.get.return_value = http_response(status=503)
        with self.assertRaises(KeyUnavailable):
            self.client.fetch_server_public_key()


class TestSubscriptionCalls(BackendTestCase):
    def test_register_payload(self) -> None:
        self.session.post.return_value = http_response(status=201)
        self.client.register_with_backend(RECORD, Preferences(section=" 5A ", professor="  "))
        self.session.post.assert_called_once_with(
            BASE + "/register-token",
            json={
                "subscription": RECORD.to_dict(),
                "section": "5A",
                "professor": None,
                "digestEnabled": True,
                "digestTime": "06:00",
                "realtimeEnabled": True,
            },
            timeout=5,
        )

    def test_register_rejected(self) -> None:
        self.session.post.return_value = http_response(status=400)
        with self.assertRaises(BackendRejected) as ctx:
            self.client.register_with_backend(RECORD, Preferences())
        self.assertEqual(ctx.exception.status, 400)

    def test_register_offline(self) -> None:
        self.session.post.side_effect = requests.Timeout("slow")
        with self.assertRaises(NetworkUnavailable):
            self.client.register_with_backend(RECORD, Preferences())

    def test_unregister_is_best_effort(self) -> None:
        self.session.post.side_effect = requests.ConnectionError("offline")
        with self.assertLogs("fermitoday.api", level="WARNING"):
            self.assertFalse(self.client.unregister_from_backend(RECORD.endpoint))
        self.session.post.assert_called_once_with(
            BASE + "/unregister-token", json={"token": RECORD.endpoint}, timeout=5
        )

    def test_update_preferences(self) -> None:
        self.session.post.return_value = http_response()
        self.assertTrue(self.client.update_preferences(RECORD, Preferences(professor="ROSSI", digest_enabled=False)))
        _, kwargs = self.session.post.call_args
        self.assertEqual(kwargs["json"]["token"], RECORD.endpoint)
        self.assertEqual(kwargs["json"]["professor"], "ROSSI")
        self.assertFalse(kwargs["json"]["digestEnabled"])

    def test_update_preferences_without_subscription(self) -> None:
        self.assertFalse(self.client.update_preferences(None, Preferences()))
        self.session.post.assert_not_called()

    def test_update_preferences_rejected_is_swallowed(self) -> None:
        self.session.post.return_value = http_response(status=500)
        with self.assertLogs("fermitoday.api", level="WARNING"):
            self.assertFalse(self.client.update_preferences(RECORD, Preferences()))


class TestEvents(BackendTestCase):
    def test_fetch_events(self) -> None:
        self.session.get.return_value = http_response(
            payload=[
                {"id": "e1", "summary": "CLASSE 5A AULA 2", "start": "2025-01-10T08:00:00+01:00", "end": "2025-01-10T09:00:00+01:00"},
                {"id": "e2", "summary": "Gita", "start": "2025-01-10", "end": "2025-01-11", "isAllDay": True},
                "garbage",
            ]
        )
        events = self.client.fetch_events(date(2025, 1, 10), section="5a")
        self.assertEqual([e.id for e in events], ["e1", "e2"])
        self.assertIsInstance(events[0], Event)
        self.assertTrue(events[1].is_all_day)
        _, kwargs = self.session.get.call_args
        self.assertEqual(kwargs["params"], {"date": "2025-01-10", "section": "5A"})

    def test_fetch_events_errors(self) -> None:
        self.session.get.return_value = http_response(status=502)
        with self.assertRaises(BackendRejected):
            self.client.fetch_events(date(2025, 1, 10))

        self.session.get.side_effect = requests.ConnectionError("offline")
        with self.assertRaises(NetworkUnavailable):
            self.client.fetch_events(date(2025, 1, 10))


if __name__ == "__main__":
    unittest.main()
