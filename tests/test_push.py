"""
Tests for the push subscription controller.

State machine:
- opt-in failures roll back and persist nothing
- opt-out: unregister remotely, unsubscribe locally, clear storage (in that order)
- subscription-change recovery creates one subscription and one registration
"""

import base64
import tempfile
import unittest
from pathlib import Path
from unittest import mock

from fermitoday.api import BackendClient
from fermitoday.config import WorkerConfig
from fermitoday.effects import PushSubscriptionChangeEvent
from fermitoday.errors import BackendRejected, KeyUnavailable, PermissionDenied
from fermitoday.model import Preferences
from fermitoday.platform import MemoryPushManager, Platform
from fermitoday.push import SubscriptionController, url_base64_to_bytes
from fermitoday.storage import PreferenceStore
from fermitoday.worker import ServiceWorker

# 65 raw bytes, like an uncompressed P-256 public key
RAW_KEY = bytes([4]) + bytes(range(1, 65))
PUBLIC_KEY = base64.urlsafe_b64encode(RAW_KEY).rstrip(b"=").decode("ascii")


class TestUrlBase64(unittest.TestCase):
    def test_padding_and_alphabet(self) -> None:
        self.assertEqual(url_base64_to_bytes("AQID"), b"\x01\x02\x03")
        self.assertEqual(url_base64_to_bytes("-_8"), b"\xfb\xff")

    def test_server_key(self) -> None:
        self.assertEqual(url_base64_to_bytes(PUBLIC_KEY), RAW_KEY)

    def test_invalid_characters_rejected(self) -> None:
        with self.assertRaises(ValueError):
            url_base64_to_bytes("not a key!")


class ControllerTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self._tmp.cleanup)
        self.store = PreferenceStore(Path(self._tmp.name) / "settings.json")
        self.backend = mock.Mock(spec=BackendClient)
        self.backend.fetch_server_public_key.return_value = PUBLIC_KEY
        self.backend.unregister_from_backend.return_value = True
        self.backend.update_preferences.return_value = True
        self.manager = MemoryPushManager()
        self.controller = SubscriptionController(self.backend, self.manager, self.store)
        self.prefs = Preferences(section="5AIIN", digest_time="07:00")


class TestOptIn(ControllerTestCase):
    def test_success_persists_and_registers(self) -> None:
        record = self.controller.opt_in(self.prefs)

        self.backend.register_with_backend.assert_called_once_with(record, self.prefs)
        self.assertEqual(self.manager.subscribe_calls, 1)
        self.assertTrue(self.controller.subscribed)
        self.assertEqual(self.store.subscription, record)
        self.assertEqual(self.store.load_preferences(), self.prefs)

        # reloaded from disk
        self.assertEqual(PreferenceStore(self.store.path).subscription, record)

    def test_permission_denied(self) -> None:
        self.manager.grant = False
        with self.assertRaises(PermissionDenied):
            self.controller.opt_in(self.prefs)
        self.backend.register_with_backend.assert_not_called()
        self.assertFalse(self.controller.subscribed)
        self.assertIsNone(self.store.subscription)

    def test_key_unavailable(self) -> None:
        self.backend.fetch_server_public_key.side_effect = KeyUnavailable("down")
        with self.assertRaises(KeyUnavailable):
            self.controller.opt_in(self.prefs)
        self.assertEqual(self.manager.subscribe_calls, 0)
        self.assertFalse(self.controller.subscribed)

    def test_backend_rejection_rolls_back(self) -> None:
        self.backend.register_with_backend.side_effect = BackendRejected(500)
        with self.assertLogs("fermitoday.push", level="ERROR"):
            with self.assertRaises(BackendRejected):
                self.controller.opt_in(self.prefs)
        self.assertIsNone(self.manager.get_subscription())
        self.assertIsNone(self.store.subscription)
        self.assertFalse(self.store.notifications_enabled)

    def test_opt_in_twice_only_updates_preferences(self) -> None:
        first = self.controller.opt_in(self.prefs)
        newer = Preferences(professor="ROSSI")
        self.assertEqual(self.controller.opt_in(newer), first)
        self.assertEqual(self.backend.register_with_backend.call_count, 1)
        self.backend.update_preferences.assert_called_once_with(first, newer)


class TestOptOut(ControllerTestCase):
    def test_order_remote_then_local_then_storage(self) -> None:
        record = self.controller.opt_in(self.prefs)
        seen = []

        def unregister(endpoint):
            # local state must still be intact at this point
            seen.append((endpoint, self.manager.get_subscription(), self.store.subscription))
            return True

        self.backend.unregister_from_backend.side_effect = unregister
        self.controller.opt_out()

        self.assertEqual(seen, [(record.endpoint, record, record)])
        self.assertIsNone(self.manager.get_subscription())
        self.assertIsNone(self.store.subscription)
        self.assertFalse(self.controller.subscribed)

    def test_remote_failure_does_not_block_local_opt_out(self) -> None:
        self.controller.opt_in(self.prefs)
        self.backend.unregister_from_backend.return_value = False
        self.controller.opt_out()
        self.assertIsNone(self.manager.get_subscription())
        self.assertIsNone(self.store.subscription)


class TestPreferences(ControllerTestCase):
    def test_skipped_when_not_subscribed(self) -> None:
        self.assertFalse(self.controller.preferences_changed(self.prefs))
        self.backend.update_preferences.assert_not_called()
        self.assertEqual(self.store.load_preferences(), self.prefs)

    def test_sent_when_subscribed(self) -> None:
        record = self.controller.opt_in(self.prefs)
        changed = Preferences(section="4B", realtime_enabled=False)
        self.assertTrue(self.controller.preferences_changed(changed))
        self.backend.update_preferences.assert_called_once_with(record, changed)


class TestRecovery(ControllerTestCase):
    def setUp(self) -> None:
        super().setUp()
        cfg = WorkerConfig(cache_version="fermitoday-v1.0.0", origin="https://app.test")
        self.worker = ServiceWorker(
            cfg,
            Platform(network=mock.Mock(), push_manager=self.manager),
            subscriptions=self.controller,
        )

    def test_invalidated_subscription_is_replaced_once(self) -> None:
        old = self.controller.opt_in(self.prefs)
        self.backend.register_with_backend.reset_mock()
        self.manager.invalidate()

        event = PushSubscriptionChangeEvent(old_endpoint=old.endpoint)
        first = self.worker.dispatch(event)
        second = self.worker.dispatch(event)

        self.assertIsNone(first.error)
        self.assertIsNone(second.error)
        self.assertTrue(first.settled)
        self.assertIn("RecoverSubscription", first.started)
        self.assertEqual(self.manager.subscribe_calls, 2)
        self.backend.register_with_backend.assert_called_once()

        new = self.store.subscription
        self.assertNotEqual(new.endpoint, old.endpoint)
        self.assertEqual(self.manager.get_subscription(), new)
        self.backend.register_with_backend.assert_called_once_with(new, self.prefs)
        self.backend.unregister_from_backend.assert_called_once_with(old.endpoint)

    def test_recovery_without_old_endpoint_is_idempotent(self) -> None:
        self.controller.opt_in(self.prefs)
        self.backend.register_with_backend.reset_mock()
        self.manager.invalidate()

        self.worker.dispatch(PushSubscriptionChangeEvent())
        self.worker.dispatch(PushSubscriptionChangeEvent())

        self.assertEqual(self.manager.subscribe_calls, 2)
        self.backend.register_with_backend.assert_called_once()

    def test_no_prompt_during_recovery(self) -> None:
        self.controller.opt_in(self.prefs)
        self.manager.invalidate()
        self.manager.permission = "denied"
        with mock.patch.object(self.manager, "request_permission") as prompt:
            self.worker.dispatch(PushSubscriptionChangeEvent())
        prompt.assert_not_called()
        self.assertEqual(self.manager.subscribe_calls, 1)

    def test_opted_out_user_is_left_alone(self) -> None:
        self.worker.dispatch(PushSubscriptionChangeEvent(old_endpoint="https://push.example.net/send/x"))
        self.assertEqual(self.manager.subscribe_calls, 0)
        self.backend.register_with_backend.assert_not_called()

    def test_failure_is_logged_not_raised(self) -> None:
        self.controller.opt_in(self.prefs)
        self.manager.invalidate()
        self.backend.fetch_server_public_key.side_effect = KeyUnavailable("down")
        with self.assertLogs("fermitoday.worker", level="ERROR"):
            token = self.worker.dispatch(PushSubscriptionChangeEvent())
        self.assertIsInstance(token.error, KeyUnavailable)
        self.assertTrue(token.settled)


if __name__ == "__main__":
    unittest.main()
