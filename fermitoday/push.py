"""
Push Subscription Controller.

Per user there are two states:

    Unsubscribed --opt_in--> Subscribed --opt_out--> Unsubscribed

opt_in:  public key -> permission -> platform subscription -> backend
         registration -> persist locally. Any failure rolls back to
         Unsubscribed and nothing is persisted.
opt_out: unregister remotely (best effort) -> unsubscribe locally -> clear
         the persisted record, in that order, so an interrupted opt-out can
         be retried.

recover() handles a subscription the push service invalidated. It runs
inside the worker with no page open, so it never prompts the user.
"""

from __future__ import annotations

import base64
import binascii
import logging
import threading
from typing import List, Optional

from fermitoday.api import BackendClient
from fermitoday.config import WorkerConfig
from fermitoday.effects import Effect, PushSubscriptionChangeEvent, RecoverSubscription
from fermitoday.errors import FermiTodayError, KeyUnavailable, NotSupported, PermissionDenied
from fermitoday.model import Preferences, PushSubscriptionRecord
from fermitoday.platform import PushManager
from fermitoday.storage import PreferenceStore

logger = logging.getLogger(__name__)


def url_base64_to_bytes(value: str) -> bytes:
    """
    Convert a URL-safe base64 key (padding optional) to raw bytes.
    """
    padding = "=" * ((4 - len(value) % 4) % 4)
    standard = (value + padding).replace("-", "+").replace("_", "/")
    return base64.b64decode(standard, validate=True)


def _server_key(public_key: str) -> bytes:
    try:
        return url_base64_to_bytes(public_key)
    except (binascii.Error, ValueError) as exc:
        raise KeyUnavailable(f"public key is not valid base64: {exc}") from exc


class SubscriptionController:
    def __init__(
        self,
        backend: BackendClient,
        push_manager: Optional[PushManager],
        store: PreferenceStore,
    ) -> None:
        self.backend = backend
        self.push_manager = push_manager
        self.store = store
        self._lock = threading.Lock()

    @property
    def subscribed(self) -> bool:
        return self.store.notifications_enabled and self.store.subscription is not None

    def _manager(self) -> PushManager:
        if self.push_manager is None:
            raise NotSupported("push notifications are not supported here")
        return self.push_manager

    def fetch_server_public_key(self) -> str:
        return self.backend.fetch_server_public_key()

    def subscribe(self, public_key: str) -> PushSubscriptionRecord:
        """
        Ask for permission, then create a platform subscription bound to public_key.
        """
        manager = self._manager()
        server_key = _server_key(public_key)

        if manager.request_permission() != "granted":
            raise PermissionDenied("notification permission was not granted")
        logger.info("Notification permission granted")

        try:
            record = manager.subscribe(application_server_key=server_key, user_visible_only=True)
        except PermissionError as exc:
            raise PermissionDenied(str(exc)) from exc
        logger.info("Push subscription created")
        return record

    def opt_in(self, prefs: Preferences) -> PushSubscriptionRecord:
        with self._lock:
            if self.subscribed:
                stored = self.store.subscription
                self.store.save_preferences(prefs)
                self.backend.update_preferences(stored, prefs)
                return stored

            public_key = self.fetch_server_public_key()
            record = self.subscribe(public_key)
            try:
                self.backend.register_with_backend(record, prefs)
            except FermiTodayError:
                logger.error("Notification setup failed, rolling back")
                self._manager().unsubscribe()
                raise

            self.store.save_preferences(prefs)
            self.store.save_subscription(record)
            return record

    def opt_out(self) -> None:
        with self._lock:
            record = self.store.subscription
            if record is not None:
                self.backend.unregister_from_backend(record.endpoint)
                if self.push_manager is not None and self.push_manager.get_subscription() is not None:
                    self.push_manager.unsubscribe()
            self.store.save_subscription(None)
            logger.info("Notifications disabled")

    def preferences_changed(self, prefs: Preferences) -> bool:
        """
        Persist prefs and, when subscribed, send them to the backend (best effort).
        """
        self.store.save_preferences(prefs)
        if not self.subscribed:
            return False
        return self.backend.update_preferences(self.store.subscription, prefs)

    def recover(self, old_endpoint: Optional[str] = None) -> Optional[PushSubscriptionRecord]:
        """
        Replace an invalidated subscription and register the new one.

        Idempotent: when the stored subscription no longer matches
        old_endpoint it has already been replaced and nothing happens.
        """
        with self._lock:
            stored = self.store.subscription
            if stored is None or not self.store.notifications_enabled:
                logger.info("Subscription changed while opted out, nothing to recover")
                return None
            if old_endpoint and stored.endpoint != old_endpoint:
                logger.info("Subscription already replaced, skipping recovery")
                return stored

            manager = self._manager()
            current = manager.get_subscription()
            if current is not None and current.endpoint == stored.endpoint:
                logger.info("Stored subscription is still valid")
                return stored
            if manager.permission_state() != "granted":
                logger.warning("Permission no longer granted, cannot recover subscription")
                return None

            server_key = _server_key(self.fetch_server_public_key())

            record = manager.subscribe(application_server_key=server_key, user_visible_only=True)
            self.backend.register_with_backend(record, self.store.load_preferences())
            self.store.save_subscription(record)
            logger.info("Push subscription renewed")

            if stored.endpoint != record.endpoint:
                self.backend.unregister_from_backend(stored.endpoint)
            return record


def on_subscription_change(event: PushSubscriptionChangeEvent, cfg: WorkerConfig) -> List[Effect]:
    logger.info("Push subscription changed (new endpoint: %s)", event.new_endpoint or "none")
    return [RecoverSubscription(old_endpoint=event.old_endpoint)]
