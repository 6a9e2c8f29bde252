"""
Platform adapters used by the worker driver.

The worker never talks to the outside world directly. It goes through:

- a Network (HttpNetwork: real HTTP via requests)
- a CacheStorage (fermitoday.cache)
- a ClientRegistry (open application windows)
- a NotificationCenter (displayed notifications)
- a PushManager (platform push subscriptions)

The in-memory adapters below back the CLI and the tests; a host embedding
the worker can hand in its own objects with the same methods.
"""

from __future__ import annotations

import base64
import itertools
import logging
import secrets
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol

import requests

from fermitoday import config
from fermitoday.cache import CacheStorage
from fermitoday.config import origin_of
from fermitoday.errors import NetworkUnavailable
from fermitoday.model import (
    NotificationPayload,
    PushSubscriptionRecord,
    Request,
    Response,
    SubscriptionKeys,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Network
# ---------------------------------------------------------------------------


class Network(Protocol):
    def fetch(self, request: Request) -> Response: ...


class HttpNetwork:
    """
    Network adapter backed by a requests Session.

    Any transport failure (DNS, refused connection, timeout) becomes
    NetworkUnavailable. HTTP error statuses are ordinary responses.
    """

    def __init__(
        self,
        origin: str = config.APP_ORIGIN,
        session: Optional[requests.Session] = None,
        timeout: float = config.HTTP_TIMEOUT,
    ) -> None:
        self.origin = origin
        self.session = session or requests.Session()
        self.timeout = timeout

    def fetch(self, request: Request) -> Response:
        try:
            resp = self.session.request(
                request.method,
                request.url,
                headers=dict(request.headers),
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise NetworkUnavailable(f"{request.method} {request.url}: {exc}") from exc

        final_url = resp.url or request.url
        logger.debug("%s %s -> %s", request.method, request.url, resp.status_code)
        return Response(
            url=final_url,
            status=resp.status_code,
            body=resp.content,
            headers=tuple(resp.headers.items()),
            type="basic" if origin_of(final_url) == self.origin else "cors",
        )


# ---------------------------------------------------------------------------
# Clients
# ---------------------------------------------------------------------------


class MessagePort:
    """Reply channel handed over with a message."""

    def __init__(self) -> None:
        self.messages: List[Any] = []

    def post_message(self, message: Any) -> None:
        self.messages.append(message)


@dataclass
class Client:
    id: str
    url: str
    type: str = "window"
    focused: bool = False
    controller: Optional[str] = None
    messages: List[Dict[str, Any]] = field(default_factory=list)


class ClientRegistry:
    """
    Open application windows.
    """

    def __init__(self) -> None:
        self._clients: Dict[str, Client] = {}
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    def add(self, url: str, controller: Optional[str] = None) -> Client:
        with self._lock:
            client = Client(id=f"client-{next(self._ids)}", url=url, controller=controller)
            self._clients[client.id] = client
            return client

    def get(self, client_id: str) -> Optional[Client]:
        with self._lock:
            return self._clients.get(client_id)

    def match_all(self, include_uncontrolled: bool = True, type: str = "window") -> List[Client]:
        with self._lock:
            clients = list(self._clients.values())
        return [
            c
            for c in clients
            if c.type == type and (include_uncontrolled or c.controller is not None)
        ]

    def claim(self, version: str) -> int:
        """
        Make version the controller of every open client. Returns how many changed.
        """
        changed = 0
        with self._lock:
            for client in self._clients.values():
                if client.controller != version:
                    client.controller = version
                    changed += 1
        return changed

    def focus(self, client_id: str) -> Client:
        with self._lock:
            client = self._clients.get(client_id)
            if client is None:
                raise LookupError(f"no client {client_id}")
            for other in self._clients.values():
                other.focused = other is client
            return client

    def open_window(self, url: str) -> Client:
        client = self.add(url)
        return self.focus(client.id)

    def post_message(self, client_id: str, message: Dict[str, Any]) -> None:
        with self._lock:
            client = self._clients.get(client_id)
        if client is None:
            raise LookupError(f"no client {client_id}")
        client.messages.append(message)


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------


class NotificationCenter:
    """
    Displayed notifications, collapsed by tag.
    """

    def __init__(self) -> None:
        self.history: List[NotificationPayload] = []
        self._active: Dict[str, NotificationPayload] = {}

    def show(self, payload: NotificationPayload) -> None:
        self.history.append(payload)
        self._active[payload.tag] = payload

    def close(self, tag: str) -> None:
        self._active.pop(tag, None)

    def active(self) -> List[NotificationPayload]:
        return list(self._active.values())


# ---------------------------------------------------------------------------
# Push manager
# ---------------------------------------------------------------------------


class PushManager(Protocol):
    def permission_state(self) -> str: ...

    def request_permission(self) -> str: ...

    def subscribe(self, application_server_key: bytes, user_visible_only: bool = True) -> PushSubscriptionRecord: ...

    def get_subscription(self) -> Optional[PushSubscriptionRecord]: ...

    def unsubscribe(self) -> bool: ...


def _b64url(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


class MemoryPushManager:
    """
    Push manager that issues subscriptions locally.

    grant decides the answer of the permission prompt; invalidate() drops
    the current subscription the way a push service does when it expires.
    """

    def __init__(self, grant: bool = True, endpoint_base: str = "https://push.example.net/send/") -> None:
        self.grant = grant
        self.endpoint_base = endpoint_base
        self.permission = "default"
        self.subscribe_calls = 0
        self._current: Optional[PushSubscriptionRecord] = None
        self._server_key: Optional[bytes] = None

    def permission_state(self) -> str:
        return self.permission

    def request_permission(self) -> str:
        if self.permission == "default":
            self.permission = "granted" if self.grant else "denied"
        return self.permission

    def subscribe(self, application_server_key: bytes, user_visible_only: bool = True) -> PushSubscriptionRecord:
        if not user_visible_only:
            raise ValueError("subscriptions must be userVisibleOnly")
        if self.permission != "granted":
            raise PermissionError("notification permission not granted")
        if not application_server_key:
            raise ValueError("applicationServerKey is empty")

        self.subscribe_calls += 1
        if self._current is not None and self._server_key == application_server_key:
            return self._current

        self._server_key = application_server_key
        self._current = PushSubscriptionRecord(
            endpoint=self.endpoint_base + secrets.token_urlsafe(16),
            keys=SubscriptionKeys(p256dh=_b64url(secrets.token_bytes(65)), auth=_b64url(secrets.token_bytes(16))),
        )
        return self._current

    def restore(self, record: PushSubscriptionRecord) -> None:
        """
        Hold a subscription issued in an earlier session (permission was granted then).
        """
        self.permission = "granted"
        self._current = record
        self._server_key = None

    def get_subscription(self) -> Optional[PushSubscriptionRecord]:
        return self._current

    def unsubscribe(self) -> bool:
        had = self._current is not None
        self._current = None
        self._server_key = None
        return had

    def invalidate(self) -> Optional[PushSubscriptionRecord]:
        old = self._current
        self._current = None
        self._server_key = None
        return old


# ---------------------------------------------------------------------------
# Bundle
# ---------------------------------------------------------------------------


@dataclass
class Platform:
    network: Network
    caches: CacheStorage = field(default_factory=CacheStorage)
    clients: ClientRegistry = field(default_factory=ClientRegistry)
    notifications: NotificationCenter = field(default_factory=NotificationCenter)
    push_manager: Optional[PushManager] = None
