"""
Worker driver.

A ServiceWorker owns one WorkerConfig and one Platform. dispatch() looks the
event kind up in the handler table, runs the pure handler and executes the
effects it returns (following continuations) one after the other.

Every operation the driver starts is registered on the event's
ExtendableEvent token, so a host can tell when the worker may be recycled.
Handler errors are logged and stored on the token; they never propagate
out of dispatch(), there is nobody to report them to.

A Registration holds the active and the waiting worker and runs the
install -> activate lifecycle.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Optional

from fermitoday import cache, notify, push
from fermitoday.config import WorkerConfig
from fermitoday.effects import (
    ActivateEvent,
    CacheAddAll,
    CacheDelete,
    CacheKeys,
    CacheMatch,
    CacheWrite,
    ClaimClients,
    CloseNotification,
    Effect,
    Effects,
    FetchEvent,
    FocusClient,
    InstallEvent,
    MatchClients,
    MessageEvent,
    NetworkFetch,
    OpenWindow,
    PostMessage,
    RecoverSubscription,
    Reply,
    Respond,
    ShowNotification,
    SkipWaiting,
    WorkerEvent,
)
from fermitoday.errors import InstallFailed, NetworkUnavailable
from fermitoday.model import Request, Response
from fermitoday.platform import Platform
from fermitoday.push import SubscriptionController

logger = logging.getLogger(__name__)

Handler = Callable[[Any, WorkerConfig], Effects]

HANDLERS: Dict[str, Handler] = {
    "install": cache.on_install,
    "activate": cache.on_activate,
    "fetch": cache.on_fetch,
    "message": cache.on_message,
    "push": notify.on_push,
    "notificationclick": notify.on_notification_click,
    "notificationclose": notify.on_notification_close,
    "pushsubscriptionchange": push.on_subscription_change,
}


class ExtendableEvent:
    """
    Completion token of one dispatched event.

    wait_until() registers an operation, resolve() marks it finished; the
    event is settled once nothing is pending.
    """

    def __init__(self, event: WorkerEvent) -> None:
        self.event = event
        self.started: List[str] = []
        self.pending: List[str] = []
        self.responded = False
        self.response: Optional[Response] = None
        self.error: Optional[BaseException] = None

    def wait_until(self, operation: str) -> None:
        self.started.append(operation)
        self.pending.append(operation)

    def resolve(self, operation: str) -> None:
        self.pending.remove(operation)

    @property
    def settled(self) -> bool:
        return not self.pending

    def respond_with(self, response: Optional[Response]) -> None:
        if self.responded:
            raise RuntimeError("respond_with() called twice for the same fetch")
        self.responded = True
        self.response = response


class ServiceWorker:
    def __init__(
        self,
        config: WorkerConfig,
        platform: Platform,
        subscriptions: Optional[SubscriptionController] = None,
        handlers: Optional[Dict[str, Handler]] = None,
    ) -> None:
        self.config = config
        self.platform = platform
        self.subscriptions = subscriptions
        self.handlers = dict(HANDLERS if handlers is None else handlers)
        self.state = "parsed"
        self.skip_waiting_requested = False
        self.registration: Optional[Registration] = None
        self._performers: Dict[type, Callable[[Any, ExtendableEvent], Effects]] = {
            CacheAddAll: self._cache_add_all,
            CacheWrite: self._cache_write,
            CacheDelete: self._cache_delete,
            CacheKeys: self._cache_keys,
            CacheMatch: self._cache_match,
            NetworkFetch: self._network_fetch,
            Respond: self._respond,
            SkipWaiting: self._skip_waiting,
            ClaimClients: self._claim_clients,
            ShowNotification: self._show_notification,
            CloseNotification: self._close_notification,
            MatchClients: self._match_clients,
            FocusClient: self._focus_client,
            OpenWindow: self._open_window,
            PostMessage: self._post_message,
            Reply: self._reply,
            RecoverSubscription: self._recover_subscription,
        }

    def __repr__(self) -> str:
        return f"<ServiceWorker {self.config.cache_version} {self.state}>"

    # -- dispatch -----------------------------------------------------------

    def dispatch(self, event: WorkerEvent) -> ExtendableEvent:
        token = ExtendableEvent(event)
        handler = self.handlers.get(event.kind)
        if handler is None:
            logger.debug("No handler for %s", event.kind)
            return token

        try:
            self._run(handler(event, self.config), token)
        except InstallFailed as exc:
            logger.error("Install of %s failed: %s", self.config.cache_version, exc)
            token.error = exc
        except Exception as exc:
            logger.exception("Unhandled error in %s handler", event.kind)
            token.error = exc
        return token

    def fetch(self, request: Request) -> ExtendableEvent:
        return self.dispatch(FetchEvent(request))

    def _run(self, effects: Effects, token: ExtendableEvent) -> None:
        for effect in effects:
            self._execute(effect, token)

    def _execute(self, effect: Effect, token: ExtendableEvent) -> None:
        performer = self._performers.get(type(effect))
        if performer is None:
            raise TypeError(f"unknown effect {effect!r}")
        label = type(effect).__name__
        token.wait_until(label)
        try:
            follow_up = performer(effect, token)
        finally:
            token.resolve(label)
        if follow_up:
            self._run(follow_up, token)

    # -- caches -------------------------------------------------------------

    def _cache_add_all(self, effect: CacheAddAll, token: ExtendableEvent) -> Effects:
        fetched = []
        for url in effect.urls:
            request = Request(url)
            try:
                response = self.platform.network.fetch(request)
            except NetworkUnavailable as exc:
                raise InstallFailed(f"could not fetch {url}: {exc}") from exc
            if not response.ok:
                raise InstallFailed(f"{url} answered HTTP {response.status}")
            fetched.append((request, response))

        logger.info("Caching app shell")
        self.platform.caches.open(effect.cache_name).put_all(fetched)
        return []

    def _cache_write(self, effect: CacheWrite, token: ExtendableEvent) -> Effects:
        try:
            self.platform.caches.open(effect.cache_name).put(effect.request, effect.response)
        except Exception as exc:
            logger.warning("Cache write for %s failed: %s", effect.request.url, exc)
        return []

    def _cache_delete(self, effect: CacheDelete, token: ExtendableEvent) -> Effects:
        self.platform.caches.delete(effect.cache_name)
        return []

    def _cache_keys(self, effect: CacheKeys, token: ExtendableEvent) -> Effects:
        return effect.then(self.platform.caches.keys())

    def _cache_match(self, effect: CacheMatch, token: ExtendableEvent) -> Effects:
        return effect.then(self.platform.caches.match(effect.request, effect.cache_name))

    # -- network ------------------------------------------------------------

    def _network_fetch(self, effect: NetworkFetch, token: ExtendableEvent) -> Effects:
        try:
            response = self.platform.network.fetch(effect.request)
        except NetworkUnavailable as exc:
            return effect.otherwise(exc)
        return effect.then(response)

    def _respond(self, effect: Respond, token: ExtendableEvent) -> Effects:
        token.respond_with(effect.response)
        return []

    # -- lifecycle ----------------------------------------------------------

    def _skip_waiting(self, effect: SkipWaiting, token: ExtendableEvent) -> Effects:
        logger.info("Skip waiting")
        self.skip_waiting_requested = True
        if self.registration is not None and self.registration.waiting is self:
            self.registration.activate_waiting()
        return []

    def _claim_clients(self, effect: ClaimClients, token: ExtendableEvent) -> Effects:
        logger.info("Claiming clients")
        self.platform.clients.claim(self.config.cache_version)
        return []

    # -- notifications & clients --------------------------------------------

    def _show_notification(self, effect: ShowNotification, token: ExtendableEvent) -> Effects:
        self.platform.notifications.show(effect.payload)
        return []

    def _close_notification(self, effect: CloseNotification, token: ExtendableEvent) -> Effects:
        self.platform.notifications.close(effect.tag)
        return []

    def _match_clients(self, effect: MatchClients, token: ExtendableEvent) -> Effects:
        return effect.then(self.platform.clients.match_all(include_uncontrolled=effect.include_uncontrolled))

    def _focus_client(self, effect: FocusClient, token: ExtendableEvent) -> Effects:
        self.platform.clients.focus(effect.client_id)
        return []

    def _open_window(self, effect: OpenWindow, token: ExtendableEvent) -> Effects:
        self.platform.clients.open_window(self.config.absolute(effect.url))
        return []

    def _post_message(self, effect: PostMessage, token: ExtendableEvent) -> Effects:
        self.platform.clients.post_message(effect.client_id, effect.message)
        return []

    def _reply(self, effect: Reply, token: ExtendableEvent) -> Effects:
        effect.port.post_message(effect.message)
        return []

    # -- push ---------------------------------------------------------------

    def _recover_subscription(self, effect: RecoverSubscription, token: ExtendableEvent) -> Effects:
        if self.subscriptions is None:
            logger.warning("Subscription changed but no controller is configured")
            return []
        self.subscriptions.recover(effect.old_endpoint)
        return []


class Registration:
    """
    The worker revisions of one scope: at most one active, one waiting.
    """

    def __init__(self, platform: Platform) -> None:
        self.platform = platform
        self.active: Optional[ServiceWorker] = None
        self.waiting: Optional[ServiceWorker] = None
        self.installing: Optional[ServiceWorker] = None

    def register(self, worker: ServiceWorker) -> bool:
        """
        Install worker; activate it right away when allowed.

        Returns False when the install failed. The previous active worker
        then stays in charge.
        """
        worker.registration = self
        self.installing = worker
        worker.state = "installing"
        token = worker.dispatch(InstallEvent())
        self.installing = None

        if token.error is not None:
            worker.state = "redundant"
            return False

        worker.state = "installed"
        if self.waiting is not None and self.waiting is not worker:
            self.waiting.state = "redundant"
        self.waiting = worker
        if self.active is None or worker.skip_waiting_requested:
            self.activate_waiting()
        return True

    def activate_waiting(self) -> Optional[ServiceWorker]:
        worker = self.waiting
        if worker is None:
            return None
        previous = self.active
        self.waiting = None
        self.active = worker
        if previous is not None:
            previous.state = "redundant"

        worker.state = "activating"
        worker.dispatch(ActivateEvent())
        worker.state = "activated"
        return worker

    def fetch(self, request: Request) -> Optional[ExtendableEvent]:
        if self.active is None:
            return None
        return self.active.fetch(request)

    def post_message(self, data: Any, port: Any = None, to_waiting: bool = False) -> Optional[ExtendableEvent]:
        target = self.waiting if to_waiting else self.active
        if target is None:
            return None
        return target.dispatch(MessageEvent(data=data, port=port))
