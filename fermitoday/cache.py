"""
Cache Store Manager.

Owns the versioned cache namespaces of the offline worker:

- install:  precache the app shell into the current namespace (all-or-nothing),
            then skip waiting
- activate: delete every namespace that is not the current version, then
            claim all open pages
- fetch:    network-first for backend / events traffic (cache as fallback),
            cache-first for everything else
- message:  SKIP_WAITING applies a pending update, GET_VERSION replies with
            the active cache version

Entries carry no TTL. Freshness comes from the routing policy only.
"""

from __future__ import annotations

import logging
import threading
from typing import Dict, Iterable, List, Optional, Tuple
from urllib.parse import urlsplit

from fermitoday.config import WorkerConfig, origin_of
from fermitoday.effects import (
    CacheAddAll,
    CacheDelete,
    CacheKeys,
    CacheMatch,
    CacheWrite,
    ClaimClients,
    Effect,
    FetchEvent,
    InstallEvent,
    ActivateEvent,
    MessageEvent,
    NetworkFetch,
    Reply,
    Respond,
    SkipWaiting,
)
from fermitoday.model import Request, Response

logger = logging.getLogger(__name__)

SKIP_WAITING = "SKIP_WAITING"
GET_VERSION = "GET_VERSION"


# ---------------------------------------------------------------------------
# Storage
# ---------------------------------------------------------------------------


class Cache:
    """
    One cache namespace: request URL -> response snapshot.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self._entries: Dict[str, Response] = {}
        self._lock = threading.Lock()

    def put(self, request: Request, response: Response) -> None:
        if request.method.upper() != "GET":
            raise ValueError(f"cannot cache {request.method} request {request.url}")
        if response.status == 206:
            raise ValueError(f"cannot cache partial response for {request.url}")
        with self._lock:
            self._entries[request.key] = response.clone()

    def put_all(self, pairs: Iterable[Tuple[Request, Response]]) -> None:
        items = list(pairs)
        for request, _ in items:
            if request.method.upper() != "GET":
                raise ValueError(f"cannot cache {request.method} request {request.url}")
        with self._lock:
            for request, response in items:
                self._entries[request.key] = response.clone()

    def match(self, request: Request) -> Optional[Response]:
        with self._lock:
            hit = self._entries.get(request.key)
        return hit.clone() if hit is not None else None

    def keys(self) -> List[str]:
        with self._lock:
            return list(self._entries)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class CacheStorage:
    """
    All cache namespaces visible to the worker, in creation order.
    """

    def __init__(self) -> None:
        self._caches: Dict[str, Cache] = {}
        self._lock = threading.Lock()

    def open(self, name: str) -> Cache:
        with self._lock:
            cache = self._caches.get(name)
            if cache is None:
                cache = self._caches[name] = Cache(name)
            return cache

    def keys(self) -> List[str]:
        with self._lock:
            return list(self._caches)

    def delete(self, name: str) -> bool:
        with self._lock:
            return self._caches.pop(name, None) is not None

    def match(self, request: Request, cache_name: Optional[str] = None) -> Optional[Response]:
        """
        Look request up in cache_name, or in every namespace (oldest first).
        """
        if cache_name is not None:
            with self._lock:
                cache = self._caches.get(cache_name)
            return cache.match(request) if cache else None
        with self._lock:
            caches = list(self._caches.values())
        for cache in caches:
            hit = cache.match(request)
            if hit is not None:
                return hit
        return None


# ---------------------------------------------------------------------------
# Routing
# ---------------------------------------------------------------------------


def is_network_first(url: str, cfg: WorkerConfig) -> bool:
    """
    Backend traffic and anything under /events must be fresh when possible.
    """
    if cfg.backend_origin and origin_of(url) == cfg.backend_origin:
        return True
    return "/events" in urlsplit(url).path


def _network_first(request: Request, cfg: WorkerConfig) -> List[Effect]:
    def fresh(response: Response) -> List[Effect]:
        return [Respond(response), CacheWrite(cfg.cache_version, request, response.clone())]

    def offline(exc: Exception) -> List[Effect]:
        logger.info("Network failed for %s (%s), trying cache", request.url, exc)
        return [CacheMatch(request, then=lambda cached: [Respond(cached)])]

    return [NetworkFetch(request, then=fresh, otherwise=offline)]


def _cache_first(request: Request, cfg: WorkerConfig) -> List[Effect]:
    def from_network(response: Response) -> List[Effect]:
        # only same-origin 200s are worth keeping
        if response.status != 200 or response.type != "basic":
            return [Respond(response)]
        return [Respond(response), CacheWrite(cfg.cache_version, request, response.clone())]

    def offline(exc: Exception) -> List[Effect]:
        if request.mode != "navigate":
            return [Respond(None)]
        fallback = Request(cfg.absolute(cfg.offline_fallback))
        return [CacheMatch(fallback, then=lambda cached: [Respond(cached)])]

    def lookup(cached: Optional[Response]) -> List[Effect]:
        if cached is not None:
            return [Respond(cached)]
        return [NetworkFetch(request, then=from_network, otherwise=offline)]

    return [CacheMatch(request, then=lookup)]


# ---------------------------------------------------------------------------
# Lifecycle handlers
# ---------------------------------------------------------------------------


def on_install(event: InstallEvent, cfg: WorkerConfig) -> List[Effect]:
    logger.info("Installing version: %s", cfg.cache_version)
    urls = tuple(cfg.absolute(asset) for asset in cfg.shell_assets)
    return [CacheAddAll(cfg.cache_version, urls), SkipWaiting()]


def on_activate(event: ActivateEvent, cfg: WorkerConfig) -> List[Effect]:
    logger.info("Activating version: %s", cfg.cache_version)

    def cleanup(names: List[str]) -> List[Effect]:
        stale = [name for name in names if name != cfg.cache_version]
        for name in stale:
            logger.info("Deleting old cache: %s", name)
        return [CacheDelete(name) for name in stale] + [ClaimClients()]

    return [CacheKeys(then=cleanup)]


def on_fetch(event: FetchEvent, cfg: WorkerConfig) -> List[Effect]:
    if is_network_first(event.request.url, cfg):
        return _network_first(event.request, cfg)
    return _cache_first(event.request, cfg)


def on_message(event: MessageEvent, cfg: WorkerConfig) -> List[Effect]:
    data = event.data if isinstance(event.data, dict) else {}
    kind = data.get("type")

    if kind == SKIP_WAITING:
        return [SkipWaiting()]

    if kind == GET_VERSION:
        if event.port is None:
            logger.warning("GET_VERSION without reply port, ignored")
            return []
        return [Reply(event.port, cfg.cache_version)]

    logger.debug("Ignoring message %r", event.data)
    return []
