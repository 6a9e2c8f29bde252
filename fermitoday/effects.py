"""
Worker events (what the platform delivers) and effects (what handlers ask for).

Handlers are plain functions (event, config) -> list of effects. They never
touch caches, the network or clients themselves; the driver in
fermitoday.worker executes the effects. An effect that needs a result
(a cache lookup, a network fetch, the list of open windows) carries a
continuation returning the next effects.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Union

from fermitoday.model import NotificationPayload, Request, Response


# ---------------------------------------------------------------------------
# Events delivered to the worker
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class InstallEvent:
    kind = "install"


@dataclass(frozen=True)
class ActivateEvent:
    kind = "activate"


@dataclass(frozen=True)
class FetchEvent:
    request: Request
    kind = "fetch"


@dataclass(frozen=True)
class MessageEvent:
    data: Any
    port: Any = None
    kind = "message"


@dataclass(frozen=True)
class PushEvent:
    data: Union[bytes, str, None] = None
    kind = "push"


@dataclass(frozen=True)
class Notification:
    """A displayed notification as handed back on click/close."""

    tag: str
    payload: NotificationPayload


@dataclass(frozen=True)
class NotificationClickEvent:
    notification: Notification
    action: str = ""
    kind = "notificationclick"


@dataclass(frozen=True)
class NotificationCloseEvent:
    notification: Notification
    kind = "notificationclose"


@dataclass(frozen=True)
class PushSubscriptionChangeEvent:
    old_endpoint: Optional[str] = None
    new_endpoint: Optional[str] = None
    kind = "pushsubscriptionchange"


WorkerEvent = Union[
    InstallEvent,
    ActivateEvent,
    FetchEvent,
    MessageEvent,
    PushEvent,
    NotificationClickEvent,
    NotificationCloseEvent,
    PushSubscriptionChangeEvent,
]


# ---------------------------------------------------------------------------
# Effects
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CacheAddAll:
    """Fetch and store every URL, or nothing at all."""

    cache_name: str
    urls: Tuple[str, ...]


@dataclass(frozen=True)
class CacheWrite:
    """Fire-and-forget put; failures are logged and ignored."""

    cache_name: str
    request: Request
    response: Response


@dataclass(frozen=True)
class CacheDelete:
    cache_name: str


@dataclass(frozen=True)
class CacheKeys:
    then: Callable[[List[str]], "Effects"]


@dataclass(frozen=True)
class CacheMatch:
    """Look the request up; cache_name None searches every namespace."""

    request: Request
    then: Callable[[Optional[Response]], "Effects"]
    cache_name: Optional[str] = None


@dataclass(frozen=True)
class NetworkFetch:
    request: Request
    then: Callable[[Response], "Effects"]
    otherwise: Callable[[Exception], "Effects"] = lambda exc: []


@dataclass(frozen=True)
class Respond:
    """Answer the fetch event. None means "no response" (network error)."""

    response: Optional[Response]


@dataclass(frozen=True)
class SkipWaiting:
    pass


@dataclass(frozen=True)
class ClaimClients:
    pass


@dataclass(frozen=True)
class ShowNotification:
    payload: NotificationPayload


@dataclass(frozen=True)
class CloseNotification:
    tag: str


@dataclass(frozen=True)
class MatchClients:
    then: Callable[[List[Any]], "Effects"]
    include_uncontrolled: bool = True


@dataclass(frozen=True)
class FocusClient:
    client_id: str


@dataclass(frozen=True)
class OpenWindow:
    url: str


@dataclass(frozen=True)
class PostMessage:
    client_id: str
    message: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Reply:
    port: Any
    message: Any


@dataclass(frozen=True)
class RecoverSubscription:
    old_endpoint: Optional[str] = None


Effect = Union[
    CacheAddAll,
    CacheWrite,
    CacheDelete,
    CacheKeys,
    CacheMatch,
    NetworkFetch,
    Respond,
    SkipWaiting,
    ClaimClients,
    ShowNotification,
    CloseNotification,
    MatchClients,
    FocusClient,
    OpenWindow,
    PostMessage,
    Reply,
    RecoverSubscription,
]

Effects = Sequence[Effect]
