"""
Central data model definitions used across the project.

Inbound JSON (backend events, push payloads, stored subscriptions) is
validated once at the boundary through the from_dict() constructors below.
Everything past that point works on fully-defaulted records.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional, Tuple

from fermitoday import config


def _opt_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _opt_text(value: Any) -> Optional[str]:
    # only real strings; numbers or objects in a text field are dropped
    if not isinstance(value, str) or not value.strip():
        return None
    return value


# ---------------------------------------------------------------------------
# Timetable events
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Event:
    """
    One timetable change as returned by GET /events.

    start/end are ISO strings: either a plain date (all-day) or a full
    timestamp, with or without UTC offset.
    """

    id: str
    summary: str
    start: str
    end: str
    description: Optional[str] = None
    is_all_day: bool = False

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "Event":
        return cls(
            id=str(raw.get("id", "") or ""),
            summary=str(raw.get("summary", "") or ""),
            start=str(raw.get("start", "") or ""),
            end=str(raw.get("end", "") or ""),
            description=_opt_text(raw.get("description")),
            is_all_day=bool(raw.get("isAllDay", raw.get("is_all_day", False))),
        )

    @property
    def is_all_day_event(self) -> bool:
        return self.is_all_day or (len(self.start) == 10 and "-" in self.start)


# ---------------------------------------------------------------------------
# Push subscription
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SubscriptionKeys:
    p256dh: str
    auth: str


@dataclass(frozen=True)
class PushSubscriptionRecord:
    """
    A platform push subscription in its toJSON() shape.
    """

    endpoint: str
    keys: SubscriptionKeys
    expiration_time: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "endpoint": self.endpoint,
            "expirationTime": self.expiration_time,
            "keys": {"p256dh": self.keys.p256dh, "auth": self.keys.auth},
        }

    @classmethod
    def from_dict(cls, raw: Any) -> Optional["PushSubscriptionRecord"]:
        """
        Returns None for anything that is not a usable subscription.
        """
        if not isinstance(raw, dict):
            return None
        endpoint = _opt_str(raw.get("endpoint"))
        keys = raw.get("keys")
        if not endpoint or not isinstance(keys, dict):
            return None
        p256dh = _opt_str(keys.get("p256dh"))
        auth = _opt_str(keys.get("auth"))
        if not p256dh or not auth:
            return None
        expiration = raw.get("expirationTime")
        return cls(
            endpoint=endpoint,
            keys=SubscriptionKeys(p256dh=p256dh, auth=auth),
            expiration_time=expiration if isinstance(expiration, int) else None,
        )


@dataclass(frozen=True)
class Preferences:
    """
    Delivery preferences attached to a subscription on the backend.
    """

    section: Optional[str] = None
    professor: Optional[str] = None
    digest_enabled: bool = True
    digest_time: str = "06:00"
    realtime_enabled: bool = True

    def to_payload(self) -> Dict[str, Any]:
        # blank section/professor travel as null
        return {
            "section": _opt_str(self.section),
            "professor": _opt_str(self.professor),
            "digestEnabled": self.digest_enabled,
            "digestTime": self.digest_time,
            "realtimeEnabled": self.realtime_enabled,
        }


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class NotificationData:
    url: str = "/"
    section: Optional[str] = None
    professor: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"url": self.url}
        if self.section:
            out["section"] = self.section
        if self.professor:
            out["professor"] = self.professor
        return out

    @classmethod
    def from_dict(cls, raw: Any) -> "NotificationData":
        if not isinstance(raw, dict):
            return cls()
        return cls(
            url=_opt_str(raw.get("url")) or "/",
            section=_opt_str(raw.get("section")),
            professor=_opt_str(raw.get("professor")),
        )


@dataclass(frozen=True)
class NotificationAction:
    action: str
    title: str
    icon: Optional[str] = None


@dataclass(frozen=True)
class NotificationPayload:
    title: str = config.APP_NAME
    body: str = config.DEFAULT_BODY
    icon: str = config.DEFAULT_ICON
    badge: str = config.DEFAULT_BADGE
    tag: str = config.DEFAULT_TAG
    data: NotificationData = field(default_factory=NotificationData)
    require_interaction: bool = False
    silent: bool = False
    timestamp: int = 0
    vibrate: Tuple[int, ...] = config.DEFAULT_VIBRATE
    actions: Tuple[NotificationAction, ...] = ()

    def with_changes(self, **changes: Any) -> "NotificationPayload":
        return replace(self, **changes)


# ---------------------------------------------------------------------------
# HTTP snapshots seen by the worker
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Request:
    url: str
    method: str = "GET"
    headers: Tuple[Tuple[str, str], ...] = ()
    mode: str = "cors"

    @property
    def key(self) -> str:
        """Cache key: the effective URL without fragment."""
        return self.url.split("#", 1)[0]


@dataclass(frozen=True)
class Response:
    """
    A stored or live response. type follows the Fetch API: "basic" for
    same-origin, "cors" for readable cross-origin, "opaque" otherwise.
    """

    url: str
    status: int = 200
    body: bytes = b""
    headers: Tuple[Tuple[str, str], ...] = ()
    type: str = "basic"

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    def clone(self) -> "Response":
        return replace(self)

    def header(self, name: str) -> Optional[str]:
        lname = name.lower()
        for key, value in self.headers:
            if key.lower() == lname:
                return value
        return None


def now_ms() -> int:
    return int(time.time() * 1000)


def events_from_json(raw: Any) -> List[Event]:
    """
    Convert a decoded /events body into Event records, skipping non-objects.
    """
    if not isinstance(raw, list):
        return []
    return [Event.from_dict(item) for item in raw if isinstance(item, dict)]
