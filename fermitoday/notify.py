"""
Notification Presenter.

push              -> show a notification built from the payload
notificationclick -> close it, then focus an open app window and send it
                     NOTIFICATION_CLICKED, or open a new window at data.url
notificationclose -> log only
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional, Tuple, Union

from fermitoday.config import WorkerConfig
from fermitoday.effects import (
    CloseNotification,
    Effect,
    FocusClient,
    MatchClients,
    NotificationClickEvent,
    NotificationCloseEvent,
    OpenWindow,
    PostMessage,
    PushEvent,
    ShowNotification,
)
from fermitoday.errors import ParsePayloadFailed
from fermitoday.model import NotificationAction, NotificationData, NotificationPayload, now_ms

logger = logging.getLogger(__name__)

NOTIFICATION_CLICKED = "NOTIFICATION_CLICKED"


def default_payload(cfg: WorkerConfig, timestamp: Optional[int] = None) -> NotificationPayload:
    return NotificationPayload(
        title=cfg.app_name,
        icon=cfg.icon,
        badge=cfg.badge,
        timestamp=now_ms() if timestamp is None else timestamp,
    )


def _decode(raw: Union[bytes, str, None]) -> str:
    if raw is None:
        return ""
    if isinstance(raw, bytes):
        return raw.decode("utf-8", errors="replace")
    return raw


def _load_json(text: str) -> Any:
    try:
        return json.loads(text)
    except ValueError as exc:
        raise ParsePayloadFailed(str(exc)) from exc


def _text(raw: Dict[str, Any], key: str, default: str) -> str:
    value = raw.get(key)
    if isinstance(value, str) and value.strip():
        return value
    return default


def _flag(raw: Dict[str, Any], key: str, default: bool) -> bool:
    value = raw.get(key)
    return value if isinstance(value, bool) else default


def _vibrate(raw: Any, default: Tuple[int, ...]) -> Tuple[int, ...]:
    if isinstance(raw, list) and raw and all(isinstance(x, int) and x >= 0 for x in raw):
        return tuple(raw)
    return default


def _actions(raw: Any) -> Tuple[NotificationAction, ...]:
    if not isinstance(raw, list):
        return ()
    out: List[NotificationAction] = []
    for item in raw:
        if isinstance(item, dict) and item.get("action") and item.get("title"):
            out.append(
                NotificationAction(
                    action=str(item["action"]),
                    title=str(item["title"]),
                    icon=item.get("icon") if isinstance(item.get("icon"), str) else None,
                )
            )
    return tuple(out)


def parse_push_payload(
    raw: Union[bytes, str, None],
    cfg: WorkerConfig,
    timestamp: Optional[int] = None,
) -> NotificationPayload:
    """
    Build a fully-defaulted notification from a push body.

    Every field falls back to its default on its own. A body that is not
    JSON becomes the notification text. JSON other than an object or a
    string is ignored. Nothing is raised.
    """
    base = default_payload(cfg, timestamp)
    text = _decode(raw)
    if not text.strip():
        return base

    try:
        parsed = _load_json(text)
    except ParsePayloadFailed:
        logger.debug("Push payload is not JSON, using it as plain text")
        return base.with_changes(body=text)

    if isinstance(parsed, str):
        return base.with_changes(body=parsed or base.body)
    if not isinstance(parsed, dict):
        logger.debug("Push payload is JSON but not an object, using defaults")
        return base

    stamp = parsed.get("timestamp")
    return base.with_changes(
        title=_text(parsed, "title", base.title),
        body=_text(parsed, "body", base.body),
        icon=_text(parsed, "icon", base.icon),
        badge=_text(parsed, "badge", base.badge),
        tag=_text(parsed, "tag", base.tag),
        data=NotificationData.from_dict(parsed.get("data")),
        require_interaction=_flag(parsed, "requireInteraction", base.require_interaction),
        silent=_flag(parsed, "silent", base.silent),
        timestamp=stamp if isinstance(stamp, int) and not isinstance(stamp, bool) else base.timestamp,
        vibrate=_vibrate(parsed.get("vibrate"), base.vibrate),
        actions=_actions(parsed.get("actions")),
    )


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------


def on_push(event: PushEvent, cfg: WorkerConfig) -> List[Effect]:
    payload = parse_push_payload(event.data, cfg)
    logger.info("Push received: %s", payload.title)
    return [ShowNotification(payload)]


def _in_scope(client: Any, cfg: WorkerConfig) -> bool:
    return str(getattr(client, "url", "")).startswith(cfg.scope_url)


def on_notification_click(event: NotificationClickEvent, cfg: WorkerConfig) -> List[Effect]:
    data = event.notification.payload.data
    message = {"type": NOTIFICATION_CLICKED, "data": data.to_dict()}
    if event.action:
        message["action"] = event.action

    def route(clients: List[Any]) -> List[Effect]:
        for client in clients:
            if _in_scope(client, cfg):
                return [FocusClient(client.id), PostMessage(client.id, message)]
        return [OpenWindow(data.url or "/")]

    return [CloseNotification(event.notification.tag), MatchClients(then=route)]


def on_notification_close(event: NotificationCloseEvent, cfg: WorkerConfig) -> List[Effect]:
    logger.info("Notification closed: %s", event.notification.tag)
    return []
