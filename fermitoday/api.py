from __future__ import annotations

import logging
from datetime import date
from typing import Any, Dict, List, Optional

import requests

from fermitoday import config
from fermitoday.errors import BackendRejected, KeyUnavailable, NetworkUnavailable
from fermitoday.model import Event, Preferences, PushSubscriptionRecord, events_from_json

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Backend endpoints
# ---------------------------------------------------------------------------

PUBLIC_KEY_PATH = "/vapid-public-key"
REGISTER_PATH = "/register-token"
UNREGISTER_PATH = "/unregister-token"
PREFERENCES_PATH = "/update-preferences"
EVENTS_PATH = "/events"


class BackendClient:
    """
    Thin client for the notification backend (JSON over HTTP).

    Transport failures raise NetworkUnavailable, non-2xx answers raise
    BackendRejected, except for the best-effort calls which only log.
    """

    def __init__(
        self,
        base_url: str = config.BACKEND_URL,
        session: Optional[requests.Session] = None,
        timeout: float = config.HTTP_TIMEOUT,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.timeout = timeout

    def _url(self, path: str) -> str:
        return self.base_url + path

    def _get(self, path: str, params: Optional[Dict[str, str]] = None) -> requests.Response:
        url = self._url(path)
        try:
            return self.session.get(url, params=params, headers={"Accept": "application/json"}, timeout=self.timeout)
        except requests.RequestException as exc:
            raise NetworkUnavailable(f"GET {url}: {exc}") from exc

    def _post(self, path: str, payload: Dict[str, Any]) -> requests.Response:
        url = self._url(path)
        try:
            resp = self.session.post(url, json=payload, timeout=self.timeout)
        except requests.RequestException as exc:
            raise NetworkUnavailable(f"POST {url}: {exc}") from exc
        if not resp.ok:
            raise BackendRejected(resp.status_code, url)
        return resp

    # -- keys ---------------------------------------------------------------

    def fetch_server_public_key(self) -> str:
        """
        GET /vapid-public-key -> {"publicKey": "..."}.
        """
        try:
            resp = self._get(PUBLIC_KEY_PATH)
        except NetworkUnavailable as exc:
            raise KeyUnavailable(str(exc)) from exc
        if not resp.ok:
            raise KeyUnavailable(f"HTTP {resp.status_code} from {resp.url}")
        try:
            data = resp.json()
        except ValueError as exc:
            raise KeyUnavailable("public key response is not JSON") from exc

        key = data.get("publicKey") if isinstance(data, dict) else None
        if not isinstance(key, str) or not key.strip():
            raise KeyUnavailable("public key missing from response")
        logger.info("VAPID key fetched")
        return key.strip()

    # -- subscriptions ------------------------------------------------------

    def register_with_backend(self, record: PushSubscriptionRecord, prefs: Preferences) -> None:
        payload = {"subscription": record.to_dict(), **prefs.to_payload()}
        logger.info("Registering subscription with backend")
        self._post(REGISTER_PATH, payload)
        logger.info("Backend registration successful")

    def unregister_from_backend(self, endpoint: str) -> bool:
        """
        Best effort: failures are logged and reported as False.
        """
        try:
            self._post(UNREGISTER_PATH, {"token": endpoint})
        except (NetworkUnavailable, BackendRejected) as exc:
            logger.warning("Failed to unregister subscription: %s", exc)
            return False
        logger.info("Subscription unregistered")
        return True

    def update_preferences(self, record: Optional[PushSubscriptionRecord], prefs: Preferences) -> bool:
        """
        Best effort; skipped entirely when there is no subscription.
        """
        if record is None:
            logger.debug("No subscription, preferences not sent")
            return False
        try:
            self._post(PREFERENCES_PATH, {"token": record.endpoint, **prefs.to_payload()})
        except (NetworkUnavailable, BackendRejected) as exc:
            logger.warning("Failed to update preferences: %s", exc)
            return False
        logger.info("Preferences updated")
        return True

    # -- events -------------------------------------------------------------

    def fetch_events(self, day: date, section: Optional[str] = None) -> List[Event]:
        """
        GET /events?date=YYYY-MM-DD[&section=CODE] -> raw (unfiltered) events.
        """
        params = {"date": day.isoformat()}
        if section and section.strip():
            params["section"] = section.strip().upper()
        resp = self._get(EVENTS_PATH, params=params)
        if not resp.ok:
            raise BackendRejected(resp.status_code, resp.url)
        try:
            return events_from_json(resp.json())
        except ValueError as exc:
            raise BackendRejected(resp.status_code, f"{resp.url} (invalid JSON: {exc})") from exc
