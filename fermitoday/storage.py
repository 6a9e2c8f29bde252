"""
Persistent storage for the user's local preferences.

This module manages the file:

    data/settings.json

It holds the theme mode, the saved class/professor shortlists, the
notification preferences and the serialized push subscription. Everything
is loaded at start-up and written back on every change.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

from fermitoday.model import Preferences, PushSubscriptionRecord

THEME_MODES = ("light", "dark", "auto")


def _default_settings_path() -> Path:
    """
    Return the default path of settings.json.

    FERMITODAY_SETTINGS overrides it; tests pass their own path instead.
    """
    override = os.environ.get("FERMITODAY_SETTINGS")
    if override:
        return Path(override)
    base_dir = Path(__file__).resolve().parent
    return base_dir / "data" / "settings.json"


def _normalize_list(values: Any) -> List[str]:
    # strip + uppercase, ignore non-strings, keep first occurrence order
    if not isinstance(values, list):
        return []
    out: List[str] = []
    for x in values:
        if isinstance(x, str):
            item = " ".join(x.split()).upper()
            if item and item not in out:
                out.append(item)
    return out


class PreferenceStore:
    """
    Key-value store backed by one JSON file.

    A missing or corrupted file behaves like an empty store; it never
    crashes the application.
    """

    def __init__(self, path: str | Path | None = None) -> None:
        self.path = Path(path) if path is not None else _default_settings_path()
        self._data: Dict[str, Any] = self._read()

    def _read(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError, UnicodeDecodeError):
            return {}
        return data if isinstance(data, dict) else {}

    def _write(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(self._data, indent=2, ensure_ascii=False), encoding="utf-8")

    # -- raw access ---------------------------------------------------------

    def get(self, key: str, default: Any = None) -> Any:
        return self._data.get(key, default)

    def set(self, key: str, value: Any) -> None:
        self._data[key] = value
        self._write()

    def update(self, values: Dict[str, Any]) -> None:
        self._data.update(values)
        self._write()

    # -- theme --------------------------------------------------------------

    @property
    def theme_mode(self) -> str:
        mode = self.get("themeMode")
        return mode if mode in THEME_MODES else "auto"

    @theme_mode.setter
    def theme_mode(self, mode: str) -> None:
        if mode not in THEME_MODES:
            raise ValueError(f"unknown theme mode {mode!r}")
        self.set("themeMode", mode)

    # -- shortlists ---------------------------------------------------------

    def saved(self, key: str) -> List[str]:
        return _normalize_list(self.get(key, []))

    def add_saved(self, key: str, value: str) -> bool:
        """
        Add value to the savedSections / savedProfessors list. False if already present or blank.
        """
        current = self.saved(key)
        item = " ".join(value.split()).upper()
        if not item or item in current:
            return False
        self.set(key, current + [item])
        return True

    def remove_saved(self, key: str, value: str) -> bool:
        current = self.saved(key)
        item = " ".join(value.split()).upper()
        if item not in current:
            return False
        self.set(key, [x for x in current if x != item])
        return True

    # -- notifications ------------------------------------------------------

    @property
    def notifications_enabled(self) -> bool:
        return bool(self.get("notificationsEnabled", False))

    def load_preferences(self) -> Preferences:
        defaults = Preferences()
        digest_time = self.get("digestTime")
        return Preferences(
            section=self.get("notificationSection") or None,
            professor=self.get("notificationProfessor") or None,
            digest_enabled=bool(self.get("digestEnabled", defaults.digest_enabled)),
            digest_time=digest_time if isinstance(digest_time, str) and digest_time else defaults.digest_time,
            realtime_enabled=bool(self.get("realtimeEnabled", defaults.realtime_enabled)),
        )

    def save_preferences(self, prefs: Preferences) -> None:
        self.update(
            {
                "notificationSection": prefs.section or "",
                "notificationProfessor": prefs.professor or "",
                "digestEnabled": prefs.digest_enabled,
                "digestTime": prefs.digest_time,
                "realtimeEnabled": prefs.realtime_enabled,
            }
        )

    @property
    def subscription(self) -> Optional[PushSubscriptionRecord]:
        return PushSubscriptionRecord.from_dict(self.get("pushSubscription"))

    def save_subscription(self, record: Optional[PushSubscriptionRecord]) -> None:
        """
        Persist the subscription (None clears it) together with the enabled flag.
        """
        self.update(
            {
                "pushSubscription": record.to_dict() if record is not None else None,
                "notificationsEnabled": record is not None,
            }
        )
