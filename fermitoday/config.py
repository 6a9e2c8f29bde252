"""
Configuration values shared by the worker, the backend client and the CLI.

Module-level constants hold the defaults. A running worker never reads them
directly: it receives one immutable WorkerConfig built at start-up, so tests
can create several independent workers side by side.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Tuple
from urllib.parse import urlsplit


# ---------------------------------------------------------------------------
# Paths & URLs
# ---------------------------------------------------------------------------

PACKAGE_DIR = Path(__file__).resolve().parent

BACKEND_URL = os.environ.get(
    "FERMITODAY_BACKEND_URL",
    "https://purring-celesta-fermitoday-f00679ea.koyeb.app",
).rstrip("/")

# Origin the app shell is served from (responses from here are "basic")
APP_ORIGIN = os.environ.get("FERMITODAY_ORIGIN", "https://fermitoday.app").rstrip("/")


# ---------------------------------------------------------------------------
# App constants
# ---------------------------------------------------------------------------

APP_NAME = "FermiToday"
CACHE_PREFIX = "fermitoday-v"

SHELL_ASSETS: Tuple[str, ...] = ("/", "/index.html", "/manifest.json", "/favicon.ico")
OFFLINE_FALLBACK = "/index.html"

DEFAULT_ICON = "/logo192.png"
DEFAULT_BADGE = "/logo192.png"
DEFAULT_BODY = "Nuove variazioni disponibili"
DEFAULT_TAG = "default"
DEFAULT_VIBRATE: Tuple[int, ...] = (100, 50, 100)

DISPLAY_TIMEZONE = "Europe/Rome"

HTTP_TIMEOUT = 30


def read_version(default: str = "0.0.0") -> str:
    """
    Return the package version stored in fermitoday/VERSION.
    """
    try:
        return (PACKAGE_DIR / "VERSION").read_text(encoding="utf-8").strip() or default
    except OSError:
        return default


def origin_of(url: str) -> str:
    """
    Return 'scheme://host[:port]' for a URL (empty string for relative URLs).
    """
    parts = urlsplit(url)
    if not parts.scheme or not parts.netloc:
        return ""
    return f"{parts.scheme}://{parts.netloc}"


@dataclass(frozen=True)
class WorkerConfig:
    """
    Everything a worker instance needs to know, fixed for its whole lifetime.

    cache_version is the only cache namespace this worker owns; every other
    namespace found at activation time is garbage.
    """

    cache_version: str
    origin: str = APP_ORIGIN
    scope: str = ""
    backend_url: str = BACKEND_URL
    shell_assets: Tuple[str, ...] = SHELL_ASSETS
    offline_fallback: str = OFFLINE_FALLBACK
    app_name: str = APP_NAME
    icon: str = DEFAULT_ICON
    badge: str = DEFAULT_BADGE

    @classmethod
    def default(cls, version: str | None = None) -> "WorkerConfig":
        return cls(cache_version=CACHE_PREFIX + (version or read_version()))

    @property
    def scope_url(self) -> str:
        return self.scope or self.origin + "/"

    @property
    def backend_origin(self) -> str:
        return origin_of(self.backend_url)

    def absolute(self, path_or_url: str) -> str:
        """
        Resolve a shell asset path against the app origin.
        """
        if origin_of(path_or_url):
            return path_or_url
        return self.origin + "/" + path_or_url.lstrip("/")
