"""
Error taxonomy.

- NetworkUnavailable: fetch failure or offline; recovered by cache fallback
  or by deferring preference sync
- PermissionDenied: notification permission refused; opt-in aborts
- KeyUnavailable: public key could not be fetched; opt-in aborts
- BackendRejected: non-2xx answer from the backend
- ParsePayloadFailed: malformed push JSON; recovered via plain-text body
- InstallFailed: shell assets could not be precached; new version discarded
"""

from __future__ import annotations


class FermiTodayError(Exception):
    """Base class for all errors raised by this package."""


class NetworkUnavailable(FermiTodayError):
    pass


class PermissionDenied(FermiTodayError):
    pass


class KeyUnavailable(FermiTodayError):
    pass


class BackendRejected(FermiTodayError):
    def __init__(self, status: int, url: str = "") -> None:
        super().__init__(f"HTTP {status}" + (f" from {url}" if url else ""))
        self.status = status
        self.url = url


class ParsePayloadFailed(FermiTodayError):
    pass


class InstallFailed(FermiTodayError):
    pass


class NotSupported(FermiTodayError):
    """The platform offers no push manager / notification support."""
