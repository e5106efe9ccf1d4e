"""Exception hierarchy shared across provider resolution, download, and indexing.

A synchronization run touches the remote registry API, the local filesystem,
and the persisted JSON catalog.  This module groups those failure modes into a
small hierarchy so callers can react to broad categories (network versus local
storage) while still receiving the concrete error that stopped the run.  Every
error is fatal to the current run; none of them are wrapped on the way up.
"""

from __future__ import annotations

from typing import Optional

__all__ = [
    "ProviderSyncError",
    "ConfigError",
    "NetworkError",
    "BadStatusError",
    "ParseError",
    "FilesystemError",
    "DigestError",
    "PersistError",
    "DownloadCancelledError",
]


class ProviderSyncError(RuntimeError):
    """Base exception for provider mirroring failures."""


class ConfigError(ProviderSyncError):
    """Raised when configuration files or CLI inputs are invalid."""


class NetworkError(ProviderSyncError):
    """Raised when the transport fails before a response is received."""

    def __init__(self, message: str, *, url: Optional[str] = None) -> None:
        super().__init__(message)
        self.url = url


class BadStatusError(NetworkError):
    """Raised when the registry answers with a status outside ``[200, 300)``."""

    def __init__(self, status_code: int, path: str, *, url: Optional[str] = None) -> None:
        super().__init__(
            f"response returned wrong status code: {status_code}, from url path: {path}",
            url=url,
        )
        self.status_code = status_code
        self.path = path


class DownloadCancelledError(ProviderSyncError):
    """Raised inside a download worker whose sibling already failed."""


class ParseError(ProviderSyncError):
    """Raised when a persisted index or a registry response body is malformed."""

    def __init__(self, message: str, *, source: Optional[str] = None) -> None:
        super().__init__(message)
        self.source = source


class FilesystemError(ProviderSyncError):
    """Raised when creating, reading, or writing mirror files fails."""

    def __init__(self, message: str, *, path: Optional[str] = None) -> None:
        super().__init__(message)
        self.path = path


class DigestError(ProviderSyncError):
    """Raised when an archive cannot be hashed or fails checksum verification."""

    def __init__(self, message: str, *, path: Optional[str] = None) -> None:
        super().__init__(message)
        self.path = path


class PersistError(ProviderSyncError):
    """Raised when an updated index cannot be written back to disk."""

    def __init__(self, message: str, *, path: Optional[str] = None) -> None:
        super().__init__(message)
        self.path = path


# === NAVMAP v1 ===
# {
#   "module": "TerraMirror.ProviderSync.errors",
#   "purpose": "Define the exception hierarchy used across provider resolution, download, and indexing",
#   "sections": [
#     {"id": "base", "name": "Base Exceptions", "anchor": "BAS", "kind": "api"},
#     {"id": "network", "name": "Network & Registry Errors", "anchor": "NET", "kind": "api"},
#     {"id": "local", "name": "Local Storage & Digest Errors", "anchor": "LOC", "kind": "api"}
#   ]
# }
# === /NAVMAP ===
