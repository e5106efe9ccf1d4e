# === NAVMAP v1 ===
# {
#   "module": "TerraMirror.ProviderSync",
#   "purpose": "Package initialization for TerraMirror.ProviderSync",
#   "sections": [
#     {
#       "id": "getattr",
#       "name": "__getattr__",
#       "anchor": "function-getattr",
#       "kind": "function"
#     },
#     {
#       "id": "dir",
#       "name": "__dir__",
#       "anchor": "function-dir",
#       "kind": "function"
#     }
#   ]
# }
# === /NAVMAP ===

"""Public API for mirroring Terraform registry providers to a local directory.

The facade exposes configuration loading, the synchronization driver, the
per-version coordinator, and the error hierarchy.  Submodules are imported
lazily so that ``import TerraMirror.ProviderSync`` stays cheap for the CLI.
"""

from __future__ import annotations

from importlib import import_module
from typing import TYPE_CHECKING, Any, Dict, Tuple

__version__ = "0.1.0"

_EXPORT_MAP: Dict[str, Tuple[str, str]] = {
    "load_config": ("settings", "load_config"),
    "ResolvedConfig": ("settings", "ResolvedConfig"),
    "ProviderConfiguration": ("settings", "ProviderConfiguration"),
    "RegistryClient": ("registry", "RegistryClient"),
    "MirrorLayout": ("storage", "MirrorLayout"),
    "SyncReport": ("coordinator", "SyncReport"),
    "synchronize_version": ("coordinator", "synchronize_version"),
    "run": ("sync", "run"),
    "plan": ("sync", "plan"),
    "hash_zip": ("hashing", "hash_zip"),
    "Platform": ("models", "Platform"),
    "ProviderSyncError": ("errors", "ProviderSyncError"),
    "ConfigError": ("errors", "ConfigError"),
    "NetworkError": ("errors", "NetworkError"),
    "BadStatusError": ("errors", "BadStatusError"),
    "ParseError": ("errors", "ParseError"),
    "FilesystemError": ("errors", "FilesystemError"),
    "DigestError": ("errors", "DigestError"),
    "PersistError": ("errors", "PersistError"),
}

__all__ = ["__version__", *_EXPORT_MAP]

if TYPE_CHECKING:  # pragma: no cover - import for static analysis only
    from .coordinator import SyncReport, synchronize_version
    from .errors import (
        BadStatusError,
        ConfigError,
        DigestError,
        FilesystemError,
        NetworkError,
        ParseError,
        PersistError,
        ProviderSyncError,
    )
    from .hashing import hash_zip
    from .models import Platform
    from .registry import RegistryClient
    from .settings import ProviderConfiguration, ResolvedConfig, load_config
    from .storage import MirrorLayout
    from .sync import plan, run


def __getattr__(name: str) -> Any:
    """Lazily import public names from their defining submodule."""

    target = _EXPORT_MAP.get(name)
    if target is None:
        raise AttributeError(f"module '{__name__}' has no attribute '{name}'")
    module = import_module(f"{__name__}.{target[0]}")
    value = getattr(module, target[1])
    globals()[name] = value
    return value


def __dir__() -> list[str]:
    return sorted(set(globals()) | set(__all__))
