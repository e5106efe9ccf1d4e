# === NAVMAP v1 ===
# {
#   "module": "TerraMirror.ProviderSync.storage",
#   "purpose": "Filesystem layout and atomic JSON writes for the local provider mirror",
#   "sections": [
#     {"id": "layout", "name": "MirrorLayout", "anchor": "class-mirrorlayout", "kind": "class"},
#     {"id": "atomic", "name": "write_json_atomic", "anchor": "function-write-json-atomic", "kind": "function"}
#   ]
# }
# === /NAVMAP ===

"""Filesystem layout of the local mirror.

Every mirrored provider lives under ``<work_dir>/<registry_host>/<source>/``
next to its ``index.json`` (versions seen), one ``<version>.json`` per version
(platform archives and their digests), and the downloaded archives
themselves.  This matches the Terraform provider network mirror protocol so
the directory can be served as a static mirror.
"""

from __future__ import annotations

import json
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path, PurePosixPath

from .errors import FilesystemError

PROVIDER_INDEX_FILENAME = "index.json"

__all__ = ["PROVIDER_INDEX_FILENAME", "MirrorLayout", "write_json_atomic"]


def _validate_source(source: str) -> PurePosixPath:
    parts = PurePosixPath(source).parts
    if not parts or any(part in {"", ".", ".."} for part in parts) or source.startswith("/"):
        raise FilesystemError(f"Invalid provider source '{source}'", path=source)
    return PurePosixPath(*parts)


def _default_file_mode() -> int:
    """Mode a plain ``open()`` would give a new file under the current umask."""

    umask = os.umask(0)
    os.umask(umask)
    return 0o666 & ~umask


def _validate_filename(filename: str) -> str:
    if (
        not filename
        or filename in {".", ".."}
        or "/" in filename
        or "\\" in filename
        or filename.endswith(".json")
    ):
        raise FilesystemError(f"Refusing unsafe archive filename '{filename}'", path=filename)
    return filename


@dataclass(slots=True, frozen=True)
class MirrorLayout:
    """Compute on-disk locations for a mirror rooted at ``work_dir``.

    Examples:
        >>> layout = MirrorLayout(Path("/srv/mirror"), "registry.terraform.io")
        >>> layout.version_index_path("hashicorp/random", "3.6.0").as_posix()
        '/srv/mirror/registry.terraform.io/hashicorp/random/3.6.0.json'
    """

    work_dir: Path
    registry_host: str

    def provider_dir(self, source: str) -> Path:
        return self.work_dir / self.registry_host / Path(*_validate_source(source).parts)

    def provider_index_path(self, source: str) -> Path:
        return self.provider_dir(source) / PROVIDER_INDEX_FILENAME

    def version_index_path(self, source: str, version: str) -> Path:
        if not version or "/" in version or version in {".", ".."}:
            raise FilesystemError(f"Invalid provider version '{version}'", path=version)
        return self.provider_dir(source) / f"{version}.json"

    def archive_path(self, source: str, filename: str) -> Path:
        return self.provider_dir(source) / _validate_filename(filename)

    def ensure_provider_dir(self, source: str) -> Path:
        """Create the provider directory (and parents) if missing."""

        target = self.provider_dir(source)
        try:
            target.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise FilesystemError(
                f"Failed to create provider directory {target}: {exc}", path=str(target)
            ) from exc
        return target


def write_json_atomic(path: Path, payload: object) -> Path:
    """Atomically persist ``payload`` as JSON to ``path``.

    The document is written to a temporary sibling, flushed to disk, and then
    renamed over ``path`` so readers never observe a half-written file.  The
    result gets the permissions a plain ``open()`` would give it, not the
    owner-only mode of the temporary file.
    """

    resolved = path.expanduser()
    resolved.parent.mkdir(parents=True, exist_ok=True)
    with tempfile.NamedTemporaryFile(
        "w",
        encoding="utf-8",
        dir=str(resolved.parent),
        prefix=f".{resolved.name}.",
        suffix=".tmp",
        delete=False,
    ) as handle:
        temp_name = handle.name
        try:
            json.dump(payload, handle, indent=2, sort_keys=True)
            handle.flush()
            try:
                os.fsync(handle.fileno())
            except (AttributeError, OSError):
                pass
            os.chmod(temp_name, _default_file_mode())
        except BaseException:
            handle.close()
            Path(temp_name).unlink(missing_ok=True)
            raise
    try:
        Path(temp_name).replace(resolved)
    except OSError:
        Path(temp_name).unlink(missing_ok=True)
        raise
    return resolved
