# === NAVMAP v1 ===
# {
#   "module": "TerraMirror.ProviderSync.catalog",
#   "purpose": "Load, mutate, validate, and persist the local provider and version indexes",
#   "sections": [
#     {"id": "schemas", "name": "Index JSON Schemas", "anchor": "SCHEMA", "kind": "constants"},
#     {"id": "archiverecord", "name": "ArchiveRecord", "anchor": "class-archiverecord", "kind": "class"},
#     {"id": "localversionindex", "name": "LocalVersionIndex", "anchor": "class-localversionindex", "kind": "class"},
#     {"id": "localproviderindex", "name": "LocalProviderIndex", "anchor": "class-localproviderindex", "kind": "class"},
#     {"id": "api", "name": "Catalog store operations", "anchor": "API", "kind": "api"}
#   ]
# }
# === /NAVMAP ===

"""Local catalog store for mirrored providers.

Two JSON documents describe what has been mirrored for a provider:

``index.json``
    ``{"versions": {"<version>": {}}}``: every version touched by at least
    one synchronization attempt.  The mapping only ever grows.

``<version>.json``
    ``{"archives": {"<os>_<arch>": {"hashes": [...], "url": "<filename>"}}}``:
    the content digests of verified archives per platform.  A recorded digest
    plus the presence of the archive file is what lets later runs skip the
    download entirely.

Indexes are loaded once per provider version, mutated in memory by the
download workers (each index guards its mapping with a lock), and written
back once with :func:`persist`, which swaps a fully written temporary file
into place.
"""

from __future__ import annotations

import json
import logging
import threading
from copy import deepcopy
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, FrozenSet, List, Mapping, Optional, Union, cast

from jsonschema import Draft202012Validator
from jsonschema.exceptions import ValidationError as JSONSchemaValidationError

from .errors import FilesystemError, ParseError, PersistError
from .storage import write_json_atomic

LOGGER = logging.getLogger("TerraMirror.ProviderSync")

VERSION_INDEX_JSON_SCHEMA: Dict[str, Any] = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "title": "Provider version index",
    "type": "object",
    "required": ["archives"],
    "properties": {
        "archives": {
            "type": "object",
            "propertyNames": {"pattern": r"^[^_]+_.+$"},
            "additionalProperties": {
                "type": "object",
                "required": ["hashes", "url"],
                "properties": {
                    "hashes": {"type": "array", "items": {"type": "string", "minLength": 1}},
                    "url": {"type": "string"},
                },
            },
        },
    },
}

PROVIDER_INDEX_JSON_SCHEMA: Dict[str, Any] = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "title": "Provider index",
    "type": "object",
    "required": ["versions"],
    "properties": {
        "versions": {
            "type": "object",
            "additionalProperties": {"type": "object"},
        },
    },
}

Draft202012Validator.check_schema(VERSION_INDEX_JSON_SCHEMA)
Draft202012Validator.check_schema(PROVIDER_INDEX_JSON_SCHEMA)
_VERSION_INDEX_VALIDATOR = Draft202012Validator(VERSION_INDEX_JSON_SCHEMA)
_PROVIDER_INDEX_VALIDATOR = Draft202012Validator(PROVIDER_INDEX_JSON_SCHEMA)

__all__ = [
    "VERSION_INDEX_JSON_SCHEMA",
    "PROVIDER_INDEX_JSON_SCHEMA",
    "ArchiveRecord",
    "LocalVersionIndex",
    "LocalProviderIndex",
    "load_version_index",
    "load_provider_index",
    "has_digest",
    "record_digest",
    "mark_version_seen",
    "persist",
]

PathLike = Union[str, Path]


@dataclass(slots=True, frozen=True)
class ArchiveRecord:
    """Digests and local filename recorded for one platform archive."""

    hashes: FrozenSet[str] = field(default_factory=frozenset)
    url: str = ""

    def to_payload(self) -> Dict[str, object]:
        return {"hashes": sorted(self.hashes), "url": self.url}


class LocalVersionIndex:
    """In-memory view of ``<version>.json``.

    The mapping is shared by concurrent download workers of a single version,
    so every read and write goes through ``_lock``.
    """

    def __init__(self, archives: Optional[Mapping[str, ArchiveRecord]] = None) -> None:
        self._archives: Dict[str, ArchiveRecord] = dict(archives or {})
        self._lock = threading.Lock()

    def has_digest(self, platform_key: str, digest: str) -> bool:
        with self._lock:
            record = self._archives.get(platform_key)
            return record is not None and digest in record.hashes

    def record_digest(self, platform_key: str, digest: str, source_location: str) -> None:
        """Replace the platform's record with the singleton ``{digest}``."""

        with self._lock:
            self._archives[platform_key] = ArchiveRecord(
                hashes=frozenset({digest}), url=source_location
            )

    def get(self, platform_key: str) -> Optional[ArchiveRecord]:
        with self._lock:
            return self._archives.get(platform_key)

    def platform_keys(self) -> List[str]:
        with self._lock:
            return sorted(self._archives)

    def to_payload(self) -> Dict[str, object]:
        with self._lock:
            archives = {key: record.to_payload() for key, record in self._archives.items()}
        return {"archives": archives}

    @classmethod
    def from_payload(
        cls, payload: object, *, source: Optional[str] = None
    ) -> "LocalVersionIndex":
        _validate(_VERSION_INDEX_VALIDATOR, payload, kind="version index", source=source)
        document = cast(Mapping[str, Any], payload)
        archives = {
            key: ArchiveRecord(hashes=frozenset(entry["hashes"]), url=entry["url"])
            for key, entry in document["archives"].items()
        }
        return cls(archives)

    def __len__(self) -> int:
        with self._lock:
            return len(self._archives)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, LocalVersionIndex):
            return NotImplemented
        return self.to_payload() == other.to_payload()

    def __repr__(self) -> str:
        return f"LocalVersionIndex(platforms={self.platform_keys()!r})"


class LocalProviderIndex:
    """In-memory view of ``index.json``: versions touched by synchronization."""

    def __init__(self, versions: Optional[Mapping[str, Mapping[str, object]]] = None) -> None:
        self._versions: Dict[str, Dict[str, object]] = {
            key: dict(value) for key, value in (versions or {}).items()
        }
        self._lock = threading.Lock()

    def mark_version_seen(self, version: str) -> bool:
        """Insert ``version`` if missing; return ``True`` when it was new."""

        with self._lock:
            if version in self._versions:
                return False
            self._versions[version] = {}
            return True

    def versions(self) -> List[str]:
        with self._lock:
            return list(self._versions)

    def to_payload(self) -> Dict[str, object]:
        with self._lock:
            return {"versions": deepcopy(self._versions)}

    @classmethod
    def from_payload(
        cls, payload: object, *, source: Optional[str] = None
    ) -> "LocalProviderIndex":
        _validate(_PROVIDER_INDEX_VALIDATOR, payload, kind="provider index", source=source)
        return cls(cast(Mapping[str, Any], payload)["versions"])

    def __len__(self) -> int:
        with self._lock:
            return len(self._versions)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, LocalProviderIndex):
            return NotImplemented
        return self.to_payload() == other.to_payload()

    def __repr__(self) -> str:
        return f"LocalProviderIndex(versions={self.versions()!r})"


def _validate(
    validator: Draft202012Validator, payload: object, *, kind: str, source: Optional[str]
) -> None:
    try:
        validator.validate(payload)
    except JSONSchemaValidationError as exc:
        location = " -> ".join(str(part) for part in exc.path)
        message = exc.message
        if location:
            message = f"{location}: {message}"
        context = f" {source}" if source else ""
        raise ParseError(f"Malformed {kind}{context}: {message}", source=source) from exc


def _read_json(path: Path, *, kind: str) -> Optional[object]:
    """Return the decoded document at ``path`` or ``None`` when it does not exist."""

    try:
        raw = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return None
    except UnicodeDecodeError as exc:
        raise ParseError(f"{kind} {path} is not valid UTF-8", source=str(path)) from exc
    except OSError as exc:
        raise FilesystemError(f"Failed to read {kind} {path}: {exc}", path=str(path)) from exc
    try:
        return json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ParseError(f"{kind} {path} is not valid JSON: {exc}", source=str(path)) from exc


def load_version_index(path: PathLike) -> LocalVersionIndex:
    """Load ``<version>.json``, returning an empty index when the file is absent."""

    resolved = Path(path)
    payload = _read_json(resolved, kind="version index")
    if payload is None:
        LOGGER.info(
            "version index missing, starting from empty",
            extra={"stage": "catalog", "index_path": str(resolved)},
        )
        return LocalVersionIndex()
    return LocalVersionIndex.from_payload(payload, source=str(resolved))


def load_provider_index(path: PathLike) -> LocalProviderIndex:
    """Load ``index.json``, returning an empty index when the file is absent."""

    resolved = Path(path)
    payload = _read_json(resolved, kind="provider index")
    if payload is None:
        LOGGER.info(
            "provider index missing, starting from empty",
            extra={"stage": "catalog", "index_path": str(resolved)},
        )
        return LocalProviderIndex()
    return LocalProviderIndex.from_payload(payload, source=str(resolved))


def has_digest(index: LocalVersionIndex, platform_key: str, digest: str) -> bool:
    return index.has_digest(platform_key, digest)


def record_digest(
    index: LocalVersionIndex, platform_key: str, digest: str, source_location: str
) -> None:
    index.record_digest(platform_key, digest, source_location)


def mark_version_seen(index: LocalProviderIndex, version: str) -> None:
    index.mark_version_seen(version)


def persist(index: Union[LocalVersionIndex, LocalProviderIndex], path: PathLike) -> Path:
    """Serialize ``index`` and atomically replace the file at ``path``."""

    resolved = Path(path)
    try:
        written = write_json_atomic(resolved, index.to_payload())
    except (OSError, TypeError, ValueError) as exc:
        raise PersistError(f"Failed to persist index {resolved}: {exc}", path=str(resolved)) from exc
    LOGGER.debug(
        "index persisted",
        extra={"stage": "catalog", "index_path": str(written), "entries": len(index)},
    )
    return written
