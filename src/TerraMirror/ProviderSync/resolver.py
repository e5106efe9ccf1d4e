"""Resolve which provider versions and platforms a run should mirror.

Selections are plain membership filters over what the registry advertises.
An empty selection is the "all" sentinel.  Requested versions or platforms
that the registry does not advertise are dropped without error, and no
semver ordering is applied: results keep the registry's order.
"""

from __future__ import annotations

from typing import Iterable, List, Optional, Sequence

from .models import Platform, RemoteVersionCatalog, VersionEntry

__all__ = ["resolve_versions", "resolve_platforms", "resolve_version_entries"]


def resolve_versions(
    catalog: RemoteVersionCatalog, desired_versions: Optional[Iterable[str]]
) -> List[str]:
    """Return the version strings to mirror, in catalog order.

    Examples:
        >>> catalog = RemoteVersionCatalog.model_validate(
        ...     {"versions": [{"version": "1.0.0"}, {"version": "2.0.0"}]}
        ... )
        >>> resolve_versions(catalog, [])
        ['1.0.0', '2.0.0']
        >>> resolve_versions(catalog, ["2.0.0", "9.9.9"])
        ['2.0.0']
    """

    return [entry.version for entry in resolve_version_entries(catalog, desired_versions)]


def resolve_version_entries(
    catalog: RemoteVersionCatalog, desired_versions: Optional[Iterable[str]]
) -> List[VersionEntry]:
    """Like :func:`resolve_versions` but return the full catalog entries."""

    wanted = set(desired_versions or ())
    selected: List[VersionEntry] = []
    seen: set[str] = set()
    for entry in catalog.versions:
        if entry.version in seen:
            continue
        if wanted and entry.version not in wanted:
            continue
        seen.add(entry.version)
        selected.append(entry)
    return selected


def resolve_platforms(
    entry: VersionEntry, desired_platforms: Optional[Sequence[Platform]]
) -> List[Platform]:
    """Return the platforms of ``entry`` to mirror, in advertised order."""

    wanted = {platform.key for platform in desired_platforms or ()}
    selected: List[Platform] = []
    seen: set[str] = set()
    for platform in entry.platforms:
        if platform.key in seen:
            continue
        if wanted and platform.key not in wanted:
            continue
        seen.add(platform.key)
        selected.append(platform)
    return selected
