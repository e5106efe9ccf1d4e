"""Synchronization driver: walk configured providers and mirror their versions.

Providers and versions are processed one after another.  Each provider's
version catalog is fetched exactly once, versions and platforms are selected
with :mod:`TerraMirror.ProviderSync.resolver`, package metadata is fetched per
selected platform, and the coordinator mirrors the version.  The first error
aborts the run.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, Iterator, List, Optional, Sequence, Tuple, Union

from .coordinator import SyncReport, synchronize_version
from .logging_utils import ContextAdapter, generate_correlation_id
from .models import PackageArtifactMetadata, Platform
from .registry import RegistryClient
from .resolver import resolve_platforms, resolve_version_entries
from .settings import ProviderConfiguration, ResolvedConfig
from .storage import MirrorLayout

LOGGER = logging.getLogger("TerraMirror.ProviderSync")

LoggerLike = Union[logging.Logger, logging.LoggerAdapter]

__all__ = ["PlannedVersion", "ProviderPlan", "plan", "run"]


@dataclass(slots=True, frozen=True)
class PlannedVersion:
    """A version selected for mirroring together with its package metadata."""

    version: str
    artifacts: Tuple[PackageArtifactMetadata, ...] = ()

    @property
    def platforms(self) -> List[Platform]:
        return [artifact.platform for artifact in self.artifacts]


@dataclass(slots=True)
class ProviderPlan:
    """Everything a run would synchronize for one configured provider."""

    name: str
    source: str
    versions: List[PlannedVersion] = field(default_factory=list)


def _iter_planned_versions(
    provider: ProviderConfiguration, *, registry: RegistryClient, logger: LoggerLike
) -> Iterator[PlannedVersion]:
    catalog = registry.list_versions(provider.source)
    entries = resolve_version_entries(catalog, provider.versions)

    if provider.versions:
        missing = sorted(set(provider.versions) - {entry.version for entry in entries})
        if missing:
            logger.warning(
                "requested versions not advertised by the registry",
                extra={"stage": "resolve", "provider_source": provider.source, "missing": missing},
            )

    for entry in entries:
        platforms = resolve_platforms(entry, provider.platforms)
        if not platforms:
            logger.info(
                "no matching platforms for version",
                extra={
                    "stage": "resolve",
                    "provider_source": provider.source,
                    "provider_version": entry.version,
                },
            )
        artifacts = tuple(
            registry.get_package_metadata(provider.source, entry.version, platform)
            for platform in platforms
        )
        yield PlannedVersion(version=entry.version, artifacts=artifacts)


def _run_logger(logger: Optional[LoggerLike]) -> ContextAdapter:
    return ContextAdapter(logger or LOGGER, {"correlation_id": generate_correlation_id()})


def plan(
    providers: Iterable[ProviderConfiguration],
    *,
    config: ResolvedConfig,
    registry: Optional[RegistryClient] = None,
    logger: Optional[LoggerLike] = None,
) -> List[ProviderPlan]:
    """Resolve versions and fetch metadata without downloading or writing anything."""

    active_registry = registry or RegistryClient(config.client)
    log = _run_logger(logger)
    plans: List[ProviderPlan] = []
    for provider in providers:
        provider_plan = ProviderPlan(name=provider.name, source=provider.source)
        provider_plan.versions.extend(
            _iter_planned_versions(provider, registry=active_registry, logger=log)
        )
        plans.append(provider_plan)
    return plans


def run(
    providers: Sequence[ProviderConfiguration],
    *,
    config: ResolvedConfig,
    registry: Optional[RegistryClient] = None,
    logger: Optional[LoggerLike] = None,
) -> List[SyncReport]:
    """Mirror every selected version of every provider in ``providers``.

    Returns:
        One :class:`SyncReport` per synchronized version, in processing order.

    Raises:
        ProviderSyncError: The first failure, unchanged.
    """

    active_registry = registry or RegistryClient(config.client)
    layout = MirrorLayout(config.client.work_dir, config.client.registry_host)
    log = _run_logger(logger)
    log.info(
        "starting synchronization",
        extra={
            "stage": "batch",
            "providers": len(providers),
            "work_dir": str(config.client.work_dir),
        },
    )

    reports: List[SyncReport] = []
    for provider in providers:
        log.info(
            "synchronizing provider",
            extra={"stage": "sync", "provider_source": provider.source},
        )
        for planned in _iter_planned_versions(provider, registry=active_registry, logger=log):
            reports.append(
                synchronize_version(
                    provider.source,
                    planned.version,
                    planned.artifacts,
                    layout=layout,
                    client=active_registry,
                    config=config.client,
                    logger=log,
                )
            )

    log.info(
        "synchronization finished",
        extra={
            "stage": "batch",
            "versions": len(reports),
            "downloaded": sum(len(report.downloaded) for report in reports),
        },
    )
    return reports
