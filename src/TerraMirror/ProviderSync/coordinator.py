# === NAVMAP v1 ===
# {
#   "module": "TerraMirror.ProviderSync.coordinator",
#   "purpose": "Download the artifacts of one provider version concurrently and update its indexes",
#   "sections": [
#     {"id": "syncreport", "name": "SyncReport", "anchor": "class-syncreport", "kind": "class"},
#     {"id": "needs-download", "name": "needs_download", "anchor": "function-needs-download", "kind": "function"},
#     {"id": "synchronize-version", "name": "synchronize_version", "anchor": "function-synchronize-version", "kind": "function"}
#   ]
# }
# === /NAVMAP ===

"""Download coordination for a single provider version.

One task per platform artifact runs on a bounded thread pool.  A task skips
the network entirely when the archive is already on disk *and* its content
digest is recorded in the version index; otherwise it streams the archive,
checks the registry's advertised SHA-256, computes the ``h1`` digest and
records it.  The indexes are written back only after every task succeeded, so
a failed version leaves the persisted catalog exactly as it was.
"""

from __future__ import annotations

import logging
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple, Union

from .cancellation import CancellationToken, CancellationTokenGroup
from .catalog import (
    LocalVersionIndex,
    has_digest,
    load_provider_index,
    load_version_index,
    mark_version_seen,
    persist,
    record_digest,
)
from .errors import DigestError, DownloadCancelledError
from .hashing import hash_zip, sha256_file
from .logging_utils import ContextAdapter
from .models import PackageArtifactMetadata
from .registry import RegistryClient
from .settings import ClientConfiguration
from .storage import MirrorLayout

LOGGER = logging.getLogger("TerraMirror.ProviderSync")

LoggerLike = Union[logging.Logger, logging.LoggerAdapter]

__all__ = ["SyncReport", "needs_download", "synchronize_version"]


@dataclass(slots=True)
class SyncReport:
    """Outcome of synchronizing one provider version."""

    provider_source: str
    version: str
    downloaded: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.downloaded) + len(self.skipped)


def needs_download(archive_path: Path, platform_key: str, index: LocalVersionIndex) -> bool:
    """Return ``True`` unless ``archive_path`` exists and its digest is recorded.

    A file that is present but cannot be read as a zip archive is treated like
    a missing one and fetched again.
    """

    if not archive_path.is_file():
        return True
    try:
        digest = hash_zip(archive_path)
    except DigestError as exc:
        LOGGER.warning(
            "existing archive is unreadable, downloading again",
            extra={"stage": "plan", "path": str(archive_path), "error": str(exc)},
        )
        return True
    return not has_digest(index, platform_key, digest)


def _verify_shasum(archive_path: Path, expected: str) -> None:
    actual = sha256_file(archive_path)
    if actual.lower() != expected.strip().lower():
        archive_path.unlink(missing_ok=True)
        raise DigestError(
            f"SHA-256 mismatch for {archive_path.name}: expected {expected}, got {actual}",
            path=str(archive_path),
        )


def _sync_artifact(
    artifact: PackageArtifactMetadata,
    *,
    provider_source: str,
    layout: MirrorLayout,
    index: LocalVersionIndex,
    client: RegistryClient,
    config: ClientConfiguration,
    token: CancellationToken,
    logger: LoggerLike,
) -> bool:
    """Bring one platform archive up to date; return ``True`` when it was downloaded."""

    platform = artifact.platform
    log = ContextAdapter(logger, {"os": platform.os, "arch": platform.arch})
    if token.is_cancelled():
        raise DownloadCancelledError(f"Synchronization of {platform} was cancelled")

    archive_path = layout.archive_path(provider_source, artifact.filename)
    if not needs_download(archive_path, platform.key, index):
        log.info("archive already mirrored", extra={"stage": "skip", "path": str(archive_path)})
        return False

    log.info("downloading archive", extra={"stage": "download", "url": artifact.download_url})
    client.download_archive(artifact, archive_path, cancellation_token=token, logger=log)

    if config.verify_shasum and artifact.shasum:
        _verify_shasum(archive_path, artifact.shasum)

    digest = hash_zip(archive_path)
    record_digest(index, platform.key, digest, artifact.filename)
    log.debug("digest recorded", extra={"stage": "digest", "digest": digest})
    return True


def _shutdown_executor_nowait(executor: ThreadPoolExecutor) -> None:
    executor.shutdown(wait=False, cancel_futures=True)


def synchronize_version(
    provider_source: str,
    version: str,
    artifacts: Sequence[PackageArtifactMetadata],
    *,
    layout: MirrorLayout,
    client: RegistryClient,
    config: ClientConfiguration,
    logger: Optional[LoggerLike] = None,
) -> SyncReport:
    """Mirror ``artifacts`` of ``provider_source`` at ``version`` and persist the indexes.

    Args:
        provider_source: ``<namespace>/<type>`` of the provider.
        version: Version being synchronized.
        artifacts: Package metadata of every platform to mirror.
        layout: Filesystem layout of the mirror.
        client: Registry client used for archive downloads.
        config: Client settings (concurrency bound, checksum policy).
        logger: Logger or adapter receiving progress events.

    Returns:
        Report listing the platform keys downloaded and skipped.

    Raises:
        ProviderSyncError: The first failure of any artifact task, unchanged.
            Nothing is persisted for the version in that case.
    """

    log = ContextAdapter(
        logger or LOGGER, {"provider_source": provider_source, "provider_version": version}
    )
    version_index_path = layout.version_index_path(provider_source, version)
    provider_index_path = layout.provider_index_path(provider_source)

    version_index = load_version_index(version_index_path)
    provider_index = load_provider_index(provider_index_path)
    mark_version_seen(provider_index, version)
    layout.ensure_provider_dir(provider_source)

    report = SyncReport(provider_source=provider_source, version=version)
    outcomes: Dict[str, bool] = {}

    if artifacts:
        max_workers = max(1, min(config.concurrent_downloads, len(artifacts)))
        group = CancellationTokenGroup()
        futures: Dict[Future[bool], Tuple[PackageArtifactMetadata, CancellationToken]] = {}

        log.info(
            "synchronizing version",
            extra={"stage": "sync", "artifacts": len(artifacts), "workers": max_workers},
        )
        with ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="tfmirror-download"
        ) as executor:
            for artifact in artifacts:
                token = group.create_token()
                future = executor.submit(
                    _sync_artifact,
                    artifact,
                    provider_source=provider_source,
                    layout=layout,
                    index=version_index,
                    client=client,
                    config=config,
                    token=token,
                    logger=log,
                )
                futures[future] = (artifact, token)

            pending = set(futures)
            while pending:
                done, pending = wait(pending, return_when=FIRST_COMPLETED)
                for future in done:
                    artifact, token = futures[future]
                    try:
                        outcomes[artifact.platform.key] = future.result()
                    except Exception as exc:
                        log.error(
                            "artifact synchronization failed",
                            extra={
                                "stage": "error",
                                "os": artifact.os,
                                "arch": artifact.arch,
                                "error": str(exc),
                            },
                        )
                        group.cancel_all()
                        _shutdown_executor_nowait(executor)
                        raise
                    group.remove_token(token)

    for key, downloaded in sorted(outcomes.items()):
        (report.downloaded if downloaded else report.skipped).append(key)

    persist(version_index, version_index_path)
    persist(provider_index, provider_index_path)
    log.info(
        "version synchronized",
        extra={
            "stage": "persist",
            "downloaded": len(report.downloaded),
            "skipped": len(report.skipped),
        },
    )
    return report
