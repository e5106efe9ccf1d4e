# === NAVMAP v1 ===
# {
#   "module": "TerraMirror.ProviderSync.registry",
#   "purpose": "Registry API client: version listing, package metadata, and archive streaming",
#   "sections": [
#     {"id": "retry", "name": "retry_with_backoff", "anchor": "function-retry-with-backoff", "kind": "function"},
#     {"id": "client", "name": "RegistryClient", "anchor": "class-registryclient", "kind": "class"},
#     {"id": "stream", "name": "Streaming helpers", "anchor": "STREAM", "kind": "helpers"}
#   ]
# }
# === /NAVMAP ===

"""Client for the Terraform provider registry protocol.

Two JSON endpoints are consumed::

    GET https://<host>/v1/providers/<source>/versions
    GET https://<host>/v1/providers/<source>/<version>/download/<os>/<arch>

and archives are streamed from the ``download_url`` advertised by the second.
Transport failures surface as :class:`NetworkError`, non-2xx answers as
:class:`BadStatusError` carrying the status and the request path, and bodies
that do not match the expected shape as :class:`ParseError`.  Transient
failures can be retried with exponential backoff, but by default every
request is attempted exactly once.
"""

from __future__ import annotations

import json
import logging
import os
import random
import time
from pathlib import Path
from typing import Callable, Dict, Optional, Type, TypeVar, Union

import httpx
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError
from tenacity import Retrying, retry_if_exception, stop_after_attempt
from tenacity.wait import wait_base

from .cancellation import CancellationToken
from .errors import (
    BadStatusError,
    DownloadCancelledError,
    FilesystemError,
    NetworkError,
    ParseError,
)
from .models import PackageArtifactMetadata, Platform, RemoteVersionCatalog
from .net import get_http_client
from .settings import ClientConfiguration

LOGGER = logging.getLogger("TerraMirror.ProviderSync")

T = TypeVar("T")
ModelT = TypeVar("ModelT", bound=BaseModel)
LoggerLike = Union[logging.Logger, logging.LoggerAdapter]

_STREAM_CHUNK_SIZE = 1 << 20

__all__ = ["RegistryClient", "retry_with_backoff", "is_retryable"]


def retry_with_backoff(
    func: Callable[[], T],
    *,
    retryable: Callable[[Exception], bool],
    max_attempts: int = 1,
    backoff_base: float = 0.5,
    jitter: float = 0.25,
    callback: Optional[Callable[[int, Exception, float], None]] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Call ``func``, retrying failures accepted by ``retryable`` with exponential backoff."""

    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    class _BackoffWait(wait_base):
        def __call__(self, retry_state) -> float:  # type: ignore[override]
            attempt_number = max(retry_state.attempt_number, 1)
            delay = backoff_base * (2 ** (attempt_number - 1))
            if jitter > 0:
                delay += random.uniform(0.0, jitter)
            delay = max(delay, 0.0)
            setattr(retry_state.retry_object, "_tfmirror_retry_delay", delay)
            return delay

    def _before_sleep(retry_state) -> None:
        if callback is None or retry_state.outcome is None or not retry_state.outcome.failed:
            return
        delay = getattr(retry_state.retry_object, "_tfmirror_retry_delay", 0.0)
        callback(retry_state.attempt_number, retry_state.outcome.exception(), delay)

    retry_controller = Retrying(
        retry=retry_if_exception(lambda exc: isinstance(exc, Exception) and retryable(exc)),
        wait=_BackoffWait(),
        stop=stop_after_attempt(max_attempts),
        sleep=sleep,
        reraise=True,
        before_sleep=_before_sleep,
    )
    return retry_controller(func)


def is_retryable(exc: Exception) -> bool:
    """Transport errors, 429, and 5xx answers are worth another attempt."""

    if isinstance(exc, BadStatusError):
        return exc.status_code == 429 or exc.status_code >= 500
    return isinstance(exc, NetworkError)


def _check_status(response: httpx.Response) -> None:
    if not 200 <= response.status_code < 300:
        raise BadStatusError(
            response.status_code, response.request.url.path, url=str(response.request.url)
        )


class RegistryClient:
    """Thin typed wrapper over the registry's provider endpoints.

    Args:
        config: Client settings (host, timeout, retries).
        http_client: Explicit client to use; defaults to the shared client
            from :func:`TerraMirror.ProviderSync.net.get_http_client`.
        sleep: Hook used between retries, replaced in tests.
    """

    def __init__(
        self,
        config: ClientConfiguration,
        *,
        http_client: Optional[httpx.Client] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.config = config
        self._http_client = http_client
        self._sleep = sleep

    @property
    def http_client(self) -> httpx.Client:
        if self._http_client is None:
            self._http_client = get_http_client(self.config)
        return self._http_client

    @property
    def providers_url(self) -> str:
        return self.config.providers_url

    def versions_url(self, source: str) -> str:
        return f"{self.providers_url}/{source}/versions"

    def package_url(self, source: str, version: str, platform: Platform) -> str:
        return f"{self.providers_url}/{source}/{version}/download/{platform.os}/{platform.arch}"

    # --- metadata -----------------------------------------------------------

    def list_versions(self, source: str) -> RemoteVersionCatalog:
        """Fetch every version and platform the registry advertises for ``source``."""

        catalog, _ = self._get_model(self.versions_url(source), RemoteVersionCatalog)
        warnings = catalog.warnings
        if warnings:
            for warning in [warnings] if isinstance(warnings, str) else warnings:
                LOGGER.warning(
                    "registry warning: %s",
                    warning,
                    extra={"stage": "registry", "provider_source": source},
                )
        LOGGER.debug(
            "listed provider versions",
            extra={
                "stage": "registry",
                "provider_source": source,
                "versions": len(catalog.versions),
            },
        )
        return catalog

    def get_package_metadata(
        self, source: str, version: str, platform: Platform
    ) -> PackageArtifactMetadata:
        """Fetch download metadata for one ``(version, platform)`` package."""

        metadata, response_url = self._get_model(
            self.package_url(source, version, platform), PackageArtifactMetadata
        )
        absolute = str(response_url.join(metadata.download_url))
        if absolute != metadata.download_url:
            metadata = metadata.model_copy(update={"download_url": absolute})
        return metadata

    def _get_model(self, url: str, model: Type[ModelT]) -> "tuple[ModelT, httpx.URL]":
        def _attempt() -> "tuple[ModelT, httpx.URL]":
            try:
                response = self.http_client.get(url, headers={"Accept": "application/json"})
            except httpx.RequestError as exc:
                raise NetworkError(f"Request to {url} failed: {exc}", url=url) from exc
            _check_status(response)
            try:
                payload = response.json()
            except (json.JSONDecodeError, UnicodeDecodeError) as exc:
                raise ParseError(f"Response from {url} is not valid JSON: {exc}", source=url) from exc
            try:
                return model.model_validate(payload), response.url
            except PydanticValidationError as exc:
                details = "; ".join(
                    f"{' -> '.join(str(part) for part in error['loc']) or '<root>'}: {error['msg']}"
                    for error in exc.errors()
                )
                raise ParseError(f"Unexpected response from {url}: {details}", source=url) from exc

        return self._with_retries(_attempt, url=url)

    def _with_retries(self, func: Callable[[], T], *, url: str) -> T:
        def _log_retry(attempt: int, exc: Exception, delay: float) -> None:
            LOGGER.warning(
                "retrying registry request",
                extra={
                    "stage": "registry",
                    "url": url,
                    "attempt": attempt,
                    "delay_sec": round(delay, 2),
                    "error": str(exc),
                },
            )

        return retry_with_backoff(
            func,
            retryable=is_retryable,
            max_attempts=self.config.max_retries + 1,
            backoff_base=self.config.backoff_factor,
            callback=_log_retry,
            sleep=self._sleep,
        )

    # --- archives -----------------------------------------------------------

    def download_archive(
        self,
        metadata: PackageArtifactMetadata,
        destination: Path,
        *,
        cancellation_token: Optional[CancellationToken] = None,
        logger: Optional[LoggerLike] = None,
    ) -> int:
        """Stream the archive described by ``metadata`` to ``destination``.

        Bytes land in ``<destination>.part`` first and are renamed into place
        only after the body was received completely, so an interrupted
        transfer never leaves a truncated archive under the final name.

        Returns:
            Number of bytes written.
        """

        log = logger or LOGGER
        url = metadata.download_url

        def _attempt() -> int:
            try:
                with self.http_client.stream("GET", url) as response:
                    _check_status(response)
                    return _stream_body_to_file(
                        response=response,
                        destination=destination,
                        cancellation_token=cancellation_token,
                        logger=log,
                        percent_step=self.config.progress_log_percent_step / 100.0,
                        bytes_threshold=self.config.progress_log_bytes_threshold,
                    )
            except httpx.RequestError as exc:
                raise NetworkError(f"Download of {url} failed: {exc}", url=url) from exc

        written = self._with_retries(_attempt, url=url)
        log.info(
            "archive downloaded",
            extra={"stage": "download", "url": url, "bytes": written, "path": str(destination)},
        )
        return written


# --- Streaming helpers ---------------------------------------------------------


def _total_bytes(response: httpx.Response) -> Optional[int]:
    length_header = response.headers.get("Content-Length")
    if not length_header:
        return None
    try:
        return int(length_header)
    except (TypeError, ValueError):
        return None


def _log_stream_progress(
    *,
    logger: LoggerLike,
    bytes_downloaded: int,
    total_bytes: Optional[int],
    state: Dict[str, object],
    percent_step: float,
    bytes_threshold: int,
) -> None:
    if total_bytes and total_bytes > 0 and percent_step > 0:
        next_percent = state.get("next_percent", percent_step)
        while isinstance(next_percent, (int, float)):
            progress = bytes_downloaded / total_bytes
            if progress + 1e-9 < next_percent or next_percent >= 1:
                break
            logger.info(
                "download progress",
                extra={
                    "stage": "download",
                    "progress": {
                        "percent": round(min(progress, 1.0) * 100, 1),
                        "bytes_downloaded": bytes_downloaded,
                        "total_bytes": total_bytes,
                    },
                },
            )
            next_percent += percent_step
        state["next_percent"] = next_percent
        return

    last_bytes = int(state.get("last_bytes", 0))  # type: ignore[arg-type]
    if bytes_threshold > 0 and bytes_downloaded - last_bytes >= bytes_threshold:
        logger.info(
            "download progress",
            extra={"stage": "download", "progress": {"bytes_downloaded": bytes_downloaded}},
        )
        state["last_bytes"] = bytes_downloaded


def _stream_body_to_file(
    *,
    response: httpx.Response,
    destination: Path,
    cancellation_token: Optional[CancellationToken],
    logger: LoggerLike,
    percent_step: float,
    bytes_threshold: int,
) -> int:
    part_path = destination.with_name(destination.name + ".part")
    total_bytes = _total_bytes(response)
    state: Dict[str, object] = {"last_bytes": 0}
    bytes_downloaded = 0
    try:
        with part_path.open("wb") as stream:
            for chunk in response.iter_bytes(_STREAM_CHUNK_SIZE):
                if cancellation_token is not None and cancellation_token.is_cancelled():
                    raise DownloadCancelledError(f"Download of {destination.name} was cancelled")
                if not chunk:
                    continue
                stream.write(chunk)
                bytes_downloaded += len(chunk)
                _log_stream_progress(
                    logger=logger,
                    bytes_downloaded=bytes_downloaded,
                    total_bytes=total_bytes,
                    state=state,
                    percent_step=percent_step,
                    bytes_threshold=bytes_threshold,
                )
    except OSError as exc:
        part_path.unlink(missing_ok=True)
        logger.error(
            "filesystem error during download",
            extra={"stage": "download", "error": str(exc)},
        )
        raise FilesystemError(f"Failed to write {part_path}: {exc}", path=str(part_path)) from exc
    except BaseException:
        part_path.unlink(missing_ok=True)
        raise

    try:
        os.replace(part_path, destination)
    except OSError as exc:
        part_path.unlink(missing_ok=True)
        raise FilesystemError(
            f"Failed to finalise download {destination}: {exc}", path=str(destination)
        ) from exc
    return bytes_downloaded
