# === NAVMAP v1 ===
# {
#   "module": "TerraMirror.ProviderSync.net",
#   "purpose": "Provide the shared HTTPX client used for registry traffic",
#   "sections": [
#     {"id": "constants", "name": "Constants & globals", "anchor": "CONST", "kind": "constants"},
#     {"id": "helpers", "name": "Client construction helpers", "anchor": "HELP", "kind": "helpers"},
#     {"id": "api", "name": "Public API", "anchor": "API", "kind": "api"}
#   ]
# }
# === /NAVMAP ===

"""Shared HTTPX client used for registry metadata and archive downloads."""

from __future__ import annotations

import contextlib
import logging
import ssl
import threading
import time
from typing import MutableMapping, Optional

import certifi
import httpx

from .settings import ClientConfiguration

LOGGER = logging.getLogger("TerraMirror.ProviderSync.net")

# --- Constants & globals -------------------------------------------------------

USER_AGENT = "terramirror/0.1.0 (+https://registry.terraform.io)"
_CLIENT_LOCK = threading.RLock()
_HTTP_CLIENT: Optional[httpx.Client] = None

# --- Client construction helpers ----------------------------------------------


def _build_ssl_context() -> ssl.SSLContext:
    context = ssl.create_default_context()
    context.load_verify_locations(certifi.where())
    return context


def _request_hook(request: httpx.Request) -> None:
    request.headers.setdefault("User-Agent", USER_AGENT)
    meta: MutableMapping[str, object] = request.extensions.setdefault("tfmirror_meta", {})  # type: ignore[assignment]
    meta["start_time"] = time.perf_counter()
    meta["attempt"] = int(meta.get("attempt", 0)) + 1


def _response_hook(response: httpx.Response) -> None:
    # Status codes are mapped by the registry client, not raised here.
    meta: MutableMapping[str, object] = response.request.extensions.setdefault(  # type: ignore[assignment]
        "tfmirror_meta", {}
    )
    start = meta.get("start_time")
    elapsed = None
    if isinstance(start, (int, float)):
        elapsed = time.perf_counter() - start
        meta["elapsed_sec"] = elapsed

    LOGGER.debug(
        "registry-http-response",
        extra={
            "stage": "http",
            "url": str(response.request.url),
            "status": response.status_code,
            "elapsed_sec": round(elapsed, 4) if elapsed is not None else None,
        },
    )


def _timeout_for(config: ClientConfiguration) -> httpx.Timeout:
    return httpx.Timeout(config.timeout_sec)


def _limits_for(config: ClientConfiguration) -> httpx.Limits:
    # One connection per concurrent download plus one for metadata calls.
    return httpx.Limits(
        max_connections=config.concurrent_downloads + 1,
        max_keepalive_connections=config.concurrent_downloads + 1,
        keepalive_expiry=30.0,
    )


def _build_http_client(config: ClientConfiguration) -> httpx.Client:
    return httpx.Client(
        transport=httpx.HTTPTransport(retries=0, verify=_build_ssl_context()),
        timeout=_timeout_for(config),
        limits=_limits_for(config),
        trust_env=True,
        follow_redirects=True,
        event_hooks={"request": [_request_hook], "response": [_response_hook]},
    )


def _close_client_unlocked() -> None:
    global _HTTP_CLIENT
    if _HTTP_CLIENT is not None:
        with contextlib.suppress(Exception):
            _HTTP_CLIENT.close()
    _HTTP_CLIENT = None


# --- Public API ----------------------------------------------------------------


def configure_http_client(client: httpx.Client) -> None:
    """Install ``client`` as the process-wide registry client."""

    global _HTTP_CLIENT
    with _CLIENT_LOCK:
        if _HTTP_CLIENT is not client:
            _close_client_unlocked()
        _HTTP_CLIENT = client


def reset_http_client() -> None:
    """Close and forget the shared client so the next caller builds a fresh one."""

    with _CLIENT_LOCK:
        _close_client_unlocked()


def get_http_client(config: Optional[ClientConfiguration] = None) -> httpx.Client:
    """Return the process-wide client, building one from ``config`` on first use."""

    global _HTTP_CLIENT
    with _CLIENT_LOCK:
        if _HTTP_CLIENT is None:
            _HTTP_CLIENT = _build_http_client(config or ClientConfiguration())
            LOGGER.debug("built shared httpx client", extra={"stage": "http"})
        return _HTTP_CLIENT


__all__ = ["USER_AGENT", "configure_http_client", "reset_http_client", "get_http_client"]
