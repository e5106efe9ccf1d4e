"""Structured logging helpers shared across provider synchronization components."""

from __future__ import annotations

import gzip
import json
import logging
import shutil
import sys
import time
import uuid
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Dict, List, Optional

__all__ = [
    "ContextAdapter",
    "JSONFormatter",
    "setup_logging",
    "generate_correlation_id",
    "mask_sensitive_data",
]

LOGGER_NAME = "TerraMirror.ProviderSync"
_MANAGED_ATTR = "_tfmirror_managed"

_CONTEXT_FIELDS = (
    "correlation_id",
    "stage",
    "provider_source",
    "provider_version",
    "os",
    "arch",
)
_RESERVED = set(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "asctime"}


def generate_correlation_id() -> str:
    """Create a short-lived identifier that links related log entries."""

    return uuid.uuid4().hex[:12]


class ContextAdapter(logging.LoggerAdapter):
    """LoggerAdapter that merges per-call ``extra`` with the bound context.

    The stock adapter discards the ``extra`` passed to individual calls; here
    both are kept and per-call keys win.
    """

    def process(self, msg, kwargs):
        kwargs["extra"] = {**(self.extra or {}), **(kwargs.get("extra") or {})}
        return msg, kwargs


def mask_sensitive_data(payload: Dict[str, object]) -> Dict[str, object]:
    """Remove secrets from structured payloads prior to logging."""

    sensitive_keys = {"authorization", "api_key", "apikey", "token", "secret", "password"}
    masked: Dict[str, object] = {}
    for key, value in payload.items():
        if key.lower() in sensitive_keys:
            masked[key] = "***masked***"
        elif isinstance(value, dict):
            masked[key] = mask_sensitive_data(value)
        else:
            masked[key] = value
    return masked


class JSONFormatter(logging.Formatter):
    """Render records as one JSON object per line for the ``.jsonl`` sidecar."""

    def format(self, record: logging.LogRecord) -> str:
        created = datetime.fromtimestamp(record.created, tz=timezone.utc)
        payload: Dict[str, object] = {
            "timestamp": created.isoformat(timespec="milliseconds").replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update({name: getattr(record, name, None) for name in _CONTEXT_FIELDS})
        payload.update(
            {
                key: value
                for key, value in vars(record).items()
                if key not in _RESERVED and key not in payload and not key.startswith("_")
            }
        )
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(mask_sensitive_data(payload), default=str)


def _gzip_in_place(path: Path) -> Path:
    archived = path.parent / f"{path.name}.gz"
    with path.open("rb") as source, gzip.open(archived, "wb") as target:
        shutil.copyfileobj(source, target)
    path.unlink()
    return archived


def _cleanup_logs(log_dir: Path, retention_days: int) -> List[str]:
    """Gzip ``tfmirror`` logs older than the retention window and drop old archives.

    Returns a human readable description of every action taken.
    """

    cutoff = time.time() - retention_days * 86400
    actions: List[str] = []
    for path in sorted(log_dir.iterdir()):
        if not path.is_file() or path.stat().st_mtime >= cutoff:
            continue
        if path.name.endswith(".jsonl"):
            archived = _gzip_in_place(path)
            actions.append(f"archived {path.name} as {archived.name}")
        elif path.name.endswith(".jsonl.gz"):
            path.unlink()
            actions.append(f"removed {path.name}")
    return actions


def _is_managed(handler: logging.Handler) -> bool:
    return bool(getattr(handler, _MANAGED_ATTR, False))


def _detach_managed_handlers(logger: logging.Logger) -> None:
    for handler in [h for h in logger.handlers if _is_managed(h)]:
        logger.removeHandler(handler)
        # never close the interpreter's own streams
        if getattr(handler, "stream", None) not in (sys.stdout, sys.stderr):
            handler.close()


def setup_logging(
    *,
    level: str = "INFO",
    retention_days: int = 30,
    max_log_size_mb: int = 100,
    log_dir: Optional[Path] = None,
    propagate: bool = False,
) -> logging.Logger:
    """Configure console output plus a rotating JSONL sidecar.

    Handlers installed by previous calls are replaced, so the function can be
    invoked repeatedly (for example once per CLI invocation in tests).  When
    ``log_dir`` is ``None`` only the console handler is installed.
    """

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    _detach_managed_handlers(logger)

    handlers: List[logging.Handler] = []
    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(logging.Formatter("%(levelname)s %(name)s: %(message)s"))
    handlers.append(console)

    if log_dir is not None:
        log_dir.mkdir(parents=True, exist_ok=True)
        for action in _cleanup_logs(log_dir, retention_days):
            logger.debug(action, extra={"stage": "logging"})
        stamp = datetime.now(timezone.utc).strftime("%Y%m%d")
        sidecar = RotatingFileHandler(
            log_dir / f"tfmirror-{stamp}.jsonl",
            maxBytes=max_log_size_mb * 1024 * 1024,
            backupCount=5,
            encoding="utf-8",
        )
        sidecar.setFormatter(JSONFormatter())
        handlers.append(sidecar)

    for handler in handlers:
        setattr(handler, _MANAGED_ATTR, True)
        logger.addHandler(handler)
    logger.propagate = propagate
    return logger
