# === NAVMAP v1 ===
# {
#   "module": "TerraMirror.ProviderSync.settings",
#   "purpose": "Configuration models, YAML loading, and environment overrides for provider mirroring",
#   "sections": [
#     {
#       "id": "loggingconfiguration",
#       "name": "LoggingConfiguration",
#       "anchor": "class-loggingconfiguration",
#       "kind": "class"
#     },
#     {
#       "id": "clientconfiguration",
#       "name": "ClientConfiguration",
#       "anchor": "class-clientconfiguration",
#       "kind": "class"
#     },
#     {
#       "id": "providerconfiguration",
#       "name": "ProviderConfiguration",
#       "anchor": "class-providerconfiguration",
#       "kind": "class"
#     },
#     {
#       "id": "resolvedconfig",
#       "name": "ResolvedConfig",
#       "anchor": "class-resolvedconfig",
#       "kind": "class"
#     },
#     {
#       "id": "environmentoverrides",
#       "name": "EnvironmentOverrides",
#       "anchor": "class-environmentoverrides",
#       "kind": "class"
#     },
#     {
#       "id": "load-config",
#       "name": "load_config",
#       "anchor": "function-load-config",
#       "kind": "function"
#     }
#   ]
# }
# === /NAVMAP ===

"""Configuration for the provider mirror.

Configuration lives in a YAML document with a ``client`` section (timeouts,
working directory, concurrency) and a ``providers`` mapping naming each
provider to mirror together with optional version and platform selections.
Values are validated with pydantic; ``TFMIRROR_*`` environment variables
override client settings after the file is parsed.  The camelCase keys used by
older configuration files (``timeOut``, ``workDir``, ``logLevel``) are still
accepted.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, List, Mapping, Optional

import yaml
from pydantic import AliasChoices, BaseModel, Field, field_validator
from pydantic import ValidationError as PydanticValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigError
from .models import Platform

DEFAULT_CONFIG_PATH = Path("config.yaml")
DEFAULT_REGISTRY_HOST = "registry.terraform.io"
PROVIDERS_PATH = "v1/providers"

__all__ = [
    "DEFAULT_CONFIG_PATH",
    "DEFAULT_REGISTRY_HOST",
    "PROVIDERS_PATH",
    "LoggingConfiguration",
    "ClientConfiguration",
    "ProviderConfiguration",
    "ResolvedConfig",
    "EnvironmentOverrides",
    "build_resolved_config",
    "load_raw_yaml",
    "load_config",
    "normalize_config_path",
]


def _default_work_dir() -> Path:
    return Path.cwd() / "workdir"


class LoggingConfiguration(BaseModel):
    """Retention and placement of the JSON log sidecar."""

    max_log_size_mb: int = Field(default=100, gt=0, description="Maximum size of rotated log files")
    retention_days: int = Field(default=30, ge=1, description="Retention period for log files")
    log_dir: Optional[Path] = Field(
        default=None, description="Directory for JSON logs; defaults to <work_dir>/logs"
    )

    model_config = {"validate_assignment": True, "extra": "forbid"}


class ClientConfiguration(BaseModel):
    """HTTP client, working directory, and concurrency settings."""

    timeout_sec: float = Field(
        default=5.0,
        gt=0,
        le=3600,
        validation_alias=AliasChoices("timeout_sec", "timeout", "timeOut"),
        description="Per-request timeout in seconds",
    )
    work_dir: Path = Field(
        default_factory=_default_work_dir,
        validation_alias=AliasChoices("work_dir", "workDir"),
        description="Root directory of the local mirror",
    )
    log_level: str = Field(
        default="INFO",
        validation_alias=AliasChoices("log_level", "logLevel"),
        description="Logging level (DEBUG, INFO, WARNING, ERROR)",
    )
    registry_host: str = Field(default=DEFAULT_REGISTRY_HOST, min_length=1)
    concurrent_downloads: int = Field(
        default=4, ge=1, le=64, description="Upper bound on simultaneous archive downloads"
    )
    max_retries: int = Field(
        default=0, ge=0, le=10, description="Retries for transient network failures"
    )
    backoff_factor: float = Field(default=0.5, ge=0.0, le=60.0)
    verify_shasum: bool = Field(
        default=True, description="Check archives against the registry's advertised SHA-256"
    )
    progress_log_percent_step: float = Field(default=25.0, gt=0.0, le=100.0)
    progress_log_bytes_threshold: int = Field(default=16 * 1024 * 1024, gt=0)

    @field_validator("log_level")
    @classmethod
    def validate_level(cls, value: str) -> str:
        """Upper-case the configured level and reject unknown names."""

        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR"}
        upper = value.upper()
        if upper not in valid_levels:
            raise ValueError(f"level must be one of {valid_levels}")
        return upper

    @field_validator("work_dir")
    @classmethod
    def expand_work_dir(cls, value: Path) -> Path:
        return value.expanduser()

    @property
    def providers_url(self) -> str:
        return f"https://{self.registry_host}/{PROVIDERS_PATH}"

    model_config = {"validate_assignment": True, "populate_by_name": True, "extra": "forbid"}


class ProviderConfiguration(BaseModel):
    """One provider to mirror with its version and platform selection.

    Empty ``versions`` or ``platforms`` mean "everything the registry
    advertises".
    """

    name: str = ""
    source: str = Field(..., pattern=r"^[^/\s]+/[^/\s]+$", description="e.g. hashicorp/kubernetes")
    versions: List[str] = Field(default_factory=list)
    platforms: List[Platform] = Field(default_factory=list)

    @field_validator("versions", mode="before")
    @classmethod
    def coerce_versions(cls, value: object) -> object:
        if value is None:
            return []
        if isinstance(value, str):
            return [value]
        return value

    @field_validator("platforms", mode="before")
    @classmethod
    def coerce_platforms(cls, value: object) -> object:
        if value is None:
            return []
        if isinstance(value, (str, Mapping)):
            value = [value]
        coerced = []
        for item in value:  # type: ignore[union-attr]
            if isinstance(item, str):
                coerced.append(Platform.from_key(item))
            else:
                coerced.append(item)
        return coerced

    def download_all_versions(self) -> bool:
        return not self.versions

    def download_all_platforms(self) -> bool:
        return not self.platforms

    model_config = {"validate_assignment": True, "extra": "forbid"}


class ResolvedConfig(BaseModel):
    """Fully validated configuration used by a synchronization run."""

    client: ClientConfiguration = Field(default_factory=ClientConfiguration)
    logging: LoggingConfiguration = Field(default_factory=LoggingConfiguration)
    providers: Dict[str, ProviderConfiguration] = Field(default_factory=dict)

    def provider_list(self) -> List[ProviderConfiguration]:
        return list(self.providers.values())

    def log_dir(self) -> Path:
        return self.logging.log_dir or (self.client.work_dir / "logs")

    model_config = {"validate_assignment": True, "extra": "forbid"}


class EnvironmentOverrides(BaseSettings):
    """Environment-derived overrides for the ``client`` section."""

    timeout: Optional[float] = None
    work_dir: Optional[Path] = None
    log_level: Optional[str] = None
    registry_host: Optional[str] = None
    concurrent_downloads: Optional[int] = None
    max_retries: Optional[int] = None

    model_config = SettingsConfigDict(env_prefix="TFMIRROR_", case_sensitive=False, extra="ignore")


def _apply_env_overrides(client: ClientConfiguration) -> None:
    """Mutate ``client`` in-place using values from :class:`EnvironmentOverrides`."""

    env = EnvironmentOverrides()
    logger = logging.getLogger("TerraMirror.ProviderSync")
    overrides = {
        "timeout_sec": env.timeout,
        "work_dir": env.work_dir,
        "log_level": env.log_level,
        "registry_host": env.registry_host,
        "concurrent_downloads": env.concurrent_downloads,
        "max_retries": env.max_retries,
    }
    for field_name, value in overrides.items():
        if value is None:
            continue
        setattr(client, field_name, value)
        logger.info("Config overridden: %s=%s", field_name, value, extra={"stage": "config"})


def _format_validation_error(exc: PydanticValidationError) -> str:
    messages = []
    for error in exc.errors():
        location = " -> ".join(str(part) for part in error["loc"])
        messages.append(f"{location}: {error['msg']}")
    return "Configuration validation failed:\n  " + "\n  ".join(messages)


def build_resolved_config(raw_config: Mapping[str, object]) -> ResolvedConfig:
    """Validate a raw ``client``/``providers`` mapping and apply environment overrides."""

    providers_section = raw_config.get("providers") or {}
    if not isinstance(providers_section, Mapping):
        raise ConfigError("'providers' must be a mapping of name to provider settings")

    providers: Dict[str, object] = {}
    for name, entry in providers_section.items():
        if not isinstance(entry, Mapping):
            raise ConfigError(f"Provider entry '{name}' must be a mapping")
        providers[str(name)] = {"name": str(name), **entry}

    unknown = set(raw_config) - {"client", "logging", "providers"}
    if unknown:
        raise ConfigError(f"Unknown configuration sections: {', '.join(sorted(unknown))}")

    try:
        config = ResolvedConfig.model_validate(
            {
                "client": raw_config.get("client") or {},
                "logging": raw_config.get("logging") or {},
                "providers": providers,
            }
        )
        _apply_env_overrides(config.client)
    except PydanticValidationError as exc:
        raise ConfigError(_format_validation_error(exc)) from exc
    except ValueError as exc:
        raise ConfigError(f"Configuration validation failed: {exc}") from exc

    if not config.providers:
        logging.getLogger("TerraMirror.ProviderSync").warning(
            "no providers configured", extra={"stage": "config"}
        )
    return config


def normalize_config_path(config_path: Path) -> Path:
    """Expand ``~`` and resolve ``config_path`` without requiring it to exist."""

    expanded = Path(config_path).expanduser()
    try:
        return expanded.resolve(strict=False)
    except (OSError, RuntimeError):  # pragma: no cover - only triggered on rare filesystems
        return expanded


def load_raw_yaml(config_path: Path) -> Mapping[str, object]:
    """Parse ``config_path`` as YAML, requiring a mapping document."""

    normalized_path = normalize_config_path(config_path)

    if not normalized_path.exists():
        raise ConfigError(f"Configuration file not found: {normalized_path}")

    try:
        with normalized_path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle)
    except yaml.YAMLError as exc:
        raise ConfigError(f"Configuration file '{normalized_path}' contains invalid YAML") from exc
    except OSError as exc:
        raise ConfigError(f"Configuration file '{normalized_path}' could not be read: {exc}") from exc

    if data is None:
        data = {}
    if not isinstance(data, Mapping):
        raise ConfigError("Configuration file must contain a mapping at the root")
    return data


def load_config(config_path: Path = DEFAULT_CONFIG_PATH) -> ResolvedConfig:
    """Read ``config_path`` and return the validated mirror configuration."""

    return build_resolved_config(load_raw_yaml(config_path))
