# === NAVMAP v1 ===
# {
#   "module": "tests.conftest",
#   "purpose": "Shared pytest fixtures for suite",
#   "sections": [
#     {"id": "isolation", "name": "_isolate_environment", "anchor": "function-isolate-environment", "kind": "fixture"},
#     {"id": "configs", "name": "client_config / resolved_config", "anchor": "fixture-configs", "kind": "fixture"},
#     {"id": "registry", "name": "registry_client", "anchor": "fixture-registry-client", "kind": "fixture"}
#   ]
# }
# === /NAVMAP ===

"""
Pytest Configuration

Adds ``src`` to ``sys.path``, isolates every test from ``TFMIRROR_*``
environment variables, the shared HTTPX client and logger state, and provides
ready-made configuration, layout, and registry client fixtures backed by the
in-memory registry from :mod:`tests.fixtures.registry_mocking`.
"""

from __future__ import annotations

import logging
import os
import sys
from pathlib import Path
from typing import Generator

import pytest

ROOT = Path(__file__).resolve().parent.parent
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from TerraMirror.ProviderSync import net  # noqa: E402
from TerraMirror.ProviderSync.registry import RegistryClient  # noqa: E402
from TerraMirror.ProviderSync.settings import (  # noqa: E402
    ClientConfiguration,
    ResolvedConfig,
)
from TerraMirror.ProviderSync.storage import MirrorLayout  # noqa: E402
from tests.fixtures.registry_mocking import FakeRegistry, fake_registry  # noqa: E402,F401


@pytest.fixture(autouse=True)
def _isolate_environment(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    """Strip ``TFMIRROR_*`` variables and restore shared client and logger state."""

    for key in list(os.environ):
        if key.startswith("TFMIRROR_"):
            monkeypatch.delenv(key, raising=False)

    logger = logging.getLogger("TerraMirror.ProviderSync")
    level, propagate = logger.level, logger.propagate
    net.reset_http_client()
    yield
    net.reset_http_client()
    for handler in list(logger.handlers):
        if getattr(handler, "_tfmirror_managed", False):
            logger.removeHandler(handler)
            handler.close()
    logger.setLevel(level)
    logger.propagate = propagate


@pytest.fixture
def client_config(tmp_path: Path) -> ClientConfiguration:
    return ClientConfiguration(work_dir=tmp_path / "mirror", concurrent_downloads=4)


@pytest.fixture
def resolved_config(client_config: ClientConfiguration) -> ResolvedConfig:
    return ResolvedConfig(client=client_config)


@pytest.fixture
def layout(client_config: ClientConfiguration) -> MirrorLayout:
    return MirrorLayout(client_config.work_dir, client_config.registry_host)


@pytest.fixture
def registry_client(
    fake_registry: FakeRegistry, client_config: ClientConfiguration  # noqa: F811
) -> Generator[RegistryClient, None, None]:
    """Registry client whose HTTP traffic is answered by ``fake_registry``."""

    http_client = fake_registry.client()
    try:
        yield RegistryClient(client_config, http_client=http_client, sleep=lambda _delay: None)
    finally:
        http_client.close()
