# === NAVMAP v1 ===
# {
#   "module": "tests.provider_sync.test_cli",
#   "purpose": "Regression coverage for the tfmirror CLI entrypoints.",
#   "sections": [
#     {"id": "tests", "name": "Test Cases", "anchor": "TST", "kind": "tests"}
#   ]
# }
# === /NAVMAP ===

"""Regression coverage for the tfmirror CLI entrypoints."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

from TerraMirror.ProviderSync import __version__
from TerraMirror.ProviderSync.cli import app
from TerraMirror.ProviderSync.testing import use_mock_http_client
from tests.fixtures.registry_mocking import FakeRegistry

SOURCE = "hashicorp/random"

runner = CliRunner()


@pytest.fixture
def config_file(tmp_path: Path) -> Path:
    path = tmp_path / "config.yaml"
    path.write_text(
        "\n".join(
            [
                "client:",
                f"  work_dir: {tmp_path / 'mirror'}",
                "  log_level: error",
                "providers:",
                "  random:",
                f"    source: {SOURCE}",
                "    versions: ['3.6.0']",
                "    platforms: ['linux_amd64']",
                "",
            ]
        ),
        encoding="utf-8",
    )
    return path


@pytest.fixture
def registry(fake_registry: FakeRegistry) -> FakeRegistry:
    fake_registry.add_version(SOURCE, "3.5.0", [("linux", "amd64")])
    fake_registry.add_version(SOURCE, "3.6.0", [("linux", "amd64"), ("darwin", "arm64")])
    return fake_registry


@pytest.mark.parametrize("flag", ["--version", "-V"])
def test_version_flag_exits_before_subcommand(flag: str) -> None:
    result = runner.invoke(app, [flag])

    assert result.exit_code == 0
    assert __version__ in result.output


def test_version_command_needs_no_config(tmp_path: Path) -> None:
    result = runner.invoke(app, ["--config", str(tmp_path / "absent.yaml"), "version"])

    assert result.exit_code == 0
    assert __version__ in result.output


def test_plan_lists_selected_artifacts(config_file: Path, registry: FakeRegistry) -> None:
    with use_mock_http_client(registry.transport):
        result = runner.invoke(app, ["--config", str(config_file), "plan"])

    assert result.exit_code == 0, result.output
    assert "3.6.0" in result.output
    assert "linux_amd64" in result.output
    assert "darwin_arm64" not in result.output
    assert registry.downloads() == []


def test_plan_json(config_file: Path, registry: FakeRegistry) -> None:
    with use_mock_http_client(registry.transport):
        result = runner.invoke(app, ["--config", str(config_file), "plan", "--json"])

    assert result.exit_code == 0, result.output
    start = result.output.index("[")
    payload = json.loads(result.output[start:])
    assert payload == [{"name": "random", "source": SOURCE, "versions": {"3.6.0": ["linux_amd64"]}}]


def test_sync_then_show(config_file: Path, registry: FakeRegistry, tmp_path: Path) -> None:
    with use_mock_http_client(registry.transport):
        result = runner.invoke(app, ["--config", str(config_file), "sync"])

    assert result.exit_code == 0, result.output
    assert "downloaded 1 archive(s)" in result.output
    provider_dir = tmp_path / "mirror" / "registry.terraform.io" / SOURCE
    assert (provider_dir / "3.6.0.json").is_file()
    assert (provider_dir / registry.filename(SOURCE, "3.6.0", "linux_amd64")).is_file()
    assert list((tmp_path / "mirror" / "logs").glob("tfmirror-*.jsonl"))

    show = runner.invoke(app, ["--config", str(config_file), "show", SOURCE])
    assert show.exit_code == 0, show.output
    assert "3.6.0" in show.output

    detail = runner.invoke(app, ["--config", str(config_file), "show", SOURCE, "--version", "3.6.0"])
    assert detail.exit_code == 0, detail.output
    assert "linux_amd64" in detail.output
    assert registry.filename(SOURCE, "3.6.0", "linux_amd64") in detail.output


def test_sync_dry_run_writes_nothing(config_file: Path, registry: FakeRegistry, tmp_path: Path) -> None:
    with use_mock_http_client(registry.transport):
        result = runner.invoke(app, ["--config", str(config_file), "sync", "--dry-run"])

    assert result.exit_code == 0, result.output
    assert "DRY-RUN" in result.output
    assert registry.downloads() == []
    assert not (tmp_path / "mirror" / "registry.terraform.io").exists()


def test_sync_reports_registry_errors(config_file: Path, registry: FakeRegistry) -> None:
    registry.status_overrides[f"/v1/providers/{SOURCE}/versions"] = 502

    with use_mock_http_client(registry.transport):
        result = runner.invoke(app, ["--config", str(config_file), "sync"])

    assert result.exit_code == 1
    assert "wrong status code: 502" in result.output


def test_missing_config_exits_non_zero(tmp_path: Path) -> None:
    result = runner.invoke(app, ["--config", str(tmp_path / "absent.yaml"), "plan"])

    assert result.exit_code == 1
    assert "Configuration file not found" in result.output


def test_unknown_provider_filter(config_file: Path) -> None:
    result = runner.invoke(app, ["--config", str(config_file), "plan", "--provider", "aws"])

    assert result.exit_code == 1
    assert "Unknown provider(s): aws" in result.output


def test_show_reports_corrupt_index(config_file: Path, tmp_path: Path) -> None:
    provider_dir = tmp_path / "mirror" / "registry.terraform.io" / SOURCE
    provider_dir.mkdir(parents=True)
    (provider_dir / "index.json").write_text("{broken", encoding="utf-8")

    result = runner.invoke(app, ["--config", str(config_file), "show", SOURCE])

    assert result.exit_code == 1
    assert "not valid JSON" in result.output
