# === NAVMAP v1 ===
# {
#   "module": "tests.provider_sync.test_coordinator",
#   "purpose": "Concurrency, deduplication, and fail-fast behaviour of the download coordinator.",
#   "sections": [
#     {"id": "tests", "name": "Test Cases", "anchor": "TST", "kind": "tests"}
#   ]
# }
# === /NAVMAP ===

"""Concurrency, deduplication, and fail-fast behaviour of the download coordinator."""

from __future__ import annotations

import json
from pathlib import Path
from typing import List

import httpx
import pytest

from TerraMirror.ProviderSync.catalog import LocalVersionIndex, record_digest
from TerraMirror.ProviderSync.coordinator import needs_download, synchronize_version
from TerraMirror.ProviderSync.errors import BadStatusError, DigestError, ParseError
from TerraMirror.ProviderSync.hashing import hash_zip
from TerraMirror.ProviderSync.models import PackageArtifactMetadata, Platform
from TerraMirror.ProviderSync.registry import RegistryClient
from TerraMirror.ProviderSync.settings import ClientConfiguration
from TerraMirror.ProviderSync.storage import MirrorLayout
from tests.fixtures.registry_mocking import FakeRegistry, build_zip, mark_encrypted

SOURCE = "hashicorp/random"
PLATFORMS = [
    ("linux", "amd64"),
    ("linux", "arm64"),
    ("darwin", "amd64"),
    ("darwin", "arm64"),
    ("windows", "amd64"),
    ("windows", "386"),
]


def _artifacts(
    registry: RegistryClient, version: str, platforms=PLATFORMS
) -> List[PackageArtifactMetadata]:
    return [
        registry.get_package_metadata(SOURCE, version, Platform(os=os_name, arch=arch))
        for os_name, arch in platforms
    ]


def _sync(registry, layout, config, version, artifacts):
    return synchronize_version(
        SOURCE, version, artifacts, layout=layout, client=registry, config=config
    )


class TestNeedsDownload:
    def test_missing_file(self, tmp_path: Path) -> None:
        index = LocalVersionIndex()
        record_digest(index, "linux_amd64", "h1:abc=", "p.zip")

        assert needs_download(tmp_path / "p.zip", "linux_amd64", index)

    def test_file_present_but_digest_unrecorded(self, tmp_path: Path) -> None:
        archive = tmp_path / "p.zip"
        archive.write_bytes(build_zip({"bin": b"x"}))

        assert needs_download(archive, "linux_amd64", LocalVersionIndex())

    def test_file_present_and_digest_recorded(self, tmp_path: Path) -> None:
        archive = tmp_path / "p.zip"
        archive.write_bytes(build_zip({"bin": b"x"}))
        index = LocalVersionIndex()
        record_digest(index, "linux_amd64", hash_zip(archive), "p.zip")

        assert not needs_download(archive, "linux_amd64", index)
        assert needs_download(archive, "darwin_arm64", index)

    def test_unreadable_archive_is_downloaded_again(self, tmp_path: Path) -> None:
        archive = tmp_path / "p.zip"
        archive.write_bytes(b"truncated")

        assert needs_download(archive, "linux_amd64", LocalVersionIndex())

    def test_encrypted_archive_is_downloaded_again(self, tmp_path: Path) -> None:
        archive = tmp_path / "p.zip"
        archive.write_bytes(mark_encrypted(build_zip({"bin": b"x"})))

        assert needs_download(archive, "linux_amd64", LocalVersionIndex())


class TestSynchronizeVersion:
    def test_downloads_records_and_persists(
        self,
        fake_registry: FakeRegistry,
        registry_client: RegistryClient,
        layout: MirrorLayout,
        client_config: ClientConfiguration,
    ) -> None:
        fake_registry.add_version(SOURCE, "2.0.0", PLATFORMS)
        artifacts = _artifacts(registry_client, "2.0.0")

        report = _sync(registry_client, layout, client_config, "2.0.0", artifacts)

        expected_keys = sorted(f"{os_name}_{arch}" for os_name, arch in PLATFORMS)
        assert report.downloaded == expected_keys
        assert report.skipped == []

        provider_dir = layout.provider_dir(SOURCE)
        version_doc = json.loads((provider_dir / "2.0.0.json").read_text(encoding="utf-8"))
        assert sorted(version_doc["archives"]) == expected_keys
        for key, entry in version_doc["archives"].items():
            archive = provider_dir / entry["url"]
            assert entry["url"] == fake_registry.filename(SOURCE, "2.0.0", key)
            assert entry["hashes"] == [hash_zip(archive)]
        index_doc = json.loads((provider_dir / "index.json").read_text(encoding="utf-8"))
        assert index_doc == {"versions": {"2.0.0": {}}}
        assert not any(path.name.endswith((".part", ".tmp")) for path in provider_dir.iterdir())

    def test_second_run_is_idempotent(
        self,
        fake_registry: FakeRegistry,
        registry_client: RegistryClient,
        layout: MirrorLayout,
        client_config: ClientConfiguration,
    ) -> None:
        fake_registry.add_version(SOURCE, "2.0.0", PLATFORMS)
        artifacts = _artifacts(registry_client, "2.0.0")
        _sync(registry_client, layout, client_config, "2.0.0", artifacts)
        first_docs = {
            path.name: path.read_bytes()
            for path in layout.provider_dir(SOURCE).iterdir()
            if path.suffix == ".json"
        }
        downloads_before = len(fake_registry.downloads())

        report = _sync(registry_client, layout, client_config, "2.0.0", artifacts)

        assert report.downloaded == []
        assert len(report.skipped) == len(PLATFORMS)
        assert len(fake_registry.downloads()) == downloads_before
        second_docs = {
            path.name: path.read_bytes()
            for path in layout.provider_dir(SOURCE).iterdir()
            if path.suffix == ".json"
        }
        assert second_docs == first_docs

    def test_deleted_archive_is_downloaded_again(
        self,
        fake_registry: FakeRegistry,
        registry_client: RegistryClient,
        layout: MirrorLayout,
        client_config: ClientConfiguration,
    ) -> None:
        fake_registry.add_version(SOURCE, "2.0.0", PLATFORMS[:2])
        artifacts = _artifacts(registry_client, "2.0.0", PLATFORMS[:2])
        _sync(registry_client, layout, client_config, "2.0.0", artifacts)
        (layout.archive_path(SOURCE, artifacts[0].filename)).unlink()

        report = _sync(registry_client, layout, client_config, "2.0.0", artifacts)

        assert report.downloaded == [artifacts[0].platform.key]
        assert report.skipped == [artifacts[1].platform.key]

    def test_concurrency_is_bounded(
        self, fake_registry: FakeRegistry, layout: MirrorLayout, tmp_path: Path
    ) -> None:
        fake_registry.download_delay = 0.05
        fake_registry.add_version(SOURCE, "2.0.0", PLATFORMS)
        config = ClientConfiguration(work_dir=layout.work_dir, concurrent_downloads=2)
        with fake_registry.client() as http_client:
            registry = RegistryClient(config, http_client=http_client)
            artifacts = _artifacts(registry, "2.0.0")

            report = _sync(registry, layout, config, "2.0.0", artifacts)

        assert len(report.downloaded) == len(PLATFORMS)
        assert 1 <= fake_registry.max_in_flight <= 2

    def test_failure_persists_nothing(
        self,
        fake_registry: FakeRegistry,
        registry_client: RegistryClient,
        layout: MirrorLayout,
        client_config: ClientConfiguration,
    ) -> None:
        fake_registry.add_version(SOURCE, "2.0.0", PLATFORMS)
        artifacts = _artifacts(registry_client, "2.0.0")
        failing = artifacts[2]
        fake_registry.status_overrides[httpx.URL(failing.download_url).path] = 500

        with pytest.raises(BadStatusError) as excinfo:
            _sync(registry_client, layout, client_config, "2.0.0", artifacts)

        assert excinfo.value.status_code == 500
        provider_dir = layout.provider_dir(SOURCE)
        assert not (provider_dir / "2.0.0.json").exists()
        assert not (provider_dir / "index.json").exists()
        assert not any(path.name.endswith(".part") for path in provider_dir.iterdir())

    def test_failure_keeps_previous_indexes_untouched(
        self,
        fake_registry: FakeRegistry,
        registry_client: RegistryClient,
        layout: MirrorLayout,
        client_config: ClientConfiguration,
    ) -> None:
        fake_registry.add_version(SOURCE, "1.0.0", PLATFORMS[:1])
        fake_registry.add_version(SOURCE, "2.0.0", PLATFORMS[:1])
        first = _artifacts(registry_client, "1.0.0", PLATFORMS[:1])
        _sync(registry_client, layout, client_config, "1.0.0", first)
        index_before = layout.provider_index_path(SOURCE).read_bytes()
        artifacts = _artifacts(registry_client, "2.0.0", PLATFORMS[:1])
        fake_registry.status_overrides[httpx.URL(artifacts[0].download_url).path] = 503

        with pytest.raises(BadStatusError):
            _sync(registry_client, layout, client_config, "2.0.0", artifacts)

        assert layout.provider_index_path(SOURCE).read_bytes() == index_before
        assert not layout.version_index_path(SOURCE, "2.0.0").exists()

    def test_shasum_mismatch_raises_digest_error(
        self,
        fake_registry: FakeRegistry,
        registry_client: RegistryClient,
        layout: MirrorLayout,
        client_config: ClientConfiguration,
    ) -> None:
        fake_registry.add_version(SOURCE, "2.0.0", PLATFORMS[:1])
        filename = fake_registry.filename(SOURCE, "2.0.0", "linux_amd64")
        fake_registry.shasum_overrides[filename] = "0" * 64
        artifacts = _artifacts(registry_client, "2.0.0", PLATFORMS[:1])

        with pytest.raises(DigestError, match="SHA-256 mismatch"):
            _sync(registry_client, layout, client_config, "2.0.0", artifacts)

        assert not layout.archive_path(SOURCE, filename).exists()
        assert not layout.version_index_path(SOURCE, "2.0.0").exists()

    def test_shasum_check_can_be_disabled(
        self,
        fake_registry: FakeRegistry,
        registry_client: RegistryClient,
        layout: MirrorLayout,
        client_config: ClientConfiguration,
    ) -> None:
        fake_registry.add_version(SOURCE, "2.0.0", PLATFORMS[:1])
        filename = fake_registry.filename(SOURCE, "2.0.0", "linux_amd64")
        fake_registry.shasum_overrides[filename] = "0" * 64
        artifacts = _artifacts(registry_client, "2.0.0", PLATFORMS[:1])
        config = client_config.model_copy(update={"verify_shasum": False})

        report = _sync(registry_client, layout, config, "2.0.0", artifacts)

        assert report.downloaded == ["linux_amd64"]

    def test_no_artifacts_still_marks_version_seen(
        self,
        registry_client: RegistryClient,
        layout: MirrorLayout,
        client_config: ClientConfiguration,
    ) -> None:
        report = _sync(registry_client, layout, client_config, "3.0.0", [])

        assert report.total == 0
        index_doc = json.loads(layout.provider_index_path(SOURCE).read_text(encoding="utf-8"))
        assert index_doc == {"versions": {"3.0.0": {}}}
        version_doc = json.loads(
            layout.version_index_path(SOURCE, "3.0.0").read_text(encoding="utf-8")
        )
        assert version_doc == {"archives": {}}

    def test_corrupt_version_index_aborts_before_download(
        self,
        fake_registry: FakeRegistry,
        registry_client: RegistryClient,
        layout: MirrorLayout,
        client_config: ClientConfiguration,
    ) -> None:
        fake_registry.add_version(SOURCE, "2.0.0", PLATFORMS[:1])
        artifacts = _artifacts(registry_client, "2.0.0", PLATFORMS[:1])
        version_path = layout.version_index_path(SOURCE, "2.0.0")
        version_path.parent.mkdir(parents=True)
        version_path.write_text("not json", encoding="utf-8")

        with pytest.raises(ParseError):
            _sync(registry_client, layout, client_config, "2.0.0", artifacts)

        assert fake_registry.downloads() == []
