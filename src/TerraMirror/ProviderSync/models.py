# === NAVMAP v1 ===
# {
#   "module": "TerraMirror.ProviderSync.models",
#   "purpose": "Pydantic models for registry payloads and platform identities",
#   "sections": [
#     {"id": "constants", "name": "Platform constants", "anchor": "CONST", "kind": "constants"},
#     {"id": "platform", "name": "Platform", "anchor": "class-platform", "kind": "class"},
#     {"id": "signing", "name": "Signing key metadata", "anchor": "SIGN", "kind": "api"},
#     {"id": "catalog", "name": "Remote catalog records", "anchor": "CAT", "kind": "api"}
#   ]
# }
# === /NAVMAP ===

"""Data model for registry responses consumed by the synchronization engine.

The registry publishes two documents per provider: the list of available
versions (each advertising its protocols and platforms) and, per version and
platform, the package metadata that points at the downloadable archive.  Both
are parsed into pydantic models so that malformed payloads surface as
validation errors at the edge rather than as ``KeyError`` deep in the
coordinator.  GPG signing keys are carried through verbatim; nothing in this
package validates signatures.
"""

from __future__ import annotations

from typing import List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

OS_LINUX = "linux"
OS_DARWIN = "darwin"
OS_WINDOWS = "windows"

ARCH_AMD64 = "amd64"
ARCH_ARM64 = "arm64"

__all__ = [
    "OS_LINUX",
    "OS_DARWIN",
    "OS_WINDOWS",
    "ARCH_AMD64",
    "ARCH_ARM64",
    "Platform",
    "GpgPublicKey",
    "SigningKeys",
    "VersionEntry",
    "RemoteVersionCatalog",
    "PackageArtifactMetadata",
]


class Platform(BaseModel):
    """Operating system and CPU architecture pair identifying a build target.

    Examples:
        >>> Platform(os="linux", arch="amd64").key
        'linux_amd64'
    """

    model_config = ConfigDict(frozen=True)

    os: str = Field(..., min_length=1, description="Operating system name, e.g. linux")
    arch: str = Field(..., min_length=1, description="CPU architecture name, e.g. amd64")

    @property
    def key(self) -> str:
        """Return the ``<os>_<arch>`` identity used in persisted indexes."""

        return f"{self.os}_{self.arch}"

    @classmethod
    def from_key(cls, key: str) -> "Platform":
        """Parse an ``<os>_<arch>`` string back into a :class:`Platform`."""

        os_name, sep, arch = key.partition("_")
        if not sep or not os_name or not arch:
            raise ValueError(f"platform must look like '<os>_<arch>', got {key!r}")
        return cls(os=os_name, arch=arch)

    def __str__(self) -> str:
        return f"{self.os}/{self.arch}"


class GpgPublicKey(BaseModel):
    """GPG public key advertised alongside a package."""

    key_id: str = ""
    ascii_armor: str = ""
    trust_signature: str = ""
    source: str = ""
    source_url: Optional[str] = None


class SigningKeys(BaseModel):
    gpg_public_keys: List[GpgPublicKey] = Field(default_factory=list)


class VersionEntry(BaseModel):
    """One provider version and the platforms it was built for."""

    version: str = Field(..., min_length=1)
    protocols: List[str] = Field(default_factory=list)
    platforms: List[Platform] = Field(default_factory=list)


class RemoteVersionCatalog(BaseModel):
    """Response of the registry ``versions`` endpoint for a single provider."""

    id: str = ""
    versions: List[VersionEntry] = Field(default_factory=list)
    warnings: Optional[Union[str, List[str]]] = None

    def version_strings(self) -> List[str]:
        return [entry.version for entry in self.versions]

    def get(self, version: str) -> Optional[VersionEntry]:
        for entry in self.versions:
            if entry.version == version:
                return entry
        return None


class PackageArtifactMetadata(BaseModel):
    """Download metadata for one (version, platform) package."""

    protocols: List[str] = Field(default_factory=list)
    os: str
    arch: str
    filename: str = Field(..., min_length=1)
    download_url: str = Field(..., min_length=1)
    shasums_url: str = ""
    shasums_signature_url: str = ""
    shasum: str = ""
    signing_keys: SigningKeys = Field(default_factory=SigningKeys)

    @property
    def platform(self) -> Platform:
        return Platform(os=self.os, arch=self.arch)
