"""Content digests for provider archives.

Mirrors key archives by the ``h1:`` hash used by Go module checksums and by
Terraform lock files.  The hash covers the *entries* of the zip archive rather
than its raw bytes: entry names are sorted, each entry contributes one line of
``<sha256(content)>  <name>``, and the SHA-256 of that summary is base64
encoded.  Two archives with identical members therefore hash identically even
when compression settings or timestamps differ.
"""

from __future__ import annotations

import base64
import hashlib
import zipfile
from pathlib import Path
from typing import IO, Callable, Iterable, Optional, Union

from .errors import DigestError, FilesystemError

H1_PREFIX = "h1:"
_CHUNK_SIZE = 1 << 20
_UTF8_NAME_FLAG = 0x800

__all__ = ["H1_PREFIX", "hash1", "hash_zip", "sha256_file"]

PathLike = Union[str, Path]


def hash1(
    names: Iterable[str],
    open_entry: Callable[[str], IO[bytes]],
    encode_name: Optional[Callable[[str], bytes]] = None,
) -> str:
    """Return the ``h1:`` digest for ``names`` whose contents come from ``open_entry``.

    ``encode_name`` maps a name to the bytes written into the summary line and
    defaults to UTF-8.
    """

    encode = encode_name or (lambda name: name.encode("utf-8"))
    summary = hashlib.sha256()
    for name in sorted(names, key=encode):
        if "\n" in name:
            raise DigestError(f"archive entry names must not contain newlines: {name!r}")
        entry_hash = hashlib.sha256()
        with open_entry(name) as stream:
            for chunk in iter(lambda: stream.read(_CHUNK_SIZE), b""):
                entry_hash.update(chunk)
        summary.update(entry_hash.hexdigest().encode("ascii") + b"  " + encode(name) + b"\n")
    return H1_PREFIX + base64.b64encode(summary.digest()).decode("ascii")


def _raw_name(info: zipfile.ZipInfo) -> bytes:
    """Recover the name bytes stored in the archive for ``info``.

    Names without the UTF-8 flag are decoded as cp437 by :mod:`zipfile`; cp437
    maps every byte, so encoding back yields the stored bytes.
    """

    if info.flag_bits & _UTF8_NAME_FLAG:
        return info.orig_filename.encode("utf-8")
    return info.orig_filename.encode("cp437")


def hash_zip(archive_path: PathLike) -> str:
    """Compute the ``h1:`` content digest of the zip archive at ``archive_path``.

    Entry names are hashed as the raw bytes stored in the archive, matching
    Go's ``dirhash`` for archives whose names are not flagged as UTF-8.

    Raises:
        FilesystemError: If the archive cannot be opened from disk.
        DigestError: If the file is not a readable zip archive, or an entry is
            encrypted or uses an unsupported compression method.
    """

    path = Path(archive_path)
    try:
        archive = zipfile.ZipFile(path)
    except zipfile.BadZipFile as exc:
        raise DigestError(f"{path} is not a valid zip archive: {exc}", path=str(path)) from exc
    except OSError as exc:
        raise FilesystemError(f"Failed to open archive {path}: {exc}", path=str(path)) from exc

    with archive:
        members = {info.filename: info for info in archive.infolist()}
        raw_names = {name: _raw_name(info) for name, info in members.items()}
        try:
            return hash1(
                list(members),
                lambda name: archive.open(members[name]),
                encode_name=raw_names.__getitem__,
            )
        except DigestError:
            raise
        except (zipfile.BadZipFile, zipfile.LargeZipFile, EOFError) as exc:
            raise DigestError(f"Corrupt archive {path}: {exc}", path=str(path)) from exc
        except NotImplementedError as exc:
            raise DigestError(
                f"Unsupported compression in archive {path}: {exc}", path=str(path)
            ) from exc
        except RuntimeError as exc:
            # zipfile refuses encrypted members without a password
            raise DigestError(f"Unreadable entry in archive {path}: {exc}", path=str(path)) from exc
        except OSError as exc:
            raise FilesystemError(f"Failed to read archive {path}: {exc}", path=str(path)) from exc


def sha256_file(path: PathLike) -> str:
    """Compute the SHA-256 digest of the raw bytes at ``path``."""

    hasher = hashlib.sha256()
    try:
        with Path(path).open("rb") as stream:
            for chunk in iter(lambda: stream.read(_CHUNK_SIZE), b""):
                hasher.update(chunk)
    except OSError as exc:
        raise FilesystemError(f"Failed to read {path}: {exc}", path=str(path)) from exc
    return hasher.hexdigest()
