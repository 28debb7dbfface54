"""
Cache models — identities and verification results for cached sources.

A cached source is keyed by its filename (the identity key), e.g.
``zlib-1.3.1.tar.xz``. Entries are created on the first successful fetch
and never modified afterwards.
"""

from __future__ import annotations

from enum import StrEnum
from pathlib import Path

from pydantic import BaseModel


class HashMode(StrEnum):
    """What bytes a sha256 digest is computed over."""

    RAW = "raw"                  # the file as stored (compressed bytes)
    TAR_EXTRACT = "tar-extract"  # concatenated member contents, any compressor
    XZ_EXTRACT = "xz-extract"    # decompressed tar stream, metadata included


class VerifyStatus(StrEnum):
    OK = "ok"
    MISMATCH = "mismatch"
    NOT_FOUND = "not_found"


class FetchRequest(BaseModel):
    """One acquisition request. Transient, never persisted."""

    url: str
    source: str                  # identity key / cache filename
    target_dir: Path
    revision: str | None = None  # pinned VCS revision; None = plain download
    subdir: str | None = None    # top-level directory name inside the VCS archive

    @property
    def is_vcs(self) -> bool:
        return bool(self.revision)


class CacheEntry(BaseModel):
    """A file held in the cache directory."""

    source: str
    path: Path
    expected_hash: str = ""
    hash_mode: HashMode = HashMode.RAW
    fetched: bool = False        # True when this call performed the transfer
    adopted: bool = False        # True when a pre-placed target file was moved in


class VerifyResult(BaseModel):
    """Outcome of hashing a file against an expected digest."""

    path: Path
    mode: HashMode
    status: VerifyStatus
    expected: str = ""
    actual: str = ""

    @property
    def ok(self) -> bool:
        return self.status == VerifyStatus.OK


class VerifiedArchive(BaseModel):
    """A cache entry whose digest has been checked."""

    entry: CacheEntry
    result: VerifyResult

    @property
    def path(self) -> Path:
        return self.entry.path
