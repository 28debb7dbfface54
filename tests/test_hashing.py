"""
Tests for hash verification and signature sidecars.
"""

import hashlib
import lzma
import os
from pathlib import Path

import pytest

from conftest import SAMPLE_FILES, requires_lzip, tar_bytes
from pkgcache.core.errors import ArgumentError, IntegrityError
from pkgcache.core.models.cache import HashMode, VerifyStatus
from pkgcache.core.services.hashing import (
    compute_hash,
    read_sidecar,
    sidecar_path,
    sign_file,
    verify,
    verify_or_raise,
)

CONTENT_DIGEST = hashlib.sha256(b"".join(SAMPLE_FILES.values())).hexdigest()


class TestComputeHash:
    def test_raw_is_file_digest(self, make_archive):
        path = make_archive("gz")
        assert compute_hash(path, HashMode.RAW) == hashlib.sha256(path.read_bytes()).hexdigest()

    def test_tar_extract_is_concatenated_contents(self, make_archive):
        assert compute_hash(make_archive("xz"), HashMode.TAR_EXTRACT) == CONTENT_DIGEST

    @pytest.mark.parametrize(
        "fmt, level",
        [("tar", None), ("gz", 1), ("gz", 9), ("bz2", 9), ("xz", 0), ("xz", 9), ("zst", 1), ("zst", 19)],
    )
    def test_tar_extract_ignores_compressor_and_level(self, make_archive, fmt: str, level):
        path = make_archive(fmt, level=level, name=f"p-{fmt}-{level}.tar{'' if fmt == 'tar' else '.' + fmt}")
        assert compute_hash(path, HashMode.TAR_EXTRACT) == CONTENT_DIGEST

    @requires_lzip
    def test_tar_extract_of_lzip_matches_other_formats(self, make_archive):
        assert compute_hash(make_archive("lz"), HashMode.TAR_EXTRACT) == CONTENT_DIGEST

    def test_tar_extract_ignores_tar_metadata(self, make_archive):
        a = make_archive("gz", mtime=1, uid=0, name="a.tar.gz")
        b = make_archive("gz", mtime=2_000_000_000, uid=1000, name="b.tar.gz")
        assert compute_hash(a, HashMode.RAW) != compute_hash(b, HashMode.RAW)
        assert compute_hash(a, HashMode.TAR_EXTRACT) == compute_hash(b, HashMode.TAR_EXTRACT)

    def test_xz_extract_hashes_decompressed_stream(self, tmp_path: Path):
        data = tar_bytes(SAMPLE_FILES)
        path = tmp_path / "p.tar.xz"
        path.write_bytes(lzma.compress(data))
        assert compute_hash(path, HashMode.XZ_EXTRACT) == hashlib.sha256(data).hexdigest()

    def test_xz_extract_sees_metadata(self, make_archive):
        a = make_archive("xz", mtime=1, name="a.tar.xz")
        b = make_archive("xz", mtime=2, name="b.tar.xz")
        assert compute_hash(a, HashMode.XZ_EXTRACT) != compute_hash(b, HashMode.XZ_EXTRACT)

    def test_mode_accepts_string(self, make_archive):
        assert compute_hash(make_archive("gz"), "tar-extract") == CONTENT_DIGEST


class TestVerify:
    def test_ok(self, make_archive):
        path = make_archive("gz")
        digest = hashlib.sha256(path.read_bytes()).hexdigest()
        result = verify(path, digest)
        assert result.ok
        assert result.actual == digest

    def test_expected_is_case_insensitive(self, make_archive):
        path = make_archive("gz")
        digest = hashlib.sha256(path.read_bytes()).hexdigest()
        assert verify(path, digest.upper()).ok

    def test_mismatch(self, make_archive, caplog):
        path = make_archive("gz")
        result = verify(path, "0" * 64)
        assert result.status == VerifyStatus.MISMATCH
        assert result.expected == "0" * 64
        assert "mismatch" in caplog.text.lower()

    def test_missing_file(self, tmp_path: Path):
        result = verify(tmp_path / "absent.tar.gz", "abc")
        assert result.status == VerifyStatus.NOT_FOUND

    def test_falls_back_to_sidecar(self, make_archive):
        path = make_archive("xz")
        sign_file(path, HashMode.TAR_EXTRACT)
        assert verify(path, "", HashMode.TAR_EXTRACT).ok

    def test_missing_sidecar(self, make_archive):
        with pytest.raises(IntegrityError):
            verify(make_archive("gz"), "")

    def test_missing_sidecar_is_reported_before_hashing(self, make_archive, monkeypatch):
        hashed = []
        monkeypatch.setattr("pkgcache.core.services.hashing.compute_hash", lambda *args: hashed.append(args))
        with pytest.raises(IntegrityError):
            verify(make_archive("gz"), "")
        assert hashed == []

    def test_empty_sidecar(self, make_archive):
        path = make_archive("gz")
        sidecar_path(path).write_text("")
        with pytest.raises(IntegrityError):
            verify(path, "")

    def test_verify_or_raise_mismatch_carries_digests(self, make_archive):
        path = make_archive("gz")
        with pytest.raises(IntegrityError) as exc_info:
            verify_or_raise(path, "f" * 64)
        assert exc_info.value.expected == "f" * 64
        assert exc_info.value.actual == compute_hash(path)

    def test_verify_or_raise_missing_file(self, tmp_path: Path):
        with pytest.raises(ArgumentError):
            verify_or_raise(tmp_path / "absent", "abc")


class TestSignFile:
    def test_sidecar_format_and_mtime(self, make_archive):
        path = make_archive("gz")
        os.utime(path, (1_500_000_000, 1_500_000_000))
        sidecar = sign_file(path)
        assert sidecar == path.with_name(path.name + ".sha256")
        assert sidecar.read_text() == f"{compute_hash(path)}  {path.name}\n"
        assert sidecar.stat().st_mtime == path.stat().st_mtime
        assert read_sidecar(path) == compute_hash(path)

    def test_sidecar_follows_symlink(self, make_archive, tmp_path: Path):
        cached = make_archive("gz")
        link = tmp_path / "link.tar.gz"
        link.symlink_to(cached)
        sign_file(cached)
        assert sidecar_path(link) == sidecar_path(cached)
        assert verify(link, "").ok

    def test_no_temp_files_left(self, make_archive):
        path = make_archive("gz")
        sign_file(path)
        names = sorted(p.name for p in path.parent.iterdir())
        assert names == [path.name, path.name + ".sha256"]

    def test_missing_file(self, tmp_path: Path):
        with pytest.raises(ArgumentError):
            sign_file(tmp_path / "absent")
