"""
Shared test fixtures: sample source trees and archives in every format.
"""

import bz2
import gzip
import io
import lzma
import shutil
import subprocess
import tarfile
from pathlib import Path
from typing import Callable

import pytest
import zstandard

SAMPLE_FILES = {
    "proj-1.0/README": b"hello\n",
    "proj-1.0/src/main.c": b"int main(void) { return 0; }\n",
    "proj-1.0/src/util.h": b"#define UTIL 1\n",
}

requires_git = pytest.mark.skipif(shutil.which("git") is None, reason="git not installed")
requires_patch = pytest.mark.skipif(shutil.which("patch") is None, reason="patch not installed")
requires_lzip = pytest.mark.skipif(shutil.which("lzip") is None, reason="lzip not installed")


def tar_bytes(files: dict[str, bytes], mtime: int = 1_600_000_000, uid: int = 0) -> bytes:
    """Build an uncompressed tar stream from ``{path: content}``."""
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w", format=tarfile.GNU_FORMAT) as tar:
        dirs = sorted({str(Path(p).parent) for p in files if str(Path(p).parent) != "."})
        for d in dirs:
            info = tarfile.TarInfo(d)
            info.type = tarfile.DIRTYPE
            info.mode = 0o755
            info.mtime = mtime
            info.uid = uid
            tar.addfile(info)
        for path, content in files.items():
            info = tarfile.TarInfo(path)
            info.size = len(content)
            info.mode = 0o644
            info.mtime = mtime
            info.uid = uid
            tar.addfile(info, io.BytesIO(content))
    return buf.getvalue()


def compress(data: bytes, fmt: str, level: int | None = None) -> bytes:
    if fmt == "tar":
        return data
    if fmt == "gz":
        return gzip.compress(data, compresslevel=level or 9)
    if fmt == "bz2":
        return bz2.compress(data, compresslevel=level or 9)
    if fmt == "xz":
        return lzma.compress(data, preset=level if level is not None else 6)
    if fmt == "zst":
        return zstandard.ZstdCompressor(level=level or 3).compress(data)
    if fmt == "lz":
        return subprocess.run(["lzip", f"-{level or 6}", "-c"], input=data, capture_output=True, check=True).stdout
    raise ValueError(fmt)


EXTENSIONS = {
    "tar": ".tar",
    "gz": ".tar.gz",
    "bz2": ".tar.bz2",
    "xz": ".tar.xz",
    "zst": ".tar.zst",
    "lz": ".tar.lz",
}


@pytest.fixture
def make_archive(tmp_path: Path) -> Callable[..., Path]:
    """Factory: ``make_archive(fmt, files=SAMPLE_FILES, name=None, level=None)``."""
    out_dir = tmp_path / "archives"
    out_dir.mkdir()

    def _make(
        fmt: str = "gz",
        files: dict[str, bytes] | None = None,
        name: str | None = None,
        level: int | None = None,
        mtime: int = 1_600_000_000,
        uid: int = 0,
    ) -> Path:
        path = out_dir / (name or f"proj-1.0{EXTENSIONS[fmt]}")
        path.write_bytes(compress(tar_bytes(files or SAMPLE_FILES, mtime=mtime, uid=uid), fmt, level))
        return path

    return _make


@pytest.fixture
def source_tree(tmp_path: Path) -> Path:
    """A small source tree at ``<tmp>/tree/proj-1.0``; returns ``<tmp>/tree``."""
    root = tmp_path / "tree"
    for rel, content in SAMPLE_FILES.items():
        path = root / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(content)
    return root
