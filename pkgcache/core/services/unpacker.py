"""
Unpacker — extract source archives into a package's source directory.

Compression is handled by a decoder registry: each decoder knows its
filename extensions and magic bytes and opens a decompressed byte
stream, which is then read as a tar stream. The hash verifier reuses
the same registry for its extract modes.
"""

from __future__ import annotations

import bz2
import gzip
import logging
import lzma
import shutil
import subprocess
import tarfile
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import IO, Callable, ContextManager, Iterator

import zstandard

from pkgcache.core.errors import ArgumentError, UnsupportedArchiveError
from pkgcache.core.services.cleanup import guarded

logger = logging.getLogger(__name__)

# ustar magic lives at offset 257 of the first header block
_TAR_MAGIC_OFFSET = 257
_PIPE_CHUNK = 64 * 1024


@contextmanager
def _open_plain(path: Path) -> Iterator[IO[bytes]]:
    with open(path, "rb") as f:
        yield f


@contextmanager
def _open_gzip(path: Path) -> Iterator[IO[bytes]]:
    with gzip.open(path, "rb") as f:
        yield f


@contextmanager
def _open_bzip2(path: Path) -> Iterator[IO[bytes]]:
    with bz2.open(path, "rb") as f:
        yield f


@contextmanager
def _open_xz(path: Path) -> Iterator[IO[bytes]]:
    with lzma.open(path, "rb") as f:
        yield f


@contextmanager
def _open_zstd(path: Path) -> Iterator[IO[bytes]]:
    dctx = zstandard.ZstdDecompressor()
    with open(path, "rb") as raw, dctx.stream_reader(raw) as reader:
        yield reader


@contextmanager
def _open_lzip(path: Path) -> Iterator[IO[bytes]]:
    # No maintained Python lzip codec; stream through the lzip binary.
    if shutil.which("lzip") is None:
        raise UnsupportedArchiveError(f"lzip is required to read {path}")
    with subprocess.Popen(["lzip", "-dc", str(path)], stdout=subprocess.PIPE, stderr=subprocess.PIPE) as proc:
        assert proc.stdout is not None and proc.stderr is not None
        try:
            yield proc.stdout
            # tar stops at the end-of-archive blocks; drain the record padding
            while proc.stdout.read(_PIPE_CHUNK):
                pass
        except tarfile.TarError as e:
            proc.stdout.close()
            if proc.wait() > 0:
                raise UnsupportedArchiveError(
                    f"lzip could not decompress {path}: {proc.stderr.read().decode(errors='replace').strip()}"
                ) from e
            raise
        finally:
            proc.stdout.close()
            if proc.poll() is None:
                proc.kill()
            proc.wait()

        if proc.returncode != 0:
            stderr = proc.stderr.read().decode(errors="replace").strip()
            logger.error("lzip -dc %s failed: %s", path, stderr)
            raise UnsupportedArchiveError(f"lzip could not decompress {path}: {stderr}")


@dataclass(frozen=True)
class Decoder:
    """A compression format: how to recognise it and how to read it."""

    name: str
    extensions: tuple[str, ...]
    magic: bytes
    open: Callable[[Path], ContextManager[IO[bytes]]]
    magic_offset: int = 0

    def matches_name(self, path: Path) -> bool:
        return path.name.lower().endswith(self.extensions)

    def matches_magic(self, head: bytes) -> bool:
        end = self.magic_offset + len(self.magic)
        return head[self.magic_offset:end] == self.magic


# Order matters for extension lookup: '.tar' must come after the compressed forms.
DECODERS: list[Decoder] = [
    Decoder("gzip", (".tar.gz", ".tgz"), b"\x1f\x8b", _open_gzip),
    Decoder("bzip2", (".tar.bz2", ".tbz", ".tbz2"), b"BZh", _open_bzip2),
    Decoder("xz", (".tar.xz", ".txz"), b"\xfd7zXZ\x00", _open_xz),
    Decoder("lzip", (".tar.lz", ".tlz"), b"LZIP", _open_lzip),
    Decoder("zstd", (".tar.zst", ".tzst"), b"\x28\xb5\x2f\xfd", _open_zstd),
    Decoder("tar", (".tar",), b"ustar", _open_plain, magic_offset=_TAR_MAGIC_OFFSET),
]


def register_decoder(decoder: Decoder) -> None:
    """Add a decoder ahead of the built-in ones."""
    DECODERS.insert(0, decoder)


def find_decoder(path: Path) -> Decoder:
    """Pick a decoder by file extension, falling back to magic bytes.

    Raises:
        UnsupportedArchiveError: Nothing matches.
    """
    path = Path(path)
    for decoder in DECODERS:
        if decoder.matches_name(path):
            return decoder

    try:
        with open(path, "rb") as f:
            head = f.read(_TAR_MAGIC_OFFSET + 8)
    except OSError as e:
        raise UnsupportedArchiveError(f"Cannot read {path}: {e}") from e

    for decoder in DECODERS:
        if decoder.matches_magic(head):
            logger.debug("Detected %s archive by signature: %s", decoder.name, path)
            return decoder

    raise UnsupportedArchiveError(f"Unsupported archive type: {path}")


@contextmanager
def open_tar_stream(path: Path) -> Iterator[tarfile.TarFile]:
    """Open an archive of any registered format as a sequential tar stream."""
    decoder = find_decoder(path)
    with decoder.open(Path(path)) as stream, tarfile.open(fileobj=stream, mode="r|") as tar:
        yield tar


def extract(archive: Path, dest: Path) -> None:
    """Extract every member of ``archive`` into an existing ``dest``."""
    with open_tar_stream(archive) as tar:
        tar.extractall(dest, filter="data")


def _promote(staging: Path, target_dir: Path) -> None:
    """Move extracted content from ``staging`` to ``target_dir``."""
    entries = list(staging.iterdir())
    if len(entries) == 1 and entries[0].is_dir() and not entries[0].is_symlink():
        # 'project-1.0/' wrapper: the wrapper becomes the target dir
        entries[0].rename(target_dir)
        return

    target_dir.mkdir(parents=True)
    for entry in entries:
        entry.rename(target_dir / entry.name)


def unpack(archive: Path, target_dir: Path) -> bool:
    """Extract ``archive`` so its contents become ``target_dir``.

    No-op if ``target_dir`` already exists; the caller removes stale trees
    when it wants a fresh extraction.

    Returns:
        True if the archive was extracted, False if the target existed.
    """
    archive = Path(archive)
    target_dir = Path(target_dir)
    if not archive.is_file():
        raise ArgumentError(f"Archive not found: {archive}")

    if target_dir.exists():
        logger.debug("Source directory %s exists, skipping extraction", target_dir)
        return False

    target_dir.parent.mkdir(parents=True, exist_ok=True)
    logger.info("Unpacking %s -> %s", archive.name, target_dir)

    with guarded() as guard:
        staging = guard.temp_dir(target_dir)
        guard.track(target_dir)
        extract(archive, staging)
        _promote(staging, target_dir)
        guard.release(target_dir)

    return True
