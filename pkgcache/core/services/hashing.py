"""
Hash verification and signature sidecars for cached sources.

Three digest modes (sha256 in every case):

    raw          the file as stored. Right for release tarballs.
    tar-extract  the contents of the archive's regular files, concatenated
                 in archive order; what ``tar -xOf f | sha256sum`` prints.
                 Independent of compressor, level and tar metadata, so it
                 is the mode for archives built from VCS checkouts.
    xz-extract   the decompressed tar stream, headers included. Sensitive
                 to timestamps, permissions and tar implementation details.

A digest can also come from a sidecar ``<file>.sha256`` written by
``sign_file`` in ``sha256sum`` format.
"""

from __future__ import annotations

import hashlib
import logging
import os
from pathlib import Path
from typing import IO

from pkgcache.core.errors import ArgumentError, IntegrityError
from pkgcache.core.models.cache import HashMode, VerifyResult, VerifyStatus
from pkgcache.core.services.cleanup import guarded
from pkgcache.core.services.unpacker import find_decoder, open_tar_stream

logger = logging.getLogger(__name__)

_CHUNK = 1024 * 1024
SIDECAR_SUFFIX = ".sha256"


def _update_from(h, stream: IO[bytes]) -> None:
    for chunk in iter(lambda: stream.read(_CHUNK), b""):
        h.update(chunk)


def compute_hash(path: Path, mode: HashMode | str = HashMode.RAW) -> str:
    """Return the sha256 hex digest of ``path`` under ``mode``."""
    path = Path(path)
    mode = HashMode(mode)
    h = hashlib.sha256()

    if mode == HashMode.RAW:
        with open(path, "rb") as f:
            _update_from(h, f)
    elif mode == HashMode.TAR_EXTRACT:
        with open_tar_stream(path) as tar:
            for member in tar:
                if not member.isfile():
                    continue
                data = tar.extractfile(member)
                if data is not None:
                    _update_from(h, data)
    elif mode == HashMode.XZ_EXTRACT:
        with find_decoder(path).open(path) as stream:
            _update_from(h, stream)

    return h.hexdigest()


def sidecar_path(path: Path) -> Path:
    """``<realpath>.sha256``: symlinks resolve to the cached file's sidecar."""
    real = Path(os.path.realpath(path))
    return real.with_name(real.name + SIDECAR_SUFFIX)


def read_sidecar(path: Path) -> str:
    """Return the digest recorded in the sidecar for ``path``.

    Raises:
        IntegrityError: Sidecar missing or empty.
    """
    sign_path = sidecar_path(path)
    if not sign_path.is_file():
        raise IntegrityError(f"Signature file not found: {sign_path}", path=Path(path))

    lines = sign_path.read_text(encoding="utf-8").splitlines()
    fields = lines[0].split() if lines else []
    if not fields:
        raise IntegrityError(f"Bad signature file: {sign_path}", path=Path(path))
    return fields[0]


def sign_file(path: Path, mode: HashMode | str = HashMode.RAW) -> Path:
    """Write the sidecar for ``path`` and give it the same mtime.

    Returns:
        Path of the sidecar.
    """
    path = Path(path)
    if not path.is_file():
        raise ArgumentError(f"File not found: {path}")

    digest = compute_hash(path, mode)
    sign_path = sidecar_path(path)
    stat = path.stat()

    with guarded() as guard:
        tmp = guard.temp_file(sign_path)
        tmp.write_text(f"{digest}  {path.name}\n", encoding="utf-8")
        os.utime(tmp, ns=(stat.st_atime_ns, stat.st_mtime_ns))
        guard.commit(tmp, sign_path)

    logger.info("Signed %s (%s): %s", path.name, HashMode(mode).value, digest)
    return sign_path


def verify(path: Path, expected: str = "", mode: HashMode | str = HashMode.RAW) -> VerifyResult:
    """Hash ``path`` and compare with ``expected``.

    An empty ``expected`` means "use the sidecar".

    Raises:
        IntegrityError: ``expected`` is empty and no usable sidecar exists.
    """
    path = Path(path)
    mode = HashMode(mode)

    if not path.is_file():
        logger.error("File not found: %s", path)
        return VerifyResult(path=path, mode=mode, status=VerifyStatus.NOT_FOUND, expected=expected)

    if not expected:
        expected = read_sidecar(path)
    actual = compute_hash(path, mode)

    if actual.lower() != expected.strip().lower():
        logger.error("SHA256 mismatch for %s\nExpected: %s\nActual:   %s", path, expected, actual)
        return VerifyResult(
            path=path, mode=mode, status=VerifyStatus.MISMATCH, expected=expected, actual=actual
        )

    logger.info("SHA256 OK: %s", path)
    return VerifyResult(path=path, mode=mode, status=VerifyStatus.OK, expected=expected, actual=actual)


def verify_or_raise(path: Path, expected: str = "", mode: HashMode | str = HashMode.RAW) -> VerifyResult:
    """``verify`` that turns anything but OK into an exception."""
    result = verify(path, expected, mode)
    if result.status == VerifyStatus.NOT_FOUND:
        raise ArgumentError(f"File not found: {path}")
    if result.status == VerifyStatus.MISMATCH:
        raise IntegrityError(
            f"SHA256 mismatch for {path}",
            path=Path(path),
            expected=result.expected,
            actual=result.actual,
        )
    return result
