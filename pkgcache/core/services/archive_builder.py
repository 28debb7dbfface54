"""
Reproducible archives from version-controlled source trees.

Equivalent to

    tar --numeric-owner --owner=0 --group=0 --sort=name --mtime=@<commit> \\
        -C <root> <subdir> -c | xz -7e

Owner, group, entry order and timestamps are all pinned, so the same
revision gives the same archive on any machine on any day.
"""

from __future__ import annotations

import logging
import lzma
import os
import shutil
import tarfile
from pathlib import Path

from pkgcache.core.errors import ArgumentError

logger = logging.getLogger(__name__)

XZ_PRESET = 7 | lzma.PRESET_EXTREME
VCS_METADATA = (".git",)


def strip_vcs_metadata(tree: Path) -> int:
    """Remove ``.git`` directories and gitlink files below ``tree``.

    Returns:
        Number of entries removed.
    """
    removed = 0
    for dirpath, dirnames, filenames in os.walk(tree, topdown=True):
        for name in VCS_METADATA:
            if name in dirnames:
                shutil.rmtree(Path(dirpath) / name)
                dirnames.remove(name)
                removed += 1
            elif name in filenames:
                # submodules carry a '.git' file pointing at the superproject
                (Path(dirpath) / name).unlink()
                removed += 1
    return removed


def _normalize(info: tarfile.TarInfo, mtime: int) -> tarfile.TarInfo:
    info.uid = 0
    info.gid = 0
    info.uname = ""
    info.gname = ""
    info.mtime = mtime
    return info


def _add_sorted(tar: tarfile.TarFile, path: Path, arcname: str, mtime: int) -> None:
    info = _normalize(tar.gettarinfo(str(path), arcname=arcname), mtime)
    if info.isfile():
        with open(path, "rb") as f:
            tar.addfile(info, f)
    else:
        tar.addfile(info)

    if path.is_dir() and not path.is_symlink():
        for child in sorted(path.iterdir(), key=lambda p: p.name):
            _add_sorted(tar, child, f"{arcname}/{child.name}", mtime)


def build_archive(source_root: Path, subdir: str, output: Path, mtime: int) -> Path:
    """Write ``source_root/subdir`` to ``output`` as a reproducible .tar.xz.

    Args:
        source_root: Directory containing the tree.
        subdir: Top-level directory name; becomes the archive's single root.
        output: Destination file (overwritten).
        mtime: Unix timestamp used for every entry and for ``output`` itself,
            normally the pinned revision's commit time.
    """
    tree = Path(source_root) / subdir
    if not subdir or not tree.is_dir():
        raise ArgumentError(f"Source tree not found: {tree}")

    output = Path(output)
    logger.info("Archiving %s -> %s (mtime=%d)", tree, output.name, mtime)

    with lzma.open(output, "wb", preset=XZ_PRESET) as xz:
        with tarfile.open(fileobj=xz, mode="w", format=tarfile.GNU_FORMAT) as tar:
            _add_sorted(tar, tree, subdir, mtime)

    os.utime(output, (mtime, mtime))
    return output
