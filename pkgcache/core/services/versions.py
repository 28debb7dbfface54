"""Version helpers for cached sources."""

from __future__ import annotations

from pathlib import Path

GIT_VERSION_MARKER = "+git"


def is_git_version(version: str) -> bool:
    """``1.2+git20240101`` style versions are built from a repository."""
    return GIT_VERSION_MARKER in version


def latest_cached_version(cache_dir: Path, prefix: str, suffix: str) -> str | None:
    """Highest version in the cache matching ``<prefix><version><suffix>``.

    Versions are compared by filename, so this is only meaningful for
    zero-padded or date-stamped versions.
    """
    matches = sorted(
        p.name for p in Path(cache_dir).glob(f"{prefix}*{suffix}")
        if p.is_file() and len(p.name) > len(prefix) + len(suffix)
    )
    if not matches:
        return None
    return matches[-1][len(prefix):len(matches[-1]) - len(suffix)]
