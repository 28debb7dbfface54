"""
Fetcher — get a source into the cache exactly once.

A source is identified by its filename (``zlib-1.3.1.tar.xz``). The first
fetch of a key stores it in the cache directory; every later fetch is a
cache hit with no network traffic. Each per-package working directory
gets a symlink back to the cached file.

Two kinds of source:

    download   a release tarball, transferred over HTTP(S)/FTP/file URLs
    clone      a repository at a pinned revision, turned into a
               reproducible .tar.xz and signed with a tar-extract digest

Transfers go to uniquely named temp paths next to their final location
and are renamed into place only when complete, so an interrupted fetch
never leaves a partial file in the cache.
"""

from __future__ import annotations

import dataclasses
import http.client
import logging
import os
import shutil
import urllib.request
from pathlib import Path

from pkgcache.adapters.registry import AdapterRegistry, default_registry
from pkgcache.core.errors import ArgumentError, FetchError, ToolError
from pkgcache.core.models.action import Action
from pkgcache.core.models.cache import CacheEntry, FetchRequest, HashMode
from pkgcache.core.reliability.retry import RetryExhaustedError, RetryPolicy
from pkgcache.core.services.archive_builder import build_archive, strip_vcs_metadata
from pkgcache.core.services.cleanup import guarded
from pkgcache.core.services.hashing import sign_file

logger = logging.getLogger(__name__)

_CHUNK = 256 * 1024
_NETWORK_ERRORS = (OSError, http.client.HTTPException)
_CACHE_MODE = 0o644


def _require(**params: object) -> None:
    missing = [name for name, value in params.items() if not value]
    if missing:
        raise ArgumentError(f"Missing required argument(s): {', '.join(missing)}")


class Fetcher:
    """Download or clone sources into a shared cache directory.

    Args:
        cache_dir: Where cached sources live.
        registry: Adapter registry used for git (default: shell/git/patch).
        retry: Policy for network transfers. Git operations reuse its
            attempt count and delay.
        timeout: Socket timeout for a single transfer attempt.
    """

    def __init__(
        self,
        cache_dir: Path,
        registry: AdapterRegistry | None = None,
        retry: RetryPolicy | None = None,
        timeout: float = 60.0,
    ):
        self.cache_dir = Path(cache_dir)
        self.registry = registry or default_registry()
        self.retry = retry or RetryPolicy(retry_on=_NETWORK_ERRORS)
        self.timeout = timeout

    def cache_path(self, source: str) -> Path:
        return self.cache_dir / source

    # ── Entry points ────────────────────────────────────────────

    def fetch(self, request: FetchRequest) -> CacheEntry:
        """Download or clone, depending on whether the request pins a revision."""
        if request.is_vcs:
            return self.clone(
                request.url,
                request.revision or "",
                request.subdir or "",
                request.source,
                request.target_dir,
            )
        return self.download(request.url, request.source, request.target_dir)

    def download(self, url: str, source: str, target_dir: Path) -> CacheEntry:
        """Make ``source`` available in the cache and linked from ``target_dir``.

        Raises:
            ArgumentError: A parameter is missing.
            FetchError: Every transfer attempt failed.
        """
        _require(url=url, source=source, target_dir=target_dir)
        cached, target = self._prepare(source, Path(target_dir))

        entry = CacheEntry(source=source, path=cached)
        if cached.exists():
            logger.info("Using cached %s", source)
        elif self._adopt(target, cached):
            entry.adopted = True
        else:
            logger.info("Downloading %s from %s", source, url)
            with guarded() as guard:
                tmp = guard.temp_file(cached)
                try:
                    self.retry.call(self._transfer, url, tmp)
                except RetryExhaustedError as e:
                    raise FetchError(f"Failed to download {url}: {e.last_error}") from e
                os.chmod(tmp, _CACHE_MODE)
                guard.commit(tmp, cached)
            entry.fetched = True

        self._link(cached, target)
        return entry

    def clone(
        self,
        url: str,
        revision: str,
        subdir: str,
        source: str,
        target_dir: Path,
    ) -> CacheEntry:
        """Cache a repository at ``revision`` as a reproducible ``.tar.xz``.

        The archive's single top-level directory is ``subdir``; its entries
        carry the commit's timestamp. A ``.sha256`` sidecar in tar-extract
        mode is written next to the cached archive.

        Raises:
            ArgumentError: A parameter is missing.
            FetchError: Clone, checkout or submodule update kept failing.
            ToolError: git is not installed.
        """
        _require(url=url, revision=revision, subdir=subdir, source=source, target_dir=target_dir)
        target_dir = Path(target_dir)
        cached, target = self._prepare(source, target_dir)

        entry = CacheEntry(source=source, path=cached, hash_mode=HashMode.TAR_EXTRACT)
        if cached.exists():
            logger.info("Using cached %s", source)
        elif self._adopt(target, cached):
            entry.adopted = True
        else:
            self._check_git()
            logger.info("Cloning %s at %s", url, revision)
            with guarded() as guard:
                work = guard.temp_dir(target_dir / "temp", prefix="temp.")
                tree = work / subdir
                mtime = self._checkout(url, revision, tree)

                strip_vcs_metadata(tree)
                tmp = guard.temp_file(cached)
                build_archive(work, subdir, tmp, mtime)
                os.chmod(tmp, _CACHE_MODE)
                guard.commit(tmp, cached)
            sign_file(cached, HashMode.TAR_EXTRACT)
            entry.fetched = True

        self._link(cached, target)
        return entry

    # ── Helpers ─────────────────────────────────────────────────

    def _prepare(self, source: str, target_dir: Path) -> tuple[Path, Path]:
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        target_dir.mkdir(parents=True, exist_ok=True)
        return self.cache_path(source), target_dir / source

    @staticmethod
    def _adopt(target: Path, cached: Path) -> bool:
        """Move a file someone placed in the target dir by hand into the cache."""
        if target.is_symlink() or not target.is_file():
            return False
        logger.info("Moving %s into the cache", target)
        shutil.move(str(target), str(cached))
        return True

    @staticmethod
    def _link(cached: Path, target: Path) -> None:
        if target.exists():
            return
        if target.is_symlink():
            target.unlink()  # dangling link from an older cache location
        target.symlink_to(cached.absolute())
        logger.debug("Linked %s -> %s", target, cached)

    def _transfer(self, url: str, dest: Path) -> None:
        """One transfer attempt. A failed attempt leaves no partial file."""
        try:
            with urllib.request.urlopen(url, timeout=self.timeout) as response, open(dest, "wb") as out:
                shutil.copyfileobj(response, out, _CHUNK)
        except BaseException:
            dest.unlink(missing_ok=True)
            raise

    def _check_git(self) -> None:
        adapter = self.registry.get("git")
        if adapter is None or not adapter.is_available():
            raise ToolError("git is required to fetch repository sources", return_code=127)

    def _git(self, operation: str, **params: object) -> str:
        action = Action(id=f"git:{operation}", adapter="git", operation=operation, params=params)
        return self.registry.run(action).output

    def _clone_once(self, url: str, tree: Path) -> None:
        if tree.exists():
            shutil.rmtree(tree)  # leftovers from a failed attempt
        self._git("clone", url=url, dest=str(tree))

    def _checkout(self, url: str, revision: str, tree: Path) -> int:
        """Clone, pin and init submodules. Returns the commit timestamp."""
        policy = dataclasses.replace(self.retry, retry_on=(ToolError,))
        try:
            policy.call(self._clone_once, url, tree)
            policy.call(self._git, "checkout", revision=revision, cwd=str(tree))
            policy.call(self._git, "submodules", cwd=str(tree))
        except RetryExhaustedError as e:
            raise FetchError(f"Failed to clone {url} at {revision}: {e.last_error}") from e

        stamp = self._git("commit_time", cwd=str(tree)).strip()
        try:
            return int(stamp)
        except ValueError as e:
            raise FetchError(f"Unexpected commit timestamp from git: {stamp!r}") from e
