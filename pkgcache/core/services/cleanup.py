"""
Scoped cleanup for temporary files and directories.

Every fetch, archive build and unpack writes to uniquely named temp paths
and renames them into place at the very end. ``guarded()`` tracks those
paths and removes whatever is still tracked when the block exits,
whether by exception or because SIGINT / SIGTERM arrived, so the
cache never holds a half-written entry.

    with guarded() as guard:
        tmp = guard.temp_file(final_path)
        write(tmp)
        guard.commit(tmp, final_path)   # rename + stop tracking
"""

from __future__ import annotations

import logging
import os
import shutil
import signal
import tempfile
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from pkgcache.core.errors import ArgumentError, Interrupted

logger = logging.getLogger(__name__)

_GUARDED_SIGNALS = (signal.SIGINT, signal.SIGTERM)


def _remove(path: Path) -> None:
    if path.is_symlink() or path.is_file():
        path.unlink(missing_ok=True)
    elif path.is_dir():
        shutil.rmtree(path, ignore_errors=True)


class CleanupGuard:
    """Tracks temp paths; ``cleanup()`` removes the ones not yet committed."""

    def __init__(self) -> None:
        self._paths: list[Path] = []

    @property
    def tracked(self) -> list[Path]:
        return list(self._paths)

    def track(self, path: Path) -> Path:
        self._paths.append(Path(path))
        return Path(path)

    def release(self, path: Path) -> None:
        """Stop tracking ``path`` (it has been moved into place)."""
        self._paths = [p for p in self._paths if p != Path(path)]

    def temp_file(self, final_path: Path) -> Path:
        """Create an empty ``<final_path>.XXXXXXXX`` beside the final path."""
        final_path = Path(final_path)
        fd, name = tempfile.mkstemp(dir=final_path.parent, prefix=f"{final_path.name}.")
        os.close(fd)
        return self.track(Path(name))

    def temp_dir(self, near: Path, prefix: str | None = None) -> Path:
        """Create a temp directory inside ``near``'s parent directory."""
        near = Path(near)
        name = tempfile.mkdtemp(dir=near.parent, prefix=prefix or f"{near.name}.")
        return self.track(Path(name))

    def commit(self, tmp: Path, final_path: Path) -> Path:
        """Atomically rename ``tmp`` onto ``final_path`` and stop tracking it."""
        os.replace(tmp, final_path)
        self.release(tmp)
        return Path(final_path)

    def cleanup(self) -> None:
        for path in reversed(self._paths):
            logger.debug("Removing temporary path %s", path)
            _remove(path)
        self._paths.clear()


@contextmanager
def guarded() -> Iterator[CleanupGuard]:
    """Run a block with INT/TERM trapped and tracked temp paths cleaned up.

    A signal during the block raises ``Interrupted`` with exit status
    128 + signum (130 for INT, 143 for TERM). Handlers are only installed
    from the main thread; previous handlers are restored on exit.
    """
    guard = CleanupGuard()
    previous: dict[int, object] = {}

    def _on_signal(signum: int, frame: object) -> None:
        raise Interrupted(signum, 128 + signum)

    if threading.current_thread() is threading.main_thread():
        for signum in _GUARDED_SIGNALS:
            previous[signum] = signal.signal(signum, _on_signal)

    try:
        yield guard
    except KeyboardInterrupt:
        raise Interrupted(signal.SIGINT, 128 + signal.SIGINT) from None
    finally:
        guard.cleanup()
        for signum, handler in previous.items():
            signal.signal(signum, handler)  # type: ignore[arg-type]


def safe_remove(path: Path, within: Path | None = None) -> None:
    """Remove a file or tree, refusing obviously dangerous targets.

    Refuses ``.``/``..`` components, the filesystem root and the home
    directory. With ``within``, the path must sit strictly inside it.
    """
    path = Path(path)
    if any(part in (".", "..") for part in path.parts) or str(path) in ("", "."):
        raise ArgumentError(f"Refusing to remove . or .. or paths containing ..: {path}")

    resolved = path.resolve()
    if resolved == Path(resolved.anchor) or resolved == Path.home().resolve():
        raise ArgumentError(f"Refusing to remove {resolved}")
    if within is not None:
        base = Path(within).resolve()
        if resolved == base or not resolved.is_relative_to(base):
            raise ArgumentError(f"Refusing to remove {resolved}: not inside {base}")

    if path.exists() or path.is_symlink():
        logger.info("Removing %s", path)
        _remove(path)
