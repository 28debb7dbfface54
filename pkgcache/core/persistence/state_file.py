"""
Build state persistence — <src_root>/.pkgcache/state.json.

The record is rewritten after every pipeline transition, always through
a temp file in the same directory and a rename, so a crash mid-write
leaves the previous record intact.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path

from pydantic import ValidationError

from pkgcache.core.models.state import BuildState, PackageStatus

logger = logging.getLogger(__name__)

STATE_DIR = ".pkgcache"
STATE_FILE = "state.json"


def default_state_path(src_root: Path) -> Path:
    return Path(src_root) / STATE_DIR / STATE_FILE


def load_state(path: Path) -> BuildState:
    """Read the build state. A missing or unreadable file gives a fresh state."""
    path = Path(path)
    if not path.is_file():
        logger.debug("No state file at %s, starting fresh", path)
        return BuildState()

    try:
        state = BuildState.model_validate(json.loads(path.read_text(encoding="utf-8")))
    except (OSError, json.JSONDecodeError, ValidationError) as e:
        logger.warning("Ignoring unreadable state file %s: %s", path, e)
        return BuildState()

    logger.debug("Loaded state for %d package(s) from %s", len(state.packages), path)
    return state


def save_state(state: BuildState, path: Path) -> None:
    """Write ``state`` to ``path`` atomically."""
    path = Path(path)
    state.touch()
    path.parent.mkdir(parents=True, exist_ok=True)
    content = json.dumps(state.model_dump(mode="json"), indent=2, ensure_ascii=False) + "\n"

    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=".state_", suffix=".tmp")
    tmp = Path(tmp_name)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
        os.replace(tmp, path)
    except BaseException:
        tmp.unlink(missing_ok=True)
        raise
    logger.debug("State saved to %s", path)


class StateStore:
    """A loaded BuildState bound to its file."""

    def __init__(self, path: Path):
        self.path = Path(path)
        self.state = load_state(self.path)

    @classmethod
    def for_src_root(cls, src_root: Path) -> StateStore:
        return cls(default_state_path(src_root))

    def get(self, key: str) -> PackageStatus:
        return self.state.get(key)

    def reset(self, key: str) -> PackageStatus:
        return self.state.reset(key)

    def save(self) -> None:
        save_state(self.state, self.path)
