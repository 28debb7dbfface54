"""
Status use case — where each package stands.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path

from pkgcache.core.config.loader import ConfigError, load_manifest
from pkgcache.core.persistence.state_file import StateStore

logger = logging.getLogger(__name__)


@dataclass
class PackageView:
    key: str
    stage: str
    cached: bool
    installed_marker: bool
    source: str
    last_error: str | None = None
    failed_stage: str | None = None

    def to_dict(self) -> dict:
        return {
            "key": self.key,
            "stage": self.stage,
            "cached": self.cached,
            "installed_marker": self.installed_marker,
            "source": self.source,
            "last_error": self.last_error,
            "failed_stage": self.failed_stage,
        }


@dataclass
class StatusResult:
    manifest_path: Path | None = None
    cache_dir: Path | None = None
    state_path: Path | None = None
    packages: list[PackageView] = field(default_factory=list)
    error: str | None = None

    def to_dict(self) -> dict:
        if self.error:
            return {"error": self.error}
        return {
            "manifest": str(self.manifest_path) if self.manifest_path else None,
            "cache_dir": str(self.cache_dir),
            "state_file": str(self.state_path),
            "packages": [p.to_dict() for p in self.packages],
        }


def get_status(manifest_path: Path | None = None) -> StatusResult:
    """Read the manifest and the build state without changing anything."""
    try:
        manifest = load_manifest(manifest_path)
    except ConfigError as e:
        return StatusResult(error=str(e))

    store = StateStore.for_src_root(manifest.src_root)
    result = StatusResult(manifest_path=manifest_path, cache_dir=manifest.cache_dir, state_path=store.path)

    for pkg in manifest.packages:
        record = store.state.packages.get(pkg.key)
        result.packages.append(
            PackageView(
                key=pkg.key,
                stage=record.stage.value if record else "not_fetched",
                cached=(manifest.cache_dir / pkg.source).is_file(),
                installed_marker=manifest.marker_path(pkg).is_file(),
                source=pkg.source,
                last_error=record.last_error if record else None,
                failed_stage=record.failed_stage if record else None,
            )
        )
    return result
