"""
Build use case — run the manifest's packages through the pipeline.

Loads the manifest, runs the selected packages in order and reports what
happened. The first failing package stops the run; its exit code is
carried on the result so the CLI can hand it back to the shell.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path

from pkgcache.adapters.registry import AdapterRegistry
from pkgcache.core.config.loader import ConfigError, load_manifest
from pkgcache.core.errors import PkgCacheError
from pkgcache.core.services.fetcher import Fetcher
from pkgcache.core.services.package_cache import PackageCache, PackageRun

logger = logging.getLogger(__name__)


@dataclass
class BuildResult:
    """Outcome of a build run."""

    runs: list[PackageRun] = field(default_factory=list)
    manifest_path: Path | None = None
    error: str | None = None
    diagnostics: list[str] = field(default_factory=list)
    exit_code: int = 0

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> dict:
        result: dict = {
            "ok": self.ok,
            "manifest": str(self.manifest_path) if self.manifest_path else None,
            "packages": [r.to_dict() for r in self.runs],
        }
        if self.error:
            result["error"] = self.error
            result["exit_code"] = self.exit_code
        if self.diagnostics:
            result["diagnostics"] = self.diagnostics
        return result


def run_build(
    manifest_path: Path | None = None,
    packages: list[str] | None = None,
    rebuild_all: bool | None = None,
    registry: AdapterRegistry | None = None,
    fetcher: Fetcher | None = None,
) -> BuildResult:
    """Run the pipeline for ``packages`` (default: every package).

    Args:
        manifest_path: Explicit packages.yml; None searches upward from cwd.
        packages: Names or keys to build.
        rebuild_all: Override the manifest's ``rebuild_all``.
        registry: Adapter registry (tests pass mocks).
        fetcher: Fetcher override (tests pass one with a fast retry policy).
    """
    result = BuildResult(manifest_path=manifest_path)
    try:
        manifest = load_manifest(manifest_path)
    except ConfigError as e:
        result.error = str(e)
        result.exit_code = 1
        return result

    cache = PackageCache(manifest, registry=registry, fetcher=fetcher, rebuild_all=rebuild_all)
    selected = packages or [p.key for p in manifest.packages]

    unknown = [name for name in selected if manifest.get_package(name) is None]
    if unknown:
        result.error = f"Unknown package(s): {', '.join(unknown)}"
        result.exit_code = 1
        return result

    for name in selected:
        pkg = manifest.get_package(name)
        assert pkg is not None
        try:
            result.runs.append(cache.run_package(pkg))
        except PkgCacheError as e:
            result.runs.append(PackageRun(key=pkg.key, status="failed", error=str(e)))
            result.error = str(e)
            result.exit_code = e.exit_code
            result.diagnostics = list(getattr(e, "diagnostics", []))
            break

    return result
