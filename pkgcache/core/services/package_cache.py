"""
PackageCache — the per-package pipeline.

    fetch → verify → unpack → patch → build → finalize → install

Progress is recorded in the build state after every stage, so a second
run picks up where the first stopped instead of guessing from which
directories happen to exist. A package is skipped only when its record
says ``installed`` and its ``__package_installed`` marker is on disk.

On a failure the record keeps the failing stage and error, and the
exception propagates: the run stops at the first broken package.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from pathlib import Path

from pkgcache.adapters.registry import AdapterRegistry, default_registry
from pkgcache.core.errors import ArgumentError
from pkgcache.core.models.cache import FetchRequest, VerifiedArchive
from pkgcache.core.models.package import Manifest, PackageSpec
from pkgcache.core.models.state import PackageStage, PackageStatus
from pkgcache.core.persistence.ledger import LEDGER_FILE, LedgerEntry, LedgerWriter
from pkgcache.core.persistence.state_file import StateStore
from pkgcache.core.services.builder import Builder, write_cmake_toolchain_file
from pkgcache.core.services.cleanup import safe_remove
from pkgcache.core.services.fetcher import Fetcher
from pkgcache.core.services.hashing import verify_or_raise
from pkgcache.core.services.patcher import PatchApplier
from pkgcache.core.services.unpacker import unpack

logger = logging.getLogger(__name__)


@dataclass
class PackageRun:
    """What one ``run_package`` call did."""

    key: str
    status: str = ""                 # installed, skipped, failed
    stages: list[str] = field(default_factory=list)
    fetched: bool = False
    unpacked: bool = False
    duration_ms: int = 0
    error: str | None = None

    def to_dict(self) -> dict:
        return {
            "key": self.key,
            "status": self.status,
            "stages": self.stages,
            "fetched": self.fetched,
            "unpacked": self.unpacked,
            "duration_ms": self.duration_ms,
            "error": self.error,
        }


class PackageCache:
    """Drive every package of a manifest through the pipeline.

    Collaborators default to the real implementations; tests pass a
    registry with mock adapters or a Fetcher with a fast retry policy.
    """

    def __init__(
        self,
        manifest: Manifest,
        store: StateStore | None = None,
        fetcher: Fetcher | None = None,
        registry: AdapterRegistry | None = None,
        patcher: PatchApplier | None = None,
        builder: Builder | None = None,
        rebuild_all: bool | None = None,
    ):
        self.manifest = manifest
        self.registry = registry or default_registry()
        self.store = store or StateStore.for_src_root(manifest.src_root)
        self.fetcher = fetcher or Fetcher(manifest.cache_dir, registry=self.registry)
        self.patcher = patcher or PatchApplier(self.registry)
        self.builder = builder or Builder(self.registry, jobs=manifest.jobs, env=manifest.env)
        self.rebuild_all = manifest.rebuild_all if rebuild_all is None else rebuild_all
        self.ledger = LedgerWriter(self.store.path.parent / LEDGER_FILE)
        self._toolchain_written = False

    # ── Queries ─────────────────────────────────────────────────

    def status(self) -> list[PackageStatus]:
        """Recorded status of every manifest package, in manifest order."""
        records = self.store.state.packages
        return [records.get(pkg.key) or PackageStatus(key=pkg.key) for pkg in self.manifest.packages]

    def is_installed(self, pkg: PackageSpec) -> bool:
        record = self.store.state.packages.get(pkg.key)
        return (
            record is not None
            and record.stage == PackageStage.INSTALLED
            and self.manifest.marker_path(pkg).is_file()
        )

    # ── Pipeline ────────────────────────────────────────────────

    def run_all(self, names: list[str] | None = None) -> list[PackageRun]:
        """Run the named packages (default: all) in manifest order.

        Raises:
            ArgumentError: A name is not in the manifest.
            PkgCacheError: The first package failure, unchanged.
        """
        packages = self.manifest.packages
        if names:
            unknown = [n for n in names if self.manifest.get_package(n) is None]
            if unknown:
                raise ArgumentError(f"Unknown package(s): {', '.join(unknown)}")
            packages = [p for p in packages if p.name in names or p.key in names]

        return [self.run_package(pkg) for pkg in packages]

    def run_package(self, pkg: PackageSpec) -> PackageRun:
        """Bring one package to ``installed``, resuming from its recorded stage."""
        run = PackageRun(key=pkg.key)
        status = self.store.get(pkg.key)
        stage = "rebuild"
        start = time.monotonic()

        try:
            if self.rebuild_all:
                status = self._reset(pkg)

            if self._already_installed(pkg, status):
                logger.info("[%s] already installed", pkg.key)
                run.status = "skipped"
                return run

            source_dir = self.manifest.source_dir(pkg)
            if not status.stage.at_least(PackageStage.PATCHED) or not source_dir.is_dir():
                if source_dir.exists():
                    logger.info("[%s] discarding incomplete source tree %s", pkg.key, source_dir)
                    safe_remove(source_dir, within=self.manifest.src_root)

                stage = "fetch"
                request = FetchRequest(
                    url=pkg.fetch_url,
                    source=pkg.source,
                    target_dir=self.manifest.work_dir(pkg),
                    revision=pkg.vcs.revision if pkg.vcs else None,
                    subdir=pkg.vcs.subdir if pkg.vcs else None,
                )
                entry = self.fetcher.fetch(request)
                run.fetched = entry.fetched
                status.source_path = str(entry.path)
                self._advance(run, status, PackageStage.FETCHED)

                stage = "verify"
                verified = VerifiedArchive(entry=entry, result=verify_or_raise(entry.path, pkg.hash, pkg.hash_mode))
                self._advance(run, status, PackageStage.VERIFIED)

                stage = "unpack"
                run.unpacked = unpack(verified.path, source_dir)
                self._advance(run, status, PackageStage.UNPACKED)

                stage = "patch"
                self.patcher.apply_patches(pkg.patches, source_dir)
                self._advance(run, status, PackageStage.PATCHED)

            stage = "build"
            self._write_toolchain()
            build_dir = self._fresh_build_dir(pkg)
            self.builder.run_steps(pkg.key, pkg.steps, build_dir)

            if pkg.static_binaries:
                stage = "finalize"
                self.builder.finalize(pkg.key, pkg.static_binaries, build_dir, self.manifest.cross_prefix)

            self.manifest.marker_path(pkg).touch()
            self._advance(run, status, PackageStage.INSTALLED)
            run.status = "installed"
            logger.info("[%s] installed", pkg.key)
            return run

        except Exception as e:
            status.record_failure(stage, str(e))
            self.store.save()
            run.status = "failed"
            run.error = str(e)
            logger.error("[%s] %s failed: %s", pkg.key, stage, e)
            raise

        finally:
            run.duration_ms = int((time.monotonic() - start) * 1000)
            self.ledger.write(
                LedgerEntry(
                    package=run.key,
                    status=run.status or "interrupted",
                    stages=run.stages,
                    fetched=run.fetched,
                    duration_ms=run.duration_ms,
                    errors=[run.error] if run.error else [],
                )
            )

    # ── Helpers ─────────────────────────────────────────────────

    def _advance(self, run: PackageRun, status: PackageStatus, stage: PackageStage) -> None:
        status.advance(stage)
        run.stages.append(stage.value)
        self.store.save()

    def _already_installed(self, pkg: PackageSpec, status: PackageStatus) -> bool:
        if not self.manifest.marker_path(pkg).is_file():
            return False
        if status.stage != PackageStage.INSTALLED:
            # tree built before state tracking existed; trust the marker
            logger.info("[%s] found install marker, recording as installed", pkg.key)
            status.source_path = status.source_path or str(self.manifest.source_dir(pkg))
            status.advance(PackageStage.INSTALLED)
            self.store.save()
        return True

    def _write_toolchain(self) -> None:
        toolchain = self.manifest.toolchain
        if toolchain is None or self._toolchain_written:
            return
        write_cmake_toolchain_file(
            toolchain.path, toolchain.target, toolchain.sysroot, toolchain.prefix, toolchain.processor
        )
        self._toolchain_written = True

    def _fresh_build_dir(self, pkg: PackageSpec) -> Path:
        source_dir = self.manifest.source_dir(pkg)
        build_dir = self.manifest.build_dir(pkg)
        if build_dir == source_dir:
            return build_dir
        if build_dir.exists():
            safe_remove(build_dir, within=self.manifest.src_root)
        build_dir.mkdir(parents=True)
        return build_dir

    def _reset(self, pkg: PackageSpec) -> PackageStatus:
        """Uninstall and forget ``pkg`` so the pipeline starts over."""
        build_dir = self.manifest.build_dir(pkg)
        if pkg.uninstall and build_dir.is_dir():
            self.builder.run_uninstall(pkg.key, pkg.uninstall, build_dir)

        marker = self.manifest.marker_path(pkg)
        if marker.exists():
            safe_remove(marker, within=self.manifest.src_root)
        if self.manifest.out_of_tree(pkg) and build_dir.exists():
            safe_remove(build_dir, within=self.manifest.src_root)
        source_dir = self.manifest.source_dir(pkg)
        if source_dir.exists():
            safe_remove(source_dir, within=self.manifest.src_root)

        logger.info("[%s] reset for rebuild", pkg.key)
        status = self.store.reset(pkg.key)
        self.store.save()
        return status
