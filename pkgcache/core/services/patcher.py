"""
PatchApplier — apply directories of ``*.patch`` files to a source tree.

Every patch is dry-run first and only applied for real when the dry run
succeeds, so a patch that does not fit never leaves rejects behind.
A failing patch does not stop the others; the set as a whole fails.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path

from pkgcache.adapters.registry import AdapterRegistry, default_registry
from pkgcache.core.errors import PatchError
from pkgcache.core.models.action import Action, Receipt

logger = logging.getLogger(__name__)

PATCH_GLOB = "*.patch"


@dataclass
class PatchReport:
    """Which patches of one set went in and which did not."""

    applied: list[Path] = field(default_factory=list)
    failed: list[Path] = field(default_factory=list)
    reverted: list[Path] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed

    def merge(self, other: PatchReport) -> None:
        self.applied.extend(other.applied)
        self.failed.extend(other.failed)
        self.reverted.extend(other.reverted)

    def to_dict(self) -> dict:
        return {
            "ok": self.ok,
            "applied": [str(p) for p in self.applied],
            "failed": [str(p) for p in self.failed],
            "reverted": [str(p) for p in self.reverted],
        }


def list_patches(patch_dir: Path) -> list[Path]:
    """``*.patch`` files in ``patch_dir`` sorted by name. Missing dir → []."""
    patch_dir = Path(patch_dir)
    if not patch_dir.is_dir():
        return []
    return sorted(p for p in patch_dir.glob(PATCH_GLOB) if p.is_file())


class PatchApplier:
    """Apply patch sets through the registry's ``patch`` adapter."""

    def __init__(self, registry: AdapterRegistry | None = None, strip: int = 1):
        self.registry = registry or default_registry()
        self.strip = strip

    def _run(self, operation: str, patch: Path, target_dir: Path) -> Receipt:
        action = Action(
            id=f"patch:{patch.name}",
            adapter="patch",
            operation=operation,
            params={"patch": str(patch), "target": str(target_dir), "strip": self.strip},
        )
        return self.registry.execute_action(action)

    def apply_patch(self, patch: Path, target_dir: Path) -> Receipt:
        """Dry-run ``patch``, then apply it if the dry run was clean."""
        patch = Path(patch)
        logger.info("Applying patch %s", patch.name)

        receipt = self._run("dry_run", patch, target_dir)
        if receipt.failed:
            logger.error("The patch was not applied. Failed dry run: %s", patch.name)
            logger.debug("patch output: %s", receipt.output or receipt.error)
            return receipt

        receipt = self._run("apply", patch, target_dir)
        if receipt.failed:
            logger.error("Failed to apply %s: %s", patch.name, receipt.error)
        return receipt

    def apply_all(
        self,
        patch_dir: Path,
        target_dir: Path,
        rollback_on_failure: bool = False,
    ) -> PatchReport:
        """Attempt every patch in ``patch_dir``.

        With ``rollback_on_failure``, a failing set is reverted: patches
        already applied are reverse-applied, last one first.
        """
        report = PatchReport()
        for patch in list_patches(patch_dir):
            if self.apply_patch(patch, target_dir).ok:
                report.applied.append(patch)
            else:
                report.failed.append(patch)

        if report.failed and rollback_on_failure:
            for patch in reversed(report.applied):
                receipt = self._run("reverse", patch, target_dir)
                if receipt.failed:
                    logger.error("Could not revert %s: %s", patch.name, receipt.error)
                    continue
                logger.info("Reverted %s", patch.name)
                report.reverted.append(patch)

        return report

    def apply_patches(
        self,
        patch_dirs: list[Path],
        target_dir: Path,
        rollback_on_failure: bool = False,
    ) -> PatchReport:
        """Apply several patch directories in order.

        Raises:
            PatchError: Any patch in any directory failed.
        """
        report = PatchReport()
        for patch_dir in patch_dirs:
            report.merge(self.apply_all(patch_dir, target_dir, rollback_on_failure))

        if not report.ok:
            names = ", ".join(p.name for p in report.failed)
            raise PatchError(f"{len(report.failed)} patch(es) failed: {names}", failed=report.failed)
        return report
