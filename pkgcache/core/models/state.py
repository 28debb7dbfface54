"""
BuildState — persisted per-package pipeline status.

Each package build moves through an ordered set of stages. The current
stage is recorded in .pkgcache/state.json under the source root and
read back on every run, so "directory exists" and "step completed" are
never confused.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field


def _now_iso() -> str:
    """Current UTC time as ISO string."""
    return datetime.now(UTC).isoformat()


class PackageStage(StrEnum):
    """Pipeline stages, in order."""

    NOT_FETCHED = "not_fetched"
    FETCHED = "fetched"
    VERIFIED = "verified"
    UNPACKED = "unpacked"
    PATCHED = "patched"
    INSTALLED = "installed"

    @property
    def rank(self) -> int:
        return _STAGE_ORDER.index(self)

    def at_least(self, other: PackageStage) -> bool:
        return self.rank >= other.rank


_STAGE_ORDER = list(PackageStage)


class PackageStatus(BaseModel):
    """Pipeline status of one package build."""

    key: str
    stage: PackageStage = PackageStage.NOT_FETCHED
    source_path: str | None = None
    updated_at: str = Field(default_factory=_now_iso)
    last_error: str | None = None
    failed_stage: str | None = None

    def advance(self, stage: PackageStage) -> None:
        self.stage = stage
        self.updated_at = _now_iso()
        self.last_error = None
        self.failed_stage = None

    def record_failure(self, stage: str, error: str) -> None:
        self.failed_stage = stage
        self.last_error = error
        self.updated_at = _now_iso()


class BuildState(BaseModel):
    """Root state document — serialized to .pkgcache/state.json."""

    schema_version: int = 1

    created_at: str = Field(default_factory=_now_iso)
    updated_at: str = Field(default_factory=_now_iso)

    packages: dict[str, PackageStatus] = Field(default_factory=dict)
    metadata: dict[str, Any] = Field(default_factory=dict)

    def touch(self) -> None:
        self.updated_at = _now_iso()

    def get(self, key: str) -> PackageStatus:
        """Return the status for ``key``, creating a fresh one if missing."""
        if key not in self.packages:
            self.packages[key] = PackageStatus(key=key)
        return self.packages[key]

    def reset(self, key: str) -> PackageStatus:
        self.packages[key] = PackageStatus(key=key)
        return self.packages[key]
