"""
Domain models — Pydantic types for pkgcache.

All models are re-exported here for convenient access:

    from pkgcache.core.models import Manifest, PackageSpec, CacheEntry, BuildState
"""

from pkgcache.core.models.action import Action, Receipt
from pkgcache.core.models.cache import (
    CacheEntry,
    FetchRequest,
    HashMode,
    VerifiedArchive,
    VerifyResult,
    VerifyStatus,
)
from pkgcache.core.models.package import (
    INSTALLED_MARKER,
    BuildStep,
    CmakeToolchain,
    Manifest,
    PackageSpec,
    VcsSource,
)
from pkgcache.core.models.state import BuildState, PackageStage, PackageStatus

__all__ = [
    # action.py
    "Action",
    "BuildState",
    "BuildStep",
    "CmakeToolchain",
    # cache.py
    "CacheEntry",
    "FetchRequest",
    "HashMode",
    "INSTALLED_MARKER",
    # package.py
    "Manifest",
    "PackageSpec",
    # state.py
    "PackageStage",
    "PackageStatus",
    "Receipt",
    "VcsSource",
    "VerifiedArchive",
    "VerifyResult",
    "VerifyStatus",
]
