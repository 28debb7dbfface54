"""
Manifest models — the packages to fetch, verify, unpack, patch and build.

Loaded from packages.yml. A manifest is an ordered list of packages plus
the directories they share:

    cache_dir: ../sources
    src_root: build/src
    packages:
      - name: zlib
        version: 1.3.1
        url: https://github.com/madler/zlib/releases/download/v1.3.1/zlib-1.3.1.tar.xz
        source: zlib-1.3.1.tar.xz
        hash: 38ef96b8dfe510d42707d9c781877914792541133e1870841463bfa73f883e32
        steps:
          - {name: configure, command: [./configure, --prefix=/opt], configure: true}
          - {name: make, command: [make], parallel: true}
          - {name: install, command: [make, install]}
"""

from __future__ import annotations

import os
from pathlib import Path

from pydantic import BaseModel, Field, model_validator

from pkgcache.core.models.cache import HashMode
from pkgcache.core.services.versions import is_git_version

INSTALLED_MARKER = "__package_installed"
LATEST_VERSION = "latest"


class VcsSource(BaseModel):
    """A repository pinned to an exact revision."""

    url: str
    revision: str
    subdir: str = ""             # top-level directory inside the archive


class BuildStep(BaseModel):
    """One external build command."""

    name: str = ""
    command: list[str]
    parallel: bool = False       # append -j<jobs>
    configure: bool = False      # scan config.log on failure
    env: dict[str, str] = Field(default_factory=dict)
    timeout: int | None = None


class CmakeToolchain(BaseModel):
    """CMake cross-compilation toolchain file written before the first build."""

    path: Path
    target: str                  # triplet, e.g. arm-linux-musleabi
    sysroot: Path
    prefix: Path
    processor: str = ""


class PackageSpec(BaseModel):
    """One package declared in the manifest."""

    name: str
    version: str
    url: str = ""
    vcs: VcsSource | None = None

    source: str = ""             # identity key in the cache
    hash: str = ""
    hash_mode: HashMode | None = None

    subdir: str = ""             # extracted source directory
    variant: str = ""            # distinguishes several builds of one source
    build_dir: str = ""          # relative to the source dir; recreated fresh

    patches: list[Path] = Field(default_factory=list)
    steps: list[BuildStep] = Field(default_factory=list)
    uninstall: list[str] = Field(default_factory=list)
    static_binaries: list[Path] = Field(default_factory=list)  # stripped, checked, linked as <bin>.static

    @model_validator(mode="after")
    def _fill_defaults(self) -> PackageSpec:
        if not self.url and self.vcs is None:
            raise ValueError(f"package '{self.name}' needs either 'url' or 'vcs'")
        if self.url and self.vcs is not None:
            raise ValueError(f"package '{self.name}' declares both 'url' and 'vcs'")

        base = f"{self.name}-{self.version}"
        from_repository = self.vcs is not None or is_git_version(self.version)
        if not self.source:
            self.source = f"{base}.tar.xz" if from_repository else f"{base}.tar.gz"
        if not self.subdir:
            self.subdir = base
        if self.vcs is not None and not self.vcs.subdir:
            self.vcs.subdir = self.subdir
        if self.hash_mode is None:
            self.hash_mode = HashMode.TAR_EXTRACT if from_repository else HashMode.RAW
        return self

    @property
    def key(self) -> str:
        """Identity of this build in the state record."""
        base = f"{self.name}-{self.version}"
        return f"{base}-{self.variant}" if self.variant else base

    @property
    def is_vcs(self) -> bool:
        return self.vcs is not None

    @property
    def fetch_url(self) -> str:
        return self.vcs.url if self.vcs else self.url


class Manifest(BaseModel):
    """Root manifest — loaded from packages.yml."""

    version: int = 1

    cache_dir: Path = Path("../sources")
    src_root: Path = Path("src")
    rebuild_all: bool = False
    jobs: int = 0                # 0 = one per detected CPU
    env: dict[str, str] = Field(default_factory=dict)
    cross_prefix: str = ""       # prepended to strip / readelf, e.g. arm-linux-musleabi-
    toolchain: CmakeToolchain | None = None

    packages: list[PackageSpec] = Field(default_factory=list)

    def get_package(self, name: str) -> PackageSpec | None:
        """Look up the first package with this name or key."""
        for pkg in self.packages:
            if pkg.name == name or pkg.key == name:
                return pkg
        return None

    def work_dir(self, pkg: PackageSpec) -> Path:
        """Per-package directory holding the cache link and source tree.

        Variants get their own directory under the package so that each has
        its own source tree and installed marker.
        """
        if pkg.variant:
            return self.src_root / pkg.name / pkg.variant
        return self.src_root / pkg.name

    def source_dir(self, pkg: PackageSpec) -> Path:
        return Path(os.path.normpath(self.work_dir(pkg) / pkg.subdir))

    def build_dir(self, pkg: PackageSpec) -> Path:
        src = self.source_dir(pkg)
        if not pkg.build_dir:
            return src
        return Path(os.path.normpath(src / pkg.build_dir))

    def out_of_tree(self, pkg: PackageSpec) -> bool:
        """Whether the build dir lives outside the source tree (``../gcc-build``)."""
        return not self.build_dir(pkg).is_relative_to(self.source_dir(pkg))

    def marker_path(self, pkg: PackageSpec) -> Path:
        """Installed marker: in an out-of-tree build dir, else in the source dir."""
        if self.out_of_tree(pkg):
            return self.build_dir(pkg) / INSTALLED_MARKER
        return self.source_dir(pkg) / INSTALLED_MARKER
