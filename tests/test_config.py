"""
Tests for manifest loading and the package models it produces.
"""

import textwrap
from pathlib import Path

import pytest

from pkgcache.core.config.loader import ConfigError, find_manifest, load_manifest
from pkgcache.core.models.cache import HashMode
from pkgcache.core.models.package import INSTALLED_MARKER, Manifest, PackageSpec, VcsSource

MANIFEST = textwrap.dedent("""\
    cache_dir: ../sources
    src_root: build/src
    jobs: 8
    env:
      CFLAGS: -O2
    packages:
      - name: zlib
        version: 1.3.1
        url: https://zlib.net/zlib-1.3.1.tar.xz
        source: zlib-1.3.1.tar.xz
        hash: 38ef96b8dfe510d42707d9c781877914792541133e1870841463bfa73f883e32
        patches: [patches/zlib]
        steps:
          - {name: configure, command: [./configure, --static], configure: true}
          - {name: make, command: [make], parallel: true}
      - name: gcc
        version: 14.2.0
        variant: bootstrap
        url: https://ftp.gnu.org/gnu/gcc/gcc-14.2.0/gcc-14.2.0.tar.xz
        source: gcc-14.2.0.tar.xz
        build_dir: ../gcc-build
        uninstall: [make, uninstall]
      - name: tool
        version: 1.0+git
        vcs:
          url: https://example.invalid/tool.git
          revision: 0123abcd
""")


def write_manifest(directory: Path, text: str = MANIFEST) -> Path:
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / "packages.yml"
    path.write_text(text)
    return path


class TestLoadManifest:
    def test_loads_and_resolves_paths(self, tmp_path: Path):
        path = write_manifest(tmp_path / "proj")
        manifest = load_manifest(path)

        assert manifest.cache_dir == tmp_path.resolve() / "sources"
        assert manifest.src_root == tmp_path.resolve() / "proj" / "build" / "src"
        assert manifest.jobs == 8
        assert manifest.env == {"CFLAGS": "-O2"}
        zlib = manifest.get_package("zlib")
        assert zlib.patches == [tmp_path.resolve() / "proj" / "patches" / "zlib"]
        assert zlib.steps[1].parallel

    def test_env_overrides(self, tmp_path: Path, monkeypatch):
        monkeypatch.setenv("PKGCACHE_CACHE_DIR", str(tmp_path / "elsewhere"))
        monkeypatch.setenv("PKGCACHE_REBUILD_ALL", "1")
        manifest = load_manifest(write_manifest(tmp_path))
        assert manifest.cache_dir == tmp_path / "elsewhere"
        assert manifest.rebuild_all

    def test_find_walks_up(self, tmp_path: Path):
        path = write_manifest(tmp_path)
        nested = tmp_path / "a" / "b"
        nested.mkdir(parents=True)
        assert find_manifest(nested) == path.resolve()

    def test_missing_file(self, tmp_path: Path):
        with pytest.raises(ConfigError, match="not found"):
            load_manifest(tmp_path / "packages.yml")

    def test_invalid_yaml(self, tmp_path: Path):
        with pytest.raises(ConfigError, match="Invalid YAML"):
            load_manifest(write_manifest(tmp_path, "packages: [unclosed\n"))

    def test_non_mapping(self, tmp_path: Path):
        with pytest.raises(ConfigError, match="mapping"):
            load_manifest(write_manifest(tmp_path, "- just\n- a list\n"))

    def test_schema_violation(self, tmp_path: Path):
        with pytest.raises(ConfigError, match="Invalid manifest"):
            load_manifest(write_manifest(tmp_path, "packages:\n  - name: x\n    version: 1\n"))

    def test_duplicate_keys(self, tmp_path: Path):
        text = "packages:\n" + "  - {name: a, version: '1', url: 'file:///a.tar.gz'}\n" * 2
        with pytest.raises(ConfigError, match="Duplicate"):
            load_manifest(write_manifest(tmp_path, text))

    def test_latest_version_from_cache(self, tmp_path: Path):
        cache = tmp_path / "sources"
        cache.mkdir()
        for name in ("musl-20240101.tar.gz", "musl-20240301.tar.gz", "musl-20240201.tar.gz"):
            (cache / name).write_text("")
        text = "cache_dir: sources\npackages:\n  - {name: musl, version: latest, url: 'file:///m.tar.gz'}\n"
        pkg = load_manifest(write_manifest(tmp_path, text)).packages[0]
        assert pkg.version == "20240301"
        assert pkg.source == "musl-20240301.tar.gz"

    def test_latest_version_needs_a_cached_archive(self, tmp_path: Path):
        text = "cache_dir: sources\npackages:\n  - {name: musl, version: latest, url: 'file:///m.tar.gz'}\n"
        with pytest.raises(ConfigError, match="latest cached version"):
            load_manifest(write_manifest(tmp_path, text))

    def test_toolchain_path_resolved(self, tmp_path: Path):
        text = textwrap.dedent("""\
            cross_prefix: arm-linux-musleabi-
            toolchain:
              path: prefix/arm-musl.toolchain.cmake
              target: arm-linux-musleabi
              sysroot: /opt/sysroot
              prefix: /opt/arm
        """)
        manifest = load_manifest(write_manifest(tmp_path, text))
        assert manifest.toolchain.path == tmp_path.resolve() / "prefix" / "arm-musl.toolchain.cmake"
        assert manifest.cross_prefix == "arm-linux-musleabi-"


class TestPackageSpec:
    def test_download_defaults(self):
        pkg = PackageSpec(name="zlib", version="1.3.1", url="https://x/zlib.tgz")
        assert pkg.source == "zlib-1.3.1.tar.gz"
        assert pkg.subdir == "zlib-1.3.1"
        assert pkg.hash_mode == HashMode.RAW
        assert pkg.key == "zlib-1.3.1"
        assert not pkg.is_vcs

    def test_vcs_defaults(self):
        pkg = PackageSpec(name="t", version="1+git", vcs=VcsSource(url="u", revision="r"))
        assert pkg.source == "t-1+git.tar.xz"
        assert pkg.vcs.subdir == "t-1+git"
        assert pkg.hash_mode == HashMode.TAR_EXTRACT
        assert pkg.fetch_url == "u"

    def test_git_version_download_defaults(self):
        pkg = PackageSpec(name="t", version="4.0.6+git", url="https://mirror/t-4.0.6+git.tar.xz")
        assert pkg.source == "t-4.0.6+git.tar.xz"
        assert pkg.hash_mode == HashMode.TAR_EXTRACT

    def test_variant_in_key(self):
        assert PackageSpec(name="gcc", version="14", url="u", variant="final").key == "gcc-14-final"

    def test_needs_exactly_one_source(self):
        with pytest.raises(ValueError):
            PackageSpec(name="x", version="1")
        with pytest.raises(ValueError):
            PackageSpec(name="x", version="1", url="u", vcs=VcsSource(url="u", revision="r"))


class TestManifestPaths:
    def test_in_tree_marker(self, tmp_path: Path):
        manifest = Manifest(src_root=tmp_path)
        pkg = PackageSpec(name="zlib", version="1", url="u")
        assert manifest.source_dir(pkg) == tmp_path / "zlib" / "zlib-1"
        assert manifest.marker_path(pkg) == tmp_path / "zlib" / "zlib-1" / INSTALLED_MARKER

    def test_out_of_tree_marker(self, tmp_path: Path):
        manifest = Manifest(src_root=tmp_path)
        pkg = PackageSpec(name="gcc", version="14", url="u", build_dir="../gcc-build")
        assert manifest.out_of_tree(pkg)
        assert manifest.marker_path(pkg) == tmp_path / "gcc" / "gcc-build" / INSTALLED_MARKER

    def test_in_tree_build_dir_keeps_marker_in_source(self, tmp_path: Path):
        manifest = Manifest(src_root=tmp_path)
        pkg = PackageSpec(name="p", version="1", url="u", build_dir="build")
        assert manifest.build_dir(pkg) == tmp_path / "p" / "p-1" / "build"
        assert manifest.marker_path(pkg) == tmp_path / "p" / "p-1" / INSTALLED_MARKER

    def test_variants_get_separate_trees_and_markers(self, tmp_path: Path):
        manifest = Manifest(src_root=tmp_path)
        a = PackageSpec(name="p", version="1", url="u", variant="a")
        b = PackageSpec(name="p", version="1", url="u", variant="b")
        assert manifest.source_dir(a) == tmp_path / "p" / "a" / "p-1"
        assert manifest.marker_path(a) != manifest.marker_path(b)
