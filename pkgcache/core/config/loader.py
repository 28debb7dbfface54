"""
Manifest loader — reads packages.yml into a validated Manifest.

Relative directories in the manifest (cache_dir, src_root, patch
directories) are relative to the manifest file, not to the directory
the command happens to run from.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

import yaml
from pydantic import ValidationError

from pkgcache.core.models.package import LATEST_VERSION, Manifest
from pkgcache.core.services.versions import latest_cached_version

logger = logging.getLogger(__name__)

MANIFEST_FILE = "packages.yml"

ENV_CACHE_DIR = "PKGCACHE_CACHE_DIR"
ENV_REBUILD_ALL = "PKGCACHE_REBUILD_ALL"

_TRUTHY = {"1", "true", "yes", "on"}


class ConfigError(Exception):
    """The manifest is missing or invalid."""


def find_manifest(start_dir: Path | None = None) -> Path | None:
    """Look for packages.yml in ``start_dir`` (default: cwd) and its parents."""
    current = (start_dir or Path.cwd()).resolve()
    for directory in (current, *current.parents):
        candidate = directory / MANIFEST_FILE
        if candidate.is_file():
            return candidate
    return None


def _resolve(base: Path, path: Path) -> Path:
    path = path.expanduser()
    return path if path.is_absolute() else Path(os.path.normpath(base / path))


def _latest_version(raw: dict, cache_dir: Path) -> str:
    """Newest version of a package already in the cache (``version: latest``)."""
    name = raw.get("name", "")
    suffix = ".tar.xz" if raw.get("vcs") else ".tar.gz"
    version = latest_cached_version(cache_dir, f"{name}-", suffix)
    if version is None:
        raise ConfigError(f"Package '{name}' asks for the latest cached version, but {cache_dir} has no {name}-*{suffix}")
    logger.info("Latest cached %s is %s", name, version)
    return version


def load_manifest(path: Path | None = None) -> Manifest:
    """Load, validate and resolve a manifest.

    Args:
        path: Explicit manifest path. If None, searches upward from cwd.

    Raises:
        ConfigError: Missing file, unreadable file, bad YAML, or a schema
            violation.
    """
    if path is None:
        path = find_manifest()
        if path is None:
            raise ConfigError(f"No {MANIFEST_FILE} found here or in any parent directory; use --manifest")

    path = Path(path)
    if not path.is_file():
        raise ConfigError(f"Manifest not found: {path}")

    logger.debug("Loading manifest %s", path)
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except OSError as e:
        raise ConfigError(f"Cannot read {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"Expected a YAML mapping in {path}, got {type(data).__name__}")

    if os.environ.get(ENV_CACHE_DIR):
        data["cache_dir"] = os.environ[ENV_CACHE_DIR]
    if os.environ.get(ENV_REBUILD_ALL, "").lower() in _TRUTHY:
        data["rebuild_all"] = True

    base = path.resolve().parent
    cache_dir = _resolve(base, Path(data.get("cache_dir") or Manifest.model_fields["cache_dir"].default))
    packages = data.get("packages")
    for raw in packages if isinstance(packages, list) else []:
        if isinstance(raw, dict) and raw.get("version") == LATEST_VERSION:
            raw["version"] = _latest_version(raw, cache_dir)

    try:
        manifest = Manifest.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid manifest {path}:\n{e}") from e

    manifest.cache_dir = _resolve(base, manifest.cache_dir)
    manifest.src_root = _resolve(base, manifest.src_root)
    for pkg in manifest.packages:
        pkg.patches = [_resolve(base, p) for p in pkg.patches]
    if manifest.toolchain is not None:
        manifest.toolchain.path = _resolve(base, manifest.toolchain.path)

    names = [pkg.key for pkg in manifest.packages]
    duplicates = sorted({k for k in names if names.count(k) > 1})
    if duplicates:
        raise ConfigError(f"Duplicate packages in {path}: {', '.join(duplicates)} (set 'variant' to tell them apart)")

    logger.info("Loaded %d package(s) from %s", len(manifest.packages), path)
    return manifest
