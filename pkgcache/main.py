"""
pkgcache — CLI entrypoint.

Usage:
    pkgcache --help
    pkgcache fetch https://zlib.net/zlib-1.3.1.tar.xz zlib-1.3.1.tar.xz --dest src/zlib
    pkgcache verify ../sources/zlib-1.3.1.tar.xz --hash 38ef96b8...
    pkgcache build --package zlib
    pkgcache status --json
"""

from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import NoReturn

import click

from pkgcache import __version__
from pkgcache.core.config.loader import ConfigError
from pkgcache.core.errors import PkgCacheError, ToolError
from pkgcache.core.models.cache import HashMode
from pkgcache.core.observability.logging_config import resolve_level, setup_logging

_MODES = click.Choice([m.value for m in HashMode])


def _fail(error: Exception) -> NoReturn:
    """Print ``error`` and exit with its code (1 unless it carries one)."""
    click.secho(f"❌ {error}", fg="red", err=True)
    if isinstance(error, ToolError):
        for line in error.diagnostics:
            click.echo(f"   {line}", err=True)
    sys.exit(getattr(error, "exit_code", 1) or 1)


def _cache_dir(ctx: click.Context, cache_dir: str | None) -> Path:
    """--cache-dir / PKGCACHE_CACHE_DIR, else the manifest's cache_dir."""
    if cache_dir:
        return Path(cache_dir)
    from pkgcache.core.config.loader import load_manifest

    try:
        return load_manifest(ctx.obj.get("manifest_path")).cache_dir
    except ConfigError as e:
        raise click.UsageError(f"No --cache-dir given and no manifest to take it from ({e})") from e


@click.group()
@click.version_option(version=__version__, prog_name="pkgcache")
@click.option("--verbose", "-v", is_flag=True, help="Log progress (INFO).")
@click.option("--quiet", "-q", is_flag=True, help="Only log errors.")
@click.option("--debug", is_flag=True, help="Enable debug logging (very verbose).")
@click.option(
    "--manifest",
    "-m",
    "manifest_path",
    type=click.Path(dir_okay=False),
    default=None,
    help="Path to packages.yml (default: search upward from cwd).",
)
@click.pass_context
def cli(
    ctx: click.Context,
    verbose: bool,
    quiet: bool,
    debug: bool,
    manifest_path: str | None,
) -> None:
    """Fetch, verify, unpack, patch and build source packages with a shared cache."""
    ctx.ensure_object(dict)
    ctx.obj["quiet"] = quiet
    ctx.obj["manifest_path"] = Path(manifest_path) if manifest_path else None

    setup_logging(level=resolve_level(debug=debug, verbose=verbose, quiet=quiet))


# ── Single operations ───────────────────────────────────────────


@cli.command()
@click.argument("url")
@click.argument("source")
@click.option("--dest", default=".", type=click.Path(file_okay=False), help="Directory that gets the link.")
@click.option("--cache-dir", envvar="PKGCACHE_CACHE_DIR", default=None, help="Cache directory.")
@click.option("--revision", default=None, help="Pinned revision: treat URL as a git repository.")
@click.option("--subdir", default=None, help="Top-level directory of the archive built from a clone.")
@click.pass_context
def fetch(
    ctx: click.Context,
    url: str,
    source: str,
    dest: str,
    cache_dir: str | None,
    revision: str | None,
    subdir: str | None,
) -> None:
    """Put SOURCE from URL into the cache and link it from --dest."""
    from pkgcache.core.models.cache import FetchRequest
    from pkgcache.core.services.fetcher import Fetcher

    if subdir and not revision:
        raise click.UsageError("--subdir only applies together with --revision")

    fetcher = Fetcher(_cache_dir(ctx, cache_dir))
    request = FetchRequest(
        url=url,
        source=source,
        target_dir=Path(dest),
        revision=revision,
        subdir=subdir or (Path(source).name.split(".tar")[0] if revision else None),
    )
    try:
        entry = fetcher.fetch(request)
    except PkgCacheError as e:
        _fail(e)

    if entry.fetched:
        click.secho(f"⬇️  Fetched {entry.source}", fg="green")
    elif entry.adopted:
        click.secho(f"📥 Moved {entry.source} into the cache", fg="green")
    elif not ctx.obj.get("quiet"):
        click.echo(f"✓ {entry.source} already cached")
    click.echo(str(entry.path))


@cli.command()
@click.argument("path", type=click.Path(dir_okay=False))
@click.option("--hash", "expected", default="", help="Expected sha256 (default: read the .sha256 sidecar).")
@click.option("--mode", type=_MODES, default=HashMode.RAW.value, show_default=True)
def verify(path: str, expected: str, mode: str) -> None:
    """Check PATH's sha256 digest."""
    from pkgcache.core.services.hashing import verify_or_raise

    try:
        result = verify_or_raise(Path(path), expected, HashMode(mode))
    except PkgCacheError as e:
        _fail(e)
    click.secho(f"✅ SHA256 OK: {result.path}", fg="green")


@cli.command()
@click.argument("path", type=click.Path(dir_okay=False))
@click.option("--mode", type=_MODES, default=HashMode.RAW.value, show_default=True)
def sign(path: str, mode: str) -> None:
    """Write PATH.sha256 with PATH's digest."""
    from pkgcache.core.services.hashing import sign_file

    try:
        sidecar = sign_file(Path(path), HashMode(mode))
    except PkgCacheError as e:
        _fail(e)
    click.echo(str(sidecar))


@cli.command()
@click.argument("archive", type=click.Path(dir_okay=False))
@click.argument("target", type=click.Path(file_okay=False))
def unpack(archive: str, target: str) -> None:
    """Extract ARCHIVE so that its contents become TARGET."""
    from pkgcache.core.services.unpacker import unpack as unpack_archive

    try:
        extracted = unpack_archive(Path(archive), Path(target))
    except PkgCacheError as e:
        _fail(e)
    if extracted:
        click.secho(f"📦 Unpacked into {target}", fg="green")
    else:
        click.echo(f"✓ {target} exists, nothing to do")


@cli.command()
@click.argument("patch_dir", type=click.Path(file_okay=False))
@click.argument("target", type=click.Path(file_okay=False, exists=True))
@click.option("--rollback", is_flag=True, help="Revert applied patches if any patch fails.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
def patch(patch_dir: str, target: str, rollback: bool, as_json: bool) -> None:
    """Apply every *.patch in PATCH_DIR to TARGET."""
    from pkgcache.core.services.patcher import PatchApplier

    report = PatchApplier().apply_all(Path(patch_dir), Path(target), rollback_on_failure=rollback)

    if as_json:
        click.echo(json.dumps(report.to_dict(), indent=2))
    else:
        for p in report.applied:
            click.secho(f"   ✓ {p.name}", fg="green")
        for p in report.failed:
            click.secho(f"   ✗ {p.name}", fg="red")
        for p in report.reverted:
            click.secho(f"   ↩ {p.name}", fg="yellow")
    if not report.ok:
        sys.exit(1)


# ── Manifest operations ─────────────────────────────────────────


@cli.command()
@click.option("--package", "-p", "packages", multiple=True, help="Package name or key (repeatable).")
@click.option("--rebuild-all", is_flag=True, default=None, help="Uninstall and rebuild from scratch.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def build(ctx: click.Context, packages: tuple[str, ...], rebuild_all: bool | None, as_json: bool) -> None:
    """Run packages from the manifest through fetch → install."""
    from pkgcache.core.use_cases.build import run_build

    result = run_build(
        manifest_path=ctx.obj.get("manifest_path"),
        packages=list(packages) or None,
        rebuild_all=rebuild_all or None,
    )

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
    else:
        icons = {"installed": ("✓", "green"), "skipped": ("⊘", "yellow"), "failed": ("✗", "red")}
        for run in result.runs:
            icon, color = icons.get(run.status, ("•", "white"))
            click.secho(f"   {icon} {run.key} ", fg=color, nl=False)
            click.echo(f"{run.status} ({run.duration_ms}ms)" if run.duration_ms else run.status)
        if result.error:
            click.secho(f"❌ {result.error}", fg="red", err=True)
            for line in result.diagnostics:
                click.echo(f"   {line}", err=True)

    if not result.ok:
        sys.exit(result.exit_code or 1)


@cli.command()
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def status(ctx: click.Context, as_json: bool) -> None:
    """Show the recorded stage of every manifest package."""
    from pkgcache.core.use_cases.status import get_status

    result = get_status(ctx.obj.get("manifest_path"))

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        if result.error:
            sys.exit(1)
        return

    if result.error:
        click.secho(f"❌ {result.error}", fg="red", err=True)
        sys.exit(1)

    if not ctx.obj.get("quiet"):
        click.secho(f"\n📋 Cache: {result.cache_dir}", fg="cyan", bold=True)
        click.echo(f"   State: {result.state_path}\n")

    colors = {"installed": "green", "not_fetched": "white"}
    for pkg in result.packages:
        cached = " [cached]" if pkg.cached else ""
        click.secho(f"   • {pkg.key:<32} ", nl=False)
        click.secho(pkg.stage, fg=colors.get(pkg.stage, "yellow"), nl=False)
        click.echo(cached)
        if pkg.last_error:
            click.secho(f"       {pkg.failed_stage}: {pkg.last_error}", fg="red")


if __name__ == "__main__":
    cli()
