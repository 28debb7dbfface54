"""
Builder — run a package's configure / make / install steps.

The build tools themselves are black boxes: each step is an argv list
handed to the shell adapter, run in the package's build directory. A
non-zero exit stops the package. When a configure step fails, the
config.log files under the build directory are searched for the usual
toolchain culprits so the error says more than "exit status 1".
"""

from __future__ import annotations

import logging
import os
import re
from pathlib import Path

from pkgcache.adapters.registry import AdapterRegistry, default_registry
from pkgcache.core.errors import ToolError
from pkgcache.core.models.action import Action, Receipt
from pkgcache.core.models.package import BuildStep

logger = logging.getLogger(__name__)

CONFIGURE_LOG = "config.log"
CONFIGURE_ERROR_RE = re.compile(r"undefined reference|can't load library|unrecognized command-line option")


def default_jobs() -> int:
    return os.cpu_count() or 1


def scan_configure_logs(directory: Path) -> list[str]:
    """Return ``path:line`` for every suspicious line in config.log files."""
    hits: list[str] = []
    for log in sorted(Path(directory).rglob(CONFIGURE_LOG)):
        if not log.is_file():
            continue
        with open(log, encoding="utf-8", errors="replace") as f:
            for line in f:
                if CONFIGURE_ERROR_RE.search(line):
                    hits.append(f"{log}:{line.rstrip()}")
    return hits


class Builder:
    """Run build steps through the registry's shell adapter.

    Args:
        registry: Adapter registry (default: shell/git/patch).
        jobs: Value for ``-j`` on parallel steps (0 = CPU count).
        env: Extra environment merged over the process environment.
        stream: Let tool output go straight to the terminal instead of
            being captured on the receipt.
    """

    def __init__(
        self,
        registry: AdapterRegistry | None = None,
        jobs: int = 0,
        env: dict[str, str] | None = None,
        stream: bool = True,
    ):
        self.registry = registry or default_registry()
        self.jobs = jobs or default_jobs()
        self.env = dict(env or {})
        self.stream = stream

    def command_for(self, step: BuildStep) -> list[str]:
        if step.parallel:
            return [*step.command, f"-j{self.jobs}"]
        return list(step.command)

    def run_step(self, key: str, step: BuildStep, build_dir: Path) -> Receipt:
        """Run one step.

        Raises:
            ToolError: The command failed. Configure failures carry the
                matching config.log lines as ``diagnostics``.
        """
        name = step.name or step.command[0]
        action = Action(
            id=f"{key}:{name}",
            adapter="shell",
            params={
                "command": self.command_for(step),
                "cwd": str(build_dir),
                "timeout": step.timeout,
                "stream": self.stream,
            },
        )
        logger.info("[%s] %s", key, name)
        receipt = self.registry.execute_action(action, env={**self.env, **step.env})
        if receipt.ok:
            return receipt

        diagnostics: list[str] = []
        if step.configure:
            diagnostics = scan_configure_logs(build_dir)
            for hit in diagnostics:
                logger.error("%s", hit)
        raise ToolError(
            f"{key}: step '{name}' failed: {receipt.error}",
            return_code=receipt.return_code,
            diagnostics=diagnostics,
        )

    def run_steps(self, key: str, steps: list[BuildStep], build_dir: Path) -> list[Receipt]:
        """Run ``steps`` in order; the first failure stops the sequence."""
        return [self.run_step(key, step, build_dir) for step in steps]

    def run_uninstall(self, key: str, command: list[str], build_dir: Path) -> Receipt:
        """Run a package's uninstall hook (``make uninstall``). Failures are logged only."""
        action = Action(
            id=f"{key}:uninstall",
            adapter="shell",
            params={"command": command, "cwd": str(build_dir), "stream": self.stream},
        )
        receipt = self.registry.execute_action(action, env=self.env)
        if receipt.failed:
            logger.warning("[%s] uninstall failed: %s", key, receipt.error)
        return receipt

    def check_static(self, binaries: list[Path], readelf: str = "readelf") -> list[Path]:
        """Return the binaries that still have NEEDED (shared library) entries."""
        dynamic: list[Path] = []
        for binary in binaries:
            action = Action(
                id=f"check-static:{Path(binary).name}",
                adapter="shell",
                params={"command": [readelf, "-d", str(binary)]},
            )
            receipt = self.registry.execute_action(action)
            if receipt.failed:
                # readelf refuses files that are not ELF; nothing to link against then
                logger.debug("%s: %s", binary, receipt.error)
                continue
            needed = [line for line in receipt.output.splitlines() if "(NEEDED)" in line]
            if needed:
                logger.warning("%s is not statically linked:\n%s", binary, "\n".join(needed))
                dynamic.append(Path(binary))
        return dynamic

    def finalize(self, key: str, binaries: list[Path], build_dir: Path, cross_prefix: str = "") -> list[Path]:
        """Strip ``binaries``, insist they are static, and add ``<bin>.static`` links.

        Relative paths are taken from ``build_dir``.

        Raises:
            ToolError: A binary is missing, strip failed, or a binary still
                links against shared libraries.
        """
        paths = [b if Path(b).is_absolute() else Path(build_dir) / b for b in binaries]
        missing = [str(p) for p in paths if not p.is_file()]
        if missing:
            raise ToolError(f"{key}: binaries not found after build: {', '.join(missing)}")

        logger.info("[%s] stripping %d binaries", key, len(paths))
        self.registry.run(
            Action(
                id=f"{key}:strip",
                adapter="shell",
                params={"command": [f"{cross_prefix}strip", "-v", *map(str, paths)], "cwd": str(build_dir)},
            ),
            env=self.env,
        )

        dynamic = self.check_static(paths, readelf=f"{cross_prefix}readelf")
        if dynamic:
            raise ToolError(
                f"{key}: not statically linked: {', '.join(p.name for p in dynamic)}",
                diagnostics=[str(p) for p in dynamic],
            )

        links: list[Path] = []
        for path in paths:
            if path.name.endswith(".static"):
                continue
            link = path.with_name(f"{path.name}.static")
            if link.is_symlink() or link.exists():
                link.unlink()
            link.symlink_to(path.name)
            links.append(link)
        return links


_TOOLCHAIN_TEMPLATE = """\
set(CMAKE_SYSTEM_NAME Linux)
set(CMAKE_SYSTEM_PROCESSOR {processor})

set(CMAKE_C_COMPILER {target}-gcc)
set(CMAKE_CXX_COMPILER {target}-g++)
set(CMAKE_AR {target}-ar)
set(CMAKE_RANLIB {target}-ranlib)
set(CMAKE_STRIP {target}-strip)

set(CMAKE_SYSROOT "{sysroot}")

set(CMAKE_FIND_ROOT_PATH "{prefix}")

set(CMAKE_FIND_ROOT_PATH_MODE_PROGRAM NEVER)
set(CMAKE_FIND_ROOT_PATH_MODE_LIBRARY ONLY)
set(CMAKE_FIND_ROOT_PATH_MODE_INCLUDE ONLY)

set(CMAKE_TRY_COMPILE_TARGET_TYPE STATIC_LIBRARY)

set(CMAKE_C_STANDARD 11)
set(CMAKE_CXX_STANDARD 17)
"""


def write_cmake_toolchain_file(
    path: Path,
    target: str,
    sysroot: Path,
    prefix: Path,
    processor: str = "",
) -> Path:
    """Write a CMake cross-compilation toolchain file for ``target``.

    ``processor`` defaults to the first component of the target triplet
    (``arm`` for ``arm-linux-musleabi``).
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(
        _TOOLCHAIN_TEMPLATE.format(
            target=target,
            processor=processor or target.split("-", 1)[0],
            sysroot=sysroot,
            prefix=prefix,
        ),
        encoding="utf-8",
    )
    logger.info("Wrote CMake toolchain file %s", path)
    return path
