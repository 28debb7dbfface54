"""
Patch adapter — apply unified/context diffs with the ``patch`` utility.
"""

from __future__ import annotations

import shutil
from pathlib import Path

from pkgcache.adapters.base import Adapter, ExecutionContext
from pkgcache.adapters.shell.command import run_command
from pkgcache.core.models.action import Receipt

_VALID_OPS = {"dry_run", "apply", "reverse"}


class PatchAdapter(Adapter):
    """Run ``patch -p<strip> -d <target> -i <patch>``.

    Action params:
        operation (str): 'dry_run', 'apply' or 'reverse'.
        patch (str): Patch file.
        target (str): Directory the patch is applied to.
        strip (int): Leading path components to strip (default: 1).
    """

    @property
    def name(self) -> str:
        return "patch"

    def is_available(self) -> bool:
        return shutil.which("patch") is not None

    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        operation = context.action.operation or context.params.get("operation", "")
        if operation not in _VALID_OPS:
            return False, f"Unknown operation '{operation}'. Valid: {', '.join(sorted(_VALID_OPS))}"

        patch = context.params.get("patch")
        if not patch:
            return False, "Missing required param: 'patch'"
        if not Path(patch).is_file():
            return False, f"Patch not found: {patch}"

        target = context.params.get("target")
        if not target:
            return False, "Missing required param: 'target'"
        if not Path(target).is_dir():
            return False, f"Target directory does not exist: {target}"

        return True, ""

    def execute(self, context: ExecutionContext) -> Receipt:
        operation = context.action.operation or context.params["operation"]
        strip = int(context.params.get("strip", 1))
        # --batch: never prompt. --forward: an already-applied patch is a failure.
        argv = ["patch", "--batch"]
        if operation == "dry_run":
            argv += ["--dry-run", "--silent", "--forward"]
        elif operation == "apply":
            argv += ["--forward"]
        else:
            argv += ["-R"]
        # patch chdirs into -d before reading -i, so the patch path must be absolute.
        patch = Path(context.params["patch"]).resolve()
        argv += [f"-p{strip}", "-d", str(context.params["target"]), "-i", str(patch)]

        return run_command(self.name, context.action.id, argv, timeout=120)
