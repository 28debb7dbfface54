"""
Git adapter — clone and pin repositories.

Provides the operations the fetcher needs to turn a repository at a pinned
revision into a cacheable source tree. Uses the git CLI.
"""

from __future__ import annotations

import logging
import shutil

from pkgcache.adapters.base import Adapter, ExecutionContext
from pkgcache.adapters.shell.command import run_command
from pkgcache.core.models.action import Receipt

logger = logging.getLogger(__name__)

_VALID_OPS = {"clone", "checkout", "submodules", "commit_time"}


class GitAdapter(Adapter):
    """Git operations.

    Action params:
        operation (str): One of 'clone', 'checkout', 'submodules', 'commit_time'
                         (may also be given as Action.operation).
        url (str): Repository URL (for 'clone').
        dest (str): Clone destination (for 'clone').
        revision (str): Commit, tag or branch (for 'checkout').
        cwd (str): Repository working tree (all but 'clone').
        timeout (int): Timeout in seconds (default: 600).

    'commit_time' returns the HEAD commit's Unix timestamp as output.
    """

    @property
    def name(self) -> str:
        return "git"

    def is_available(self) -> bool:
        return shutil.which("git") is not None

    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        operation = self._operation(context)
        if not operation:
            return False, "Missing required param: 'operation'"
        if operation not in _VALID_OPS:
            return False, f"Unknown operation '{operation}'. Valid: {', '.join(sorted(_VALID_OPS))}"

        params = context.params
        if operation == "clone":
            if not params.get("url"):
                return False, "Missing required param: 'url' for clone operation"
            if not params.get("dest"):
                return False, "Missing required param: 'dest' for clone operation"
        if operation == "checkout" and not params.get("revision"):
            return False, "Missing required param: 'revision' for checkout operation"

        return True, ""

    def execute(self, context: ExecutionContext) -> Receipt:
        operation = self._operation(context)
        params = context.params

        if operation == "clone":
            args = ["clone", params["url"], params["dest"]]
        elif operation == "checkout":
            args = ["checkout", params["revision"]]
        elif operation == "submodules":
            args = ["submodule", "update", "--init", "--recursive"]
        elif operation == "commit_time":
            args = ["log", "-1", "--format=%ct"]
        else:
            return Receipt.failure(
                adapter=self.name,
                action_id=context.action.id,
                error=f"Unknown operation: {operation}",
            )

        cwd = None if operation == "clone" else context.working_dir
        receipt = run_command(
            self.name,
            context.action.id,
            ["git", *args],
            cwd=cwd,
            env=context.env or None,
            timeout=params.get("timeout", 600),
        )
        receipt.metadata["operation"] = operation
        return receipt

    @staticmethod
    def _operation(context: ExecutionContext) -> str:
        return context.action.operation or context.params.get("operation", "")
