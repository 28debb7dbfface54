"""
Adapter registry — central dispatch for tool invocations.

Services never talk to adapters directly, only through the registry,
so a test can replace 'git' or 'patch' with a MockAdapter in one place.
"""

from __future__ import annotations

import logging
import time
from typing import Any

from pkgcache.adapters.base import Adapter, ExecutionContext
from pkgcache.core.errors import ToolError
from pkgcache.core.models.action import Action, Receipt

logger = logging.getLogger(__name__)


class AdapterRegistry:
    """Registry and dispatcher for adapters."""

    def __init__(self) -> None:
        self._adapters: dict[str, Adapter] = {}

    def register(self, adapter: Adapter) -> None:
        name = adapter.name
        if name in self._adapters:
            logger.debug("Overwriting existing adapter: %s", name)
        self._adapters[name] = adapter
        logger.debug("Registered adapter: %s", name)

    def unregister(self, name: str) -> None:
        self._adapters.pop(name, None)

    def get(self, name: str) -> Adapter | None:
        return self._adapters.get(name)

    def list_adapters(self) -> list[str]:
        return list(self._adapters.keys())

    def adapter_status(self) -> dict[str, dict[str, Any]]:
        """Availability of every registered adapter's binary."""
        status = {}
        for name, adapter in self._adapters.items():
            try:
                available = adapter.is_available()
            except Exception:
                available = False
            status[name] = {
                "name": name,
                "available": available,
                "type": adapter.__class__.__name__,
            }
        return status

    def execute_action(
        self,
        action: Action,
        cwd: str = ".",
        env: dict[str, str] | None = None,
        dry_run: bool = False,
    ) -> Receipt:
        """Dispatch an action to its adapter. Returns a Receipt, never raises.

        Args:
            action: The action to execute.
            cwd: Default working directory.
            env: Extra environment for the tool.
            dry_run: Validate only.
        """
        start_time = time.monotonic()

        context = ExecutionContext(action=action, cwd=cwd, env=env or {}, dry_run=dry_run)

        adapter = self._adapters.get(action.adapter)
        if adapter is None:
            return Receipt.failure(
                adapter=action.adapter,
                action_id=action.id,
                error=f"No adapter registered for '{action.adapter}'",
            )

        try:
            is_valid, error_msg = adapter.validate(context)
        except Exception as e:
            return Receipt.failure(
                adapter=action.adapter,
                action_id=action.id,
                error=f"Validation error: {e}",
            )
        if not is_valid:
            return Receipt.failure(
                adapter=action.adapter,
                action_id=action.id,
                error=f"Validation failed: {error_msg}",
            )

        if dry_run:
            return Receipt.skip(
                adapter=action.adapter,
                action_id=action.id,
                reason=f"[dry-run] Would execute {action.adapter}:{action.id}",
                metadata={"dry_run": True},
            )

        try:
            receipt = adapter.execute(context)
        except Exception as e:
            logger.error("Adapter %s raised during execution: %s", action.adapter, e)
            receipt = Receipt.failure(
                adapter=action.adapter,
                action_id=action.id,
                error=f"Unexpected error: {e}",
            )

        receipt.duration_ms = int((time.monotonic() - start_time) * 1000)
        return receipt

    def run(self, action: Action, cwd: str = ".", env: dict[str, str] | None = None) -> Receipt:
        """Like ``execute_action`` but raises ToolError on a failed receipt."""
        receipt = self.execute_action(action, cwd=cwd, env=env)
        if receipt.failed:
            raise ToolError(
                f"{action.adapter} {action.operation or action.id} failed: {receipt.error}",
                return_code=receipt.return_code,
            )
        return receipt


def default_registry() -> AdapterRegistry:
    """Registry with the shell, git and patch adapters."""
    from pkgcache.adapters.patch.tool import PatchAdapter
    from pkgcache.adapters.shell.command import ShellCommandAdapter
    from pkgcache.adapters.vcs.git import GitAdapter

    registry = AdapterRegistry()
    registry.register(ShellCommandAdapter())
    registry.register(GitAdapter())
    registry.register(PatchAdapter())
    return registry
