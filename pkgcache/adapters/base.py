"""
Adapter base — the contract between services and external tools.

Services never call git, patch or make directly; they build an Action
and hand it to the registry, which picks the adapter. Keeping every
subprocess behind this protocol lets tests swap in a mock.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from pydantic import BaseModel, Field

from pkgcache.core.models.action import Action, Receipt


class ExecutionContext(BaseModel):
    """Everything an adapter needs to execute an action."""

    action: Action
    cwd: str = "."
    env: dict[str, str] = Field(default_factory=dict)
    dry_run: bool = False

    @property
    def params(self) -> dict:
        return self.action.params

    @property
    def working_dir(self) -> str:
        """Action-level ``cwd`` param wins over the context default."""
        return str(self.action.params.get("cwd") or self.cwd)


class Adapter(ABC):
    """Abstract base class for all tool adapters.

    Adapters perform external side effects and return receipts.
    They NEVER raise exceptions; failures are captured in the Receipt.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """The adapter identifier (e.g., 'shell', 'git', 'patch')."""

    @abstractmethod
    def is_available(self) -> bool:
        """Whether the underlying binary is on PATH. Fast, never raises."""

    @abstractmethod
    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        """Check the action's params.

        Returns:
            (is_valid, error_message). error_message is empty if valid.
        """

    @abstractmethod
    def execute(self, context: ExecutionContext) -> Receipt:
        """Run the action and return a receipt. MUST never raise."""

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} name={self.name!r}>"
