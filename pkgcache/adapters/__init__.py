"""Adapters — bindings for the external tools (shell, git, patch).

Public re-exports for convenient access.
"""

from pkgcache.adapters.base import Adapter, ExecutionContext
from pkgcache.adapters.mock import MockAdapter
from pkgcache.adapters.registry import AdapterRegistry, default_registry

__all__ = [
    "Adapter",
    "AdapterRegistry",
    "ExecutionContext",
    "MockAdapter",
    "default_registry",
]
