"""
Mock adapter — test double for tool adapters.

Records every call and returns success by default. Individual operations
can be scripted with a canned receipt or with a handler that performs a
side effect (e.g. writing a fake clone to disk) and builds the receipt.
"""

from __future__ import annotations

from typing import Callable

from pkgcache.adapters.base import Adapter, ExecutionContext
from pkgcache.core.models.action import Receipt

Handler = Callable[[ExecutionContext], Receipt]


class MockAdapter(Adapter):
    """Stand-in for any adapter name.

    Responses are looked up by action id first, then by operation.
    """

    def __init__(
        self,
        adapter_name: str = "mock",
        available: bool = True,
        default_output: str = "[mock] executed",
    ):
        self._name = adapter_name
        self._available = available
        self._default_output = default_output
        self._responses: dict[str, Receipt | Handler] = {}
        self._call_log: list[ExecutionContext] = []

    @property
    def name(self) -> str:
        return self._name

    @property
    def call_log(self) -> list[ExecutionContext]:
        return self._call_log

    @property
    def call_count(self) -> int:
        return len(self._call_log)

    def calls_for(self, operation: str) -> list[ExecutionContext]:
        return [c for c in self._call_log if c.action.operation == operation]

    def is_available(self) -> bool:
        return self._available

    def set_response(self, key: str, response: Receipt | Handler) -> None:
        """Script the result for an action id or an operation name."""
        self._responses[key] = response

    def set_failure(self, key: str, error: str = "Mock failure", return_code: int = 1) -> None:
        self._responses[key] = Receipt.failure(
            adapter=self._name,
            action_id=key,
            error=error,
            return_code=return_code,
        )

    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        return True, ""

    def execute(self, context: ExecutionContext) -> Receipt:
        self._call_log.append(context)

        response = self._responses.get(context.action.id) or self._responses.get(context.action.operation)
        if callable(response):
            return response(context)
        if response is not None:
            return response.model_copy()

        return Receipt.success(
            adapter=self._name,
            action_id=context.action.id,
            output=self._default_output,
            return_code=0,
            metadata={"mock": True},
        )

    def reset(self) -> None:
        self._call_log.clear()
        self._responses.clear()
