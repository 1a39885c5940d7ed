"""
Mock adapter — universal test double for fetchers, hooks and restarts.

Returns success by default. Individual actions (by id, or by
descriptor key + step) can be made to fail, and an optional side
effect lets a "successful" fetch actually create its destination so a
second pass sees the host as converged.
"""

from __future__ import annotations

from collections.abc import Callable

from provisioner.adapters.base import Adapter, ExecutionContext
from provisioner.core.models.action import Receipt


class MockAdapter(Adapter):
    """Universal mock adapter for testing."""

    def __init__(
        self,
        adapter_name: str = "mock",
        available: bool = True,
        default_output: str = "[mock] executed",
        on_execute: Callable[[ExecutionContext], None] | None = None,
    ):
        self._name = adapter_name
        self._available = available
        self._default_output = default_output
        self._on_execute = on_execute
        self._responses: dict[str, Receipt] = {}
        self._call_log: list[ExecutionContext] = []

    @property
    def name(self) -> str:
        return self._name

    @property
    def call_log(self) -> list[ExecutionContext]:
        """All execution contexts this mock has received."""
        return self._call_log

    @property
    def call_count(self) -> int:
        """Number of times execute has been called."""
        return len(self._call_log)

    def calls_for(self, asset_key: str) -> list[ExecutionContext]:
        """Execution contexts received for one descriptor."""
        return [c for c in self._call_log if c.action.for_asset == asset_key]

    def is_available(self) -> bool:
        return self._available

    def set_response(self, action_id: str, receipt: Receipt) -> None:
        """Set a custom response for a specific action ID."""
        self._responses[action_id] = receipt

    def set_failure(self, match: str, error: str = "Mock failure") -> None:
        """Make actions fail.

        ``match`` is an action id, a descriptor key, or ``key:step``.
        """
        self._responses[match] = Receipt.failure(
            adapter=self._name,
            action_id=match,
            error=error,
        )

    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        return True, ""

    def execute(self, context: ExecutionContext) -> Receipt:
        self._call_log.append(context)
        action = context.action

        for match in (action.id, f"{action.for_asset}:{action.step}", action.for_asset):
            if match and match in self._responses:
                return self._responses[match]

        if self._on_execute is not None:
            self._on_execute(context)

        return Receipt.success(
            adapter=self._name,
            action_id=action.id,
            output=self._default_output,
            metadata={"mock": True},
        )

    def reset(self) -> None:
        """Clear call log and custom responses."""
        self._call_log.clear()
        self._responses.clear()
