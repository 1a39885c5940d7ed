"""
Action and Receipt models — the contract between orchestrator and adapters.

The orchestrator asks for side effects with an Action (fetch this
locator, run this hook, restart this service). Adapters answer with a
Receipt. Failures travel inside the Receipt, never as exceptions.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

ReceiptStatus = Literal["ok", "skipped", "failed"]


class Action(BaseModel):
    """A requested side effect, dispatched to one adapter by name."""

    id: str                         # <operation>:<descriptor key>:<step>
    adapter: str                    # which adapter handles this
    step: str = ""                  # fetch, hook, install, restart
    params: dict[str, Any] = Field(default_factory=dict)
    for_asset: str | None = None    # descriptor key (None = pass-wide)


class Receipt(BaseModel):
    """Outcome of one adapter execution."""

    adapter: str
    action_id: str
    status: ReceiptStatus = "ok"
    finished_at: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())
    duration_ms: int = 0

    output: str = ""                # stdout, or the skip reason
    error: str | None = None

    # Adapter-specific detail, e.g. ``unavailable`` from a service controller
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.status == "ok"

    @property
    def failed(self) -> bool:
        return self.status == "failed"

    @classmethod
    def success(cls, adapter: str, action_id: str, output: str = "", **kwargs: Any) -> Receipt:
        return cls(adapter=adapter, action_id=action_id, status="ok", output=output, **kwargs)

    @classmethod
    def failure(cls, adapter: str, action_id: str, error: str, **kwargs: Any) -> Receipt:
        return cls(adapter=adapter, action_id=action_id, status="failed", error=error, **kwargs)

    @classmethod
    def skip(cls, adapter: str, action_id: str, reason: str = "", **kwargs: Any) -> Receipt:
        """A receipt for an action that was deliberately not run (dry run)."""
        return cls(adapter=adapter, action_id=action_id, status="skipped", output=reason, **kwargs)
