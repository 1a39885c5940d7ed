"""
Probe results and the reconciliation report.

Both are ephemeral: recomputed on every pass, surfaced to the caller,
never read back to decide anything on a later pass.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Literal

from provisioner.core.models.descriptor import AssetKind


class ProbeStatus(str, Enum):
    SATISFIED = "satisfied"
    MISSING = "missing"
    INCONSISTENT = "inconsistent"


@dataclass(frozen=True)
class ProbeResult:
    """Classification of one descriptor against current host state."""

    status: ProbeStatus
    detail: str = ""

    @property
    def satisfied(self) -> bool:
        return self.status == ProbeStatus.SATISFIED


OutcomeStatus = Literal["already_satisfied", "applied", "skipped", "failed"]

RestartStatus = Literal[
    "restarted",      # controller restarted the service
    "failed",         # controller ran but the restart failed
    "unavailable",    # no usable controller; manual restart required
    "blocked",        # a config patch failed, restart withheld
    "not_needed",     # policy says no restart this pass
    "dry_run",
]


@dataclass
class DescriptorOutcome:
    """What happened to one descriptor during a pass."""

    key: str
    kind: AssetKind
    outcome: OutcomeStatus
    required: bool = True
    probe: ProbeStatus | None = None
    reason: str = ""
    warnings: list[str] = field(default_factory=list)
    duration_ms: int = 0

    @property
    def failed(self) -> bool:
        return self.outcome == "failed"

    @property
    def changed(self) -> bool:
        return self.outcome == "applied"

    def to_dict(self) -> dict:
        return {
            "key": self.key,
            "kind": self.kind.value,
            "outcome": self.outcome,
            "required": self.required,
            "probe": self.probe.value if self.probe else None,
            "reason": self.reason,
            "warnings": list(self.warnings),
            "duration_ms": self.duration_ms,
        }


@dataclass
class RestartRecord:
    """Result of the end-of-pass service restart decision."""

    service: str
    status: RestartStatus
    detail: str = ""

    def to_dict(self) -> dict:
        return {"service": self.service, "status": self.status, "detail": self.detail}


@dataclass
class ReconciliationReport:
    """Ordered outcomes of one reconciliation pass."""

    operation_id: str = ""
    manifest: str = ""
    dry_run: bool = False
    outcomes: list[DescriptorOutcome] = field(default_factory=list)
    restart: RestartRecord | None = None

    def record(self, outcome: DescriptorOutcome) -> None:
        self.outcomes.append(outcome)

    def outcome_for(self, key: str) -> DescriptorOutcome | None:
        for outcome in self.outcomes:
            if outcome.key == key:
                return outcome
        return None

    @property
    def total(self) -> int:
        return len(self.outcomes)

    def count(self, outcome: OutcomeStatus) -> int:
        return sum(1 for o in self.outcomes if o.outcome == outcome)

    @property
    def applied(self) -> int:
        return self.count("applied")

    @property
    def failed(self) -> int:
        return self.count("failed")

    @property
    def failed_keys(self) -> list[str]:
        return [o.key for o in self.outcomes if o.failed]

    @property
    def required_failures(self) -> list[DescriptorOutcome]:
        return [o for o in self.outcomes if o.failed and o.required]

    @property
    def exit_code(self) -> int:
        """0 iff no required descriptor failed."""
        return 1 if self.required_failures else 0

    @property
    def status(self) -> str:
        if self.failed == 0:
            return "ok"
        if self.failed < self.total:
            return "partial"
        return "failed"

    def to_dict(self) -> dict:
        return {
            "operation_id": self.operation_id,
            "manifest": self.manifest,
            "dry_run": self.dry_run,
            "status": self.status,
            "exit_code": self.exit_code,
            "total": self.total,
            "already_satisfied": self.count("already_satisfied"),
            "applied": self.applied,
            "skipped": self.count("skipped"),
            "failed": self.failed,
            "outcomes": [o.to_dict() for o in self.outcomes],
            "restart": self.restart.to_dict() if self.restart else None,
        }
