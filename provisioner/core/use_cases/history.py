"""
History use case — recent passes from the run history ledger.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from provisioner.core.config.loader import locate_manifest, state_dir_for
from provisioner.core.errors import ManifestError
from provisioner.core.persistence.audit import AuditEntry, AuditWriter


@dataclass
class HistoryResult:
    ledger_path: Path | None = None
    entries: list[AuditEntry] = field(default_factory=list)
    total: int = 0
    error: str | None = None

    def to_dict(self) -> dict:
        if self.error:
            return {"error": self.error}
        return {
            "ledger_path": str(self.ledger_path),
            "total": self.total,
            "entries": [e.model_dump(mode="json") for e in self.entries],
        }


def get_history(
    manifest_path: Path | None = None,
    builtin: str | None = None,
    n: int = 10,
) -> HistoryResult:
    """Read the last ``n`` passes recorded for a manifest.

    The manifest is only located, not loaded, so history stays readable
    on a host where the install root has gone missing.
    """
    result = HistoryResult()

    try:
        path = locate_manifest(manifest_path, builtin)
    except ManifestError as e:
        result.error = str(e)
        return result

    writer = AuditWriter(base_dir=state_dir_for(path))
    result.ledger_path = writer.path
    result.entries = writer.read_recent(n)
    result.total = writer.entry_count()
    return result
