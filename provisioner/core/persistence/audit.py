"""
Run history ledger — one NDJSON line per reconciliation pass.

Write-only as far as reconciliation goes: the prober never reads it, the
filesystem stays the only source of truth. It exists for operators asking
"what did the last passes do?" (``provisioner history``).
"""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from pathlib import Path

from pydantic import BaseModel, Field, ValidationError

logger = logging.getLogger(__name__)

# Ledger location, relative to the manifest's directory
DEFAULT_AUDIT_DIR = ".state"
DEFAULT_AUDIT_FILE = "audit.ndjson"


class AuditEntry(BaseModel):
    """Summary of one reconciliation pass."""

    timestamp: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())
    operation_id: str = ""
    manifest: str = ""
    dry_run: bool = False

    # Results
    status: str = ""               # ok, partial, failed
    exit_code: int = 0
    total: int = 0
    already_satisfied: int = 0
    applied: int = 0
    skipped: int = 0
    failed: int = 0
    failed_keys: list[str] = Field(default_factory=list)
    restart_status: str | None = None
    duration_ms: int = 0


class AuditWriter:
    """Append-only ledger writer.

    Each call to write() appends a single JSON line. The file and its
    directory are created on first write.
    """

    def __init__(self, path: Path | None = None, base_dir: Path | None = None):
        if path is not None:
            self._path = path
        elif base_dir is not None:
            self._path = base_dir / DEFAULT_AUDIT_DIR / DEFAULT_AUDIT_FILE
        else:
            self._path = Path(DEFAULT_AUDIT_DIR) / DEFAULT_AUDIT_FILE

    @property
    def path(self) -> Path:
        return self._path

    def write(self, entry: AuditEntry) -> None:
        """Append an entry. A ledger that cannot be written is logged, not raised."""
        line = json.dumps(entry.model_dump(mode="json"), ensure_ascii=False) + "\n"

        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with self._path.open("a", encoding="utf-8") as f:
                f.write(line)
            logger.debug("Audit entry written: %s", entry.operation_id)
        except OSError as e:
            logger.error("Failed to write audit entry: %s", e)

    def read_all(self) -> list[AuditEntry]:
        """All entries, oldest first. Corrupt lines are skipped."""
        if not self._path.is_file():
            return []

        entries = []
        try:
            with self._path.open("r", encoding="utf-8") as f:
                for line_num, line in enumerate(f, start=1):
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        entries.append(AuditEntry.model_validate(json.loads(line)))
                    except (json.JSONDecodeError, ValidationError) as e:
                        logger.warning("Skipping corrupt audit entry at line %d: %s", line_num, e)
        except OSError as e:
            logger.error("Failed to read audit ledger: %s", e)

        return entries

    def read_recent(self, n: int = 20) -> list[AuditEntry]:
        """The most recent ``n`` entries, oldest first."""
        if n <= 0:
            return []
        return self.read_all()[-n:]

    def entry_count(self) -> int:
        if not self._path.is_file():
            return 0
        try:
            with self._path.open("r", encoding="utf-8") as f:
                return sum(1 for line in f if line.strip())
        except OSError:
            return 0
