"""
Tests for the run history ledger.
"""

import json
from pathlib import Path

from provisioner.core.engine.orchestrator import write_audit_entry
from provisioner.core.models.descriptor import AssetKind
from provisioner.core.models.report import (
    DescriptorOutcome,
    ReconciliationReport,
    RestartRecord,
)
from provisioner.core.persistence.audit import AuditEntry, AuditWriter


class TestAuditWriter:
    def test_default_location(self, tmp_path: Path):
        writer = AuditWriter(base_dir=tmp_path)
        assert writer.path == tmp_path / ".state" / "audit.ndjson"

    def test_write_creates_directory(self, tmp_path: Path):
        writer = AuditWriter(base_dir=tmp_path)
        writer.write(AuditEntry(operation_id="op-1", status="ok"))

        lines = writer.path.read_text().splitlines()
        assert len(lines) == 1
        assert json.loads(lines[0])["operation_id"] == "op-1"

    def test_append_only(self, tmp_path: Path):
        writer = AuditWriter(base_dir=tmp_path)
        for i in range(3):
            writer.write(AuditEntry(operation_id=f"op-{i}"))

        assert writer.entry_count() == 3
        assert [e.operation_id for e in writer.read_all()] == ["op-0", "op-1", "op-2"]

    def test_read_recent(self, tmp_path: Path):
        writer = AuditWriter(base_dir=tmp_path)
        for i in range(5):
            writer.write(AuditEntry(operation_id=f"op-{i}"))

        assert [e.operation_id for e in writer.read_recent(2)] == ["op-3", "op-4"]
        assert writer.read_recent(0) == []

    def test_missing_ledger(self, tmp_path: Path):
        writer = AuditWriter(base_dir=tmp_path)
        assert writer.read_all() == []
        assert writer.entry_count() == 0

    def test_corrupt_lines_skipped(self, tmp_path: Path):
        writer = AuditWriter(base_dir=tmp_path)
        writer.write(AuditEntry(operation_id="op-1"))
        with writer.path.open("a") as f:
            f.write("{not json\n")
            f.write('{"exit_code": "not-a-number"}\n')
        writer.write(AuditEntry(operation_id="op-2"))

        assert [e.operation_id for e in writer.read_all()] == ["op-1", "op-2"]

    def test_unwritable_ledger_does_not_raise(self, tmp_path: Path):
        blocker = tmp_path / "blocker"
        blocker.write_text("a file, not a directory")
        writer = AuditWriter(path=blocker / "audit.ndjson")

        writer.write(AuditEntry(operation_id="op-1"))

        assert writer.read_all() == []


class TestWriteAuditEntry:
    def test_summarizes_report(self, tmp_path: Path):
        report = ReconciliationReport(operation_id="op-7", manifest="ltx2-5090")
        report.record(
            DescriptorOutcome(key="a", kind=AssetKind.MODEL_FILE, outcome="already_satisfied")
        )
        report.record(DescriptorOutcome(key="b", kind=AssetKind.PLUGIN, outcome="applied"))
        report.record(DescriptorOutcome(key="c", kind=AssetKind.PLUGIN, outcome="failed"))
        report.restart = RestartRecord(service="comfyui", status="restarted")
        writer = AuditWriter(base_dir=tmp_path)

        write_audit_entry(report, writer, duration_ms=42)

        stored = writer.read_all()[0]
        assert stored.status == "partial"
        assert stored.exit_code == 1
        assert (stored.total, stored.already_satisfied, stored.applied, stored.failed) == (
            3,
            1,
            1,
            1,
        )
        assert stored.failed_keys == ["c"]
        assert stored.restart_status == "restarted"
        assert stored.duration_ms == 42
