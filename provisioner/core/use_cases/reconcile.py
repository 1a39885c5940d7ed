"""
Reconcile use case — one full provisioning pass.

The full vertical slice from user intent to audited execution: locate
and load the manifest, build the adapter registry, reconcile, and append
the pass to the run history.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from pathlib import Path

from provisioner.adapters.registry import AdapterRegistry
from provisioner.core.config.loader import load_manifest, locate_manifest, state_dir_for
from provisioner.core.engine.orchestrator import (
    generate_operation_id,
    reconcile,
    write_audit_entry,
)
from provisioner.core.errors import ManifestError
from provisioner.core.models.descriptor import Manifest
from provisioner.core.models.report import ReconciliationReport
from provisioner.core.persistence.audit import AuditWriter

logger = logging.getLogger(__name__)


@dataclass
class ReconcileResult:
    """Result of a reconciliation pass (or of failing to start one)."""

    report: ReconciliationReport | None = None
    manifest: Manifest | None = None
    manifest_path: Path | None = None
    audit_path: Path | None = None
    duration_ms: int = 0
    error: str | None = None

    @property
    def exit_code(self) -> int:
        if self.error or self.report is None:
            return 1
        return self.report.exit_code

    def to_dict(self) -> dict:
        result: dict = {}
        if self.error:
            result["error"] = self.error
            return result

        result["manifest"] = self.manifest.name if self.manifest else ""
        result["manifest_path"] = str(self.manifest_path)
        result["duration_ms"] = self.duration_ms
        if self.audit_path:
            result["audit_path"] = str(self.audit_path)
        if self.report:
            result["report"] = self.report.to_dict()

        return result


def build_default_registry(mock_mode: bool = False) -> AdapterRegistry:
    """Registry with every built-in adapter registered."""
    from provisioner.adapters.fetch.git import GitRepoFetcher
    from provisioner.adapters.fetch.http import HttpFileFetcher
    from provisioner.adapters.service.supervisor import SupervisorAdapter
    from provisioner.adapters.shell.command import ShellCommandAdapter

    registry = AdapterRegistry(mock_mode=mock_mode)
    registry.register(HttpFileFetcher())
    registry.register(GitRepoFetcher())
    registry.register(ShellCommandAdapter())
    registry.register(SupervisorAdapter())
    return registry


def run_reconcile(
    manifest_path: Path | None = None,
    builtin: str | None = None,
    dry_run: bool = False,
    mock_mode: bool = False,
    restart: bool = True,
    audit: bool = True,
    registry: AdapterRegistry | None = None,
) -> ReconcileResult:
    """Reconcile the host against a manifest.

    Args:
        manifest_path: Optional explicit path to provision.yml.
        builtin: Optional name of a built-in manifest (wins over the path).
        dry_run: Probe and report, change nothing.
        mock_mode: Route every adapter action to a canned success.
        restart: Allow the end-of-pass service restart.
        audit: Append the pass to the run history.
        registry: Optional pre-configured adapter registry.

    Returns:
        ReconcileResult with the report, or with ``error`` set when the
        manifest could not be loaded (nothing was touched then).
    """
    result = ReconcileResult()

    # ── Load manifest ────────────────────────────────────────────
    try:
        path = locate_manifest(manifest_path, builtin)
        result.manifest_path = path
        manifest = load_manifest(path)
        result.manifest = manifest
    except ManifestError as e:
        logger.error("%s", e)
        result.error = str(e)
        return result

    # ── Set up adapter registry ──────────────────────────────────
    if registry is None:
        registry = build_default_registry(mock_mode=mock_mode)

    # ── Reconcile ────────────────────────────────────────────────
    operation_id = generate_operation_id()
    start = time.monotonic()
    report = reconcile(
        manifest,
        registry,
        dry_run=dry_run,
        restart=restart,
        operation_id=operation_id,
    )
    result.report = report
    result.duration_ms = int((time.monotonic() - start) * 1000)

    # ── Write run history ────────────────────────────────────────
    if audit:
        writer = AuditWriter(base_dir=state_dir_for(path))
        write_audit_entry(report, writer, duration_ms=result.duration_ms)
        result.audit_path = writer.path

    return result
