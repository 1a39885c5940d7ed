"""
Reconciliation orchestrator — the central provisioning loop.

Walks the manifest in order, probes every descriptor, and only then
decides whether to fetch, patch or leave it alone. Side effects go
through the adapter registry (fetchers, shell, service controller) or
the config patcher. A failed descriptor never halts the pass.

Flow per descriptor:
    prerequisites → probe → (fetch | patch | nothing) → post-fetch hooks → outcome

After the last descriptor the service restart is decided from the
collected outcomes and the manifest's restart policy.
"""

from __future__ import annotations

import logging
import time
import uuid
from datetime import UTC, datetime
from pathlib import Path

from provisioner.adapters.registry import AdapterRegistry
from provisioner.core.engine.patcher import patch_file
from provisioner.core.engine.prober import probe
from provisioner.core.errors import PatchError, ProbeError
from provisioner.core.models.action import Action
from provisioner.core.models.descriptor import AssetDescriptor, AssetKind, Manifest, ServiceSpec
from provisioner.core.models.report import (
    DescriptorOutcome,
    OutcomeStatus,
    ProbeStatus,
    ReconciliationReport,
    RestartRecord,
)
from provisioner.core.persistence.audit import AuditEntry, AuditWriter

logger = logging.getLogger(__name__)

_MARKERS = {
    "already_satisfied": "·",
    "applied": "✓",
    "skipped": "⊘",
    "failed": "✗",
}


def reconcile(
    manifest: Manifest,
    registry: AdapterRegistry,
    dry_run: bool = False,
    restart: bool = True,
    operation_id: str | None = None,
) -> ReconciliationReport:
    """Run one reconciliation pass over ``manifest``.

    Args:
        manifest: The validated manifest.
        registry: Adapter registry used for fetches, hooks and the restart.
        dry_run: Probe everything, change nothing.
        restart: If False, never restart the service regardless of policy.
        operation_id: Identifier for this pass (generated if omitted).

    Returns:
        ReconciliationReport with one outcome per descriptor, in
        processing order, and the restart record.
    """
    report = ReconciliationReport(
        operation_id=operation_id or generate_operation_id(),
        manifest=manifest.name,
        dry_run=dry_run,
    )

    logger.info(
        "Reconciling '%s' (%d descriptors)%s",
        manifest.name,
        len(manifest.assets),
        " [dry-run]" if dry_run else "",
    )

    for descriptor in manifest.ordered():
        start = time.monotonic()
        outcome = reconcile_descriptor(descriptor, registry, report, dry_run)
        outcome.duration_ms = int((time.monotonic() - start) * 1000)
        report.record(outcome)

        logger.info(
            "%s %s → %s%s",
            _MARKERS[outcome.outcome],
            descriptor.key,
            outcome.outcome,
            f" ({outcome.reason})" if outcome.reason else "",
        )

    report.restart = decide_restart(manifest.service, registry, report, dry_run, enabled=restart)

    logger.info(
        "Pass %s: %d satisfied, %d applied, %d skipped, %d failed",
        report.status,
        report.count("already_satisfied"),
        report.applied,
        report.count("skipped"),
        report.failed,
    )
    return report


def reconcile_descriptor(
    descriptor: AssetDescriptor,
    registry: AdapterRegistry,
    report: ReconciliationReport,
    dry_run: bool = False,
) -> DescriptorOutcome:
    """Bring one descriptor to its desired state and say what happened."""
    blocker = _unmet_prerequisite(descriptor, report)
    if blocker:
        return _outcome(descriptor, "failed", reason=f"prerequisite '{blocker}' not satisfied")

    try:
        result = probe(descriptor)
    except ProbeError as e:
        logger.error("Probe failed for %s: %s", descriptor.key, e)
        return _outcome(descriptor, "failed", reason=f"probe error: {e}")

    if result.satisfied:
        return _outcome(descriptor, "already_satisfied", result.status, result.detail)

    if descriptor.kind == AssetKind.CONFIG_PATCH:
        # Patches only add, so an inconsistent config is safe to patch.
        return _apply_patch(descriptor, result.status, dry_run)

    if result.status == ProbeStatus.INCONSISTENT:
        logger.warning(
            "%s: %s at %s — manual cleanup required",
            descriptor.key,
            result.detail,
            descriptor.destination,
        )
        return _outcome(
            descriptor,
            "failed",
            result.status,
            f"manual cleanup required: {result.detail}",
        )

    return _materialize(descriptor, registry, report.operation_id, result.status, dry_run)


# ── Per-kind actions ────────────────────────────────────────────────


def _apply_patch(
    descriptor: AssetDescriptor,
    probe_status: ProbeStatus,
    dry_run: bool,
) -> DescriptorOutcome:
    try:
        result = patch_file(descriptor.destination, descriptor.rules, dry_run=dry_run)
    except PatchError as e:
        logger.warning("Skipping %s: %s", descriptor.key, e)
        return _outcome(descriptor, "skipped", probe_status, str(e), warnings=[str(e)])

    if dry_run:
        if result.changed:
            reason = "[dry-run] would " + "; ".join(result.applied)
        else:
            reason = "[dry-run] nothing to apply"
        return _outcome(descriptor, "skipped", probe_status, reason, warnings=result.warnings)

    if result.changed:
        return _outcome(
            descriptor, "applied", probe_status, "; ".join(result.applied), warnings=result.warnings
        )
    # Unchanged content means every anchored rule already holds.
    return _outcome(
        descriptor,
        "already_satisfied",
        probe_status,
        "all applicable rules already present",
        warnings=result.warnings,
    )


def build_fetch_action(descriptor: AssetDescriptor, operation_id: str) -> Action:
    """The action that materializes a missing descriptor."""
    if descriptor.kind == AssetKind.PACKAGE:
        return Action(
            id=f"{operation_id}:{descriptor.key}:install",
            adapter=descriptor.effective_adapter or "shell",
            step="install",
            for_asset=descriptor.key,
            params={"command": descriptor.install_command},
        )

    params: dict = {
        "locator": descriptor.source,
        "destination": str(descriptor.destination),
    }
    if descriptor.checksum:
        params["checksum"] = descriptor.checksum
    if descriptor.size_hint:
        params["size_hint"] = descriptor.size_hint

    return Action(
        id=f"{operation_id}:{descriptor.key}:fetch",
        adapter=descriptor.effective_adapter or "http",
        step="fetch",
        for_asset=descriptor.key,
        params=params,
    )


def _materialize(
    descriptor: AssetDescriptor,
    registry: AdapterRegistry,
    operation_id: str,
    probe_status: ProbeStatus,
    dry_run: bool,
) -> DescriptorOutcome:
    action = build_fetch_action(descriptor, operation_id)
    if descriptor.size_hint and not dry_run:
        logger.info("Fetching %s (%s) …", descriptor.label, descriptor.size_hint)

    receipt = registry.execute_action(action, dry_run=dry_run)

    if receipt.status == "skipped":
        return _outcome(descriptor, "skipped", probe_status, receipt.output)
    if receipt.failed:
        logger.error("%s: %s", descriptor.key, receipt.error)
        return _outcome(descriptor, "failed", probe_status, receipt.error or "fetch failed")

    failure = _run_hooks(descriptor, registry, operation_id)
    if failure:
        return _outcome(
            descriptor,
            "failed",
            probe_status,
            failure,
            warnings=["artifact left in place"],
        )
    return _outcome(descriptor, "applied", probe_status, receipt.output)


def _hook_dir(descriptor: AssetDescriptor) -> Path | None:
    dest = descriptor.destination
    if dest is None:
        return None
    return dest if descriptor.kind.is_directory else dest.parent


def _run_hooks(
    descriptor: AssetDescriptor,
    registry: AdapterRegistry,
    operation_id: str,
) -> str:
    """Run post-fetch hooks in order. Returns a failure reason, or ""."""
    cwd = _hook_dir(descriptor)

    for i, step in enumerate(descriptor.post_fetch):
        if step.if_exists:
            if cwd is None or not (cwd / step.if_exists).exists():
                logger.debug("%s: no %s, skipping hook %r", descriptor.key, step.if_exists, step.command)
                continue

        params: dict = {"command": step.command}
        if step.timeout is not None:
            params["timeout"] = step.timeout

        hook = Action(
            id=f"{operation_id}:{descriptor.key}:hook{i}",
            adapter="shell",
            step="hook",
            for_asset=descriptor.key,
            params=params,
        )
        receipt = registry.execute_action(hook, cwd=str(cwd) if cwd else None)
        if receipt.failed:
            logger.error("%s: hook %r failed: %s", descriptor.key, step.command, receipt.error)
            return f"post-fetch hook {step.command!r} failed: {receipt.error}"

    return ""


def _unmet_prerequisite(descriptor: AssetDescriptor, report: ReconciliationReport) -> str | None:
    for key in descriptor.requires:
        prior = report.outcome_for(key)
        if prior is None or prior.failed:
            return key
        # In a dry run nothing is applied, so "would apply" counts as met.
        if prior.outcome == "skipped" and not report.dry_run:
            return key
    return None


def _outcome(
    descriptor: AssetDescriptor,
    outcome: OutcomeStatus,
    probe_status: ProbeStatus | None = None,
    reason: str = "",
    warnings: list[str] | None = None,
) -> DescriptorOutcome:
    return DescriptorOutcome(
        key=descriptor.key,
        kind=descriptor.kind,
        outcome=outcome,
        required=descriptor.required,
        probe=probe_status,
        reason=reason,
        warnings=list(warnings or []),
    )


# ── Service restart ─────────────────────────────────────────────────


def decide_restart(
    service: ServiceSpec | None,
    registry: AdapterRegistry,
    report: ReconciliationReport,
    dry_run: bool = False,
    enabled: bool = True,
) -> RestartRecord | None:
    """Restart the service if policy and outcomes allow it.

    Restart problems are recorded but never change descriptor outcomes
    or the exit code.
    """
    if service is None:
        return None

    name = service.name
    if not enabled or service.restart == "never":
        return RestartRecord(name, "not_needed", "restart disabled")

    blocking = [o.key for o in report.outcomes if o.failed and o.kind == AssetKind.CONFIG_PATCH]
    if blocking:
        detail = f"config patch failed: {', '.join(blocking)}"
        logger.warning("Not restarting %s: %s", name, detail)
        return RestartRecord(name, "blocked", detail)

    if service.restart == "on_change" and report.applied == 0:
        return RestartRecord(name, "not_needed", "nothing changed")

    if dry_run:
        return RestartRecord(name, "dry_run", f"[dry-run] would restart via {service.controller}")

    if not registry.is_usable(service.controller):
        logger.warning(
            "Controller '%s' is not available — restart %s manually", service.controller, name
        )
        return RestartRecord(name, "unavailable", "manual restart required")

    action = Action(
        id=f"{report.operation_id}:{name}:restart",
        adapter=service.controller,
        step="restart",
        params={"service": name},
    )
    receipt = registry.execute_action(action)

    if receipt.ok:
        logger.info("✓ restarted %s", name)
        return RestartRecord(name, "restarted", receipt.output)
    if receipt.metadata.get("unavailable"):
        logger.warning("%s — restart %s manually", receipt.error, name)
        return RestartRecord(name, "unavailable", "manual restart required")

    logger.error("✗ restart of %s failed: %s", name, receipt.error)
    return RestartRecord(name, "failed", receipt.error or "restart failed")


# ── Audit / ids ─────────────────────────────────────────────────────


def write_audit_entry(
    report: ReconciliationReport,
    audit_writer: AuditWriter,
    duration_ms: int = 0,
) -> None:
    """Write one pass to the run history ledger."""
    entry = AuditEntry(
        operation_id=report.operation_id,
        manifest=report.manifest,
        status=report.status,
        dry_run=report.dry_run,
        exit_code=report.exit_code,
        total=report.total,
        already_satisfied=report.count("already_satisfied"),
        applied=report.applied,
        skipped=report.count("skipped"),
        failed=report.failed,
        failed_keys=report.failed_keys,
        restart_status=report.restart.status if report.restart else None,
        duration_ms=duration_ms,
    )
    audit_writer.write(entry)


def generate_operation_id() -> str:
    """Generate a unique operation ID."""
    now = datetime.now(UTC).strftime("%Y%m%d-%H%M%S")
    short = uuid.uuid4().hex[:6]
    return f"op-{now}-{short}"
