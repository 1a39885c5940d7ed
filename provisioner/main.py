"""
Inference provisioner — CLI entrypoint.

Usage:
    provisioner --help
    provisioner --builtin ltx2_5090 plan
    provisioner --manifest provision.yml reconcile --dry-run
"""

from __future__ import annotations

import json
import os
import sys
from pathlib import Path

import click

from provisioner import __version__
from provisioner.core.observability.logging_config import resolve_level, setup_logging

_STATUS_COLORS = {"ok": "green", "partial": "yellow", "failed": "red"}

_OUTCOME_STYLE = {
    "already_satisfied": ("·", None),
    "applied": ("✓", "green"),
    "skipped": ("⊘", "yellow"),
    "failed": ("✗", "red"),
}

_RESTART_STYLE = {
    "restarted": ("🔄", "green"),
    "failed": ("❌", "red"),
    "unavailable": ("⚠️ ", "yellow"),
    "blocked": ("⛔", "red"),
    "not_needed": ("·", None),
    "dry_run": ("⊘", "yellow"),
}


@click.group()
@click.version_option(version=__version__, prog_name="provisioner")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output.")
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output.")
@click.option("--debug", is_flag=True, help="Enable debug logging (very verbose).")
@click.option(
    "--manifest",
    "-m",
    "manifest_path",
    type=click.Path(exists=False),
    default=None,
    help="Path to provision.yml (default: auto-detect).",
)
@click.option(
    "--builtin",
    "-b",
    default=None,
    help="Use a manifest shipped with the package (see 'manifest list').",
)
@click.pass_context
def cli(
    ctx: click.Context,
    verbose: bool,
    quiet: bool,
    debug: bool,
    manifest_path: str | None,
    builtin: str | None,
) -> None:
    """Inference provisioner — reconcile a GPU host against a manifest."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["quiet"] = quiet
    ctx.obj["debug"] = debug
    ctx.obj["manifest_path"] = Path(manifest_path) if manifest_path else None
    ctx.obj["builtin"] = builtin

    # ── Logging setup (once, at process start) ──────────────────
    setup_logging(
        level=resolve_level(verbose=verbose, quiet=quiet, debug=debug),
        log_file=os.environ.get("PROVISION_LOG_FILE"),
        log_file_level=os.environ.get("PROVISION_LOG_FILE_LEVEL"),
    )


def _source(ctx: click.Context) -> dict:
    return {
        "manifest_path": ctx.obj.get("manifest_path"),
        "builtin": ctx.obj.get("builtin"),
    }


@cli.command()
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.option("--dry-run", is_flag=True, help="Probe and report, change nothing.")
@click.option("--mock", is_flag=True, help="Use mock adapters (no real fetches or restarts).")
@click.option("--no-restart", is_flag=True, help="Never restart the service.")
@click.option("--no-audit", is_flag=True, help="Don't append this pass to the run history.")
@click.pass_context
def reconcile(
    ctx: click.Context,
    as_json: bool,
    dry_run: bool,
    mock: bool,
    no_restart: bool,
    no_audit: bool,
) -> None:
    """Bring the host to the manifest's desired state.

    Safe to re-run: everything already in place is left alone, and an
    interrupted pass resumes where it stopped.

    Examples:

        provisioner --builtin ltx2_5090 reconcile

        provisioner reconcile --dry-run
    """
    from provisioner.core.use_cases.reconcile import run_reconcile

    result = run_reconcile(
        **_source(ctx),
        dry_run=dry_run,
        mock_mode=mock,
        restart=not no_restart,
        audit=not no_audit,
    )

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(result.exit_code)

    if result.error:
        click.secho(f"❌ {result.error}", fg="red")
        sys.exit(1)

    report = result.report
    assert report is not None
    assert result.manifest is not None

    mode_label = "[dry-run] " if dry_run else "[mock] " if mock else ""
    click.secho(f"\n⚡ {mode_label}reconcile — {result.manifest.name}", fg="cyan", bold=True)
    click.echo(f"   Descriptors: {report.total}")
    click.echo()

    for outcome in report.outcomes:
        marker, color = _OUTCOME_STYLE[outcome.outcome]
        optional = "" if outcome.required else " (optional)"
        click.secho(f"   {marker} {outcome.key}{optional}", fg=color, nl=False)
        timing = f" ({outcome.duration_ms}ms)" if outcome.duration_ms else ""
        click.echo(timing)
        if outcome.reason and (outcome.outcome != "already_satisfied" or ctx.obj.get("verbose")):
            for line in outcome.reason.split("\n")[:5]:
                click.echo(f"     │ {line}")
        for warning in outcome.warnings:
            click.secho(f"     ⚠ {warning}", fg="yellow")

    if report.restart:
        icon, color = _RESTART_STYLE.get(report.restart.status, ("·", None))
        click.echo()
        click.secho(
            f"   {icon} {report.restart.service}: {report.restart.status}", fg=color, nl=False
        )
        click.echo(f" — {report.restart.detail}" if report.restart.detail else "")

    click.echo()
    click.secho(
        f"   Result: {report.count('already_satisfied')} satisfied, "
        f"{report.applied} applied, {report.count('skipped')} skipped, "
        f"{report.failed} failed",
        fg=_STATUS_COLORS.get(report.status, "white"),
        bold=True,
    )
    if report.required_failures:
        keys = ", ".join(o.key for o in report.required_failures)
        click.secho(f"   Required failures: {keys}", fg="red")
    click.echo()

    sys.exit(report.exit_code)


@cli.command()
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def plan(ctx: click.Context, as_json: bool) -> None:
    """Show what a pass would do (probes only)."""
    from provisioner.core.use_cases.plan import get_plan

    result = get_plan(**_source(ctx))

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(1 if result.error else 0)

    if result.error:
        click.secho(f"❌ {result.error}", fg="red")
        sys.exit(1)

    assert result.manifest is not None
    click.secho(f"\n📋 {result.manifest.name}", fg="cyan", bold=True)
    if result.manifest.description:
        click.echo(f"   {result.manifest.description}")
    click.echo(f"   Pending: {len(result.pending)}/{len(result.items)}")
    click.echo()

    action_colors = {"none": "green", "manual": "red"}
    for item in result.items:
        if item.status == "error":
            click.secho(f"   ✗ {item.key} ", fg="red", nl=False)
            click.echo(f"(probe error: {item.detail})")
            continue
        marker = "✓" if item.action == "none" else "→"
        size = f" [{item.size_hint}]" if item.size_hint and item.action != "none" else ""
        click.secho(f"   {marker} {item.key} ", fg=action_colors.get(item.action, "yellow"), nl=False)
        click.echo(f"{item.action}{size}  → {item.destination or item.detail}")

    click.echo()


@cli.group()
def manifest() -> None:
    """Manifest commands."""


@manifest.command("check")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def manifest_check(ctx: click.Context, as_json: bool) -> None:
    """Validate a manifest without touching the host."""
    from provisioner.core.use_cases.manifest_check import check_manifest

    result = check_manifest(**_source(ctx))

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(0 if result.valid else 1)

    if result.valid:
        assert result.manifest is not None
        click.secho("✅ Manifest is valid", fg="green", bold=True)
        click.echo(f"   Manifest: {result.manifest.name}")
        click.echo(f"   Descriptors: {len(result.manifest.assets)}")
        if result.manifest.service:
            click.echo(f"   Service: {result.manifest.service.name} ({result.manifest.service.controller})")
    else:
        click.secho("❌ Manifest errors:", fg="red", bold=True)
        for err in result.errors:
            click.echo(f"   • {err}")

    if result.warnings:
        click.echo()
        click.secho("⚠️  Warnings:", fg="yellow")
        for warn in result.warnings:
            click.echo(f"   • {warn}")

    click.echo()
    if not result.valid:
        sys.exit(1)


@manifest.command("list")
def manifest_list() -> None:
    """List the manifests shipped with the package."""
    from provisioner.core.config.loader import builtin_manifests

    available = builtin_manifests()
    if not available:
        click.echo("No built-in manifests.")
        return
    for name, path in available.items():
        click.echo(f"   • {name}  → {path}")


@cli.command()
@click.option("-n", "count", default=10, type=int, help="Number of passes to show.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def history(ctx: click.Context, count: int, as_json: bool) -> None:
    """Show recent reconciliation passes."""
    from provisioner.core.use_cases.history import get_history

    result = get_history(**_source(ctx), n=count)

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(1 if result.error else 0)

    if result.error:
        click.secho(f"❌ {result.error}", fg="red")
        sys.exit(1)

    if not result.entries:
        click.echo("No passes recorded yet.")
        return

    click.secho(f"\n📜 {result.total} passes in {result.ledger_path}", fg="cyan", bold=True)
    click.echo()
    for entry in reversed(result.entries):
        mode = " [dry-run]" if entry.dry_run else ""
        click.echo(f"   {entry.timestamp}  {entry.operation_id}{mode}  ", nl=False)
        click.secho(entry.status, fg=_STATUS_COLORS.get(entry.status, "white"), nl=False)
        click.echo(
            f"  applied={entry.applied} failed={entry.failed}"
            f" restart={entry.restart_status or '-'}"
        )
        if entry.failed_keys:
            click.echo(f"     │ failed: {', '.join(entry.failed_keys)}")
    click.echo()


@cli.command()
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
def adapters(as_json: bool) -> None:
    """Show which adapters are usable on this host."""
    from provisioner.core.use_cases.reconcile import build_default_registry

    status = build_default_registry().adapter_status()

    if as_json:
        click.echo(json.dumps(status, indent=2))
        return

    click.echo()
    for name, info in status.items():
        if info["available"]:
            click.secho(f"   ✓ {name}", fg="green", nl=False)
        else:
            click.secho(f"   ✗ {name}", fg="red", nl=False)
        click.echo(f"  ({info['type']})")
    click.echo()


if __name__ == "__main__":
    cli()
