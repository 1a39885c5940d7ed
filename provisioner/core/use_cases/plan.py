"""
Plan use case — what a pass would do, from probes alone.

Nothing is fetched, patched or restarted, and no adapter is invoked.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from provisioner.core.config.loader import load_manifest, locate_manifest
from provisioner.core.engine.prober import probe
from provisioner.core.errors import ManifestError, ProbeError
from provisioner.core.models.descriptor import AssetDescriptor, AssetKind, Manifest
from provisioner.core.models.report import ProbeStatus


@dataclass
class PlanItem:
    """Probe result and intended action for one descriptor."""

    key: str
    kind: str
    destination: str
    status: str            # satisfied, missing, inconsistent, error
    action: str            # none, fetch, install, patch, manual
    detail: str = ""
    required: bool = True
    size_hint: str = ""

    def to_dict(self) -> dict:
        return {
            "key": self.key,
            "kind": self.kind,
            "destination": self.destination,
            "status": self.status,
            "action": self.action,
            "detail": self.detail,
            "required": self.required,
            "size_hint": self.size_hint,
        }


@dataclass
class PlanResult:
    manifest: Manifest | None = None
    manifest_path: Path | None = None
    items: list[PlanItem] = field(default_factory=list)
    error: str | None = None

    @property
    def pending(self) -> list[PlanItem]:
        return [i for i in self.items if i.action != "none"]

    def to_dict(self) -> dict:
        if self.error:
            return {"error": self.error}
        return {
            "manifest": self.manifest.name if self.manifest else "",
            "manifest_path": str(self.manifest_path),
            "pending": len(self.pending),
            "items": [i.to_dict() for i in self.items],
        }


def plan_item(descriptor: AssetDescriptor) -> PlanItem:
    """Probe one descriptor and name the action a pass would take."""
    item = PlanItem(
        key=descriptor.key,
        kind=descriptor.kind.value,
        destination=str(descriptor.destination or ""),
        status="",
        action="none",
        required=descriptor.required,
        size_hint=descriptor.size_hint,
    )

    try:
        result = probe(descriptor)
    except ProbeError as e:
        item.status = "error"
        item.detail = str(e)
        return item

    item.status = result.status.value
    item.detail = result.detail

    if result.status == ProbeStatus.SATISFIED:
        item.action = "none"
    elif descriptor.kind == AssetKind.CONFIG_PATCH:
        item.action = "patch"
    elif result.status == ProbeStatus.INCONSISTENT:
        item.action = "manual"
    elif descriptor.kind == AssetKind.PACKAGE:
        item.action = "install"
    else:
        item.action = "fetch"
    return item


def get_plan(manifest_path: Path | None = None, builtin: str | None = None) -> PlanResult:
    """Probe every descriptor of a manifest, in processing order."""
    result = PlanResult()

    try:
        path = locate_manifest(manifest_path, builtin)
        result.manifest_path = path
        manifest = load_manifest(path)
        result.manifest = manifest
    except ManifestError as e:
        result.error = str(e)
        return result

    result.items = [plan_item(d) for d in manifest.ordered()]
    return result
