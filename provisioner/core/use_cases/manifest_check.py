"""
Manifest check use case — validate a manifest and report issues.

Loading already enforces the hard rules (schema, unique keys and
destinations, known and acyclic ``requires``, resolvable variables).
This adds the soft ones as warnings.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from provisioner.adapters.registry import AdapterRegistry
from provisioner.core.config.loader import load_manifest, locate_manifest
from provisioner.core.errors import ManifestError
from provisioner.core.models.descriptor import AssetKind, Manifest


@dataclass
class ManifestCheckResult:
    """Result of manifest validation."""

    valid: bool = False
    manifest: Manifest | None = None
    manifest_path: Path | None = None
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        counts: dict[str, int] = {}
        if self.manifest:
            for asset in self.manifest.assets:
                counts[asset.kind.value] = counts.get(asset.kind.value, 0) + 1
        return {
            "valid": self.valid,
            "manifest_path": str(self.manifest_path) if self.manifest_path else None,
            "errors": self.errors,
            "warnings": self.warnings,
            "manifest_name": self.manifest.name if self.manifest else None,
            "descriptor_count": len(self.manifest.assets) if self.manifest else 0,
            "kinds": counts,
        }


def check_manifest(
    manifest_path: Path | None = None,
    builtin: str | None = None,
    registry: AdapterRegistry | None = None,
) -> ManifestCheckResult:
    """Validate a manifest without touching the host.

    Args:
        manifest_path: Optional explicit path to provision.yml.
        builtin: Optional built-in manifest name.
        registry: Registry used to check that every named adapter exists
            (default: the built-in adapters).
    """
    result = ManifestCheckResult()

    try:
        path = locate_manifest(manifest_path, builtin)
        result.manifest_path = path
        manifest = load_manifest(path)
        result.manifest = manifest
    except ManifestError as e:
        result.errors.append(str(e))
        return result

    if registry is None:
        from provisioner.core.use_cases.reconcile import build_default_registry

        registry = build_default_registry()
    known = set(registry.list_adapters())

    if not manifest.assets:
        result.warnings.append("No assets declared. A pass has nothing to do.")

    if manifest.service is None:
        result.warnings.append("No service declared. Nothing will be restarted.")
    else:
        if manifest.service.controller not in known:
            result.errors.append(
                f"Service controller '{manifest.service.controller}' is not a known adapter"
            )
        elif not registry.is_usable(manifest.service.controller):
            result.warnings.append(
                f"Controller '{manifest.service.controller}' is not available on this host; "
                "the service will need a manual restart."
            )

    for asset in manifest.assets:
        adapter = asset.effective_adapter
        if adapter is not None and adapter not in known:
            result.errors.append(f"{asset.key}: unknown adapter '{adapter}'")
        if asset.kind == AssetKind.MODEL_FILE and not asset.size_hint:
            result.warnings.append(f"{asset.key}: no size_hint for a model file")
        for step in asset.post_fetch:
            if "shell" not in known:
                result.errors.append(f"{asset.key}: post_fetch needs the 'shell' adapter")
                break
            if step.if_exists and step.if_exists.startswith("/"):
                result.warnings.append(
                    f"{asset.key}: if_exists {step.if_exists!r} is absolute; "
                    "it will not be looked up inside the destination"
                )

    result.valid = len(result.errors) == 0
    return result
