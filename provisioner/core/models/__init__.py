"""
Domain models for the provisioner.

All models are re-exported here for convenient access:

    from provisioner.core.models import AssetDescriptor, Manifest, ReconciliationReport
"""

from provisioner.core.models.action import Action, Receipt
from provisioner.core.models.descriptor import (
    AppendRule,
    AssetDescriptor,
    AssetKind,
    ConfigPatchRule,
    HookStep,
    InsertAfterRule,
    Manifest,
    RewriteRule,
    RootSpec,
    ServiceSpec,
)
from provisioner.core.models.report import (
    DescriptorOutcome,
    ProbeResult,
    ProbeStatus,
    ReconciliationReport,
    RestartRecord,
)

__all__ = [
    # action.py
    "Action",
    "Receipt",
    # descriptor.py
    "AppendRule",
    "AssetDescriptor",
    "AssetKind",
    "ConfigPatchRule",
    "HookStep",
    "InsertAfterRule",
    "Manifest",
    "RewriteRule",
    "RootSpec",
    "ServiceSpec",
    # report.py
    "DescriptorOutcome",
    "ProbeResult",
    "ProbeStatus",
    "ReconciliationReport",
    "RestartRecord",
]
