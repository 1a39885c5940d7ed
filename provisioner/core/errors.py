"""
Error taxonomy for a reconciliation pass.

Only ``ManifestError`` (and its subclasses) aborts a whole pass. Every
other error is scoped to a single descriptor and ends up in the report.
"""

from __future__ import annotations


class ProvisionError(Exception):
    """Base class for all provisioner errors."""


class ManifestError(ProvisionError):
    """Raised when the manifest is missing, unreadable or invalid."""


class RootNotFoundError(ManifestError):
    """Raised when none of the manifest's root candidates exists on the host."""


class ProbeError(ProvisionError):
    """Raised when host state for a descriptor cannot be inspected.

    Never to be read as "missing": a refetch over data we could not
    inspect may destroy a valid artifact.
    """


class FetchError(ProvisionError):
    """Raised by fetchers on any transport, disk or integrity failure."""


class PatchError(ProvisionError):
    """Raised when a config target is missing or cannot be parsed as text."""


class ControllerUnavailable(ProvisionError):
    """Raised when the service controller tool is not present on the host."""
