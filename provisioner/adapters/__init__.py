"""Adapters — bindings for the host tools a reconciliation pass drives.

Public re-exports for convenient access.
"""

from provisioner.adapters.base import Adapter, ExecutionContext, Fetcher, ServiceController
from provisioner.adapters.mock import MockAdapter
from provisioner.adapters.registry import AdapterRegistry

__all__ = [
    "Adapter",
    "AdapterRegistry",
    "ExecutionContext",
    "Fetcher",
    "MockAdapter",
    "ServiceController",
]
