"""Service controllers — restart the service that consumes provisioned assets."""

from provisioner.adapters.service.supervisor import SupervisorAdapter

__all__ = ["SupervisorAdapter"]
