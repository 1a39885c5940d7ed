"""
Adapter base — the protocol contract between orchestrator and host tools.

The orchestrator never downloads, clones or restarts anything itself: it
builds an Action and dispatches it through the AdapterRegistry to an
adapter implementing this protocol.

Two specialised bases cover the external collaborators of a pass:

    Fetcher            materialize a locator at a destination, atomically
    ServiceController  restart the service that consumes the assets
"""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

from provisioner.core.errors import ControllerUnavailable, FetchError
from provisioner.core.models.action import Action, Receipt


class ExecutionContext(BaseModel):
    """Everything an adapter needs to execute an action."""

    action: Action
    dry_run: bool = False
    cwd: str | None = None
    params: dict[str, Any] = Field(default_factory=dict)

    @property
    def working_dir(self) -> str:
        """Resolved working directory for the action."""
        return self.cwd or "."


class Adapter(ABC):
    """Abstract base class for all adapters.

    Adapters perform external side effects and return receipts.
    They NEVER raise exceptions — failures are captured in the Receipt.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """The adapter identifier (e.g., 'http', 'git', 'shell')."""

    @abstractmethod
    def is_available(self) -> bool:
        """Check if this adapter's underlying tool is available.

        Should be fast and never raise.
        """

    @abstractmethod
    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        """Validate that the action can be executed.

        Returns:
            (is_valid, error_message). error_message is empty if valid.
        """

    @abstractmethod
    def execute(self, context: ExecutionContext) -> Receipt:
        """Execute the action and return a receipt.

        MUST never raise exceptions. All failures are captured
        in the Receipt with status='failed'.
        """

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} name={self.name!r}>"


class Fetcher(Adapter):
    """Base for adapters that materialize an artifact at a destination.

    Subclasses implement ``fetch``. The contract every implementation
    must keep: on success the destination holds the complete artifact;
    on any failure the destination is absent or exactly as it was before
    the call. Partial data only ever lives under a temporary sibling path.

    Action params:
        locator (str): URL or repository URI.
        destination (str): Final path of the artifact.
        checksum (str): Optional ``algo:hex`` digest (file fetchers only).
        size_hint (str): Informational size label for logs.
    """

    @abstractmethod
    def fetch(self, locator: str, destination: Path, **options: Any) -> None:
        """Materialize ``locator`` at ``destination``.

        Raises:
            FetchError: On any failure. The destination is left untouched.
        """

    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        if not context.params.get("locator"):
            return False, "Missing required param: 'locator'"
        if not context.params.get("destination"):
            return False, "Missing required param: 'destination'"
        return True, ""

    def execute(self, context: ExecutionContext) -> Receipt:
        params = context.params
        locator = params["locator"]
        destination = Path(params["destination"])
        options = {k: v for k, v in params.items() if k not in ("locator", "destination")}

        start = time.monotonic()
        try:
            self.fetch(locator, destination, **options)
        except FetchError as e:
            return Receipt.failure(
                adapter=self.name,
                action_id=context.action.id,
                error=str(e),
                duration_ms=int((time.monotonic() - start) * 1000),
                metadata={"locator": locator, "destination": str(destination)},
            )
        except Exception as e:
            return Receipt.failure(
                adapter=self.name,
                action_id=context.action.id,
                error=f"Unexpected fetch error: {e}",
                duration_ms=int((time.monotonic() - start) * 1000),
                metadata={"locator": locator, "destination": str(destination)},
            )

        return Receipt.success(
            adapter=self.name,
            action_id=context.action.id,
            output=f"Fetched {locator} → {destination}",
            duration_ms=int((time.monotonic() - start) * 1000),
            metadata={"locator": locator, "destination": str(destination)},
        )


class ServiceController(Adapter):
    """Base for adapters that restart the target service.

    Action params:
        service (str): Name of the service to restart.
    """

    @abstractmethod
    def restart(self, service: str) -> str:
        """Restart ``service`` and return the controller's output.

        Raises:
            ControllerUnavailable: If the controller tool is absent.
            RuntimeError: If the controller ran but the restart failed.
        """

    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        if not context.params.get("service"):
            return False, "Missing required param: 'service'"
        return True, ""

    def execute(self, context: ExecutionContext) -> Receipt:
        service = context.params["service"]
        try:
            output = self.restart(service)
        except ControllerUnavailable as e:
            return Receipt.failure(
                adapter=self.name,
                action_id=context.action.id,
                error=str(e),
                metadata={"service": service, "unavailable": True},
            )
        except Exception as e:
            return Receipt.failure(
                adapter=self.name,
                action_id=context.action.id,
                error=f"Restart of '{service}' failed: {e}",
                metadata={"service": service},
            )
        return Receipt.success(
            adapter=self.name,
            action_id=context.action.id,
            output=output,
            metadata={"service": service},
        )
