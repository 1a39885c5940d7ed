"""
Adapter registry — name-based dispatch from orchestrator to host tools.

Descriptors name their adapter (``http``, ``git``, ``shell``) and the
service names its controller (``supervisor``). The orchestrator turns
each into an Action and hands it here; whatever happens, a Receipt comes
back.

Mock mode swaps every adapter for one stand-in, so a whole pass can run
on a machine with no network, no git and no supervisord.
"""

from __future__ import annotations

import logging
import time
from typing import Any

from provisioner.adapters.base import Adapter, ExecutionContext
from provisioner.core.models.action import Action, Receipt

logger = logging.getLogger(__name__)


def _probe_available(adapter: Adapter) -> bool:
    try:
        return adapter.is_available()
    except Exception:
        return False


class AdapterRegistry:
    """Registered adapters, keyed by ``Adapter.name``."""

    def __init__(self, mock_mode: bool = False):
        self._adapters: dict[str, Adapter] = {}
        self._mock_mode = mock_mode
        self._mock_adapter: Adapter | None = None

    @property
    def mock_mode(self) -> bool:
        return self._mock_mode

    def set_mock_mode(self, enabled: bool, mock_adapter: Adapter | None = None) -> None:
        """Route every action to ``mock_adapter``.

        Without a mock adapter, actions succeed without touching the host.
        """
        self._mock_mode = enabled
        self._mock_adapter = mock_adapter

    def register(self, adapter: Adapter) -> None:
        if adapter.name in self._adapters:
            logger.warning("Overwriting existing adapter: %s", adapter.name)
        self._adapters[adapter.name] = adapter
        logger.debug("Registered adapter: %s", adapter.name)

    def get(self, name: str) -> Adapter | None:
        return self._adapters.get(name)

    def list_adapters(self) -> list[str]:
        return list(self._adapters)

    def is_usable(self, name: str) -> bool:
        """Whether an action for ``name`` has a chance to run on this host."""
        if self._mock_mode:
            return True
        adapter = self._adapters.get(name)
        return adapter is not None and _probe_available(adapter)

    def adapter_status(self) -> dict[str, dict[str, Any]]:
        """Availability of every registered adapter, for ``provisioner adapters``."""
        return {
            name: {
                "name": name,
                "available": _probe_available(adapter),
                "type": type(adapter).__name__,
            }
            for name, adapter in self._adapters.items()
        }

    # ── Dispatch ────────────────────────────────────────────────

    def execute_action(
        self,
        action: Action,
        cwd: str | None = None,
        dry_run: bool = False,
    ) -> Receipt:
        """Run ``action`` on its adapter. Never raises.

        Validation runs even in a dry run, so a dry run still reports a
        hook whose working directory is missing or a fetch without a
        destination. Only execution is skipped.
        """
        start = time.monotonic()

        if self._mock_mode and self._mock_adapter is None:
            if dry_run:
                return Receipt.skip(
                    adapter=action.adapter,
                    action_id=action.id,
                    reason=f"[dry-run] would run {action.adapter}:{action.step}",
                    metadata={"mock": True, "dry_run": True},
                )
            return Receipt.success(
                adapter=action.adapter,
                action_id=action.id,
                output=f"[mock] {action.adapter}:{action.step} executed",
                metadata={"mock": True, "dry_run": dry_run},
            )

        adapter = self._mock_adapter if self._mock_mode else self._adapters.get(action.adapter)
        if adapter is None:
            return Receipt.failure(
                adapter=action.adapter,
                action_id=action.id,
                error=f"No adapter registered for '{action.adapter}'",
            )

        context = ExecutionContext(action=action, dry_run=dry_run, cwd=cwd, params=action.params)

        rejected = self._validate(adapter, context)
        if rejected is not None:
            return rejected

        if dry_run:
            return Receipt.skip(
                adapter=action.adapter,
                action_id=action.id,
                reason=f"[dry-run] would run {action.adapter}:{action.step}",
                metadata={"dry_run": True},
            )

        try:
            receipt = adapter.execute(context)
        except Exception as e:
            logger.error("Adapter %s raised during execution: %s", action.adapter, e)
            receipt = Receipt.failure(
                adapter=action.adapter,
                action_id=action.id,
                error=f"Unexpected error: {e}",
            )

        if not receipt.duration_ms:
            receipt.duration_ms = int((time.monotonic() - start) * 1000)
        return receipt

    @staticmethod
    def _validate(adapter: Adapter, context: ExecutionContext) -> Receipt | None:
        action = context.action
        try:
            ok, message = adapter.validate(context)
        except Exception as e:
            ok, message = False, f"validator raised: {e}"
        if ok:
            return None
        return Receipt.failure(
            adapter=action.adapter,
            action_id=action.id,
            error=f"Validation failed: {message}",
        )
