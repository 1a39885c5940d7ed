"""
Supervisor controller — restarts the inference service via supervisorctl.
"""

from __future__ import annotations

import logging
import shutil
import subprocess

from provisioner.adapters.base import ServiceController
from provisioner.core.errors import ControllerUnavailable

logger = logging.getLogger(__name__)


class SupervisorAdapter(ServiceController):
    """``supervisorctl restart <service>``.

    Action params:
        service (str): Supervisor program name (e.g. 'comfyui').
    """

    def __init__(self, binary: str = "supervisorctl", timeout: int = 120):
        self._binary = binary
        self._timeout = timeout

    @property
    def name(self) -> str:
        return "supervisor"

    def is_available(self) -> bool:
        return shutil.which(self._binary) is not None

    def restart(self, service: str) -> str:
        path = shutil.which(self._binary)
        if path is None:
            raise ControllerUnavailable(
                f"{self._binary} not found — restart '{service}' manually"
            )

        logger.info("Restarting %s via %s", service, self._binary)
        try:
            result = subprocess.run(
                [path, "restart", service],
                capture_output=True,
                text=True,
                timeout=self._timeout,
            )
        except subprocess.TimeoutExpired as e:
            raise RuntimeError(f"{self._binary} timed out after {self._timeout}s") from e

        output = (result.stdout + result.stderr).strip()
        # supervisorctl exits 0 on some failures; trust the ERROR text too
        if result.returncode != 0 or "ERROR" in output:
            raise RuntimeError(output or f"{self._binary} exited with code {result.returncode}")
        return output
