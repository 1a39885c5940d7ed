"""
Shell command adapter — package installs and post-fetch hooks.

Runs ``install_command`` for package descriptors and the ``post_fetch``
hook steps of plugins (``pip install -r requirements.txt``,
``python install.py``) inside the freshly fetched directory.
"""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
import time
from pathlib import Path

from provisioner.adapters.base import Adapter, ExecutionContext
from provisioner.core.models.action import Receipt

logger = logging.getLogger(__name__)

# Keep the tail of noisy installers (pip, apt) in receipts
_OUTPUT_TAIL = 4000


class ShellCommandAdapter(Adapter):
    """Execute shell commands and capture output.

    Action params:
        command (str): The command to execute.
        timeout (int | None): Timeout in seconds (default: no limit).
        env (dict[str, str]): Extra environment variables.
    """

    def __init__(self, shell: str = "/bin/sh"):
        self._shell = shell

    @property
    def name(self) -> str:
        return "shell"

    def is_available(self) -> bool:
        return shutil.which(self._shell) is not None or Path(self._shell).is_file()

    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        command = context.params.get("command", "")
        if not command:
            return False, "Missing required param: 'command'"

        if context.cwd and not Path(context.cwd).is_dir():
            return False, f"Working directory does not exist: {context.cwd}"

        return True, ""

    def execute(self, context: ExecutionContext) -> Receipt:
        command = context.params["command"]
        timeout = context.params.get("timeout")
        cwd = context.cwd
        env = {**os.environ, **context.params.get("env", {})}

        logger.info("Running: %s%s", command, f" (in {cwd})" if cwd else "")
        start = time.monotonic()

        try:
            result = subprocess.run(
                command,
                shell=True,
                executable=self._shell,
                cwd=cwd,
                env=env,
                capture_output=True,
                text=True,
                timeout=timeout,
            )
        except subprocess.TimeoutExpired:
            return Receipt.failure(
                adapter=self.name,
                action_id=context.action.id,
                error=f"Command timed out after {timeout}s",
                metadata={"command": command, "timeout": timeout},
            )
        except OSError as e:
            return Receipt.failure(
                adapter=self.name,
                action_id=context.action.id,
                error=f"Command execution error: {e}",
                metadata={"command": command},
            )

        elapsed_ms = int((time.monotonic() - start) * 1000)
        output = result.stdout.strip()[-_OUTPUT_TAIL:]
        stderr = result.stderr.strip()[-_OUTPUT_TAIL:]

        if result.returncode == 0:
            return Receipt.success(
                adapter=self.name,
                action_id=context.action.id,
                output=output,
                duration_ms=elapsed_ms,
                metadata={
                    "command": command,
                    "return_code": result.returncode,
                    "stderr": stderr,
                },
            )
        return Receipt.failure(
            adapter=self.name,
            action_id=context.action.id,
            error=stderr or f"Command exited with code {result.returncode}",
            duration_ms=elapsed_ms,
            metadata={
                "command": command,
                "return_code": result.returncode,
                "stdout": output,
            },
        )
