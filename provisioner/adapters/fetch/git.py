"""
Git repository fetcher — shallow clones for plugins and model repos.

Clones into a hidden sibling directory and renames it into place once
``git clone`` exits cleanly. An interrupted clone therefore never shows
up at the destination, and an existing destination is never cloned
over: it is refused before git runs.
"""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
import tempfile
import time
from pathlib import Path
from typing import Any

from provisioner.adapters.base import Fetcher
from provisioner.core.errors import FetchError

logger = logging.getLogger(__name__)


class GitRepoFetcher(Fetcher):
    """Shallow-clone a repository to a destination directory.

    Action params (besides ``locator``/``destination``):
        depth (int): Clone depth (default: 1, 0 = full history).
        branch (str): Branch or tag to check out.
    """

    def __init__(self, depth: int = 1, timeout: int | None = None):
        self._depth = depth
        # None = no limit; model repos can take hours.
        self._timeout = timeout

    @property
    def name(self) -> str:
        return "git"

    def is_available(self) -> bool:
        return shutil.which("git") is not None

    def fetch(self, locator: str, destination: Path, **options: Any) -> None:
        if not self.is_available():
            raise FetchError("git is not installed")
        if os.path.lexists(destination):
            raise FetchError(f"Refusing to clone over existing path {destination}")

        depth = int(options.get("depth", self._depth))
        branch = options.get("branch")

        try:
            destination.parent.mkdir(parents=True, exist_ok=True)
            staging = Path(
                tempfile.mkdtemp(dir=destination.parent, prefix=f".{destination.name}.clone-")
            )
        except OSError as e:
            raise FetchError(f"Cannot prepare {destination.parent}: {e}") from e

        # git refuses to clone into a non-empty dir; the staging dir is empty
        cmd = ["git", "clone", "--quiet"]
        if depth > 0:
            cmd += ["--depth", str(depth)]
        if branch:
            cmd += ["--branch", str(branch)]
        cmd += [locator, str(staging)]

        logger.info("Cloning %s → %s", locator, destination)
        start = time.monotonic()
        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=self._timeout,
                env={**os.environ, "GIT_TERMINAL_PROMPT": "0"},
            )
            if result.returncode != 0:
                stderr = result.stderr.strip()
                raise FetchError(
                    stderr or f"git clone exited with code {result.returncode}"
                )
            os.rename(staging, destination)
        except FetchError:
            shutil.rmtree(staging, ignore_errors=True)
            raise
        except subprocess.TimeoutExpired as e:
            shutil.rmtree(staging, ignore_errors=True)
            raise FetchError(f"git clone timed out after {self._timeout}s") from e
        except OSError as e:
            shutil.rmtree(staging, ignore_errors=True)
            raise FetchError(f"Clone of {locator} failed: {e}") from e
        except BaseException:
            shutil.rmtree(staging, ignore_errors=True)
            raise

        logger.info(
            "Cloned %s in %.1fs",
            destination.name,
            time.monotonic() - start,
        )
