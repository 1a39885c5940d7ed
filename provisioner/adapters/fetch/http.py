"""
HTTP file fetcher — streams a single large file to its destination.

The body is streamed into a hidden temp file next to the destination and
renamed over it only after the last byte (and the optional checksum) is
in. A run killed mid-download leaves at most a ``.<name>.*.part`` file;
the destination itself never appears until it is complete, so the next
probe reports it missing and the download starts over.
"""

from __future__ import annotations

import hashlib
import logging
import os
import tempfile
import time
import urllib.error
import urllib.parse
import urllib.request
from pathlib import Path
from typing import Any

from provisioner import __version__
from provisioner.adapters.base import ExecutionContext, Fetcher
from provisioner.core.errors import FetchError

logger = logging.getLogger(__name__)

_CHUNK_SIZE = 1024 * 1024
_PROGRESS_EVERY = 512 * 1024 * 1024   # log every 512 MB
_SCHEMES = ("http", "https", "file")
_TOKEN_HOSTS = ("huggingface.co",)


def _fmt_size(n: int | float) -> str:
    """Format byte count to human-readable string."""
    for unit in ("B", "KB", "MB", "GB"):
        if n < 1024:
            return f"{n:.1f} {unit}"
        n /= 1024
    return f"{n:.1f} TB"


def _hf_token() -> str | None:
    token = os.environ.get("HF_TOKEN") or os.environ.get("HUGGINGFACE_TOKEN")
    return token if token not in (None, "", "None", "null") else None


class HttpFileFetcher(Fetcher):
    """Download one file over HTTP(S) (or copy a ``file://`` URL).

    Action params (besides ``locator``/``destination``):
        checksum (str): Optional ``algo:hex``, verified before the rename.
        size_hint (str): Shown in log lines only.
    """

    def __init__(self, timeout: float = 60.0, token: str | None = None):
        # Socket-level read timeout, not a cap on total download time.
        self._timeout = timeout
        self._token = token

    @property
    def name(self) -> str:
        return "http"

    def is_available(self) -> bool:
        return True  # stdlib only

    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        ok, msg = super().validate(context)
        if not ok:
            return ok, msg
        scheme = urllib.parse.urlparse(context.params["locator"]).scheme
        if scheme not in _SCHEMES:
            return False, f"Unsupported URL scheme '{scheme}'. Valid: {', '.join(_SCHEMES)}"
        return True, ""

    def _request(self, locator: str) -> urllib.request.Request:
        headers = {"User-Agent": f"inference-provisioner/{__version__}"}
        host = urllib.parse.urlparse(locator).hostname or ""
        token = self._token or _hf_token()
        if token and any(host == h or host.endswith("." + h) for h in _TOKEN_HOSTS):
            headers["Authorization"] = f"Bearer {token}"
        return urllib.request.Request(locator, headers=headers)

    def fetch(self, locator: str, destination: Path, **options: Any) -> None:
        checksum: str | None = options.get("checksum")
        size_hint: str = options.get("size_hint", "")

        try:
            digest = hashlib.new(checksum.split(":", 1)[0]) if checksum else None
        except ValueError as e:
            raise FetchError(f"Unsupported checksum algorithm in {checksum!r}") from e

        try:
            destination.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                dir=destination.parent,
                prefix=f".{destination.name}.",
                suffix=".part",
            )
        except OSError as e:
            raise FetchError(f"Cannot prepare {destination.parent}: {e}") from e

        tmp = Path(tmp_name)
        try:
            logger.info(
                "Downloading %s%s → %s",
                locator,
                f" ({size_hint})" if size_hint else "",
                destination,
            )
            written = self._stream(locator, fd, digest)

            if checksum and digest is not None:
                expected = checksum.split(":", 1)[1].lower()
                if digest.hexdigest() != expected:
                    raise FetchError(
                        f"Checksum mismatch for {destination.name}: "
                        f"expected {expected}, got {digest.hexdigest()}"
                    )

            os.replace(tmp, destination)
            logger.info("Downloaded %s (%s)", destination, _fmt_size(written))
        except FetchError:
            tmp.unlink(missing_ok=True)
            raise
        except (urllib.error.URLError, OSError, ValueError) as e:
            tmp.unlink(missing_ok=True)
            raise FetchError(f"Download of {locator} failed: {e}") from e
        except BaseException:
            # KeyboardInterrupt and friends: never leave the part file behind
            tmp.unlink(missing_ok=True)
            raise

    def _stream(self, locator: str, fd: int, digest: Any) -> int:
        """Copy the response body into ``fd``; returns bytes written."""
        written = 0
        next_report = _PROGRESS_EVERY
        started = time.monotonic()

        with os.fdopen(fd, "wb") as out:
            with urllib.request.urlopen(self._request(locator), timeout=self._timeout) as resp:
                total = int(resp.headers.get("Content-Length") or 0)
                while True:
                    chunk = resp.read(_CHUNK_SIZE)
                    if not chunk:
                        break
                    out.write(chunk)
                    if digest is not None:
                        digest.update(chunk)
                    written += len(chunk)
                    if written >= next_report:
                        next_report += _PROGRESS_EVERY
                        elapsed = max(time.monotonic() - started, 1e-6)
                        logger.info(
                            "  %s%s at %s/s",
                            _fmt_size(written),
                            f" of {_fmt_size(total)}" if total else "",
                            _fmt_size(written / elapsed),
                        )
                if total and written != total:
                    raise FetchError(
                        f"Truncated download of {locator}: got {written} of {total} bytes"
                    )
            out.flush()
            os.fsync(out.fileno())
        return written
