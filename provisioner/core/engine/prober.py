"""
State prober — read-only classification of host state per descriptor.

The filesystem is the only source of truth: every pass recomputes every
probe, nothing is cached between passes.

Policies:
    model_file        a regular file at the destination is enough. Size and
                      checksum are NOT re-verified; the fetcher's atomic
                      rename is what keeps a truncated file from appearing.
    plugin /
    model_directory   an existing directory is trusted, contents are not
                      walked. ``required_files`` opts a descriptor into a
                      shallow sub-path check.
    config_patch      the target exists and contains every rule marker.
    package           any ``creates`` glob matches.

Anything that stops us from looking (permissions, I/O errors) raises
ProbeError. It is never folded into "missing".
"""

from __future__ import annotations

import errno
import glob
import logging
import os
import stat
from pathlib import Path

from provisioner.core.errors import ProbeError
from provisioner.core.models.descriptor import AssetDescriptor, AssetKind
from provisioner.core.models.report import ProbeResult, ProbeStatus

logger = logging.getLogger(__name__)

# stat() errors that mean "nothing there"
_ABSENT_ERRNOS = (errno.ENOENT, errno.ENOTDIR)


def probe(descriptor: AssetDescriptor) -> ProbeResult:
    """Classify one descriptor as satisfied, missing or inconsistent.

    Raises:
        ProbeError: If the destination (or its parent) cannot be inspected.
    """
    kind = descriptor.kind
    if kind == AssetKind.MODEL_FILE:
        result = _probe_file(descriptor)
    elif kind.is_directory:
        result = _probe_directory(descriptor)
    elif kind == AssetKind.CONFIG_PATCH:
        result = _probe_config(descriptor)
    elif kind == AssetKind.PACKAGE:
        result = _probe_package(descriptor)
    else:  # pragma: no cover - exhaustive over AssetKind
        raise ProbeError(f"No probe for kind '{kind.value}'")

    logger.debug("probe %s → %s %s", descriptor.key, result.status.value, result.detail)
    return result


# ── Helpers ─────────────────────────────────────────────────────────


def _stat(path: Path) -> os.stat_result | None:
    """stat() that returns None for "absent" and raises ProbeError otherwise."""
    _check_parent(path)
    try:
        return os.stat(path)
    except OSError as e:
        if e.errno in _ABSENT_ERRNOS:
            return None
        raise ProbeError(f"Cannot inspect {path}: {e.strerror or e}") from e


def _check_parent(path: Path) -> None:
    """An existing but unreadable parent directory is a probe error."""
    parent = path.parent
    try:
        st = os.stat(parent)
    except OSError as e:
        if e.errno in _ABSENT_ERRNOS:
            return
        raise ProbeError(f"Cannot inspect parent {parent}: {e.strerror or e}") from e
    if stat.S_ISDIR(st.st_mode) and not os.access(parent, os.R_OK | os.X_OK):
        raise ProbeError(f"Parent directory {parent} is not readable")


# ── Per-kind probes ─────────────────────────────────────────────────


def _probe_file(descriptor: AssetDescriptor) -> ProbeResult:
    st = _stat(descriptor.destination)
    if st is None:
        return ProbeResult(ProbeStatus.MISSING, "file absent")
    if stat.S_ISREG(st.st_mode):
        return ProbeResult(ProbeStatus.SATISFIED, f"{st.st_size} bytes")
    return ProbeResult(ProbeStatus.INCONSISTENT, "destination exists but is not a regular file")


def _probe_directory(descriptor: AssetDescriptor) -> ProbeResult:
    dest = descriptor.destination
    st = _stat(dest)
    if st is None:
        return ProbeResult(ProbeStatus.MISSING, "directory absent")
    if not stat.S_ISDIR(st.st_mode):
        return ProbeResult(ProbeStatus.INCONSISTENT, "destination exists but is not a directory")

    absent = [rel for rel in descriptor.required_files if _stat(dest / rel) is None]
    if absent:
        return ProbeResult(
            ProbeStatus.INCONSISTENT,
            f"directory present but missing: {', '.join(absent)}",
        )
    return ProbeResult(ProbeStatus.SATISFIED, "directory present")


def _probe_config(descriptor: AssetDescriptor) -> ProbeResult:
    path = descriptor.destination
    st = _stat(path)
    if st is None:
        return ProbeResult(ProbeStatus.MISSING, "config file absent")
    if not stat.S_ISREG(st.st_mode):
        # Left to the patcher, which skips it with a warning.
        return ProbeResult(ProbeStatus.MISSING, "config target is not a regular file")

    try:
        # Undecodable bytes can't contain our markers; the patcher reports it.
        content = path.read_text(encoding="utf-8", errors="replace")
    except OSError as e:
        raise ProbeError(f"Cannot read {path}: {e.strerror or e}") from e

    markers = [m for rule in descriptor.rules for m in rule.markers()]
    present = [m for m in markers if m in content]
    if len(present) == len(markers):
        return ProbeResult(ProbeStatus.SATISFIED, "all markers present")
    if not present:
        return ProbeResult(ProbeStatus.MISSING, "no markers present")
    absent = [m for m in markers if m not in content]
    return ProbeResult(ProbeStatus.INCONSISTENT, f"markers missing: {', '.join(absent)}")


def _probe_package(descriptor: AssetDescriptor) -> ProbeResult:
    for pattern in descriptor.creates:
        try:
            matches = glob.glob(os.path.expanduser(pattern))
        except OSError as e:
            raise ProbeError(f"Cannot evaluate {pattern}: {e}") from e
        if matches:
            return ProbeResult(ProbeStatus.SATISFIED, f"found {matches[0]}")
    return ProbeResult(ProbeStatus.MISSING, "nothing matches 'creates'")
