"""
Manifest loader — reads provision.yml into a validated Manifest.

Reads YAML, resolves ``${VAR}`` references and the install root, then
validates against the pydantic models. Any problem here aborts the pass
before anything on the host is touched.

Variable resolution:
    1. ``vars`` in declaration order. A variable already set in the
       process environment keeps the environment's value; otherwise the
       declared default is expanded (it may reference earlier vars or the
       environment).
    2. ``root.candidates`` are expanded and the first existing directory
       is bound to ``root.var`` (default ``ROOT``). No candidate on disk
       is a RootNotFoundError.
    3. Every other string in the manifest is expanded. ``$$`` is a
       literal ``$``. Unknown variables are an error.
"""

from __future__ import annotations

import logging
import os
import re
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from provisioner.core.errors import ManifestError, RootNotFoundError
from provisioner.core.models.descriptor import Manifest

logger = logging.getLogger(__name__)

# Default manifest filename
MANIFEST_FILE = "provision.yml"

# Manifests shipped with the package
BUILTIN_DIR = Path(__file__).resolve().parents[2] / "manifests"

_VAR_RE = re.compile(r"\$\$|\$\{([A-Za-z_][A-Za-z0-9_]*)\}")


def find_manifest_file(start_dir: Path | None = None) -> Path | None:
    """Search for provision.yml starting from the given directory, walking up."""
    current = (start_dir or Path.cwd()).resolve()

    for _ in range(20):  # safety limit
        candidate = current / MANIFEST_FILE
        if candidate.is_file():
            return candidate
        parent = current.parent
        if parent == current:
            break  # filesystem root
        current = parent

    return None


def builtin_manifests() -> dict[str, Path]:
    """Built-in manifests by name (file stem)."""
    if not BUILTIN_DIR.is_dir():
        return {}
    return {p.stem: p for p in sorted(BUILTIN_DIR.glob("*.yml"))}


def builtin_manifest_path(name: str) -> Path:
    """Path of a built-in manifest.

    Raises:
        ManifestError: If no built-in manifest has that name.
    """
    available = builtin_manifests()
    if name not in available:
        names = ", ".join(available) or "none"
        raise ManifestError(f"Unknown built-in manifest '{name}'. Available: {names}")
    return available[name]


def locate_manifest(path: Path | None = None, builtin: str | None = None) -> Path:
    """Resolve which manifest a command works on.

    ``--builtin`` wins over ``--manifest``; with neither, provision.yml is
    searched upward from the cwd.

    Raises:
        ManifestError: If nothing is found.
    """
    if builtin:
        return builtin_manifest_path(builtin)
    if path is None:
        path = find_manifest_file()
    if path is None:
        raise ManifestError(f"No {MANIFEST_FILE} found. Pass --manifest or --builtin.")
    return path


def state_dir_for(manifest_path: Path) -> Path:
    """Directory that holds the run history for a manifest.

    Next to the manifest, except for built-in manifests (which live inside
    the installed package), whose history goes to the cwd.
    """
    manifest_dir = manifest_path.resolve().parent
    if manifest_dir == BUILTIN_DIR:
        return Path.cwd()
    return manifest_dir


def expand(value: str, variables: Mapping[str, str]) -> str:
    """Expand ``${VAR}`` references in a single string."""

    def _sub(match: re.Match[str]) -> str:
        name = match.group(1)
        if name is None:
            return "$"
        if name not in variables:
            raise ManifestError(f"Undefined variable ${{{name}}} in {value!r}")
        return variables[name]

    return _VAR_RE.sub(_sub, value)


def _expand_tree(node: Any, variables: Mapping[str, str]) -> Any:
    if isinstance(node, str):
        return expand(node, variables)
    if isinstance(node, list):
        return [_expand_tree(item, variables) for item in node]
    if isinstance(node, dict):
        return {key: _expand_tree(item, variables) for key, item in node.items()}
    return node


def resolve_variables(
    declared: Mapping[str, Any],
    env: Mapping[str, str],
) -> dict[str, str]:
    """Resolve the manifest's ``vars`` block against the environment."""
    resolved: dict[str, str] = {}
    for name, default in declared.items():
        if name in env:
            resolved[name] = env[name]
            continue
        scope = {**env, **resolved}
        resolved[name] = expand(str(default), scope)
    return resolved


def detect_root(candidates: list[str], variables: Mapping[str, str]) -> Path:
    """First existing directory among ``candidates``.

    Raises:
        RootNotFoundError: If none of them exists.
    """
    expanded = [Path(expand(c, variables)).expanduser() for c in candidates]
    for path in expanded:
        if path.is_dir():
            return path
    raise RootNotFoundError(
        "Install root not found. Looked in: " + ", ".join(str(p) for p in expanded)
    )


def load_manifest(
    path: Path | None = None,
    env: Mapping[str, str] | None = None,
) -> Manifest:
    """Load, expand and validate a manifest.

    Args:
        path: Explicit path to the manifest. If None, searches upward.
        env: Variables visible to ``${VAR}`` (default: ``os.environ``).

    Raises:
        ManifestError: If the file is missing or invalid.
        RootNotFoundError: If the install root does not exist.
    """
    if path is None:
        path = find_manifest_file()

    if path is None:
        raise ManifestError(
            f"No {MANIFEST_FILE} found. Pass --manifest or --builtin."
        )

    if not path.is_file():
        raise ManifestError(f"Manifest not found: {path}")

    logger.debug("Loading manifest from %s", path)

    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ManifestError(f"Cannot read {path}: {e}") from e

    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError as e:
        raise ManifestError(f"Invalid YAML in {path}: {e}") from e

    if not isinstance(data, dict):
        raise ManifestError(f"Expected a YAML mapping in {path}, got {type(data).__name__}")

    environment = dict(os.environ if env is None else env)
    variables = {**environment, **resolve_variables(data.get("vars") or {}, environment)}

    base_dir = path.parent.resolve()
    root = data.get("root")
    if isinstance(root, dict) and root.get("candidates"):
        root_path = detect_root(list(root["candidates"]), variables)
        variables[root.get("var", "ROOT")] = str(root_path)
        base_dir = root_path
        logger.info("Install root: %s", root_path)

    expanded = _expand_tree(
        {k: v for k, v in data.items() if k not in ("vars", "root")},
        variables,
    )
    expanded["vars"] = {k: variables[k] for k in (data.get("vars") or {})}
    if isinstance(root, dict):
        expanded["root"] = _expand_tree(root, variables)

    for asset in expanded.get("assets") or []:
        if isinstance(asset, dict) and asset.get("destination"):
            dest = Path(str(asset["destination"])).expanduser()
            asset["destination"] = str(dest if dest.is_absolute() else base_dir / dest)

    try:
        manifest = Manifest.model_validate(expanded)
    except ValidationError as e:
        raise ManifestError(f"Invalid manifest {path}: {e}") from e

    logger.info("Loaded manifest '%s' with %d descriptors", manifest.name, len(manifest.assets))
    return manifest
