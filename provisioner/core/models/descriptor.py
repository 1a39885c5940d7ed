"""
Descriptor models — the declared desired state of a host.

A manifest is an ordered list of AssetDescriptors. Each descriptor names
one unit of desired state (a config patch, a plugin checkout, a model
file or directory, a package install) and where it must end up.

Descriptors are immutable once loaded. The orchestrator only reads them.
"""

from __future__ import annotations

import os
from enum import Enum
from pathlib import Path
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator


class AssetKind(str, Enum):
    """What a descriptor materializes, which decides how it is probed and fetched."""

    CONFIG_PATCH = "config_patch"
    PLUGIN = "plugin"
    MODEL_FILE = "model_file"
    MODEL_DIRECTORY = "model_directory"
    PACKAGE = "package"

    @property
    def is_directory(self) -> bool:
        return self in (AssetKind.PLUGIN, AssetKind.MODEL_DIRECTORY)


# Adapter used to materialize each kind unless the descriptor overrides it.
DEFAULT_ADAPTERS: dict[AssetKind, str] = {
    AssetKind.MODEL_FILE: "http",
    AssetKind.MODEL_DIRECTORY: "git",
    AssetKind.PLUGIN: "git",
    AssetKind.PACKAGE: "shell",
}


# ── Config patch rules ──────────────────────────────────────────────


class AppendRule(BaseModel):
    """Append ``line`` unless the marker is already present.

    The marker defaults to the key of a ``KEY=value`` line, so
    ``FLAG_X="1"`` is detected by ``FLAG_X``.
    """

    model_config = ConfigDict(frozen=True)

    type: Literal["append"] = "append"
    line: str = Field(min_length=1)
    marker: str | None = None

    @model_validator(mode="after")
    def _check_marker(self) -> AppendRule:
        if self.marker and self.marker not in self.line:
            raise ValueError(f"append marker {self.marker!r} must occur in {self.line!r}")
        return self

    def markers(self) -> list[str]:
        if self.marker:
            return [self.marker]
        key = self.line.split("=", 1)[0].strip()
        return [key or self.line.strip()]


class RewriteRule(BaseModel):
    """Extend the value that follows ``anchor`` with ``tokens``.

    The value span is a quoted string right after the anchor, or the text
    up to ``terminator``, or the rest of the line. Only tokens that are not
    already substrings of the old value are added.
    """

    model_config = ConfigDict(frozen=True)

    type: Literal["rewrite"] = "rewrite"
    anchor: str = Field(min_length=1)
    tokens: tuple[str, ...] = Field(min_length=1)
    terminator: str | None = None
    marker: str | None = None

    @model_validator(mode="after")
    def _check_marker(self) -> RewriteRule:
        if self.marker and not any(self.marker in t for t in self.tokens):
            raise ValueError(f"rewrite marker {self.marker!r} must occur in one of the tokens")
        return self

    def markers(self) -> list[str]:
        if self.marker:
            return [self.marker]
        return list(self.tokens)


class InsertAfterRule(BaseModel):
    """Insert ``line`` after the first line containing ``anchor``."""

    model_config = ConfigDict(frozen=True)

    type: Literal["insert_after"] = "insert_after"
    anchor: str = Field(min_length=1)
    line: str = Field(min_length=1)
    marker: str | None = None

    @model_validator(mode="after")
    def _check_marker(self) -> InsertAfterRule:
        if self.marker and self.marker not in self.line:
            raise ValueError(f"insert marker {self.marker!r} must occur in {self.line!r}")
        return self

    def markers(self) -> list[str]:
        return [self.marker or self.line.strip()]


ConfigPatchRule = Annotated[
    Union[AppendRule, RewriteRule, InsertAfterRule],
    Field(discriminator="type"),
]


# ── Hooks ───────────────────────────────────────────────────────────


class HookStep(BaseModel):
    """A command run inside the destination after a successful fetch.

    ``if_exists`` gates the step on a path (relative to the destination),
    e.g. only run ``pip install -r requirements.txt`` when the checkout
    ships a requirements file.
    """

    model_config = ConfigDict(frozen=True)

    command: str = Field(min_length=1)
    if_exists: str | None = None
    timeout: int | None = None


# ── Descriptor ──────────────────────────────────────────────────────


class AssetDescriptor(BaseModel):
    """One declared unit of desired state."""

    model_config = ConfigDict(frozen=True)

    key: str = Field(min_length=1)
    kind: AssetKind
    destination: Path | None = None   # unused by package
    source: str = ""
    description: str = ""
    size_hint: str = ""            # informational only
    required: bool = True
    requires: tuple[str, ...] = ()
    adapter: str | None = None     # override DEFAULT_ADAPTERS

    # config_patch
    rules: tuple[ConfigPatchRule, ...] = ()

    # plugin / model_directory
    required_files: tuple[str, ...] = ()

    # model_file
    checksum: str | None = None    # algo:hex

    # package
    install_command: str = ""
    creates: tuple[str, ...] = ()

    post_fetch: tuple[HookStep, ...] = ()

    @model_validator(mode="after")
    def _check_kind_fields(self) -> AssetDescriptor:
        kind = self.kind
        if kind != AssetKind.PACKAGE and self.destination is None:
            raise ValueError(f"{self.key}: {kind.value} needs a 'destination'")
        if kind == AssetKind.CONFIG_PATCH:
            if not self.rules:
                raise ValueError(f"{self.key}: config_patch needs at least one rule")
        elif kind == AssetKind.PACKAGE:
            if not self.install_command:
                raise ValueError(f"{self.key}: package needs 'install_command'")
            if not self.creates:
                raise ValueError(f"{self.key}: package needs 'creates' to be probed")
        elif not self.source:
            raise ValueError(f"{self.key}: {kind.value} needs a 'source' locator")

        if self.rules and kind != AssetKind.CONFIG_PATCH:
            raise ValueError(f"{self.key}: 'rules' only apply to config_patch")
        if self.required_files and not kind.is_directory:
            raise ValueError(f"{self.key}: 'required_files' only apply to directory kinds")
        if self.checksum is not None:
            if kind != AssetKind.MODEL_FILE:
                raise ValueError(f"{self.key}: 'checksum' only applies to model_file")
            if ":" not in self.checksum:
                raise ValueError(f"{self.key}: checksum must look like 'sha256:<hex>'")
        if self.key in self.requires:
            raise ValueError(f"{self.key}: a descriptor cannot require itself")
        return self

    @property
    def label(self) -> str:
        return self.description or self.key

    @property
    def effective_adapter(self) -> str | None:
        """Adapter name used to materialize this descriptor (None = patcher)."""
        return self.adapter or DEFAULT_ADAPTERS.get(self.kind)


# ── Manifest ────────────────────────────────────────────────────────


class RootSpec(BaseModel):
    """Install root detection: the first existing candidate wins."""

    var: str = "ROOT"
    candidates: list[str] = Field(min_length=1)


class ServiceSpec(BaseModel):
    """The service restarted at the end of a pass."""

    name: str
    controller: str = "supervisor"
    restart: Literal["always", "on_change", "never"] = "always"


class Manifest(BaseModel):
    """Ordered desired state for one host."""

    version: int = 1
    name: str
    description: str = ""
    vars: dict[str, str] = Field(default_factory=dict)
    root: RootSpec | None = None
    service: ServiceSpec | None = None
    assets: list[AssetDescriptor] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_identity(self) -> Manifest:
        keys = [a.key for a in self.assets]
        dupes = sorted({k for k in keys if keys.count(k) > 1})
        if dupes:
            raise ValueError(f"Duplicate descriptor keys: {', '.join(dupes)}")

        seen: dict[str, str] = {}
        for asset in self.assets:
            if asset.destination is None:
                continue
            dest = os.path.normpath(str(asset.destination))
            if dest in seen:
                raise ValueError(
                    f"Descriptors '{seen[dest]}' and '{asset.key}' "
                    f"both target {dest}"
                )
            seen[dest] = asset.key

        known = set(keys)
        for asset in self.assets:
            unknown = [r for r in asset.requires if r not in known]
            if unknown:
                raise ValueError(
                    f"{asset.key}: requires unknown descriptor(s): {', '.join(unknown)}"
                )

        _topological_order(self.assets)  # raises on cycles
        return self

    def get(self, key: str) -> AssetDescriptor | None:
        """Look up a descriptor by key."""
        for asset in self.assets:
            if asset.key == key:
                return asset
        return None

    def ordered(self) -> list[AssetDescriptor]:
        """Descriptors in processing order.

        Manifest order, except that a descriptor is moved after anything it
        ``requires``. Without ``requires`` this is exactly manifest order.
        """
        return _topological_order(self.assets)


def _topological_order(assets: list[AssetDescriptor]) -> list[AssetDescriptor]:
    """Stable topological sort: always pick the earliest ready descriptor."""
    by_key = {a.key: a for a in assets}
    pending = {a.key: set(a.requires) for a in assets}
    ordered: list[AssetDescriptor] = []

    while pending:
        ready = next((k for k, deps in pending.items() if not deps), None)
        if ready is None:
            raise ValueError(f"Dependency cycle among: {', '.join(pending)}")
        ordered.append(by_key[ready])
        del pending[ready]
        for deps in pending.values():
            deps.discard(ready)

    return ordered
