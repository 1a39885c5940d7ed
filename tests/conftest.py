"""
Shared test fixtures and configuration.
"""

import textwrap
from pathlib import Path

import pytest

from provisioner.adapters.base import ExecutionContext
from provisioner.adapters.mock import MockAdapter
from provisioner.adapters.registry import AdapterRegistry


def materialize(context: ExecutionContext) -> None:
    """Side effect for MockAdapter: make a fetch actually land on disk."""
    action = context.action
    if action.step != "fetch":
        return
    dest = Path(context.params["destination"])
    dest.parent.mkdir(parents=True, exist_ok=True)
    if action.adapter == "git":
        dest.mkdir()
        (dest / "__init__.py").write_text("")
    else:
        dest.write_bytes(b"weights")


@pytest.fixture
def mock_adapter() -> MockAdapter:
    """A mock whose successful fetches create their destination."""
    return MockAdapter(on_execute=materialize)


@pytest.fixture
def mock_registry(mock_adapter: MockAdapter) -> AdapterRegistry:
    """Registry in mock mode, routing every action to ``mock_adapter``."""
    registry = AdapterRegistry()
    registry.set_mock_mode(True, mock_adapter)
    return registry


@pytest.fixture
def comfy_root(tmp_path: Path) -> Path:
    """A fake ComfyUI install root under a fake workspace."""
    root = tmp_path / "workspace" / "ComfyUI"
    (root / "custom_nodes").mkdir(parents=True)
    (root / "models").mkdir()
    return root


@pytest.fixture
def write_manifest(tmp_path: Path):
    """Write a provision.yml into tmp_path and return its path."""

    def _write(content: str, name: str = "provision.yml") -> Path:
        path = tmp_path / name
        path.write_text(textwrap.dedent(content))
        return path

    return _write
