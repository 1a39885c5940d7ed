"""
Tests for the state prober — classification per kind and probe errors.
"""

import errno
import os
from pathlib import Path

import pytest

from provisioner.core.engine import prober
from provisioner.core.engine.prober import probe
from provisioner.core.errors import ProbeError
from provisioner.core.models.descriptor import AppendRule, AssetDescriptor, RewriteRule
from provisioner.core.models.report import ProbeStatus


def _file(dest: Path, **kw) -> AssetDescriptor:
    return AssetDescriptor(
        key="model", kind="model_file", destination=dest, source="https://example.com/m", **kw
    )


def _dir(dest: Path, **kw) -> AssetDescriptor:
    return AssetDescriptor(
        key="node", kind="plugin", destination=dest, source="https://example.com/n.git", **kw
    )


def _config(dest: Path, rules) -> AssetDescriptor:
    return AssetDescriptor(key="env", kind="config_patch", destination=dest, rules=rules)


def _deny(monkeypatch: pytest.MonkeyPatch, denied: Path) -> None:
    """Make stat() of ``denied`` fail with EACCES."""
    real_stat = os.stat

    def fake_stat(path, *args, **kwargs):
        if str(path) == str(denied):
            raise PermissionError(errno.EACCES, "Permission denied", str(path))
        return real_stat(path, *args, **kwargs)

    monkeypatch.setattr(prober.os, "stat", fake_stat)


# ── Model files ──────────────────────────────────────────────────────


class TestProbeFile:
    def test_missing(self, tmp_path: Path):
        assert probe(_file(tmp_path / "m.safetensors")).status == ProbeStatus.MISSING

    def test_missing_parent_is_missing_not_error(self, tmp_path: Path):
        result = probe(_file(tmp_path / "a" / "b" / "m.safetensors"))
        assert result.status == ProbeStatus.MISSING

    def test_satisfied(self, tmp_path: Path):
        dest = tmp_path / "m.safetensors"
        dest.write_bytes(b"x" * 10)
        result = probe(_file(dest))
        assert result.satisfied
        assert "10 bytes" in result.detail

    def test_empty_file_still_satisfied(self, tmp_path: Path):
        dest = tmp_path / "m.safetensors"
        dest.touch()
        assert probe(_file(dest)).satisfied

    def test_directory_in_place_of_file(self, tmp_path: Path):
        dest = tmp_path / "m.safetensors"
        dest.mkdir()
        assert probe(_file(dest)).status == ProbeStatus.INCONSISTENT

    def test_partial_download_is_not_the_destination(self, tmp_path: Path):
        (tmp_path / ".m.safetensors.abc.part").write_bytes(b"half")
        assert probe(_file(tmp_path / "m.safetensors")).status == ProbeStatus.MISSING


# ── Directories ──────────────────────────────────────────────────────


class TestProbeDirectory:
    def test_missing(self, tmp_path: Path):
        assert probe(_dir(tmp_path / "node")).status == ProbeStatus.MISSING

    def test_any_existing_directory_is_satisfied(self, tmp_path: Path):
        dest = tmp_path / "node"
        dest.mkdir()
        assert probe(_dir(dest)).satisfied

    def test_file_in_place_of_directory(self, tmp_path: Path):
        dest = tmp_path / "node"
        dest.write_text("oops")
        assert probe(_dir(dest)).status == ProbeStatus.INCONSISTENT

    def test_required_files_present(self, tmp_path: Path):
        dest = tmp_path / "node"
        dest.mkdir()
        (dest / "__init__.py").touch()
        assert probe(_dir(dest, required_files=["__init__.py"])).satisfied

    def test_required_files_absent(self, tmp_path: Path):
        dest = tmp_path / "node"
        dest.mkdir()
        result = probe(_dir(dest, required_files=["__init__.py"]))
        assert result.status == ProbeStatus.INCONSISTENT
        assert "__init__.py" in result.detail


# ── Config patches ───────────────────────────────────────────────────


class TestProbeConfig:
    RULES = [
        RewriteRule(anchor="COMFYUI_ARGS=", tokens=("--disable-xformers",)),
        AppendRule(line='XFORMERS_DISABLED="1"'),
    ]

    def test_all_markers_present(self, tmp_path: Path):
        target = tmp_path / "environment"
        target.write_text('COMFYUI_ARGS="--disable-xformers"\nXFORMERS_DISABLED="1"\n')
        assert probe(_config(target, self.RULES)).satisfied

    def test_no_markers(self, tmp_path: Path):
        target = tmp_path / "environment"
        target.write_text('COMFYUI_ARGS="--port 1"\n')
        assert probe(_config(target, self.RULES)).status == ProbeStatus.MISSING

    def test_some_markers(self, tmp_path: Path):
        target = tmp_path / "environment"
        target.write_text('COMFYUI_ARGS="--disable-xformers"\n')
        result = probe(_config(target, self.RULES))
        assert result.status == ProbeStatus.INCONSISTENT
        assert "XFORMERS_DISABLED" in result.detail

    def test_absent_target(self, tmp_path: Path):
        result = probe(_config(tmp_path / "environment", self.RULES))
        assert result.status == ProbeStatus.MISSING


# ── Packages ─────────────────────────────────────────────────────────


class TestProbePackage:
    def _pkg(self, creates) -> AssetDescriptor:
        return AssetDescriptor(
            key="pkg", kind="package", install_command="true", creates=creates
        )

    def test_glob_matches(self, tmp_path: Path):
        (tmp_path / "lib" / "python3.11" / "bitsandbytes").mkdir(parents=True)
        result = probe(self._pkg([str(tmp_path / "lib" / "python3*" / "bitsandbytes")]))
        assert result.satisfied

    def test_any_pattern_is_enough(self, tmp_path: Path):
        (tmp_path / "git-lfs").touch()
        result = probe(self._pkg([str(tmp_path / "nope"), str(tmp_path / "git-lfs")]))
        assert result.satisfied

    def test_nothing_matches(self, tmp_path: Path):
        assert probe(self._pkg([str(tmp_path / "nope")])).status == ProbeStatus.MISSING


# ── Probe errors ─────────────────────────────────────────────────────


class TestProbeErrors:
    def test_unreadable_destination(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
        dest = tmp_path / "m.safetensors"
        _deny(monkeypatch, dest)
        with pytest.raises(ProbeError):
            probe(_file(dest))

    def test_unreadable_parent(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
        parent = tmp_path / "checkpoints"
        parent.mkdir()
        _deny(monkeypatch, parent)
        with pytest.raises(ProbeError):
            probe(_file(parent / "m.safetensors"))

    def test_unreadable_required_file(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
        dest = tmp_path / "node"
        dest.mkdir()
        _deny(monkeypatch, dest / "__init__.py")
        with pytest.raises(ProbeError):
            probe(_dir(dest, required_files=["__init__.py"]))
