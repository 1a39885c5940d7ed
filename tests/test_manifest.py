"""
Tests for manifest loading — variables, root detection, validation.
"""

from pathlib import Path

import pytest

from provisioner.core.config.loader import (
    builtin_manifest_path,
    builtin_manifests,
    expand,
    find_manifest_file,
    load_manifest,
    locate_manifest,
    state_dir_for,
)
from provisioner.core.engine.patcher import apply_rules
from provisioner.core.errors import ManifestError, RootNotFoundError
from provisioner.core.models.descriptor import AssetKind

BASIC = """\
    name: test-host
    vars:
      WORKSPACE: /nonexistent
      PIP: /venv/main/bin/pip
    root:
      candidates:
        - ${WORKSPACE}/ComfyUI
        - ${WORKSPACE}/comfyui
    service:
      name: comfyui
    assets:
      - key: node
        kind: plugin
        source: https://github.com/example/node.git
        destination: custom_nodes/node
        post_fetch:
          - command: ${PIP} install -r requirements.txt
            if_exists: requirements.txt
      - key: ckpt
        kind: model_file
        source: https://huggingface.co/x/resolve/main/m.safetensors
        destination: ${ROOT}/models/checkpoints/m.safetensors
        size_hint: 27GB
"""


# ── Variable expansion ───────────────────────────────────────────────


class TestExpand:
    def test_reference(self):
        assert expand("${A}/b", {"A": "/x"}) == "/x/b"

    def test_dollar_escape(self):
        assert expand("cost $$5 ${A}", {"A": "now"}) == "cost $5 now"

    def test_plain_dollar_untouched(self):
        assert expand("$HOME", {}) == "$HOME"

    def test_undefined(self):
        with pytest.raises(ManifestError, match="MISSING"):
            expand("${MISSING}", {})


# ── Loading ──────────────────────────────────────────────────────────


class TestLoadManifest:
    def test_root_and_relative_destinations(self, comfy_root: Path, write_manifest):
        path = write_manifest(BASIC)
        workspace = comfy_root.parent

        manifest = load_manifest(path, env={"WORKSPACE": str(workspace)})

        assert manifest.name == "test-host"
        assert manifest.vars["WORKSPACE"] == str(workspace)
        node = manifest.get("node")
        assert node.destination == comfy_root / "custom_nodes" / "node"
        assert node.post_fetch[0].command == "/venv/main/bin/pip install -r requirements.txt"
        ckpt = manifest.get("ckpt")
        assert ckpt.destination == comfy_root / "models" / "checkpoints" / "m.safetensors"
        assert ckpt.kind == AssetKind.MODEL_FILE
        assert manifest.service.restart == "always"

    def test_lowercase_root_fallback(self, tmp_path: Path, write_manifest):
        (tmp_path / "ws" / "comfyui").mkdir(parents=True)
        manifest = load_manifest(write_manifest(BASIC), env={"WORKSPACE": str(tmp_path / "ws")})
        assert manifest.get("node").destination.parent.parent.name == "comfyui"

    def test_missing_root_aborts(self, tmp_path: Path, write_manifest):
        with pytest.raises(RootNotFoundError, match="Install root not found"):
            load_manifest(write_manifest(BASIC), env={"WORKSPACE": str(tmp_path / "empty")})

    def test_environment_wins_over_vars(self, comfy_root: Path, write_manifest):
        env = {"WORKSPACE": str(comfy_root.parent), "PIP": "/usr/bin/pip3"}
        manifest = load_manifest(write_manifest(BASIC), env=env)
        assert manifest.get("node").post_fetch[0].command.startswith("/usr/bin/pip3 ")

    def test_vars_can_reference_earlier_vars(self, tmp_path: Path, write_manifest):
        path = write_manifest("""\
            name: chained
            vars:
              BASE: /opt
              BIN: ${BASE}/bin
            assets:
              - key: tool
                kind: package
                install_command: ${BIN}/install
                creates: ["${BIN}/tool"]
        """)
        manifest = load_manifest(path, env={})
        assert manifest.get("tool").install_command == "/opt/bin/install"

    def test_without_root_destinations_are_relative_to_manifest(
        self, tmp_path: Path, write_manifest
    ):
        path = write_manifest("""\
            name: local
            assets:
              - key: m
                kind: model_file
                source: https://example.com/m
                destination: models/m.bin
        """)
        manifest = load_manifest(path, env={})
        assert manifest.get("m").destination == tmp_path.resolve() / "models" / "m.bin"

    def test_undefined_variable(self, write_manifest):
        path = write_manifest("""\
            name: bad
            assets:
              - key: m
                kind: model_file
                source: ${NOPE}/m
                destination: /tmp/m
        """)
        with pytest.raises(ManifestError, match="NOPE"):
            load_manifest(path, env={})

    def test_invalid_yaml(self, write_manifest):
        with pytest.raises(ManifestError, match="Invalid YAML"):
            load_manifest(write_manifest("name: [unclosed\n"), env={})

    def test_not_a_mapping(self, write_manifest):
        with pytest.raises(ManifestError, match="mapping"):
            load_manifest(write_manifest("- just\n- a list\n"), env={})

    def test_missing_file(self, tmp_path: Path):
        with pytest.raises(ManifestError, match="not found"):
            load_manifest(tmp_path / "absent.yml", env={})

    def test_schema_violation(self, write_manifest):
        path = write_manifest("""\
            name: bad
            assets:
              - key: m
                kind: teleporter
                destination: /tmp/m
        """)
        with pytest.raises(ManifestError, match="Invalid manifest"):
            load_manifest(path, env={})


# ── Manifest-level invariants ────────────────────────────────────────


class TestManifestValidation:
    def _load(self, write_manifest, assets: str):
        return load_manifest(write_manifest("name: t\nassets:\n" + assets), env={})

    def test_duplicate_keys(self, write_manifest):
        assets = (
            "  - {key: a, kind: model_file, source: 'https://x/a', destination: /tmp/a}\n"
            "  - {key: a, kind: model_file, source: 'https://x/b', destination: /tmp/b}\n"
        )
        with pytest.raises(ManifestError, match="Duplicate descriptor keys"):
            self._load(write_manifest, assets)

    def test_duplicate_destinations(self, write_manifest):
        assets = (
            "  - {key: a, kind: model_file, source: 'https://x/a', destination: /tmp/m}\n"
            "  - {key: b, kind: model_file, source: 'https://x/b', destination: /tmp/./m}\n"
        )
        with pytest.raises(ManifestError, match="both target"):
            self._load(write_manifest, assets)

    def test_packages_without_destination_do_not_collide(self, write_manifest):
        assets = (
            "  - {key: a, kind: package, install_command: 'true', creates: [/a]}\n"
            "  - {key: b, kind: package, install_command: 'true', creates: [/b]}\n"
        )
        assert len(self._load(write_manifest, assets).assets) == 2

    def test_unknown_requires(self, write_manifest):
        assets = (
            "  - {key: a, kind: model_file, source: 'https://x/a', destination: /tmp/a,"
            " requires: [ghost]}\n"
        )
        with pytest.raises(ManifestError, match="ghost"):
            self._load(write_manifest, assets)

    def test_cycle(self, write_manifest):
        assets = (
            "  - {key: a, kind: model_file, source: 'https://x/a', destination: /tmp/a,"
            " requires: [b]}\n"
            "  - {key: b, kind: model_file, source: 'https://x/b', destination: /tmp/b,"
            " requires: [a]}\n"
        )
        with pytest.raises(ManifestError, match="cycle"):
            self._load(write_manifest, assets)

    def test_ordered_is_stable_topological(self, write_manifest):
        assets = (
            "  - {key: model, kind: model_directory, source: 'https://x/m',"
            " destination: /tmp/m, requires: [lfs]}\n"
            "  - {key: other, kind: model_file, source: 'https://x/o', destination: /tmp/o}\n"
            "  - {key: lfs, kind: package, install_command: 'true', creates: [/usr/bin/git-lfs]}\n"
        )
        manifest = self._load(write_manifest, assets)
        assert [a.key for a in manifest.ordered()] == ["other", "lfs", "model"]

    def test_manifest_order_without_requires(self, write_manifest):
        assets = "".join(
            f"  - {{key: {k}, kind: model_file, source: 'https://x/{k}', destination: /tmp/{k}}}\n"
            for k in ("c", "a", "b")
        )
        assert [a.key for a in self._load(write_manifest, assets).ordered()] == ["c", "a", "b"]


# ── Discovery ────────────────────────────────────────────────────────


class TestDiscovery:
    def test_find_walks_up(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
        (tmp_path / "provision.yml").write_text("name: x\n")
        nested = tmp_path / "a" / "b"
        nested.mkdir(parents=True)
        assert find_manifest_file(nested) == (tmp_path / "provision.yml").resolve()

    def test_locate_prefers_builtin(self, tmp_path: Path):
        path = locate_manifest(tmp_path / "provision.yml", builtin="ltx2_5090")
        assert path.name == "ltx2_5090.yml"

    def test_locate_nothing(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.chdir(tmp_path)
        with pytest.raises(ManifestError, match="No provision.yml"):
            locate_manifest()

    def test_unknown_builtin(self):
        with pytest.raises(ManifestError, match="Unknown built-in"):
            builtin_manifest_path("nope")

    def test_state_dir(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.chdir(tmp_path)
        assert state_dir_for(tmp_path / "sub" / "provision.yml") == (tmp_path / "sub").resolve()
        assert state_dir_for(builtin_manifest_path("ltx2_5090")) == Path.cwd()


# ── Built-in manifest ────────────────────────────────────────────────


class TestBuiltinManifest:
    def test_listed(self):
        assert "ltx2_5090" in builtin_manifests()

    def test_loads_against_fake_host(self, comfy_root: Path):
        manifest = load_manifest(
            builtin_manifest_path("ltx2_5090"),
            env={"WORKSPACE": str(comfy_root.parent)},
        )

        assert manifest.service.name == "comfyui"
        ckpt = manifest.get("ltx2-checkpoint")
        assert ckpt.destination == (
            comfy_root / "models" / "checkpoints" / "ltx-2-19b-distilled-fp8.safetensors"
        )
        assert ckpt.size_hint == "27GB"
        assert manifest.get("gemma3-text-encoder").kind == AssetKind.MODEL_DIRECTORY

        order = [a.key for a in manifest.ordered()]
        assert order.index("git-lfs") < order.index("gemma3-text-encoder")

        impact = manifest.get("impact-pack")
        assert [s.command for s in impact.post_fetch] == [
            "/venv/main/bin/pip install -r requirements.txt",
            "/venv/main/bin/python install.py",
        ]

    def test_launcher_rules_patch_real_script(self, comfy_root: Path):
        manifest = load_manifest(
            builtin_manifest_path("ltx2_5090"),
            env={"WORKSPACE": str(comfy_root.parent)},
        )
        script = (
            "#!/bin/bash\n"
            "COMFYUI_ARGS=${COMFYUI_ARGS:---disable-auto-launch --port 18188 --enable-cors-header}\n"
            "# Launch ComfyUI\n"
            "python main.py ${COMFYUI_ARGS}\n"
        )

        result = apply_rules(manifest.get("launcher-flags").rules, script)

        assert "--enable-cors-header --disable-xformers --disable-smart-memory}" in result.content
        assert "# Launch ComfyUI\nexport XFORMERS_DISABLED=1\n" in result.content
        assert apply_rules(manifest.get("launcher-flags").rules, result.content).changed is False

    def test_environment_rules(self, comfy_root: Path):
        manifest = load_manifest(
            builtin_manifest_path("ltx2_5090"),
            env={"WORKSPACE": str(comfy_root.parent)},
        )
        result = apply_rules(
            manifest.get("environment-flags").rules,
            'COMFYUI_ARGS="--disable-auto-launch --port 18188"\n',
        )
        assert result.content == (
            'COMFYUI_ARGS="--disable-auto-launch --port 18188 '
            '--disable-xformers --disable-smart-memory"\n'
            'XFORMERS_DISABLED="1"\n'
        )
