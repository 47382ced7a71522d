"""项目清单加载测试"""

from __future__ import annotations

from pathlib import Path

import pytest
import yaml

from modkit.core.exceptions import ConfigError
from modkit.core.manifest import Manifest, load_manifest, normalize_constraint, save_manifest


def _write(tmp_path: Path, text: str) -> Path:
    path = tmp_path / "modkit.yml"
    path.write_text(text, encoding="utf-8")
    return path


class TestNormalizeConstraint:
    @pytest.mark.parametrize("raw,expected", [
        ("1.2.0", "v1.2.0"),
        ("^1.0", "^v1.0"),
        ("^v1.0.0", "^v1.0.0"),
        ("latest", "latest"),
        ("", ""),
        (" v2 ", "v2"),
    ])
    def test_normalize(self, raw: str, expected: str) -> None:
        assert normalize_constraint(raw) == expected


class TestLoadManifest:
    def test_full(self, tmp_path: Path) -> None:
        path = _write(tmp_path, (
            "name: app\n"
            "dependencies:\n"
            "  github.com/acme/utils: ^1.0.0\n"
            "  github.com/acme/core:\n"
            "external:\n"
            "  allow-remote-import: true\n"
        ))
        m = load_manifest(path)
        assert m.name == "app"
        assert m.dependencies == {"github.com/acme/utils": "^v1.0.0", "github.com/acme/core": ""}
        assert m.allow_remote_import is True

    def test_gate_defaults_off(self, tmp_path: Path) -> None:
        assert load_manifest(_write(tmp_path, "name: app\n")).allow_remote_import is False

    def test_numeric_constraint(self, tmp_path: Path) -> None:
        m = load_manifest(_write(tmp_path, "dependencies:\n  h/a/r: 1.5\n"))
        assert m.dependencies == {"h/a/r": "v1.5"}

    def test_missing_required(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigError, match="清单文件不存在"):
            load_manifest(tmp_path / "modkit.yml")

    def test_missing_optional(self, tmp_path: Path) -> None:
        assert load_manifest(tmp_path / "modkit.yml", required=False) == Manifest()

    @pytest.mark.parametrize("text", [
        "dependencies: [a, b]\n",
        "dependencies:\n  h/a/r: [1]\n",
        "dependencies:\n  h/a/r: true\n",
        "external:\n  allow-remote-import: 'yes'\n",
        "external: 1\n",
        "name: [x]\n",
        "- a\n- b\n",
        "key: [unclosed\n",
    ])
    def test_invalid(self, tmp_path: Path, text: str) -> None:
        with pytest.raises(ConfigError):
            load_manifest(_write(tmp_path, text))


class TestSaveManifest:
    def test_preserves_other_sections(self, tmp_path: Path) -> None:
        path = _write(tmp_path, (
            "name: app\n"
            "build:\n  target: native\n"
            "external:\n  allow-remote-import: true\n  mirror: x\n"
        ))
        m = load_manifest(path)
        m.dependencies["h/a/r"] = "^v1.0.0"
        save_manifest(m, path)

        data = yaml.safe_load(path.read_text(encoding="utf-8"))
        assert data["build"] == {"target": "native"}
        assert data["external"] == {"allow-remote-import": True, "mirror": "x"}
        assert data["dependencies"] == {"h/a/r": "^v1.0.0"}
        assert load_manifest(path) == m
