"""锁文件读写测试"""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from modkit.core.exceptions import LockfileCorruptionError
from modkit.core.modules.lockfile import LockfileManager, dump_lockfile
from modkit.core.modules.models import Lockfile, ResolvedModule


def _entry(path: str = "github.com/acme/utils", version: str = "v1.2.0", deps=None) -> ResolvedModule:
    return ResolvedModule(
        import_path=path, version=version,
        resolved_url=f"https://{path}/archive/refs/tags/{version}.tar.gz",
        checksum="sha256:" + "ab" * 32, downloaded_at="2024-01-01T00:00:00+00:00",
        dependencies=list(deps or []),
    )


class TestLockfileManager:
    def test_missing_file_is_empty(self, tmp_path: Path) -> None:
        lock = LockfileManager(tmp_path / "modkit.lock").load()
        assert lock.packages == {}

    def test_save_then_load_preserves_content(self, tmp_path: Path) -> None:
        mgr = LockfileManager(tmp_path / "modkit.lock")
        lock = Lockfile(generated_at="2024-01-02T00:00:00+00:00")
        lock.upsert(_entry(deps=["github.com/acme/core@v0.3.1"]))
        lock.upsert(_entry("github.com/acme/core", "v0.3.1"))
        mgr.save(lock)

        loaded = mgr.load()
        assert loaded == lock
        mgr.save(loaded)
        assert (tmp_path / "modkit.lock").read_text(encoding="utf-8") == dump_lockfile(lock)

    def test_format(self, tmp_path: Path) -> None:
        mgr = LockfileManager(tmp_path / "modkit.lock")
        lock = Lockfile(generated_at="t")
        lock.upsert(_entry())
        mgr.save(lock)
        data = json.loads((tmp_path / "modkit.lock").read_text(encoding="utf-8"))
        assert data["version"] == "1"
        assert data["generated_at"] == "t"
        assert set(data["packages"]["github.com/acme/utils@v1.2.0"]) == {
            "version", "resolved_url", "checksum", "downloaded_at", "dependencies",
        }

    def test_keys_sorted(self) -> None:
        lock = Lockfile()
        lock.upsert(_entry("h/z/z"))
        lock.upsert(_entry("h/a/a"))
        assert list(lock.to_dict()["packages"]) == ["h/a/a@v1.2.0", "h/z/z@v1.2.0"]

    def test_entries_without_dependencies_field(self, tmp_path: Path) -> None:
        path = tmp_path / "modkit.lock"
        path.write_text(json.dumps({"version": "1", "generated_at": "", "packages": {
            "h/a/r@v1.0.0": {
                "version": "v1.0.0", "resolved_url": "https://h/a/r.tar.gz",
                "checksum": "sha256:00", "downloaded_at": "",
            },
        }}), encoding="utf-8")
        assert LockfileManager(path).load().get("h/a/r", "v1.0.0").dependencies == []

    @pytest.mark.parametrize("content", [
        "{broken",
        "[]",
        json.dumps({"version": "2", "packages": {}}),
        json.dumps({"version": "1", "packages": []}),
        json.dumps({"version": "1", "packages": {"h/a/r@v1": {"version": "v1"}}}),
        json.dumps({"version": "1", "packages": {"h/a/r@v1": {
            "version": "v2", "resolved_url": "u", "checksum": "c",
        }}}),
        json.dumps({"version": "1", "packages": {"no-version": {
            "version": "v1", "resolved_url": "u", "checksum": "c",
        }}}),
    ])
    def test_corruption_detected(self, tmp_path: Path, content: str) -> None:
        path = tmp_path / "modkit.lock"
        path.write_text(content, encoding="utf-8")
        with pytest.raises(LockfileCorruptionError):
            LockfileManager(path).load()

    def test_atomic_write_leaves_no_temp_files(self, tmp_path: Path) -> None:
        mgr = LockfileManager(tmp_path / "modkit.lock")
        mgr.save(Lockfile())
        assert [p.name for p in tmp_path.iterdir()] == ["modkit.lock"]


class TestLockfileModel:
    def test_remove_entry(self) -> None:
        lock = Lockfile()
        lock.upsert(_entry())
        assert lock.remove_entry("github.com/acme/utils", "v1.2.0") is True
        assert lock.remove_entry("github.com/acme/utils", "v1.2.0") is False

    def test_versions_of(self) -> None:
        lock = Lockfile()
        lock.upsert(_entry(version="v1.0.0"))
        lock.upsert(_entry(version="v1.1.0"))
        lock.upsert(_entry("h/x/y", "v1.0.0"))
        assert [e.version for e in lock.versions_of("github.com/acme/utils")] == ["v1.0.0", "v1.1.0"]
