"""工具配置测试"""

from __future__ import annotations

from pathlib import Path

import pytest

from modkit.core.config import CONFIG_FILE, DEFAULT_REMOTE_HOSTS, Config
from modkit.core.exceptions import ConfigError


class TestConfig:
    def test_defaults(self) -> None:
        cfg = Config()
        assert cfg.manifest_file == "modkit.yml"
        assert cfg.lockfile_file == "modkit.lock"
        assert cfg.max_workers == 4
        assert cfg.remote_hosts == list(DEFAULT_REMOTE_HOSTS)

    def test_missing_file_gives_defaults(self, tmp_path: Path) -> None:
        assert Config.from_file(tmp_path / "none.yml") == Config()

    def test_for_project(self, tmp_path: Path) -> None:
        (tmp_path / CONFIG_FILE).write_text(
            "max_workers: 8\n"
            "timeout: 5\n"
            "remote_hosts: [git.corp]\n"
            "mirror: https://mirror.local\n",
            encoding="utf-8",
        )
        cfg = Config.for_project(tmp_path)
        assert cfg.max_workers == 8
        assert cfg.timeout == 5
        assert cfg.remote_hosts == ["git.corp"]
        assert cfg.extra == {"mirror": "https://mirror.local"}

    @pytest.mark.parametrize("kwargs", [
        {"max_workers": 0},
        {"max_workers": "4"},
        {"max_retries": -1},
        {"timeout": 0},
        {"retry_backoff": -0.1},
        {"remote_hosts": "github.com"},
        {"remote_hosts": [""]},
    ])
    def test_validation(self, kwargs: dict) -> None:
        with pytest.raises(ConfigError):
            Config(**kwargs)

    def test_invalid_file(self, tmp_path: Path) -> None:
        path = tmp_path / CONFIG_FILE
        path.write_text("max_workers: -2\n", encoding="utf-8")
        with pytest.raises(ConfigError, match="max_workers"):
            Config.from_file(path)

    def test_cache_root(self, tmp_path: Path) -> None:
        assert Config().cache_root(tmp_path) == tmp_path / ".modkit"
        absolute = tmp_path / "shared-cache"
        assert Config(cache_dir=str(absolute)).cache_root(tmp_path / "proj") == absolute

    def test_to_dict(self) -> None:
        assert Config().to_dict()["lock_file"] == ".modkit.pid"
