"""工具配置

替代各模块散落的 DEFAULT_* 常量，提供统一的配置入口。
支持从 YAML 文件加载 + 编程式覆盖。配置以值的形式显式传给
DependencyManager，不使用进程级单例。
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml

from modkit.core.exceptions import ConfigError
from modkit.utils.yaml_io import load_yaml

logger = logging.getLogger(__name__)

CONFIG_FILE = "modkit.config.yml"

DEFAULT_REMOTE_HOSTS = (
    "github.com",
    "gitlab.com",
    "bitbucket.org",
    "codeberg.org",
    "gitea.com",
)


@dataclass
class Config:
    """modkit 配置"""

    # 项目内文件（相对项目根目录）
    manifest_file: str = "modkit.yml"
    lockfile_file: str = "modkit.lock"
    cache_dir: str = ".modkit"
    lock_file: str = ".modkit.pid"

    # 网络
    max_workers: int = 4
    timeout: float = 30.0
    max_retries: int = 3
    retry_backoff: float = 0.5
    remote_hosts: list[str] = field(default_factory=lambda: list(DEFAULT_REMOTE_HOSTS))

    # 编译器前端解析导入时附加的源文件后缀（如 ".fer"），为空则只匹配原路径
    source_extension: str = ""

    # 放不到字段里的配置项
    extra: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.validate()

    def validate(self) -> None:
        if not isinstance(self.max_workers, int) or self.max_workers < 1:
            raise ConfigError(f"max_workers 必须为正整数: {self.max_workers!r}")
        if not isinstance(self.max_retries, int) or self.max_retries < 0:
            raise ConfigError(f"max_retries 不能为负: {self.max_retries!r}")
        if not isinstance(self.timeout, (int, float)) or self.timeout <= 0:
            raise ConfigError(f"timeout 必须大于 0: {self.timeout!r}")
        if not isinstance(self.retry_backoff, (int, float)) or self.retry_backoff < 0:
            raise ConfigError(f"retry_backoff 不能为负: {self.retry_backoff!r}")
        if not isinstance(self.remote_hosts, list) or not all(
            isinstance(h, str) and h for h in self.remote_hosts
        ):
            raise ConfigError(f"remote_hosts 必须是主机名列表: {self.remote_hosts!r}")

    @classmethod
    def from_file(cls, path: str | Path) -> Config:
        """从 YAML 文件加载配置，文件不存在则返回默认值"""
        try:
            data = load_yaml(path)
        except (ValueError, yaml.YAMLError) as e:
            raise ConfigError(f"配置文件无效: {path}: {e}") from e
        if not data:
            return cls()
        known = {f.name for f in fields(cls)} - {"extra"}
        matched = {k: v for k, v in data.items() if k in known}
        extra = {k: v for k, v in data.items() if k not in known}
        try:
            cfg = cls(**matched)
        except TypeError as e:
            raise ConfigError(f"配置文件无效: {path}: {e}") from e
        cfg.extra = extra
        logger.info("配置已加载: %s", path)
        return cfg

    @classmethod
    def for_project(cls, project_root: str | Path) -> Config:
        """加载项目根目录下的 modkit.config.yml（可选）"""
        return cls.from_file(Path(project_root) / CONFIG_FILE)

    def cache_root(self, project_root: Path) -> Path:
        p = Path(self.cache_dir).expanduser()
        return p if p.is_absolute() else project_root / p

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
