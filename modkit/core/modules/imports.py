"""编译器前端使用的导入路径解析

前端只关心"这个导入路径的源码在磁盘哪里"，这里负责:
- 判断导入路径是否为远程模块（host/owner/repo[/sub/path]）
- 拆分 'host/owner/repo@version' 规格
- 按清单约束 + 锁文件锁定版本定位缓存中的源码
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from pathlib import Path
from typing import TYPE_CHECKING

from modkit.core.config import DEFAULT_REMOTE_HOSTS
from modkit.core.exceptions import ConfigError, ValidationError
from modkit.core.modules.graph import root_entry

if TYPE_CHECKING:
    from modkit.core.dep_manager import DependencyManager

logger = logging.getLogger(__name__)


def split_import_path(import_path: str) -> tuple[str, str, str, str]:
    """'github.com/acme/utils/text/fmt' -> ('github.com', 'acme', 'utils', 'text/fmt')"""
    parts = import_path.strip().strip("/").split("/")
    if len(parts) < 3 or not all(parts):
        raise ValidationError(f"非法的远程模块路径: {import_path}")
    host, owner, repo = parts[:3]
    return host, owner, repo, "/".join(parts[3:])


def repo_path_of(import_path: str) -> str:
    host, owner, repo, _ = split_import_path(import_path)
    return f"{host}/{owner}/{repo}"


def is_remote_import(import_path: str, hosts: Iterable[str] = DEFAULT_REMOTE_HOSTS) -> bool:
    parts = import_path.strip().split("/")
    return len(parts) >= 3 and parts[0] in set(hosts) and all(parts[:3])


def parse_remote_import(spec: str) -> tuple[str, str]:
    """'github.com/acme/utils@v1.2.0' -> ('github.com/acme/utils', 'v1.2.0')

    未指定版本时返回 'latest'。
    """
    path, sep, version = spec.strip().partition("@")
    if sep and (not version or "@" in version):
        raise ValidationError(f"非法的版本规格: {spec}")
    return repo_path_of(path), (version if sep else "latest")


class ImportResolver:
    """按 (清单, 锁文件, 缓存) 解析远程导入路径

    只读: 缓存缺失时返回 found=False，由调用方触发 install 自动恢复。
    """

    def __init__(self, manager: DependencyManager) -> None:
        self.manager = manager

    def is_remote_import(self, import_path: str) -> bool:
        return is_remote_import(import_path, self.manager.config.remote_hosts)

    def resolve_import(self, import_path: str) -> tuple[Path | None, bool]:
        """返回 (文件系统路径, 是否存在)"""
        if not self.is_remote_import(import_path):
            return None, False
        manifest = self.manager.manifest
        if not manifest.allow_remote_import:
            raise ConfigError(
                "项目未开启远程模块导入，请在清单中设置 external.allow-remote-import: true"
            )

        repo = repo_path_of(import_path)
        _, _, _, subpath = split_import_path(import_path)
        constraint = manifest.dependencies.get(repo)
        if constraint is None:
            logger.debug("导入 %s 未在清单中声明", repo)
            return None, False

        entry = root_entry(self.manager.lockfile, repo, constraint)
        if entry is None:
            logger.debug("导入 %s 尚未写入锁文件", repo)
            return None, False

        base = self.manager.cache.path(repo, entry.version)
        target = base / subpath if subpath else base
        if target.exists():
            return target, True
        ext = self.manager.config.source_extension
        if subpath and ext:
            with_ext = target.with_name(target.name + ext)
            if with_ext.exists():
                return with_ext, True
        return target, False
