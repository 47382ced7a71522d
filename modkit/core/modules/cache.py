"""模块缓存

缓存布局:
  <cache_root>/modules/<host>/<owner>/<repo>@<version>/...

缓存策略:
  - 以 (import_path, version) 为缓存键，同一模块的多个版本并存
  - 目录只在拉取时创建、只在清理/删除时移除，绝不原地覆盖
  - 解压先落到 modules/.staging/ 下，提交时再 rename 到正式路径，
    正式路径永远不会出现解压到一半的目录
"""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
from pathlib import Path

from modkit.core.exceptions import CacheError, ModKitError
from modkit.core.modules.imports import split_import_path
from modkit.utils.net import validate_identifier

logger = logging.getLogger(__name__)

STAGING_DIR = ".staging"


class ModuleCache:
    """扁平化模块缓存管理器"""

    def __init__(self, root: Path) -> None:
        self.root = Path(root)
        self.modules_root = self.root / "modules"

    def path(self, import_path: str, version: str) -> Path:
        """计算缓存路径；各分量经过标识符校验，保证不同 (路径, 版本) 不会冲突"""
        host, owner, repo, subpath = split_import_path(import_path)
        if subpath:
            raise CacheError(f"缓存键必须是仓库级路径: {import_path}")
        validate_identifier(host, kind="主机")
        validate_identifier(owner, kind="owner")
        validate_identifier(repo, kind="仓库名")
        validate_identifier(version, kind="版本")
        return self.modules_root / host / owner / f"{repo}@{version}"

    def exists(self, import_path: str, version: str) -> bool:
        return self.path(import_path, version).is_dir()

    def new_staging_dir(self) -> Path:
        """创建一个与正式缓存同文件系统的临时目录，保证之后的 rename 是原子的"""
        staging = self.modules_root / STAGING_DIR
        staging.mkdir(parents=True, exist_ok=True)
        return Path(tempfile.mkdtemp(dir=str(staging)))

    def purge_staging(self) -> None:
        """清理中断运行残留的临时目录"""
        staging = self.modules_root / STAGING_DIR
        if staging.exists():
            shutil.rmtree(staging, ignore_errors=True)
            logger.debug("已清理残留临时目录: %s", staging)

    def store(self, import_path: str, version: str, extracted_dir: Path) -> Path:
        """把已解压、已校验的目录移动到正式缓存路径

        目标已存在时保留原目录、丢弃传入目录（不原地覆盖）。
        任何 I/O 失败都不会留下半成品目录。
        """
        dest = self.path(import_path, version)
        extracted_dir = Path(extracted_dir)
        if dest.exists():
            logger.info("缓存已存在，保留原目录: %s", dest)
            shutil.rmtree(extracted_dir, ignore_errors=True)
            return dest
        try:
            dest.parent.mkdir(parents=True, exist_ok=True)
            os.replace(extracted_dir, dest)
        except OSError as e:
            shutil.rmtree(extracted_dir, ignore_errors=True)
            raise CacheError(f"写入缓存失败 {import_path}@{version}: {e}") from e
        logger.info("已缓存: %s@%s -> %s", import_path, version, dest)
        return dest

    def remove(self, import_path: str, version: str) -> bool:
        """删除单个版本的缓存目录，并清理由此变空的上级目录"""
        dest = self.path(import_path, version)
        if not dest.exists():
            return False
        try:
            shutil.rmtree(dest)
        except OSError as e:
            raise CacheError(f"删除缓存失败 {import_path}@{version}: {e}") from e
        self._prune_empty_parents(dest.parent)
        logger.info("已删除缓存: %s@%s", import_path, version)
        return True

    def _prune_empty_parents(self, directory: Path) -> None:
        while directory != self.modules_root and self.modules_root in directory.parents:
            try:
                directory.rmdir()
            except OSError:
                return
            directory = directory.parent

    def list_all(self) -> list[tuple[str, str]]:
        """扫描缓存根目录，返回 [(import_path, version)]

        只看三层: host/owner/repo@version，不深入模块内部。
        """
        if not self.modules_root.is_dir():
            return []
        found: list[tuple[str, str]] = []
        for host in sorted(self.modules_root.iterdir()):
            if not host.is_dir() or host.name.startswith("."):
                continue
            for owner in sorted(host.iterdir()):
                if not owner.is_dir() or owner.name.startswith("."):
                    continue
                for entry in sorted(owner.iterdir()):
                    repo, sep, version = entry.name.rpartition("@")
                    if not entry.is_dir() or not sep or not repo or not version:
                        continue
                    import_path = f"{host.name}/{owner.name}/{repo}"
                    try:
                        self.path(import_path, version)
                    except ModKitError as e:
                        logger.warning("忽略无法识别的缓存目录 %s: %s", entry, e)
                        continue
                    found.append((import_path, version))
        return found
