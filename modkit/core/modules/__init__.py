"""远程模块管理子模块

- models.py:   数据模型（版本、锁文件条目、操作结果）
- resolver.py: 版本解析与约束匹配
- fetcher.py:  远程拉取 + 完整性校验 + 解压
- cache.py:    扁平化磁盘缓存
- lockfile.py: 锁文件读写
- graph.py:    可达集合计算（纯函数，不访问磁盘）
- imports.py:  供编译器前端使用的导入路径解析
"""

from modkit.core.modules.cache import ModuleCache
from modkit.core.modules.fetcher import FetchedArchive, RemoteFetcher
from modkit.core.modules.lockfile import LockfileManager
from modkit.core.modules.models import (
    BatchResult,
    CleanupResult,
    DependencyStatus,
    Lockfile,
    ResolvedModule,
    SemVer,
    UpdateInfo,
)

__all__ = [
    "BatchResult",
    "CleanupResult",
    "DependencyStatus",
    "FetchedArchive",
    "Lockfile",
    "LockfileManager",
    "ModuleCache",
    "RemoteFetcher",
    "ResolvedModule",
    "SemVer",
    "UpdateInfo",
]
