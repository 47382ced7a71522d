"""依赖图计算

孤儿清理与自动恢复都要沿 (清单, 锁文件) 依赖边遍历同一张图，
这里实现为纯函数：只读内存中的清单与锁文件，不访问磁盘。
"""

from __future__ import annotations

from collections.abc import Mapping

from modkit.core.exceptions import VersionResolutionError
from modkit.core.modules.models import Lockfile, ResolvedModule
from modkit.core.modules.resolver import is_newer, satisfies


def root_entry(lockfile: Lockfile, import_path: str, constraint: str) -> ResolvedModule | None:
    """锁文件中满足约束的最高版本条目，即清单条目对应的根节点"""
    best: ResolvedModule | None = None
    for entry in lockfile.versions_of(import_path):
        try:
            if not satisfies(entry.version, constraint):
                continue
        except VersionResolutionError:
            return None
        if best is None or is_newer(entry.version, best.version):
            best = entry
    return best


def closure(lockfile: Lockfile, start_keys: list[str]) -> list[str]:
    """从 start_keys 出发沿依赖边 BFS，返回可达键（保持发现顺序，忽略悬空边）"""
    seen: set[str] = set()
    order: list[str] = []
    queue = list(start_keys)
    while queue:
        key = queue.pop(0)
        if key in seen:
            continue
        entry = lockfile.packages.get(key)
        if entry is None:
            continue
        seen.add(key)
        order.append(key)
        queue.extend(d for d in entry.dependencies if d not in seen)
    return order


def reachable_keys(dependencies: Mapping[str, str], lockfile: Lockfile) -> set[str]:
    """清单直接依赖经锁文件依赖边可达的全部模块键"""
    roots = []
    for import_path, constraint in dependencies.items():
        entry = root_entry(lockfile, import_path, constraint)
        if entry is not None:
            roots.append(entry.key)
    return set(closure(lockfile, roots))
