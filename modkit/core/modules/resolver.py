"""版本解析器

职责:
- 解析语义化版本（宽松: 非数字或缺失的分量按 0 处理）
- 判断版本是否满足约束
- 从候选标签中挑选满足约束的最高版本

约束语法:
  ""、"latest"、"*"   任意版本
  "^vX.Y.Z"          major 相同且 (minor, patch) >= (Y, Z)
  "vX.Y.Z" / "=vX.Y.Z" 三个分量全部相等
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable

from modkit.core.exceptions import VersionResolutionError
from modkit.core.modules.models import SemVer

logger = logging.getLogger(__name__)

ANY_CONSTRAINTS = frozenset(("", "latest", "*"))

_VERSION_LIKE_RE = re.compile(r"^[vV]?\d")


def _component(text: str) -> int:
    # 与既有兼容性检查保持一致: 无法解析的分量按 0 处理
    try:
        return int(text)
    except ValueError:
        return 0


def parse_version(text: str) -> SemVer:
    """'v1.2.3' -> SemVer(1, 2, 3)；'v1.7' -> SemVer(1, 7, 0)

    预发布 / 构建后缀（'-beta'、'+build'）不参与分量解析。
    """
    core = text.strip()
    if core[:1] in ("v", "V"):
        core = core[1:]
    core = re.split(r"[-+]", core, maxsplit=1)[0]
    parts = core.split(".")
    nums = [_component(p) for p in parts[:3]]
    nums += [0] * (3 - len(nums))
    return SemVer(*nums)


def is_version_like(text: str) -> bool:
    """只有形如 v1 / 1.2 的标签才作为候选版本"""
    return bool(_VERSION_LIKE_RE.match(text.strip()))


def _is_prerelease(text: str) -> bool:
    return "-" in text


def parse_constraint(constraint: str) -> tuple[str, SemVer | None]:
    """返回 (kind, 基准版本)，kind 为 any / caret / exact"""
    c = (constraint or "").strip()
    if c in ANY_CONSTRAINTS:
        return "any", None
    if c.startswith("^"):
        body = c[1:]
        if not is_version_like(body):
            raise VersionResolutionError(f"非法的版本约束: {constraint!r}")
        return "caret", parse_version(body)
    body = c[1:] if c.startswith("=") else c
    if not is_version_like(body):
        raise VersionResolutionError(f"非法的版本约束: {constraint!r}")
    return "exact", parse_version(body)


def satisfies(version: str, constraint: str) -> bool:
    """判断 version 是否满足 constraint

    >>> satisfies("v1.2.9", "^v1.2.3")
    True
    >>> satisfies("v2.0.0", "^v1.2.3")
    False
    """
    kind, base = parse_constraint(constraint)
    if kind == "any" or base is None:
        return True
    v = parse_version(version)
    if kind == "exact":
        return v == base
    return v.major == base.major and (v.minor, v.patch) >= (base.minor, base.patch)


def _sort_key(tag: str) -> tuple[SemVer, bool, str]:
    # 分量相同时正式版优先于预发布版
    return parse_version(tag), not _is_prerelease(tag), tag


def select_best(candidates: Iterable[str], constraint: str) -> str:
    """挑选满足约束的最高版本

    Raises:
        VersionResolutionError: 没有候选满足约束，或约束非法
    """
    parse_constraint(constraint)
    pool = [c for c in candidates if is_version_like(c)]
    matched = [c for c in pool if satisfies(c, constraint)]
    if not matched:
        shown = ", ".join(sorted(pool, key=_sort_key)) or "无"
        raise VersionResolutionError(
            f"没有满足约束 {constraint or 'latest'!r} 的版本 (可用: {shown})"
        )
    best = max(matched, key=_sort_key)
    logger.debug("版本选择: %s -> %s", constraint or "latest", best)
    return best


def is_newer(candidate: str, current: str) -> bool:
    """candidate 是否严格高于 current（current 为空视为更旧）"""
    if not current:
        return bool(candidate)
    return _sort_key(candidate)[:2] > _sort_key(current)[:2]
