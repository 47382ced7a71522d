"""项目清单

清单在加载时一次性解码为强类型的 Manifest，下游不再对原始字典做类型判断。

文件格式 (modkit.yml):
    name: app
    dependencies:
      github.com/acme/utils: ^v1.0.0
    external:
      allow-remote-import: true
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from modkit.core.exceptions import ConfigError
from modkit.utils.yaml_io import load_yaml, save_yaml

logger = logging.getLogger(__name__)

REMOTE_IMPORT_KEY = "allow-remote-import"

_BARE_VERSION_RE = re.compile(r"^(\^)?(\d)")


def normalize_constraint(constraint: str) -> str:
    """补全 v 前缀: '1.2.0' -> 'v1.2.0', '^1.0' -> '^v1.0'"""
    constraint = constraint.strip()
    return _BARE_VERSION_RE.sub(lambda m: f"{m.group(1) or ''}v{m.group(2)}", constraint, count=1)


@dataclass
class Manifest:
    """项目声明的直接依赖"""

    name: str = ""
    dependencies: dict[str, str] = field(default_factory=dict)
    allow_remote_import: bool = False
    # 其他段原样保留，保存时写回
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any], *, source: str = "<manifest>") -> Manifest:
        name = data.get("name", "")
        if not isinstance(name, str):
            raise ConfigError(f"{source}: name 必须是字符串")

        raw_deps = data.get("dependencies") or {}
        if not isinstance(raw_deps, dict):
            raise ConfigError(f"{source}: dependencies 必须是映射")
        deps: dict[str, str] = {}
        for path, constraint in raw_deps.items():
            if not isinstance(path, str) or not path:
                raise ConfigError(f"{source}: 非法的依赖路径 {path!r}")
            if constraint is None:
                constraint = ""
            elif isinstance(constraint, bool) or not isinstance(constraint, (str, int, float)):
                raise ConfigError(f"{source}: 依赖 {path} 的版本约束必须是字符串")
            deps[path] = normalize_constraint(str(constraint))

        external = data.get("external") or {}
        if not isinstance(external, dict):
            raise ConfigError(f"{source}: external 必须是映射")
        allow = external.get(REMOTE_IMPORT_KEY, False)
        if not isinstance(allow, bool):
            raise ConfigError(f"{source}: external.{REMOTE_IMPORT_KEY} 必须是布尔值")

        extra = {k: v for k, v in data.items() if k not in ("name", "dependencies")}
        return cls(name=name, dependencies=deps, allow_remote_import=allow, extra=extra)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {}
        if self.name:
            data["name"] = self.name
        data["dependencies"] = dict(self.dependencies)
        for k, v in self.extra.items():
            data[k] = v
        external = dict(data.get("external") or {})
        external[REMOTE_IMPORT_KEY] = self.allow_remote_import
        data["external"] = external
        return data


def load_manifest(path: str | Path, *, required: bool = True) -> Manifest:
    """加载清单

    参数:
        required: 项目清单必须存在；远程模块自带的清单可以缺失（视为无依赖）
    """
    p = Path(path)
    if not p.exists():
        if required:
            raise ConfigError(f"清单文件不存在: {p}")
        return Manifest()
    try:
        data = load_yaml(p)
    except (ValueError, yaml.YAMLError) as e:
        raise ConfigError(f"清单文件无效: {p}: {e}") from e
    manifest = Manifest.from_dict(data, source=str(p))
    logger.debug("已加载清单 %s: %d 个依赖", p, len(manifest.dependencies))
    return manifest


def save_manifest(manifest: Manifest, path: str | Path) -> None:
    save_yaml(path, manifest.to_dict())
