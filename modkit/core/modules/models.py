"""模块管理数据模型

数据类:
- SemVer: 语义化版本
- ResolvedModule: 锁文件中的一条已解析模块
- Lockfile: 锁文件整体
- UpdateInfo / DependencyStatus / BatchResult / CleanupResult: 操作结果
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone

from modkit.core.exceptions import BatchOperationError, LockfileCorruptionError, ModKitError

LOCKFILE_SCHEMA_VERSION = "1"


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def module_key(import_path: str, version: str) -> str:
    """锁文件键: '<import_path>@<version>'"""
    return f"{import_path}@{version}"


def split_module_key(key: str) -> tuple[str, str]:
    path, sep, version = key.rpartition("@")
    if not sep or not path or not version:
        raise ValueError(f"非法的模块键: {key}")
    return path, version


@dataclass(frozen=True, order=True)
class SemVer:
    """major.minor.patch，按分量依次比较"""

    major: int = 0
    minor: int = 0
    patch: int = 0

    def __str__(self) -> str:
        return f"v{self.major}.{self.minor}.{self.patch}"


@dataclass
class ResolvedModule:
    """已解析、已校验的模块版本"""

    import_path: str
    version: str
    resolved_url: str
    checksum: str
    downloaded_at: str = ""
    dependencies: list[str] = field(default_factory=list)  # 依赖边: 模块键列表

    @property
    def key(self) -> str:
        return module_key(self.import_path, self.version)

    def to_dict(self) -> dict[str, object]:
        return {
            "version": self.version,
            "resolved_url": self.resolved_url,
            "checksum": self.checksum,
            "downloaded_at": self.downloaded_at,
            "dependencies": list(self.dependencies),
        }

    @classmethod
    def from_dict(cls, key: str, data: object) -> ResolvedModule:
        if not isinstance(data, dict):
            raise LockfileCorruptionError(f"锁文件条目 {key} 必须是对象")
        try:
            import_path, key_version = split_module_key(key)
        except ValueError as e:
            raise LockfileCorruptionError(str(e)) from e
        for name in ("version", "resolved_url", "checksum"):
            if not isinstance(data.get(name), str) or not data[name]:
                raise LockfileCorruptionError(f"锁文件条目 {key} 缺少字段 {name}")
        if data["version"] != key_version:
            raise LockfileCorruptionError(
                f"锁文件条目 {key} 的版本 {data['version']} 与键不一致"
            )
        downloaded_at = data.get("downloaded_at", "")
        deps = data.get("dependencies", [])
        if not isinstance(downloaded_at, str):
            raise LockfileCorruptionError(f"锁文件条目 {key} 的 downloaded_at 无效")
        if not isinstance(deps, list) or not all(isinstance(d, str) for d in deps):
            raise LockfileCorruptionError(f"锁文件条目 {key} 的 dependencies 无效")
        return cls(
            import_path=import_path,
            version=data["version"],
            resolved_url=data["resolved_url"],
            checksum=data["checksum"],
            downloaded_at=downloaded_at,
            dependencies=list(deps),
        )


@dataclass
class Lockfile:
    """锁文件：记录实际使用的完整传递闭包"""

    schema_version: str = LOCKFILE_SCHEMA_VERSION
    generated_at: str = ""
    packages: dict[str, ResolvedModule] = field(default_factory=dict)

    def upsert(self, entry: ResolvedModule) -> None:
        self.packages[entry.key] = entry

    def remove_entry(self, import_path: str, version: str) -> bool:
        return self.packages.pop(module_key(import_path, version), None) is not None

    def get(self, import_path: str, version: str) -> ResolvedModule | None:
        return self.packages.get(module_key(import_path, version))

    def entries(self) -> list[ResolvedModule]:
        return [self.packages[k] for k in sorted(self.packages)]

    def versions_of(self, import_path: str) -> list[ResolvedModule]:
        return [e for e in self.entries() if e.import_path == import_path]

    def to_dict(self) -> dict[str, object]:
        return {
            "version": self.schema_version,
            "generated_at": self.generated_at,
            "packages": {k: self.packages[k].to_dict() for k in sorted(self.packages)},
        }

    @classmethod
    def from_dict(cls, data: object) -> Lockfile:
        if not isinstance(data, dict):
            raise LockfileCorruptionError("锁文件顶层必须是对象")
        schema = data.get("version", LOCKFILE_SCHEMA_VERSION)
        if schema != LOCKFILE_SCHEMA_VERSION:
            raise LockfileCorruptionError(f"不支持的锁文件版本: {schema!r}")
        generated_at = data.get("generated_at", "")
        if not isinstance(generated_at, str):
            raise LockfileCorruptionError("锁文件 generated_at 无效")
        packages = data.get("packages", {})
        if not isinstance(packages, dict):
            raise LockfileCorruptionError("锁文件 packages 必须是对象")
        lock = cls(schema_version=schema, generated_at=generated_at)
        for key, entry in packages.items():
            lock.packages[key] = ResolvedModule.from_dict(key, entry)
        return lock


@dataclass
class UpdateInfo:
    """单个直接依赖的更新检查结果"""

    name: str
    constraint: str
    current_version: str
    latest_version: str
    has_update: bool = False
    newest_version: str = ""  # 不考虑约束的最新标签
    error: str = ""


@dataclass
class DependencyStatus:
    """list 操作的单条输出"""

    import_path: str
    version: str
    cached: bool
    direct: bool
    checksum: str = ""

    @property
    def key(self) -> str:
        return module_key(self.import_path, self.version)


@dataclass
class BatchResult:
    """批量操作汇总：按模块子树隔离失败"""

    installed: list[str] = field(default_factory=list)   # 新写入锁文件的模块键
    recovered: list[str] = field(default_factory=list)   # 按锁定版本重新下载的模块键
    skipped: list[str] = field(default_factory=list)     # 已满足、无需处理的直接依赖
    failed: dict[str, ModKitError] = field(default_factory=dict)
    updates: list[UpdateInfo] = field(default_factory=list)  # 仅 update 操作填充

    @property
    def ok(self) -> bool:
        return not self.failed

    def raise_for_errors(self) -> None:
        if self.failed:
            raise BatchOperationError(dict(self.failed))


@dataclass
class CleanupResult:
    removed_entries: list[str] = field(default_factory=list)
    removed_cache: list[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(set(self.removed_entries) | set(self.removed_cache))
