"""统一异常体系

所有业务异常继承 ModKitError，批量操作按模块隔离失败，
CLI 层据此输出友好提示，核心层只返回结构化错误。
"""

from __future__ import annotations


class ModKitError(Exception):
    """基础异常"""

    code: str = "UNKNOWN"
    retryable: bool = False

    def __init__(self, message: str) -> None:
        super().__init__(message)


class ConfigError(ModKitError):
    """配置/清单无效，或远程导入开关未开启"""

    code = "CONFIG_ERROR"


class ValidationError(ModKitError, ValueError):
    """输入数据校验失败（URL 协议、主机、标识符）"""

    code = "VALIDATION_ERROR"

    def __init__(self, message: str, details: list[str] | None = None) -> None:
        super().__init__(message)
        self.details = details or []


class NetworkError(ModKitError):
    """网络传输失败或超时"""

    code = "NETWORK_ERROR"

    def __init__(self, message: str, *, retryable: bool = True) -> None:
        super().__init__(message)
        self.retryable = retryable


class ChecksumMismatchError(ModKitError):
    """归档内容与记录的校验和不一致，视为篡改，绝不重试"""

    code = "CHECKSUM_MISMATCH"

    def __init__(
        self, import_path: str, version: str, expected: str, actual: str,
    ) -> None:
        super().__init__(
            f"校验和不匹配 {import_path}@{version}: 期望 {expected}, 实际 {actual}"
        )
        self.import_path = import_path
        self.version = version
        self.expected = expected
        self.actual = actual


class VersionResolutionError(ModKitError):
    """没有候选版本满足约束，或约束格式非法"""

    code = "VERSION_RESOLUTION_ERROR"


class CacheError(ModKitError):
    """缓存目录写入/解压失败"""

    code = "CACHE_ERROR"


class LockfileCorruptionError(ModKitError):
    """锁文件内容损坏"""

    code = "LOCKFILE_CORRUPTION"


class NotFoundError(ModKitError):
    """操作引用的模块不在清单或锁文件中"""

    code = "NOT_FOUND"


class ProjectLockedError(ModKitError):
    """另一个进程正在对同一项目执行修改操作"""

    code = "PROJECT_LOCKED"


class OperationCancelledError(ModKitError):
    """操作被用户中断"""

    code = "CANCELLED"


class BatchOperationError(ModKitError):
    """批量操作中有模块失败，failures 为 {import_path: 异常}"""

    code = "BATCH_FAILED"

    def __init__(self, failures: dict[str, ModKitError]) -> None:
        names = ", ".join(sorted(failures))
        super().__init__(f"{len(failures)} 个模块处理失败: {names}")
        self.failures = failures
