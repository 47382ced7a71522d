"""项目级咨询锁

防止两个进程同时对同一项目根目录执行修改操作（安装、更新、删除、清理）。
第二个进程在锁被占用时立即失败，而不是无限等待。

实现:
  - 以 O_CREAT | O_EXCL 创建锁文件，写入持有者 pid
  - 锁文件已存在时读取 pid；持有进程已不存在则视为残留锁，清理后重试一次
  - 支持上下文管理器

用法:
    with ProjectLock(project_root / ".modkit.pid"):
        ...  # 修改锁文件 / 缓存
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from modkit.core.exceptions import ProjectLockedError

logger = logging.getLogger(__name__)


def _pid_alive(pid: int) -> bool:
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # 进程存在但属于其他用户
        return True
    except OSError:
        return False
    return True


class ProjectLock:
    """基于锁文件的跨进程互斥锁（不可重入）"""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self._held = False

    @property
    def held(self) -> bool:
        return self._held

    def acquire(self) -> None:
        """获取锁，被占用时抛出 ProjectLockedError"""
        if self._held:
            raise ProjectLockedError(f"锁已被当前实例持有: {self.path}")
        self.path.parent.mkdir(parents=True, exist_ok=True)
        for _ in range(2):
            try:
                fd = os.open(str(self.path), os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
            except FileExistsError:
                owner = self._read_owner()
                if owner is not None and not _pid_alive(owner):
                    logger.warning("清理残留项目锁: %s (pid=%d)", self.path, owner)
                    self.path.unlink(missing_ok=True)
                    continue
                raise ProjectLockedError(
                    f"项目正被其他进程修改 (pid={owner}): {self.path}"
                ) from None
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(str(os.getpid()))
            self._held = True
            logger.debug("已获取项目锁: %s", self.path)
            return
        raise ProjectLockedError(f"无法获取项目锁: {self.path}")

    def release(self) -> None:
        if not self._held:
            return
        self._held = False
        self.path.unlink(missing_ok=True)
        logger.debug("已释放项目锁: %s", self.path)

    def _read_owner(self) -> int | None:
        try:
            text = self.path.read_text(encoding="utf-8").strip()
        except OSError:
            return None
        try:
            return int(text)
        except ValueError:
            # 写入 pid 之前的瞬间被读到，按持有处理
            return None

    def __enter__(self) -> ProjectLock:
        self.acquire()
        return self

    def __exit__(self, *exc: object) -> None:
        self.release()
