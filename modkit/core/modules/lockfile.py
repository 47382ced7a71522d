"""锁文件管理

职责:
- 读取锁文件（不存在视为首次安装，返回空锁文件）
- 原子写入（临时文件 + rename，磁盘上永远不会出现写了一半的锁文件）

格式 (modkit.lock):
    {
      "version": "1",
      "generated_at": "2024-01-01T12:00:00+00:00",
      "packages": {
        "github.com/acme/utils@v1.2.0": {
          "version": "v1.2.0",
          "resolved_url": "https://...",
          "checksum": "sha256:...",
          "downloaded_at": "...",
          "dependencies": ["github.com/acme/core@v0.3.1"]
        }
      }
    }
"""

from __future__ import annotations

import json
import logging
from pathlib import Path

from modkit.core.exceptions import LockfileCorruptionError
from modkit.core.modules.models import Lockfile
from modkit.utils.yaml_io import atomic_write

logger = logging.getLogger(__name__)


def dump_lockfile(lockfile: Lockfile) -> str:
    return json.dumps(lockfile.to_dict(), indent=2, ensure_ascii=False) + "\n"


class LockfileManager:
    """锁文件读写（条目维护见 Lockfile.upsert / remove_entry / entries）"""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    def load(self) -> Lockfile:
        if not self.path.exists():
            logger.debug("锁文件不存在，按空锁文件处理: %s", self.path)
            return Lockfile()
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
            raise LockfileCorruptionError(f"无法解析锁文件 {self.path}: {e}") from e
        lockfile = Lockfile.from_dict(data)
        logger.debug("已加载锁文件 %s: %d 个条目", self.path, len(lockfile.packages))
        return lockfile

    def save(self, lockfile: Lockfile) -> None:
        atomic_write(self.path, dump_lockfile(lockfile))
        logger.info("锁文件已保存: %s (%d 个条目)", self.path, len(lockfile.packages))

