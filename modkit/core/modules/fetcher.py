"""远程模块拉取器

职责:
- 导入路径 -> 源码归档 URL（按代码托管平台映射）
- 通过 git smart-HTTP 引用发现接口列出可用标签
- 流式下载归档并增量计算 sha256，带超时与有限次退避重试
- 校验和比对（不一致即视为篡改，绝不重试）
- 解压到临时目录、剥离单层包裹目录后原子 rename 到目标路径
"""

from __future__ import annotations

import hashlib
import http.client
import io
import logging
import shutil
import tarfile
import tempfile
import threading
import time
import urllib.error
import urllib.request
import zipfile
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from modkit import __version__
from modkit.core.config import Config
from modkit.core.exceptions import (
    CacheError,
    ChecksumMismatchError,
    NetworkError,
    OperationCancelledError,
)
from modkit.core.modules.imports import split_import_path
from modkit.utils.net import validate_host, validate_identifier, validate_url_scheme

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024
CHECKSUM_ALGO = "sha256"
USER_AGENT = f"modkit/{__version__}"

# 各平台的标签归档地址；未列出的主机按 GitHub 形式拼接
_ARCHIVE_URL_TEMPLATES = {
    "github.com": "https://{host}/{owner}/{repo}/archive/refs/tags/{version}.tar.gz",
    "gitlab.com": "https://{host}/{owner}/{repo}/-/archive/{version}/{repo}-{version}.tar.gz",
    "bitbucket.org": "https://{host}/{owner}/{repo}/get/{version}.tar.gz",
    "codeberg.org": "https://{host}/{owner}/{repo}/archive/{version}.tar.gz",
    "gitea.com": "https://{host}/{owner}/{repo}/archive/{version}.tar.gz",
}
_DEFAULT_ARCHIVE_URL = _ARCHIVE_URL_TEMPLATES["github.com"]
_REFS_URL = "https://{host}/{owner}/{repo}.git/info/refs?service=git-upload-pack"

# urllib.request.urlopen 兼容的调用签名: opener(request, timeout=...)
Opener = Callable[..., Any]


def compute_checksum(data: bytes) -> str:
    return f"{CHECKSUM_ALGO}:{hashlib.sha256(data).hexdigest()}"


def parse_pkt_lines(body: bytes) -> list[str]:
    """解析 git pkt-line 格式: 4 位十六进制长度 + 内容，'0000' 为 flush"""
    lines: list[str] = []
    while len(body) >= 4:
        try:
            length = int(body[:4].decode("ascii"), 16)
        except (UnicodeDecodeError, ValueError):
            break
        if length == 0:
            body = body[4:]
            continue
        if length < 4 or length > len(body):
            break
        lines.append(body[4:length].decode("utf-8", errors="replace"))
        body = body[length:]
    return lines


def tags_from_refs(lines: list[str]) -> list[str]:
    """从引用列表中提取 refs/tags/*，合并 '^{}' 解引用条目"""
    tags: list[str] = []
    for line in lines:
        if line.startswith("#") or not line.strip():
            continue
        _, _, ref = line.partition(" ")
        ref = ref.split("\x00", 1)[0].strip()
        if not ref.startswith("refs/tags/"):
            continue
        tag = ref[len("refs/tags/"):].removesuffix("^{}")
        if tag and tag not in tags:
            tags.append(tag)
    return tags


@dataclass
class FetchedArchive:
    """已下载的归档及其校验和"""

    url: str
    data: bytes
    checksum: str


class RemoteFetcher:
    """远程模块拉取器 - 只读网络访问，可被多个工作线程并发调用"""

    def __init__(
        self,
        config: Config,
        opener: Opener | None = None,
        cancel_event: threading.Event | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.config = config
        self._opener = opener or urllib.request.urlopen
        self.cancel_event = cancel_event or threading.Event()
        self._sleep = sleep

    # ------------------------------------------------------------------
    # 地址映射
    # ------------------------------------------------------------------

    def _split(self, import_path: str) -> tuple[str, str, str]:
        host, owner, repo, _ = split_import_path(import_path)
        validate_host(host, self.config.remote_hosts)
        validate_identifier(owner, kind="owner")
        validate_identifier(repo, kind="仓库名")
        return host, owner, repo

    def resolve_archive_url(self, import_path: str, version: str) -> str:
        host, owner, repo = self._split(import_path)
        validate_identifier(version, kind="版本")
        template = _ARCHIVE_URL_TEMPLATES.get(host, _DEFAULT_ARCHIVE_URL)
        return template.format(host=host, owner=owner, repo=repo, version=version)

    # ------------------------------------------------------------------
    # 标签查询
    # ------------------------------------------------------------------

    def list_available_versions(self, import_path: str) -> list[str]:
        """每次调用都重新查询远端，不缓存"""
        host, owner, repo = self._split(import_path)
        url = _REFS_URL.format(host=host, owner=owner, repo=repo)
        body, _ = self._with_retries(url)
        tags = tags_from_refs(parse_pkt_lines(body))
        logger.info("查询到 %s 的 %d 个标签", import_path, len(tags))
        return tags

    # ------------------------------------------------------------------
    # 下载
    # ------------------------------------------------------------------

    def fetch(
        self,
        url: str,
        *,
        expected_checksum: str = "",
        import_path: str = "",
        version: str = "",
    ) -> FetchedArchive:
        """下载归档并计算校验和

        expected_checksum 非空时必须一致，否则抛出 ChecksumMismatchError（不重试）。
        """
        data, checksum = self._with_retries(url)
        if expected_checksum and checksum != expected_checksum:
            raise ChecksumMismatchError(
                import_path or url, version, expected_checksum, checksum,
            )
        logger.info("已下载 %s (%d 字节, %s)", url, len(data), checksum)
        return FetchedArchive(url=url, data=data, checksum=checksum)

    def _with_retries(self, url: str) -> tuple[bytes, str]:
        validate_url_scheme(url, context="module fetch")
        attempts = self.config.max_retries + 1
        for attempt in range(1, attempts + 1):
            try:
                return self._read(url)
            except NetworkError as e:
                if not e.retryable or attempt >= attempts:
                    raise
                delay = self.config.retry_backoff * (2 ** (attempt - 1))
                logger.warning(
                    "下载失败，%.1fs 后重试 (%d/%d): %s - %s",
                    delay, attempt, attempts - 1, url, e,
                    extra={"url": url, "attempt": attempt},
                )
                self._sleep(delay)
        raise NetworkError(f"下载失败: {url}")

    def _check_cancelled(self, url: str) -> None:
        if self.cancel_event.is_set():
            raise OperationCancelledError(f"下载已取消: {url}")

    def _read(self, url: str) -> tuple[bytes, str]:
        self._check_cancelled(url)
        request = urllib.request.Request(url, headers={"User-Agent": USER_AGENT})
        hasher = hashlib.sha256()
        buf = io.BytesIO()
        try:
            with self._opener(request, timeout=self.config.timeout) as resp:  # nosec B310
                while True:
                    self._check_cancelled(url)
                    chunk = resp.read(CHUNK_SIZE)
                    if not chunk:
                        break
                    hasher.update(chunk)
                    buf.write(chunk)
        except urllib.error.HTTPError as e:
            transient = e.code >= 500 or e.code == 429
            raise NetworkError(
                f"下载失败: {url} - HTTP {e.code}", retryable=transient,
            ) from e
        except (urllib.error.URLError, http.client.HTTPException, OSError) as e:
            # URLError / 超时 / 连接重置均视为瞬时故障
            raise NetworkError(f"下载失败: {url} - {e}") from e
        return buf.getvalue(), f"{CHECKSUM_ALGO}:{hasher.hexdigest()}"

    # ------------------------------------------------------------------
    # 解压
    # ------------------------------------------------------------------

    def extract(self, data: bytes, dest_dir: Path) -> Path:
        """解压归档到 dest_dir

        先解压到同级临时目录，剥离单层包裹目录（如 utils-1.2.0/），
        再原子 rename 到 dest_dir；失败时不留下任何目录。
        """
        dest_dir = Path(dest_dir)
        if dest_dir.exists():
            raise CacheError(f"解压目标已存在: {dest_dir}")
        dest_dir.parent.mkdir(parents=True, exist_ok=True)
        work = Path(tempfile.mkdtemp(dir=str(dest_dir.parent), prefix=".extract-"))
        try:
            tree = work / "tree"
            tree.mkdir()
            self._unpack(data, tree)
            children = list(tree.iterdir())
            root = children[0] if len(children) == 1 and children[0].is_dir() else tree
            root.rename(dest_dir)
        except (tarfile.TarError, zipfile.BadZipFile, OSError) as e:
            raise CacheError(f"解压失败 -> {dest_dir}: {e}") from e
        finally:
            shutil.rmtree(work, ignore_errors=True)
        return dest_dir

    @staticmethod
    def _unpack(data: bytes, target: Path) -> None:
        stream = io.BytesIO(data)
        if zipfile.is_zipfile(stream):
            stream.seek(0)
            with zipfile.ZipFile(stream) as zf:
                for name in zf.namelist():
                    resolved = (target / name).resolve()
                    if resolved != target.resolve() and target.resolve() not in resolved.parents:
                        raise CacheError(f"归档成员越界: {name}")
                zf.extractall(path=str(target))
            return
        stream.seek(0)
        with tarfile.open(fileobj=stream, mode="r:*") as tf:
            tf.extractall(path=str(target), filter="data")  # noqa: S202
