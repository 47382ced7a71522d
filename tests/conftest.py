"""测试公共夹具 - 内存中的假代码托管平台

FakeRemote 与 urllib.request.urlopen 调用签名相同，注入 RemoteFetcher 后:
  - 为 info/refs 请求返回 pkt-line 格式的标签列表
  - 为归档请求返回内存中构造的 tar.gz（带单层包裹目录）
  - 记录每一次请求，便于断言网络调用次数
"""

from __future__ import annotations

import hashlib
import io
import tarfile
import urllib.error
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest
import yaml

from modkit.core.config import Config
from modkit.core.dep_manager import DependencyManager
from modkit.core.modules.fetcher import RemoteFetcher

REFS_SUFFIX = ".git/info/refs?service=git-upload-pack"
ARCHIVE_MARKER = "/archive/refs/tags/"


def pkt_line(text: str) -> bytes:
    data = text.encode("utf-8")
    return f"{len(data) + 4:04x}".encode("ascii") + data


def build_archive(wrapper: str, files: dict[str, str]) -> bytes:
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w:gz") as tf:
        for name, content in files.items():
            data = content.encode("utf-8")
            info = tarfile.TarInfo(f"{wrapper}/{name}")
            info.size = len(data)
            info.mode = 0o644
            tf.addfile(info, io.BytesIO(data))
    return buf.getvalue()


class FakeRemote:
    """假远端: repo_path -> {tag: 归档字节}"""

    def __init__(self) -> None:
        self.archives: dict[str, dict[str, bytes]] = {}
        self.calls: list[str] = []
        self.errors: dict[str, list[BaseException]] = {}
        self.on_request: Callable[[str], None] | None = None

    def publish(
        self,
        repo_path: str,
        version: str,
        files: dict[str, str] | None = None,
        deps: dict[str, str] | None = None,
    ) -> None:
        contents = dict(files or {"lib.fer": f"// {repo_path} {version}\n"})
        if deps is not None:
            contents["modkit.yml"] = yaml.safe_dump({"dependencies": deps})
        wrapper = f"{repo_path.rsplit('/', 1)[-1]}-{version.lstrip('v')}"
        self.archives.setdefault(repo_path, {})[version] = build_archive(wrapper, contents)

    def tamper(self, repo_path: str, version: str) -> None:
        data = bytearray(self.archives[repo_path][version])
        data[len(data) // 2] ^= 0xFF
        self.archives[repo_path][version] = bytes(data)

    def fail_next(self, url: str, *errors: BaseException) -> None:
        self.errors.setdefault(url, []).extend(errors)

    def calls_to(self, fragment: str) -> list[str]:
        return [c for c in self.calls if fragment in c]

    def __call__(self, request: Any, timeout: float | None = None) -> io.BytesIO:
        url = getattr(request, "full_url", request)
        self.calls.append(url)
        if self.on_request is not None:
            self.on_request(url)
        pending = self.errors.get(url)
        if pending:
            raise pending.pop(0)

        body = url.split("://", 1)[1]
        if body.endswith(REFS_SUFFIX):
            repo_path = body[: -len(REFS_SUFFIX)]
            tags = self.archives.get(repo_path)
            if tags is None:
                raise urllib.error.HTTPError(url, 404, "Not Found", None, None)  # type: ignore[arg-type]
            out = pkt_line("# service=git-upload-pack\n") + b"0000"
            for i, tag in enumerate(tags):
                sha = hashlib.sha1(tag.encode()).hexdigest()
                caps = "\x00multi_ack side-band-64k" if i == 0 else ""
                out += pkt_line(f"{sha} refs/tags/{tag}{caps}\n")
                out += pkt_line(f"{sha} refs/tags/{tag}^{{}}\n")
            return io.BytesIO(out + b"0000")

        if ARCHIVE_MARKER in body:
            repo_path, _, tail = body.partition(ARCHIVE_MARKER)
            version = tail.removesuffix(".tar.gz")
            data = self.archives.get(repo_path, {}).get(version)
            if data is not None:
                return io.BytesIO(data)
        raise urllib.error.HTTPError(url, 404, "Not Found", None, None)  # type: ignore[arg-type]


def write_manifest(
    root: Path, deps: dict[str, str] | None = None, *, allow_remote: bool = True,
) -> Path:
    path = root / "modkit.yml"
    path.write_text(yaml.safe_dump({
        "name": "app",
        "dependencies": deps or {},
        "external": {"allow-remote-import": allow_remote},
    }), encoding="utf-8")
    return path


def read_manifest(root: Path) -> dict[str, Any]:
    return yaml.safe_load((root / "modkit.yml").read_text(encoding="utf-8"))


@pytest.fixture
def remote() -> FakeRemote:
    return FakeRemote()


@pytest.fixture
def test_config() -> Config:
    return Config(remote_hosts=["host", "github.com"], max_retries=2, retry_backoff=0.0)


@pytest.fixture
def make_fetcher(remote: FakeRemote, test_config: Config) -> Callable[..., RemoteFetcher]:
    def _make(**kwargs: Any) -> RemoteFetcher:
        kwargs.setdefault("opener", remote)
        kwargs.setdefault("sleep", lambda _delay: None)
        return RemoteFetcher(test_config, **kwargs)
    return _make


@pytest.fixture
def make_manager(
    remote: FakeRemote, test_config: Config, make_fetcher: Callable[..., RemoteFetcher],
) -> Callable[[Path], DependencyManager]:
    def _make(root: Path) -> DependencyManager:
        return DependencyManager(root, config=test_config, fetcher=make_fetcher())
    return _make


@pytest.fixture
def manifest_writer() -> Callable[..., Path]:
    return write_manifest


@pytest.fixture
def manifest_reader() -> Callable[[Path], dict[str, Any]]:
    return read_manifest
