"""网络工具 — URL / 主机 / 标识符安全校验

远程模块路径最终会被拼接成 URL，拼接前先做白名单校验，
防止 file:// 等非预期协议以及 SSRF。
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from urllib.parse import urlparse

from modkit.core.exceptions import ValidationError

_ALLOWED_SCHEMES = frozenset(("http", "https"))

_IDENTIFIER_RE = re.compile(r"^[A-Za-z0-9._-]+$")
MAX_IDENTIFIER_LEN = 100


def validate_url_scheme(url: str, *, context: str = "") -> None:
    """校验 URL 仅使用 http/https

    Raises:
        ValidationError: URL scheme 不在白名单内
    """
    parsed = urlparse(url)
    if parsed.scheme not in _ALLOWED_SCHEMES:
        label = f" ({context})" if context else ""
        raise ValidationError(
            f"不允许的 URL 协议 '{parsed.scheme}'{label}，"
            f"仅支持 http/https: {url}"
        )


def validate_host(host: str, allowed: Iterable[str]) -> None:
    """只允许访问配置中列出的代码托管主机"""
    allowed = list(allowed)
    if host not in allowed:
        raise ValidationError(
            f"不支持的代码托管主机: {host}", details=sorted(allowed),
        )


def validate_identifier(identifier: str, *, kind: str = "标识符") -> None:
    """校验 owner / repo 名称：字母数字、'-'、'_'、'.'，最长 100 字符"""
    if not identifier:
        raise ValidationError(f"{kind}不能为空")
    if len(identifier) > MAX_IDENTIFIER_LEN:
        raise ValidationError(f"{kind}过长: {identifier}")
    if identifier in (".", "..") or not _IDENTIFIER_RE.match(identifier):
        raise ValidationError(f"{kind}包含非法字符: {identifier}")
