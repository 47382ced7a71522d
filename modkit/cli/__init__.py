"""modkit 命令行接口

CLI 按领域拆分为子模块，每个模块注册自己的命令到 main group。
"""

import os

import click

from modkit import __version__
from modkit.utils.logger import setup_logging


@click.group()
@click.version_option(version=__version__)
def main() -> None:
    """modkit - 远程模块依赖管理"""
    setup_logging(
        level=os.getenv("MODKIT_LOG_LEVEL", "INFO"),
        json_output=os.getenv("MODKIT_LOG_JSON", "") == "1",
    )


# 注册各领域子命令
from modkit.cli.cmd_deps import register as _reg_deps  # noqa: E402

_reg_deps(main)
