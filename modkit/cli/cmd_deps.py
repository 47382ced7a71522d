"""CLI — 依赖管理命令"""

from __future__ import annotations

import signal
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import click

from modkit.core.exceptions import BatchOperationError, ModKitError

_project_option = click.option(
    "--project", "-C", default=".", show_default=True,
    type=click.Path(file_okay=False), help="项目根目录",
)


def register(group: click.Group) -> None:
    group.add_command(install)
    group.add_command(remove)
    group.add_command(update)
    group.add_command(check)
    group.add_command(list_deps)
    group.add_command(cleanup)


@contextmanager
def _manager(project: str) -> Iterator[Any]:
    """构造 DependencyManager，把 ModKitError 转为 ClickException；Ctrl-C 时取消下载"""
    from modkit.core.dep_manager import DependencyManager
    try:
        dm = DependencyManager(project)
    except ModKitError as e:
        raise click.ClickException(str(e)) from e

    previous = signal.getsignal(signal.SIGINT)

    def _on_interrupt(signum: int, frame: Any) -> None:
        dm.cancel()
        signal.signal(signal.SIGINT, previous)

    try:
        signal.signal(signal.SIGINT, _on_interrupt)
    except ValueError:
        # 非主线程（例如嵌入调用）无法安装信号处理器
        previous = None
    try:
        yield dm
    except ModKitError as e:
        raise click.ClickException(str(e)) from e
    finally:
        if previous is not None:
            signal.signal(signal.SIGINT, previous)


def _report_batch(result: Any) -> None:
    for key in result.installed:
        click.echo(f"  + {key}")
    for key in result.recovered:
        click.echo(f"  ~ {key} (已从锁文件恢复)")
    for name in result.skipped:
        click.echo(f"  = {name}")
    for name, err in result.failed.items():
        click.echo(f"  ! {name}: {err}", err=True)
    if result.failed:
        raise BatchOperationError(dict(result.failed))


@click.command()
@click.argument("spec", required=False)
@click.option("--constraint", default="", help="版本约束，如 ^v1.2.0（默认记录 ^<解析出的版本>）")
@_project_option
def install(spec: str | None, constraint: str, project: str) -> None:
    """安装依赖（不指定 SPEC 时安装清单中的全部依赖）"""
    with _manager(project) as dm:
        if spec:
            module = dm.install_direct_dependency(spec, constraint)
            click.echo(f"已安装: {module.key}")
            return
        result = dm.install_all_dependencies()
        if not (result.installed or result.recovered or result.skipped or result.failed):
            click.echo("清单中没有依赖。")
            return
        _report_batch(result)


@click.command()
@click.argument("name")
@_project_option
def remove(name: str, project: str) -> None:
    """删除直接依赖，并清理不再使用的传递依赖"""
    with _manager(project) as dm:
        pruned = dm.remove_dependency(name)
        click.echo(f"已删除: {name}")
        for key in pruned:
            click.echo(f"  - {key}")


@click.command()
@click.argument("name", required=False)
@_project_option
def update(name: str | None, project: str) -> None:
    """更新依赖到满足约束的最新版本（旧版本由 cleanup 清理）"""
    with _manager(project) as dm:
        if name:
            infos = [dm.update_dependency(name)]
            result = None
        else:
            result = dm.update_all_dependencies()
            infos = result.updates
        for info in infos:
            if info.has_update:
                click.echo(f"  {info.name}: {info.current_version or '(无)'} -> {info.latest_version}")
            else:
                click.echo(f"  {info.name}: {info.latest_version} (已是最新)")
        if result is not None and result.failed:
            for dep, err in result.failed.items():
                click.echo(f"  ! {dep}: {err}", err=True)
            raise BatchOperationError(dict(result.failed))


@click.command()
@_project_option
def check(project: str) -> None:
    """检查可用更新（只读）"""
    with _manager(project) as dm:
        infos = dm.check_available_updates()
        if not infos:
            click.echo("清单中没有依赖。")
            return
        for info in infos:
            if info.error:
                click.echo(f"  {info.name:40s} 检查失败: {info.error}")
                continue
            marker = " *" if info.has_update else ""
            newest = ""
            if info.newest_version and info.newest_version != info.latest_version:
                newest = f" (最新标签 {info.newest_version} 超出约束)"
            click.echo(
                f"  {info.name:40s} {info.constraint or 'latest':12s} "
                f"{info.current_version or '-':12s} -> {info.latest_version}{marker}{newest}"
            )


@click.command(name="list")
@_project_option
def list_deps(project: str) -> None:
    """列出锁文件中的全部模块及缓存状态"""
    with _manager(project) as dm:
        statuses = dm.list_dependencies()
        if not statuses:
            click.echo("锁文件中没有模块。")
            return
        for s in statuses:
            kind = "direct" if s.direct else "indirect"
            state = "cached" if s.cached else "missing"
            click.echo(f"  {s.import_path:40s} {s.version:12s} [{kind:8s}] {state}")


@click.command()
@click.option("--dry-run", is_flag=True, help="只列出将被清理的模块")
@_project_option
def cleanup(dry_run: bool, project: str) -> None:
    """清理不再被清单引用的锁文件条目与缓存目录"""
    with _manager(project) as dm:
        if dry_run:
            orphans = dm.get_orphans()
            for key in orphans:
                click.echo(f"  - {key}")
            click.echo(f"共 {len(orphans)} 个可清理模块。")
            return
        result = dm.cleanup_unused_dependencies()
        for key in sorted(set(result.removed_entries) | set(result.removed_cache)):
            click.echo(f"  - {key}")
        click.echo(f"已清理 {result.total} 个模块。")
