"""依赖管理器

维护三方一致性:
  清单 (modkit.yml)      人工编辑的版本约束
  锁文件 (modkit.lock)   解析后的锁定版本 + 校验和 + 依赖边
  缓存 (.modkit/modules) 解压后的模块源码

核心流程:
  1. 解析阶段（只读，可并发）: 为每个直接依赖子树选版本、下载、校验、
     解压到临时目录，并递归读取模块自带清单得到传递依赖
  2. 提交阶段（单写者）: 子树全部解析成功后，才把临时目录 rename 进缓存、
     写入锁文件；失败的子树不留下任何痕迹，其他独立子树照常提交
  3. 所有修改操作持有项目级咨询锁，另一个进程同时修改会立即失败

用法:
    from modkit.core.dep_manager import DependencyManager

    dm = DependencyManager("path/to/project")
    result = dm.install_all_dependencies()
    result.raise_for_errors()

    dm.install_direct_dependency("github.com/acme/utils", "^v1.0.0")
    updates = dm.check_available_updates()
    dm.cleanup_unused_dependencies()
"""

from __future__ import annotations

import logging
import shutil
import threading
from collections.abc import Iterator
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path

from modkit.core.config import Config
from modkit.core.exceptions import (
    ChecksumMismatchError,
    ConfigError,
    LockfileCorruptionError,
    ModKitError,
    NotFoundError,
    OperationCancelledError,
    ValidationError,
)
from modkit.core.manifest import load_manifest, normalize_constraint, save_manifest
from modkit.core.modules.cache import ModuleCache
from modkit.core.modules.fetcher import RemoteFetcher
from modkit.core.modules.graph import reachable_keys, root_entry
from modkit.core.modules.imports import ImportResolver, parse_remote_import, repo_path_of
from modkit.core.modules.lockfile import LockfileManager
from modkit.core.modules.models import (
    BatchResult,
    CleanupResult,
    DependencyStatus,
    ResolvedModule,
    UpdateInfo,
    module_key,
    split_module_key,
    utc_now,
)
from modkit.core.modules.resolver import (
    is_newer,
    is_version_like,
    parse_constraint,
    satisfies,
    select_best,
)
from modkit.utils.project_lock import ProjectLock

logger = logging.getLogger(__name__)

# 这两类错误使整个操作的前提失效，批量操作立即整体中止
_ABORTING = (ConfigError, LockfileCorruptionError)


@dataclass
class _Staged:
    """解析阶段产出的单个节点"""

    module: ResolvedModule
    staged_dir: Path | None = None  # 已解压、待提交的临时目录
    changed: bool = False           # 需要写入锁文件
    recovered: bool = False         # 按锁定版本重新下载（不修改锁文件）


@dataclass
class _Plan:
    """一个直接依赖子树的解析结果，提交前不触碰锁文件与正式缓存"""

    import_path: str
    constraint: str
    root_key: str = ""
    nodes: dict[str, _Staged] = field(default_factory=dict)

    @property
    def root(self) -> ResolvedModule:
        return self.nodes[self.root_key].module

    @property
    def is_noop(self) -> bool:
        return all(n.staged_dir is None and not n.changed for n in self.nodes.values())

    def discard(self) -> None:
        for node in self.nodes.values():
            if node.staged_dir is not None:
                shutil.rmtree(node.staged_dir.parent, ignore_errors=True)
                node.staged_dir = None


@dataclass
class _Request:
    import_path: str
    constraint: str
    refresh: bool = False


class DependencyManager:
    """单个项目根目录的依赖管理器（显式构造，不依赖全局状态）"""

    def __init__(
        self,
        project_root: str | Path,
        config: Config | None = None,
        fetcher: RemoteFetcher | None = None,
    ) -> None:
        self.project_root = Path(project_root).resolve()
        self.config = config or Config.for_project(self.project_root)
        self.manifest_path = self.project_root / self.config.manifest_file
        self.lockfile_manager = LockfileManager(self.project_root / self.config.lockfile_file)
        self.cache = ModuleCache(self.config.cache_root(self.project_root))
        self.fetcher = fetcher or RemoteFetcher(self.config)
        self._cancel: threading.Event = self.fetcher.cancel_event
        self._project_lock = ProjectLock(self.project_root / self.config.lock_file)
        self.imports = ImportResolver(self)
        self.reload()

    def reload(self) -> None:
        """从磁盘重新读取清单与锁文件"""
        self.manifest = load_manifest(self.manifest_path)
        self.lockfile = self.lockfile_manager.load()

    def cancel(self) -> None:
        """中断进行中的下载，未提交的解析结果全部丢弃"""
        logger.warning("收到取消请求，正在中止下载")
        self._cancel.set()

    # ------------------------------------------------------------------
    # 公共前置条件
    # ------------------------------------------------------------------

    @contextmanager
    def _mutation(self) -> Iterator[None]:
        with self._project_lock:
            self._cancel.clear()
            self.reload()
            self.cache.purge_staging()
            yield

    def _require_remote(self) -> None:
        """任何可能访问网络的操作之前检查远程导入开关"""
        if not self.manifest.allow_remote_import:
            raise ConfigError(
                "项目未开启远程模块导入，请在清单中设置 external.allow-remote-import: true"
            )

    def _save_lockfile(self) -> None:
        self.lockfile.generated_at = utc_now()
        self.lockfile_manager.save(self.lockfile)

    # ------------------------------------------------------------------
    # 解析阶段（只读）
    # ------------------------------------------------------------------

    def _plan(self, request: _Request) -> _Plan:
        plan = _Plan(request.import_path, request.constraint)
        try:
            plan.root_key = self._visit(
                plan, request.import_path, request.constraint, refresh=request.refresh,
            )
        except BaseException:
            plan.discard()
            raise
        return plan

    def _visit(
        self, plan: _Plan, import_path: str, constraint: str,
        *, refresh: bool = False, pin: str = "",
    ) -> str:
        """解析单个模块及其传递依赖，返回模块键"""
        for key, node in plan.nodes.items():
            m = node.module
            if m.import_path != import_path:
                continue
            if (pin and m.version == pin) or (not pin and satisfies(m.version, constraint)):
                # 子树内已解析（菱形依赖或循环依赖）
                return key

        if not refresh:
            locked = (
                self.lockfile.get(import_path, pin) if pin
                else root_entry(self.lockfile, import_path, constraint)
            )
            if locked is not None:
                return self._visit_locked(plan, locked)

        self._require_remote()
        if pin:
            version = pin
        else:
            version = select_best(self.fetcher.list_available_versions(import_path), constraint)
        locked = self.lockfile.get(import_path, version)
        if locked is not None:
            return self._visit_locked(plan, locked)

        url = self.fetcher.resolve_archive_url(import_path, version)
        staged, checksum = self._download(import_path, version, url, expected_checksum="")
        module = ResolvedModule(
            import_path=import_path, version=version, resolved_url=url,
            checksum=checksum, downloaded_at=utc_now(),
        )
        plan.nodes[module.key] = _Staged(module, staged_dir=staged, changed=True)
        logger.info("已解析 %s@%s", import_path, version, extra={"module_key": module.key})

        try:
            child_manifest = load_manifest(staged / self.config.manifest_file, required=False)
        except ConfigError as e:
            # 模块自带清单无效只影响本子树，不能中止整个批量操作
            raise ValidationError(f"模块 {module.key} 的清单无效: {e}") from e
        edges: list[str] = []
        for child_path, child_constraint in child_manifest.dependencies.items():
            if repo_path_of(child_path) == import_path:
                logger.warning("跳过自引用的传递依赖: %s", child_path)
                continue
            logger.info("发现传递依赖: %s -> %s %s", module.key, child_path, child_constraint)
            child_key = self._visit(
                plan, repo_path_of(child_path), child_constraint, refresh=refresh,
            )
            if child_key not in edges:
                edges.append(child_key)
        module.dependencies = edges
        return module.key

    def _visit_locked(self, plan: _Plan, locked: ResolvedModule) -> str:
        """复用锁定版本；缓存缺失时按锁定版本自动恢复，不重新选版本"""
        key = locked.key
        if key in plan.nodes:
            return key
        node = _Staged(locked)
        plan.nodes[key] = node
        if not self.cache.exists(locked.import_path, locked.version):
            self._require_remote()
            logger.warning("缓存缺失，按锁定版本恢复: %s", key, extra={"module_key": key})
            node.staged_dir, _ = self._download(
                locked.import_path, locked.version, locked.resolved_url,
                expected_checksum=locked.checksum,
            )
            node.recovered = True
        for dep_key in locked.dependencies:
            dep = self.lockfile.packages.get(dep_key)
            if dep is not None:
                self._visit_locked(plan, dep)
                continue
            # 悬空依赖边: 按边上记录的版本重新拉取
            dep_path, dep_version = split_module_key(dep_key)
            logger.warning("锁文件依赖边指向缺失条目，重新拉取: %s", dep_key)
            self._visit(plan, dep_path, dep_version, pin=dep_version)
        return key

    def _download(
        self, import_path: str, version: str, url: str, *, expected_checksum: str,
    ) -> tuple[Path, str]:
        """下载 + 校验 + 解压到缓存内的临时目录，返回 (解压目录, 校验和)"""
        archive = self.fetcher.fetch(
            url, expected_checksum=expected_checksum,
            import_path=import_path, version=version,
        )
        staging_root = self.cache.new_staging_dir()
        try:
            staged = self.fetcher.extract(archive.data, staging_root / "src")
        except BaseException:
            shutil.rmtree(staging_root, ignore_errors=True)
            raise
        return staged, archive.checksum

    def _plan_many(self, requests: list[_Request]) -> tuple[list[_Plan], dict[str, ModKitError]]:
        """并发解析多个独立子树（有界线程池）

        ConfigError / LockfileCorruptionError 会取消其余子树并整体抛出；
        收到取消请求时丢弃全部解析结果并抛出 OperationCancelledError。
        """
        futures: dict[Future[_Plan], _Request] = {}
        workers = max(1, min(self.config.max_workers, len(requests)))
        try:
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="modkit-resolve") as pool:
                for req in requests:
                    futures[pool.submit(self._plan, req)] = req
                try:
                    for fut in as_completed(futures):
                        if isinstance(fut.exception(), _ABORTING):
                            self._cancel.set()
                except BaseException:
                    self._cancel.set()
                    raise
        except BaseException:
            self._discard_futures(futures)
            raise

        plans: list[_Plan] = []
        failed: dict[str, ModKitError] = {}
        fatal: BaseException | None = None
        for fut, req in futures.items():
            exc = fut.exception()
            if exc is None:
                plans.append(fut.result())
            elif isinstance(exc, _ABORTING) or not isinstance(exc, ModKitError):
                fatal = fatal or exc
            else:
                logger.error("解析失败: %s - %s", req.import_path, exc)
                failed[req.import_path] = exc
        if fatal is not None:
            for plan in plans:
                plan.discard()
            raise fatal
        if self._cancel.is_set():
            # 取消前已解析完成的子树同样不提交
            for plan in plans:
                plan.discard()
            raise OperationCancelledError("操作已取消，未提交任何解析结果")
        return plans, failed

    @staticmethod
    def _discard_futures(futures: dict[Future[_Plan], _Request]) -> None:
        for fut in futures:
            if fut.done() and not fut.cancelled() and fut.exception() is None:
                fut.result().discard()

    # ------------------------------------------------------------------
    # 提交阶段（单写者）
    # ------------------------------------------------------------------

    def _commit(self, plan: _Plan, result: BatchResult) -> bool:
        """把一个子树写入缓存与内存锁文件，返回锁文件是否有变更

        缓存写入中途失败时回滚本子树新建的缓存目录。
        """
        for node in plan.nodes.values():
            if not node.changed:
                continue
            m = node.module
            existing = self.lockfile.get(m.import_path, m.version)
            if existing is None:
                continue
            if existing.checksum != m.checksum:
                raise ChecksumMismatchError(m.import_path, m.version, existing.checksum, m.checksum)
            # 同一批次中另一个子树已写入相同模块
            node.changed = False

        stored: list[ResolvedModule] = []
        try:
            for node in plan.nodes.values():
                if node.staged_dir is None:
                    continue
                m = node.module
                existed = self.cache.exists(m.import_path, m.version)
                if existed and node.changed:
                    # 没有锁文件条目支撑的目录内容不可信，换成刚校验过的内容
                    logger.warning("缓存目录无锁文件记录，替换为新下载的内容: %s", m.key)
                    self.cache.remove(m.import_path, m.version)
                    existed = False
                staging_root = node.staged_dir.parent
                self.cache.store(m.import_path, m.version, node.staged_dir)
                shutil.rmtree(staging_root, ignore_errors=True)
                node.staged_dir = None
                if not existed:
                    stored.append(m)
        except ModKitError:
            for m in stored:
                self.cache.remove(m.import_path, m.version)
            raise

        changed = False
        for key, node in plan.nodes.items():
            if node.changed:
                self.lockfile.upsert(node.module)
                result.installed.append(key)
                changed = True
            elif node.recovered:
                result.recovered.append(key)
        return changed

    def _apply(self, plans: list[_Plan], result: BatchResult) -> bool:
        """逐个提交子树，失败隔离到子树；返回锁文件是否有变更"""
        changed = False
        try:
            for plan in plans:
                if plan.is_noop:
                    result.skipped.append(plan.import_path)
                    continue
                try:
                    changed = self._commit(plan, result) or changed
                except ModKitError as e:
                    logger.error("提交失败: %s - %s", plan.import_path, e)
                    result.failed[plan.import_path] = e
        finally:
            for plan in plans:
                plan.discard()
        return changed

    # ------------------------------------------------------------------
    # 安装
    # ------------------------------------------------------------------

    def install_all_dependencies(self) -> BatchResult:
        """安装清单中的全部依赖（已满足且缓存存在的直接跳过）"""
        with self._mutation():
            result = BatchResult()
            deps = self.manifest.dependencies
            if not deps:
                logger.warning("清单中没有依赖，跳过安装")
                return result
            self._require_remote()
            logger.info("安装 %d 个依赖", len(deps))

            plans, failed = self._plan_many([_Request(p, c) for p, c in deps.items()])
            result.failed.update(failed)
            if self._apply(plans, result):
                self._save_lockfile()

            logger.info(
                "安装汇总: %d 新增, %d 恢复, %d 跳过, %d 失败",
                len(result.installed), len(result.recovered),
                len(result.skipped), len(result.failed),
            )
            return result

    def install_direct_dependency(self, spec: str, constraint: str = "") -> ResolvedModule:
        """安装单个直接依赖并写入清单

        spec 可以带版本: 'github.com/acme/utils@v1.2.0'（等价于精确约束）。
        未给出约束时清单记录 '^<解析出的版本>'。
        """
        import_path, version = parse_remote_import(spec)
        if not constraint and version != "latest":
            constraint = version
        constraint = normalize_constraint(constraint)
        parse_constraint(constraint)

        with self._mutation():
            self._require_remote()
            result = BatchResult()
            plans, failed = self._plan_many([_Request(import_path, constraint)])
            if failed:
                raise failed[import_path]
            plan = plans[0]
            if self._apply(plans, result):
                self._save_lockfile()
            if result.failed:
                raise result.failed[import_path]

            root = plan.root
            recorded = constraint or (f"^{root.version}" if is_version_like(root.version) else "")
            if self.manifest.dependencies.get(import_path) != recorded:
                self.manifest.dependencies[import_path] = recorded
                save_manifest(self.manifest, self.manifest_path)
            logger.info("已安装 %s (约束 %s)", root.key, recorded or "latest")
            return root

    # ------------------------------------------------------------------
    # 删除 / 清理
    # ------------------------------------------------------------------

    def remove_dependency(self, import_path: str) -> list[str]:
        """删除直接依赖，并清理因此不可达的锁文件条目与缓存，返回被清理的模块键"""
        with self._mutation():
            deps = self.manifest.dependencies
            if import_path not in deps:
                raise NotFoundError(f"{import_path} 不是直接依赖。已声明: {list(deps)}")

            before = reachable_keys(deps, self.lockfile)
            del deps[import_path]
            after = reachable_keys(deps, self.lockfile)
            pruned = sorted(before - after)
            for key in pruned:
                self.lockfile.remove_entry(*split_module_key(key))

            # 顺序: 清单 -> 锁文件 -> 缓存，任何时刻清单条目都有锁文件条目对应
            save_manifest(self.manifest, self.manifest_path)
            self._save_lockfile()
            for key in pruned:
                self.cache.remove(*split_module_key(key))
                if key.startswith(f"{import_path}@"):
                    logger.info("已删除 %s", key)
                else:
                    logger.info("同时删除不再使用的传递依赖: %s", key)
            return pruned

    def get_orphans(self) -> list[str]:
        """不可达的锁文件条目与缓存目录（只读预览）"""
        keep = reachable_keys(self.manifest.dependencies, self.lockfile)
        orphans = {k for k in self.lockfile.packages if k not in keep}
        orphans |= {module_key(p, v) for p, v in self.cache.list_all() if module_key(p, v) not in keep}
        return sorted(orphans)

    def cleanup_unused_dependencies(self) -> CleanupResult:
        """删除清单传递闭包之外的所有锁文件条目与缓存目录"""
        with self._mutation():
            keep = reachable_keys(self.manifest.dependencies, self.lockfile)
            result = CleanupResult()
            for entry in self.lockfile.entries():
                if entry.key not in keep:
                    self.lockfile.remove_entry(entry.import_path, entry.version)
                    result.removed_entries.append(entry.key)
            if result.removed_entries:
                self._save_lockfile()

            for import_path, version in self.cache.list_all():
                key = module_key(import_path, version)
                if key not in keep:
                    self.cache.remove(import_path, version)
                    result.removed_cache.append(key)
            logger.info(
                "清理完成: %d 个锁文件条目, %d 个缓存目录",
                len(result.removed_entries), len(result.removed_cache),
            )
            return result

    # ------------------------------------------------------------------
    # 更新
    # ------------------------------------------------------------------

    def update_dependency(self, import_path: str) -> UpdateInfo:
        """把单个直接依赖更新到满足约束的最新版本"""
        with self._mutation():
            if import_path not in self.manifest.dependencies:
                raise NotFoundError(f"{import_path} 不是直接依赖")
            self._require_remote()
            result = self._update([import_path])
            if result.failed:
                raise result.failed[import_path]
            return result.updates[0]

    def update_all_dependencies(self) -> BatchResult:
        """更新全部直接依赖；旧版本留给 cleanup 处理"""
        with self._mutation():
            if not self.manifest.dependencies:
                return BatchResult()
            self._require_remote()
            return self._update(list(self.manifest.dependencies))

    def _update(self, names: list[str]) -> BatchResult:
        deps = self.manifest.dependencies
        previous = {}
        for name in names:
            entry = root_entry(self.lockfile, name, deps[name])
            previous[name] = entry.version if entry else ""

        result = BatchResult()
        plans, failed = self._plan_many([_Request(n, deps[n], refresh=True) for n in names])
        result.failed.update(failed)
        if self._apply(plans, result):
            self._save_lockfile()

        for plan in plans:
            if plan.import_path in result.failed:
                continue
            old, new = previous[plan.import_path], plan.root.version
            result.updates.append(UpdateInfo(
                name=plan.import_path, constraint=plan.constraint,
                current_version=old, latest_version=new, has_update=old != new,
            ))
            if old != new:
                logger.info("已更新 %s: %s -> %s", plan.import_path, old or "(无)", new)
        return result

    def check_available_updates(self) -> list[UpdateInfo]:
        """只读: 查询每个直接依赖满足约束的最新版本，不修改任何状态"""
        deps = dict(self.manifest.dependencies)
        if not deps:
            return []
        self._require_remote()
        workers = max(1, min(self.config.max_workers, len(deps)))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="modkit-check") as pool:
            infos = list(pool.map(lambda item: self._check_one(*item), deps.items()))
        for info in infos:
            if info.has_update:
                logger.info("%s: %s -> %s", info.name, info.current_version, info.latest_version)
        return infos

    def _check_one(self, name: str, constraint: str) -> UpdateInfo:
        entry = root_entry(self.lockfile, name, constraint)
        current = entry.version if entry else ""
        info = UpdateInfo(name=name, constraint=constraint, current_version=current, latest_version="")
        try:
            versions = self.fetcher.list_available_versions(name)
            info.latest_version = select_best(versions, constraint)
            info.newest_version = select_best(versions, "")
        except _ABORTING:
            raise
        except ModKitError as e:
            logger.error("检查更新失败: %s - %s", name, e)
            info.error = str(e)
            return info
        info.has_update = bool(current) and is_newer(info.latest_version, current)
        return info

    # ------------------------------------------------------------------
    # 查询
    # ------------------------------------------------------------------

    def list_dependencies(self) -> list[DependencyStatus]:
        """锁文件中的每个条目及其缓存是否存在"""
        direct = set()
        for name, constraint in self.manifest.dependencies.items():
            entry = root_entry(self.lockfile, name, constraint)
            if entry is not None:
                direct.add(entry.key)
        return [
            DependencyStatus(
                import_path=e.import_path, version=e.version,
                cached=self.cache.exists(e.import_path, e.version),
                direct=e.key in direct, checksum=e.checksum,
            )
            for e in self.lockfile.entries()
        ]

    def resolve_import(self, import_path: str) -> tuple[Path | None, bool]:
        """编译器前端入口: 导入路径 -> (源码路径, 是否存在)"""
        return self.imports.resolve_import(import_path)
