"""
操作编排模块。

Orchestrator 接收外部请求，把子进程调用交给后台任务执行，并在所属线程上
处理任务完成消息、推进环境状态和操作队列，再把状态变化以事件的形式通知订阅者。

线程模型：
    - 所有状态（环境、操作队列、远程版本缓存）只在调用 handle() 和
      process_pending() 的线程上修改
    - 后台任务只执行子进程调用，结果以消息的形式放入收件箱
"""

import queue
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from enum import Enum
from functools import partial
from typing import Callable, Dict, List, Optional

from nodeswitch.core.config_manager import ConfigManager, ConfigSaveError, VersionCache
from nodeswitch.core.environment import Environment, EnvironmentId, EnvironmentRegistry
from nodeswitch.core.errors import BackendError
from nodeswitch.core.events import (
    BulkUninstallEol,
    BulkUninstallMajor,
    BulkUpdateMajors,
    CancelQueued,
    DefaultChanged,
    EnvironmentLoadError,
    EnvironmentLoaded,
    EnvironmentSelected,
    Event,
    FetchReleaseSchedule,
    GroupToggled,
    InstallFinished,
    InstallProgressed,
    InstallVersion,
    ListInstalled,
    ListRemote,
    OperationCancelled,
    OperationQueued,
    OperationRejected,
    RefreshEnvironment,
    ReleaseScheduleError,
    ReleaseScheduleLoaded,
    RemoteVersionsError,
    RemoteVersionsLoaded,
    Request,
    SelectEnvironment,
    SetDefault,
    ToggleGroup,
    UninstallFinished,
    UninstallVersion,
)
from nodeswitch.core.operation_queue import Admission, OperationKind, OperationQueue, OperationRequest
from nodeswitch.core.progress import InstallPhase, InstallProgress
from nodeswitch.core.schedule import ReleaseSchedule, ScheduleFetchError, fetch_release_schedule
from nodeswitch.core.version_utils import RemoteVersion, SemVer, latest_by_major, mark_latest
from nodeswitch.utils.input_validator import InputValidationError, InputValidator
from nodeswitch.utils.logger import get_logger

logger = get_logger()

Listener = Callable[[Event], None]
Task = Callable[[], None]
Runner = Callable[[Task], None]
Message = Callable[[], None]


class NetworkStatus(Enum):
    ONLINE = "online"
    FETCHING = "fetching"
    OFFLINE = "offline"
    STALE = "stale"


class ThreadPoolRunner:
    """默认的后台任务执行器。"""

    def __init__(self, max_workers: int = 8):
        self._pool = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="nodeswitch-worker")

    def __call__(self, task: Task) -> None:
        self._pool.submit(task)

    def shutdown(self, wait: bool = True) -> None:
        self._pool.shutdown(wait=wait)


class Orchestrator:
    """
    应用核心。

    参数:
        registry: 运行环境注册表
        config: 配置管理器，None 时不读写磁盘缓存
        runner: 后台任务执行器，接收一个无参可调用对象
        schedule_fetcher: 获取发布计划的函数，默认通过网络获取
    """

    def __init__(
        self,
        registry: EnvironmentRegistry,
        config: Optional[ConfigManager] = None,
        runner: Optional[Runner] = None,
        schedule_fetcher: Optional[Callable[[], ReleaseSchedule]] = None,
    ):
        self.registry = registry
        self.config = config
        self.queue = OperationQueue()
        self._owns_runner = runner is None
        self._runner: Runner = runner or ThreadPoolRunner()
        self._schedule_fetcher = schedule_fetcher or self._fetch_schedule
        self._inbox: "queue.Queue[Message]" = queue.Queue()
        self._listeners: List[Listener] = []
        self._outstanding = 0
        self._reload_requested = set()

        self.remote_versions: List[RemoteVersion] = []
        self.remote_error: Optional[str] = None
        self.remote_fetched_at: Optional[datetime] = None
        self.release_schedule: Optional[ReleaseSchedule] = None
        self.network_status = NetworkStatus.OFFLINE
        self.loaded_from_disk = False

        self._handlers: Dict[type, Callable[[Request], None]] = {
            ListInstalled: self._handle_list_installed,
            RefreshEnvironment: self._handle_list_installed,
            ListRemote: self._handle_list_remote,
            FetchReleaseSchedule: self._handle_fetch_schedule,
            InstallVersion: self._handle_operation,
            UninstallVersion: self._handle_operation,
            SetDefault: self._handle_operation,
            SelectEnvironment: self._handle_select_environment,
            CancelQueued: self._handle_cancel,
            ToggleGroup: self._handle_toggle_group,
            BulkUpdateMajors: self._handle_bulk_update_majors,
            BulkUninstallEol: self._handle_bulk_uninstall_eol,
            BulkUninstallMajor: self._handle_bulk_uninstall_major,
        }

        self._load_cache()

    # ---- 订阅与消息循环 ----

    def subscribe(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def unsubscribe(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _emit(self, event: Event) -> None:
        for listener in list(self._listeners):
            listener(event)

    @property
    def is_idle(self) -> bool:
        """没有未完成的后台任务且收件箱为空。"""
        return self._outstanding == 0 and self._inbox.empty()

    def process_pending(self, block: bool = False, timeout: Optional[float] = None) -> int:
        """
        处理收件箱中的消息。

        参数:
            block: 收件箱为空时是否等待第一条消息
            timeout: 等待的最长时间（秒）

        返回:
            处理的消息数
        """
        processed = 0
        while True:
            try:
                message = self._inbox.get(block=block and processed == 0, timeout=timeout)
            except queue.Empty:
                break
            message()
            processed += 1
        return processed

    def run_until_idle(self, timeout: Optional[float] = None, poll_interval: float = 0.1) -> bool:
        """
        持续处理消息直到所有后台任务完成。

        返回:
            在超时前进入空闲状态返回 True
        """
        deadline = time.monotonic() + timeout if timeout is not None else None
        while not self.is_idle:
            if deadline is not None and time.monotonic() >= deadline:
                return False
            self.process_pending(block=True, timeout=poll_interval)
        return True

    def shutdown(self) -> None:
        if self._owns_runner and isinstance(self._runner, ThreadPoolRunner):
            self._runner.shutdown(wait=False)

    def _post(self, message: Message) -> None:
        self._inbox.put(message)

    def _spawn(
        self,
        name: str,
        work: Callable[[], Message],
        on_failure: Callable[[str], Message],
    ) -> None:
        """
        在后台执行 work，并把其返回的消息放入收件箱。

        work 抛出的任何错误都转换为 on_failure 生成的消息，不会越过任务边界。
        """
        self._outstanding += 1

        def task() -> None:
            logger.debug(f"[ASYNC] 开始任务: {name}")
            try:
                message = work()
            except (BackendError, ScheduleFetchError) as e:
                logger.error(f"[ASYNC] {name} 失败: {e}")
                message = on_failure(str(e))
            except Exception as e:
                logger.error(f"[ASYNC] {name} 出现未预期的错误: {e}", exc_info=True)
                message = on_failure(str(e))
            self._post(partial(self._finish_task, message))

        self._runner(task)

    def _finish_task(self, message: Message) -> None:
        self._outstanding -= 1
        message()

    # ---- 请求入口 ----

    def handle(self, request: Request) -> None:
        """
        处理一个外部请求。只能在所属线程上调用。

        抛出:
            TypeError: 未知的请求类型
        """
        handler = self._handlers.get(type(request))
        if handler is None:
            raise TypeError(f"未知的请求类型: {type(request).__name__}")
        logger.debug(f"处理请求: {request}")
        handler(request)

    def start(self, fetch_remote: bool = True) -> None:
        """
        启动：发出磁盘缓存中的数据，加载活动环境，缓存缺失或过期时刷新远程数据。
        """
        if self.loaded_from_disk:
            self._emit(RemoteVersionsLoaded(list(self.remote_versions), from_cache=True))
            if self.release_schedule is not None:
                self._emit(ReleaseScheduleLoaded(self.release_schedule, from_cache=True))

        active = self.registry.active
        if active.needs_load:
            self._load_environment(active)

        if fetch_remote and (not self.loaded_from_disk or self.network_status is NetworkStatus.STALE):
            self.handle(ListRemote())
            self.handle(FetchReleaseSchedule())

    # ---- 磁盘缓存 ----

    def _load_cache(self) -> None:
        if self.config is None:
            return
        cache = self.config.load_version_cache()
        if cache is None:
            return
        self.remote_versions = mark_latest(cache.remote_versions)
        self.release_schedule = cache.release_schedule
        self.remote_fetched_at = cache.cached_at
        self.loaded_from_disk = True
        self.network_status = NetworkStatus.STALE if self.config.is_cache_stale(cache) else NetworkStatus.ONLINE
        logger.info(f"已从磁盘缓存加载 {len(self.remote_versions)} 个远程版本")

    def _save_cache(self) -> None:
        if self.config is None:
            return
        cache = VersionCache(self.remote_versions, self.release_schedule, self.remote_fetched_at)
        try:
            self.config.save_version_cache(cache)
        except ConfigSaveError as e:
            logger.warning(f"保存版本缓存失败: {e}")

    def _fetch_schedule(self) -> ReleaseSchedule:
        if self.config is None:
            return fetch_release_schedule()
        return fetch_release_schedule(
            url=self.config.get_schedule_url(),
            max_retries=self.config.get_request_retry_count(),
            active_major_floor=self.config.get_active_major_floor(),
        )

    # ---- 环境加载 ----

    def _load_environment(self, env: Environment) -> None:
        if not env.available:
            logger.debug(f"跳过不可用的环境: {env.name} ({env.unavailable_reason})")
            self._emit(EnvironmentLoadError(env.id, env.unavailable_reason or "环境不可用"))
            return
        if env.loading:
            self._reload_requested.add(env.id)
            return

        env.begin_load()
        manager = env.manager
        env_id = env.id

        def work() -> Message:
            versions = manager.list_installed()
            default = None
            if not any(v.is_default for v in versions):
                default = manager.default_version()
            logger.info(f"[ASYNC] {env_id} 已加载 {len(versions)} 个版本")
            return partial(self._on_environment_loaded, env_id, versions, default)

        self._spawn(
            f"加载 {env.name}",
            work,
            lambda message: partial(self._on_environment_failed, env_id, message),
        )

    def _after_load(self, env: Environment) -> None:
        if env.id in self._reload_requested:
            self._reload_requested.discard(env.id)
            self._load_environment(env)

    def _on_environment_loaded(self, env_id: EnvironmentId, versions, default: Optional[SemVer]) -> None:
        env = self.registry.get(env_id)
        if env is None:
            return
        env.update_versions(versions, default)
        self._emit(EnvironmentLoaded(env_id, list(env.installed_versions), env.default_version))
        self._after_load(env)

    def _on_environment_failed(self, env_id: EnvironmentId, message: str) -> None:
        env = self.registry.get(env_id)
        if env is None:
            return
        env.set_error(message)
        self._emit(EnvironmentLoadError(env_id, message))
        self._after_load(env)

    def _handle_list_installed(self, request: Request) -> None:
        self._load_environment(self.registry.active)

    def _handle_select_environment(self, request: SelectEnvironment) -> None:
        try:
            env = self.registry.select(request.index)
        except IndexError as e:
            self._emit(OperationRejected(request, str(e)))
            return
        self._emit(EnvironmentSelected(request.index, env.id))
        if env.needs_load:
            self._load_environment(env)
        elif env.loaded:
            self._emit(EnvironmentLoaded(env.id, list(env.installed_versions), env.default_version))

    def _handle_toggle_group(self, request: ToggleGroup) -> None:
        env = self.registry.active
        expanded = env.toggle_group(request.major)
        if expanded is not None:
            self._emit(GroupToggled(env.id, request.major, expanded))

    # ---- 远程数据 ----

    def _handle_list_remote(self, request: ListRemote) -> None:
        env = self.registry.active
        if not env.available:
            self._emit(RemoteVersionsError(env.unavailable_reason or "环境不可用"))
            return
        manager = env.manager
        self.network_status = NetworkStatus.FETCHING

        def work() -> Message:
            if request.lts_only:
                versions = manager.list_remote_lts()
            else:
                versions = manager.list_remote()
            logger.info(f"[ASYNC] 获取到 {len(versions)} 个远程版本")
            return partial(self._on_remote_loaded, versions, request.lts_only)

        self._spawn("获取远程版本", work, lambda message: partial(self._on_remote_failed, message))

    def _on_remote_loaded(self, versions: List[RemoteVersion], lts_only: bool) -> None:
        self.network_status = NetworkStatus.ONLINE
        self.remote_error = None
        if not lts_only:
            self.remote_versions = mark_latest(versions)
            self.remote_fetched_at = datetime.now(timezone.utc)
            self._save_cache()
            versions = self.remote_versions
        self._emit(RemoteVersionsLoaded(list(versions)))

    def _on_remote_failed(self, message: str) -> None:
        self.remote_error = message
        self.network_status = NetworkStatus.STALE if self.remote_versions else NetworkStatus.OFFLINE
        self._emit(RemoteVersionsError(message))

    def _handle_fetch_schedule(self, request: FetchReleaseSchedule) -> None:
        fetcher = self._schedule_fetcher

        def work() -> Message:
            return partial(self._on_schedule_loaded, fetcher())

        self._spawn("获取发布计划", work, lambda message: partial(self._emit, ReleaseScheduleError(message)))

    def _on_schedule_loaded(self, schedule: ReleaseSchedule) -> None:
        self.release_schedule = schedule
        self._save_cache()
        self._emit(ReleaseScheduleLoaded(schedule))

    # ---- 安装、卸载、设置默认版本 ----

    _OPERATION_KINDS = {
        InstallVersion: OperationKind.INSTALL,
        UninstallVersion: OperationKind.UNINSTALL,
        SetDefault: OperationKind.SET_DEFAULT,
    }

    def _build_operation(self, request: Request, kind: OperationKind, text: str) -> Optional[OperationRequest]:
        """校验输入并绑定到活动环境，失败时发出 OperationRejected 并返回 None。"""
        version = InputValidator.sanitize_version_string(text)
        try:
            InputValidator.validate_version_string(version)
        except InputValidationError as e:
            logger.warning(f"拒绝请求 {request}: {e}")
            self._emit(OperationRejected(request, str(e)))
            return None

        env = self.registry.active
        if not env.available:
            reason = env.unavailable_reason or "环境不可用"
            logger.warning(f"拒绝请求 {request}: {reason}")
            self._emit(OperationRejected(request, reason))
            return None
        return OperationRequest(kind, version, env.id)

    def _handle_operation(self, request: Request) -> None:
        kind = self._OPERATION_KINDS[type(request)]
        op = self._build_operation(request, kind, request.version)
        if op is None:
            return
        result = self.queue.request(op)
        if result.admission is Admission.STARTED:
            self._start_operation(op)
        elif result.admission is Admission.QUEUED:
            self._emit(OperationQueued(result.queued.id, op))

    def _enqueue_all(self, request: Request, kind: OperationKind, versions: List[str]) -> None:
        """批量请求：全部加入队列后统一出队。"""
        for version in versions:
            op = self._build_operation(request, kind, version)
            if op is None:
                continue
            queued = self.queue.enqueue(op)
            if queued is not None:
                self._emit(OperationQueued(queued.id, op))
        self._drain()

    def _drain(self) -> None:
        for op in self.queue.drain():
            self._start_operation(op)

    def _start_operation(self, op: OperationRequest) -> None:
        env = self.registry.get(op.env_id)
        if env is None or not env.available:
            self._on_operation_finished(op, "环境不可用")
            return
        manager = env.manager

        def on_failure(message: str) -> Message:
            return partial(self._on_operation_finished, op, message)

        if op.kind is OperationKind.INSTALL:
            def work() -> Message:
                error = "安装进程未给出结果"
                for progress in manager.install_with_progress(op.version):
                    self._post(partial(self._on_install_progress, op, progress))
                    if progress.phase is InstallPhase.FAILED:
                        error = progress.error or "安装失败"
                        break
                    if progress.phase is InstallPhase.COMPLETE:
                        error = None
                        break
                return partial(self._on_operation_finished, op, error)

            self._spawn(f"安装 {op.version}", work, on_failure)

        elif op.kind is OperationKind.UNINSTALL:
            def work() -> Message:
                manager.uninstall(op.version)
                return partial(self._on_operation_finished, op, None)

            self._spawn(f"卸载 {op.version}", work, on_failure)

        else:
            previous = env.default_version

            def work() -> Message:
                manager.set_default(op.version)
                return partial(self._on_operation_finished, op, None, previous)

            self._spawn(
                f"设置默认版本 {op.version}",
                work,
                lambda message: partial(self._on_operation_finished, op, message, previous),
            )

    def _on_install_progress(self, op: OperationRequest, progress: InstallProgress) -> None:
        self.queue.update_progress(op.version, progress)
        self._emit(InstallProgressed(op.env_id, op.version, progress))

    def _on_operation_finished(
        self,
        op: OperationRequest,
        error: Optional[str],
        previous: Optional[SemVer] = None,
    ) -> None:
        self.queue.complete(op)
        success = error is None
        if success:
            logger.info(f"操作完成: {op}")
        else:
            logger.error(f"操作失败: {op}: {error}")

        if op.kind is OperationKind.INSTALL:
            self._emit(InstallFinished(op.env_id, op.version, success, error))
        elif op.kind is OperationKind.UNINSTALL:
            self._emit(UninstallFinished(op.env_id, op.version, success, error))
        else:
            self._emit(DefaultChanged(op.env_id, op.version, previous, success, error))

        env = self.registry.get(op.env_id)
        if env is not None and env.available:
            self._load_environment(env)
        self._drain()

    def _handle_cancel(self, request: CancelQueued) -> None:
        removed = self.queue.cancel(request.id)
        self._emit(OperationCancelled(request.id, removed is not None))

    # ---- 批量操作 ----

    def _handle_bulk_update_majors(self, request: BulkUpdateMajors) -> None:
        if not self.remote_versions:
            self._emit(OperationRejected(request, "远程版本列表为空"))
            return
        env = self.registry.active
        remote_latest = latest_by_major(v.version for v in self.remote_versions)
        installed_latest = latest_by_major(v.version for v in env.installed_versions)
        targets = [
            str(remote_latest[major])
            for major, installed in sorted(installed_latest.items(), reverse=True)
            if major in remote_latest and remote_latest[major] > installed
        ]
        logger.info(f"需要更新的主版本: {targets}")
        self._enqueue_all(request, OperationKind.INSTALL, targets)

    def _handle_bulk_uninstall_eol(self, request: BulkUninstallEol) -> None:
        if self.release_schedule is None:
            self._emit(OperationRejected(request, "发布计划尚未加载"))
            return
        env = self.registry.active
        targets = [
            str(v.version)
            for v in env.installed_versions
            if not self.release_schedule.is_active(v.version.major)
        ]
        logger.info(f"已停止支持的版本: {targets}")
        self._enqueue_all(request, OperationKind.UNINSTALL, targets)

    def _handle_bulk_uninstall_major(self, request: BulkUninstallMajor) -> None:
        env = self.registry.active
        versions = sorted(
            (v.version for v in env.installed_versions if v.version.major == request.major),
            reverse=True,
        )
        if request.keep_latest:
            versions = versions[1:]
        self._enqueue_all(request, OperationKind.UNINSTALL, [str(v) for v in versions])
