"""
Qt 桥接模块。

把 Orchestrator 的请求暴露为 Qt 槽函数、事件暴露为 Qt 信号，供界面层使用。
后台任务通过 QThreadPool 执行；QTimer 在 Qt 主线程上处理收件箱，
保证 Orchestrator 的状态只在主线程上修改。
"""

from typing import Any, Callable, Dict, List, Optional

from PySide6.QtCore import Property, QObject, QRunnable, QThreadPool, QTimer, Signal, Slot

from nodeswitch.core import events
from nodeswitch.core.environment import Environment
from nodeswitch.core.orchestrator import Orchestrator
from nodeswitch.utils.logger import get_logger

logger = get_logger()

DEFAULT_PUMP_INTERVAL_MS = 50


class _TaskRunnable(QRunnable):
    """在线程池中执行一个后台任务。"""

    def __init__(self, task: Callable[[], None]):
        super().__init__()
        self._task = task
        self.setAutoDelete(True)

    def run(self):
        self._task()


class QtTaskRunner:
    """
    基于 QThreadPool 的后台任务执行器。

    参数:
        pool: 线程池，默认使用全局线程池
    """

    def __init__(self, pool: Optional[QThreadPool] = None):
        self._pool = pool or QThreadPool.globalInstance()

    def __call__(self, task: Callable[[], None]) -> None:
        self._pool.start(_TaskRunnable(task))

    def wait_for_done(self, msecs: int = -1) -> bool:
        return self._pool.waitForDone(msecs)


def _text(value: Any) -> str:
    return "" if value is None else str(value)


def _environment_to_dict(index: int, env: Environment) -> Dict[str, Any]:
    info = env.manager.backend_info if env.manager else None
    return {
        "index": index,
        "id": str(env.id),
        "name": env.name,
        "backend": env.backend_name or "",
        "backendVersion": _text(info.version if info else None),
        "available": env.available,
        "reason": _text(env.unavailable_reason),
        "loading": env.loading,
        "error": _text(env.error),
        "defaultVersion": _text(env.default_version),
    }


class CoreBridge(QObject):
    """
    Orchestrator 的 Qt 桥接类。

    参数:
        orchestrator: 应用核心，其任务执行器应为 QtTaskRunner
        pump_interval_ms: 处理收件箱的间隔（毫秒）
    """

    environmentsChanged = Signal()
    activeIndexChanged = Signal()
    pendingOperationsChanged = Signal()

    environmentLoaded = Signal(str, list, str)
    environmentError = Signal(str, str)
    environmentSelected = Signal(int, str)
    groupToggled = Signal(str, int, bool)
    remoteVersionsLoaded = Signal(list, bool)
    remoteVersionsError = Signal(str)
    releaseScheduleLoaded = Signal(dict, bool)
    releaseScheduleError = Signal(str)
    installProgressed = Signal(str, str, dict)
    installFinished = Signal(str, str, bool, str)
    uninstallFinished = Signal(str, str, bool, str)
    defaultChanged = Signal(str, str, str, bool, str)
    operationQueued = Signal(int, str)
    operationCancelled = Signal(int, bool)
    operationRejected = Signal(str)

    def __init__(
        self,
        orchestrator: Orchestrator,
        parent: Optional[QObject] = None,
        pump_interval_ms: int = DEFAULT_PUMP_INTERVAL_MS,
    ):
        super().__init__(parent)
        self._orchestrator = orchestrator
        self._event_handlers: Dict[type, Callable[[Any], None]] = {
            events.EnvironmentLoaded: self._on_environment_loaded,
            events.EnvironmentLoadError: self._on_environment_error,
            events.EnvironmentSelected: self._on_environment_selected,
            events.GroupToggled: lambda e: self.groupToggled.emit(str(e.env_id), e.major, e.is_expanded),
            events.RemoteVersionsLoaded: lambda e: self.remoteVersionsLoaded.emit(
                [v.to_dict() for v in e.versions], e.from_cache
            ),
            events.RemoteVersionsError: lambda e: self.remoteVersionsError.emit(e.message),
            events.ReleaseScheduleLoaded: lambda e: self.releaseScheduleLoaded.emit(e.schedule.to_dict(), e.from_cache),
            events.ReleaseScheduleError: lambda e: self.releaseScheduleError.emit(e.message),
            events.InstallProgressed: lambda e: self.installProgressed.emit(
                str(e.env_id), e.version, e.progress.to_dict()
            ),
            events.InstallFinished: self._on_install_finished,
            events.UninstallFinished: self._on_uninstall_finished,
            events.DefaultChanged: self._on_default_changed,
            events.OperationQueued: self._on_operation_queued,
            events.OperationCancelled: self._on_operation_cancelled,
            events.OperationRejected: lambda e: self.operationRejected.emit(e.reason),
        }
        orchestrator.subscribe(self._dispatch)

        self._timer = QTimer(self)
        self._timer.setInterval(pump_interval_ms)
        self._timer.timeout.connect(self._pump)
        self._timer.start()
        logger.info("CoreBridge 初始化完成")

    @property
    def orchestrator(self) -> Orchestrator:
        return self._orchestrator

    @Slot()
    def _pump(self):
        self._orchestrator.process_pending()

    def _dispatch(self, event: events.Event) -> None:
        handler = self._event_handlers.get(type(event))
        if handler is None:
            logger.debug(f"未映射的事件: {type(event).__name__}")
            return
        handler(event)

    # ---- 事件到信号 ----

    def _on_environment_loaded(self, event: events.EnvironmentLoaded):
        self.environmentLoaded.emit(
            str(event.env_id),
            [v.to_dict() for v in event.versions],
            _text(event.default_version),
        )
        self.environmentsChanged.emit()

    def _on_environment_error(self, event: events.EnvironmentLoadError):
        self.environmentError.emit(str(event.env_id), event.message)
        self.environmentsChanged.emit()

    def _on_environment_selected(self, event: events.EnvironmentSelected):
        self.environmentSelected.emit(event.index, str(event.env_id))
        self.activeIndexChanged.emit()

    def _on_install_finished(self, event: events.InstallFinished):
        self.installFinished.emit(str(event.env_id), event.version, event.success, _text(event.error))
        self.pendingOperationsChanged.emit()

    def _on_uninstall_finished(self, event: events.UninstallFinished):
        self.uninstallFinished.emit(str(event.env_id), event.version, event.success, _text(event.error))
        self.pendingOperationsChanged.emit()

    def _on_default_changed(self, event: events.DefaultChanged):
        self.defaultChanged.emit(
            str(event.env_id),
            event.version,
            _text(event.previous),
            event.success,
            _text(event.error),
        )
        self.pendingOperationsChanged.emit()

    def _on_operation_queued(self, event: events.OperationQueued):
        self.operationQueued.emit(event.id, str(event.request))
        self.pendingOperationsChanged.emit()

    def _on_operation_cancelled(self, event: events.OperationCancelled):
        self.operationCancelled.emit(event.id, event.found)
        self.pendingOperationsChanged.emit()

    # ---- 属性 ----

    @Property(list, notify=environmentsChanged)
    def environments(self) -> List[Dict[str, Any]]:
        """所有运行环境的摘要。"""
        return [_environment_to_dict(i, env) for i, env in enumerate(self._orchestrator.registry)]

    @Property(int, notify=activeIndexChanged)
    def activeIndex(self) -> int:
        return self._orchestrator.registry.active_index

    @Property(list, notify=pendingOperationsChanged)
    def pendingOperations(self) -> List[Dict[str, Any]]:
        """排队中的操作。"""
        return [
            {"id": q.id, "operation": str(q.request), "queuedAt": q.queued_at.isoformat()}
            for q in self._orchestrator.queue.pending
        ]

    # ---- 请求槽函数 ----

    @Slot()
    def start(self):
        self._orchestrator.start()

    @Slot()
    def listInstalled(self):
        self._orchestrator.handle(events.ListInstalled())

    @Slot()
    def refreshEnvironment(self):
        self._orchestrator.handle(events.RefreshEnvironment())

    @Slot(bool)
    def listRemote(self, lts_only: bool):
        self._orchestrator.handle(events.ListRemote(lts_only))

    @Slot()
    def fetchReleaseSchedule(self):
        self._orchestrator.handle(events.FetchReleaseSchedule())

    @Slot(str)
    def installVersion(self, version: str):
        self._orchestrator.handle(events.InstallVersion(version))

    @Slot(str)
    def uninstallVersion(self, version: str):
        self._orchestrator.handle(events.UninstallVersion(version))

    @Slot(str)
    def setDefault(self, version: str):
        self._orchestrator.handle(events.SetDefault(version))

    @Slot(int)
    def selectEnvironment(self, index: int):
        self._orchestrator.handle(events.SelectEnvironment(index))

    @Slot(int)
    def cancelQueued(self, op_id: int):
        self._orchestrator.handle(events.CancelQueued(op_id))

    @Slot(int)
    def toggleGroup(self, major: int):
        self._orchestrator.handle(events.ToggleGroup(major))

    @Slot()
    def bulkUpdateMajors(self):
        self._orchestrator.handle(events.BulkUpdateMajors())

    @Slot()
    def bulkUninstallEol(self):
        self._orchestrator.handle(events.BulkUninstallEol())

    @Slot(int, bool)
    def bulkUninstallMajor(self, major: int, keep_latest: bool):
        self._orchestrator.handle(events.BulkUninstallMajor(major, keep_latest))

    @Slot(str)
    def logInfo(self, message: str):
        """记录界面层日志。"""
        logger.info(f"[QML] {message}")

    @Slot(str)
    def logError(self, message: str):
        logger.error(f"[QML] {message}")
