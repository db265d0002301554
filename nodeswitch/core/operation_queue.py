"""
操作队列模块。

决定安装、卸载、设置默认版本等操作何时可以执行：
    - 多个安装可以并行，同一版本不会重复安装
    - 卸载和设置默认版本是独占操作，同一时刻最多一个，且不能与安装同时进行
    - 暂时不能执行的操作按先进先出顺序排队，可按 id 取消

本模块只维护状态，不启动任何任务，调用方根据返回结果自行启动。
"""

from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Deque, Dict, List, Optional, Tuple

from nodeswitch.core.progress import InstallProgress
from nodeswitch.utils.logger import get_logger

logger = get_logger()


class OperationKind(Enum):
    INSTALL = "install"
    UNINSTALL = "uninstall"
    SET_DEFAULT = "set_default"

    @property
    def is_exclusive(self) -> bool:
        return self is not OperationKind.INSTALL


@dataclass(frozen=True)
class OperationRequest:
    """
    一次操作请求。

    env_id 在请求发出时确定，操作始终在该环境中执行。
    """

    kind: OperationKind
    version: str
    env_id: Any = None

    @property
    def is_exclusive(self) -> bool:
        return self.kind.is_exclusive

    @property
    def key(self) -> Tuple[OperationKind, str, Any]:
        return self.kind, self.version, self.env_id

    def __str__(self) -> str:
        return f"{self.kind.value} {self.version}"


@dataclass(frozen=True)
class QueuedOperation:
    id: int
    request: OperationRequest
    queued_at: datetime = field(default_factory=datetime.now)


class Admission(Enum):
    STARTED = "started"
    QUEUED = "queued"
    IGNORED = "ignored"


@dataclass(frozen=True)
class RequestResult:
    admission: Admission
    queued: Optional[QueuedOperation] = None


class OperationQueue:
    """
    操作队列状态机。

    属性:
        active_installs: 正在进行的安装，按版本索引，值为最近一次进度
        exclusive_op: 正在进行的独占操作
        pending: 等待中的操作
    """

    def __init__(self, clock: Callable[[], datetime] = datetime.now):
        self.active_installs: Dict[str, Tuple[OperationRequest, Optional[InstallProgress]]] = {}
        self.exclusive_op: Optional[OperationRequest] = None
        self.pending: Deque[QueuedOperation] = deque()
        self._next_id = 1
        self._clock = clock

    @property
    def is_idle(self) -> bool:
        return not self.active_installs and self.exclusive_op is None and not self.pending

    def is_active(self, request: OperationRequest) -> bool:
        if request.is_exclusive:
            return self.exclusive_op is not None and self.exclusive_op.key == request.key
        active = self.active_installs.get(request.version)
        return active is not None and active[0].key == request.key

    def is_queued(self, request: OperationRequest) -> bool:
        """
        判断请求是否已在排队。

        安装请求与同一环境中针对同一版本的任何排队操作都视为重复，
        避免排队中的卸载随后删掉刚安装的版本。
        """
        if request.is_exclusive:
            return any(q.request.key == request.key for q in self.pending)
        return any(
            q.request.version == request.version and q.request.env_id == request.env_id
            for q in self.pending
        )

    def _can_start(self, request: OperationRequest) -> bool:
        if self.exclusive_op is not None:
            return False
        if request.is_exclusive:
            return not self.active_installs
        return request.version not in self.active_installs

    def _start(self, request: OperationRequest) -> None:
        if request.is_exclusive:
            self.exclusive_op = request
        else:
            self.active_installs[request.version] = (request, None)

    def request(self, request: OperationRequest) -> RequestResult:
        """
        提交操作请求。

        返回:
            STARTED 表示调用方应立即启动；QUEUED 表示已排队（附带排队记录）；
            IGNORED 表示相同请求已在进行或排队中
        """
        if self.is_active(request) or self.is_queued(request):
            logger.debug(f"忽略重复请求: {request}")
            return RequestResult(Admission.IGNORED)

        if self._can_start(request):
            self._start(request)
            logger.debug(f"开始操作: {request}")
            return RequestResult(Admission.STARTED)

        return RequestResult(Admission.QUEUED, self._append(request))

    def enqueue(self, request: OperationRequest) -> Optional[QueuedOperation]:
        """
        不做准入判断，直接加入队列末尾，由随后的 drain 决定何时启动。

        返回:
            排队记录，重复请求返回 None
        """
        if self.is_active(request) or self.is_queued(request):
            logger.debug(f"忽略重复请求: {request}")
            return None
        return self._append(request)

    def _append(self, request: OperationRequest) -> QueuedOperation:
        queued = QueuedOperation(id=self._next_id, request=request, queued_at=self._clock())
        self._next_id += 1
        self.pending.append(queued)
        logger.info(f"操作已排队 #{queued.id}: {request}")
        return queued

    def update_progress(self, version: str, progress: InstallProgress) -> None:
        active = self.active_installs.get(version)
        if active is not None:
            self.active_installs[version] = (active[0], progress)

    def progress_of(self, version: str) -> Optional[InstallProgress]:
        active = self.active_installs.get(version)
        return active[1] if active else None

    def complete(self, request: OperationRequest) -> None:
        """标记操作结束，释放其占用的槽位。不会自动出队，调用方随后调用 drain。"""
        if request.is_exclusive:
            if self.exclusive_op is not None and self.exclusive_op.key == request.key:
                self.exclusive_op = None
        else:
            active = self.active_installs.get(request.version)
            if active is not None and active[0].key == request.key:
                del self.active_installs[request.version]
        logger.debug(f"操作结束: {request}")

    def drain(self) -> List[OperationRequest]:
        """
        按先进先出顺序取出可以启动的操作。

        取出第一个独占请求之前的所有可启动安装；同版本安装正在进行的
        安装保留在原位，不阻挡其后的安装。遇到独占请求时，只有在没有安装
        正在进行、且本轮没有取出安装的情况下才取出它，并停止本轮出队。

        返回:
            应立即启动的请求，已记为进行中
        """
        started: List[OperationRequest] = []
        if self.exclusive_op is not None:
            return started

        for queued in list(self.pending):
            request = queued.request
            if request.is_exclusive:
                if not self.active_installs and not started:
                    self.pending.remove(queued)
                    self._start(request)
                    started.append(request)
                break
            if request.version in self.active_installs:
                continue
            self.pending.remove(queued)
            self._start(request)
            started.append(request)

        if started:
            logger.info(f"出队 {len(started)} 个操作: {', '.join(str(r) for r in started)}")
        return started

    def cancel(self, op_id: int) -> Optional[QueuedOperation]:
        """
        取消排队中的操作。

        返回:
            被移除的记录，id 不存在时返回 None
        """
        for queued in self.pending:
            if queued.id == op_id:
                self.pending.remove(queued)
                logger.info(f"已取消排队操作 #{op_id}: {queued.request}")
                return queued
        return None

    def snapshot(self) -> Dict[str, Any]:
        return {
            "active_installs": sorted(self.active_installs),
            "exclusive_op": str(self.exclusive_op) if self.exclusive_op else None,
            "pending": [{"id": q.id, "operation": str(q.request)} for q in self.pending],
        }
