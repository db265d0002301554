"""
请求与事件定义。

请求由界面或命令行发给 Orchestrator；事件由 Orchestrator 发给订阅者。
"""

from dataclasses import dataclass
from typing import List, Optional

from nodeswitch.core.environment import EnvironmentId
from nodeswitch.core.operation_queue import OperationRequest
from nodeswitch.core.progress import InstallProgress
from nodeswitch.core.schedule import ReleaseSchedule
from nodeswitch.core.version_utils import InstalledVersion, RemoteVersion, SemVer


class Request:
    """请求基类。"""


class Event:
    """事件基类。"""


# ---- 请求 ----

@dataclass(frozen=True)
class ListInstalled(Request):
    pass


@dataclass(frozen=True)
class ListRemote(Request):
    lts_only: bool = False


@dataclass(frozen=True)
class FetchReleaseSchedule(Request):
    pass


@dataclass(frozen=True)
class InstallVersion(Request):
    version: str


@dataclass(frozen=True)
class UninstallVersion(Request):
    version: str


@dataclass(frozen=True)
class SetDefault(Request):
    version: str


@dataclass(frozen=True)
class SelectEnvironment(Request):
    index: int


@dataclass(frozen=True)
class CancelQueued(Request):
    id: int


@dataclass(frozen=True)
class RefreshEnvironment(Request):
    pass


@dataclass(frozen=True)
class ToggleGroup(Request):
    major: int


@dataclass(frozen=True)
class BulkUpdateMajors(Request):
    """为每个已安装的主版本安装其最新的远程版本。"""


@dataclass(frozen=True)
class BulkUninstallEol(Request):
    """卸载所有已停止支持的主版本。"""


@dataclass(frozen=True)
class BulkUninstallMajor(Request):
    major: int
    keep_latest: bool = True


# ---- 事件 ----

@dataclass(frozen=True)
class EnvironmentLoaded(Event):
    env_id: EnvironmentId
    versions: List[InstalledVersion]
    default_version: Optional[SemVer] = None


@dataclass(frozen=True)
class EnvironmentLoadError(Event):
    env_id: EnvironmentId
    message: str


@dataclass(frozen=True)
class EnvironmentSelected(Event):
    index: int
    env_id: EnvironmentId


@dataclass(frozen=True)
class GroupToggled(Event):
    env_id: EnvironmentId
    major: int
    is_expanded: bool


@dataclass(frozen=True)
class RemoteVersionsLoaded(Event):
    versions: List[RemoteVersion]
    from_cache: bool = False


@dataclass(frozen=True)
class RemoteVersionsError(Event):
    message: str


@dataclass(frozen=True)
class ReleaseScheduleLoaded(Event):
    schedule: ReleaseSchedule
    from_cache: bool = False


@dataclass(frozen=True)
class ReleaseScheduleError(Event):
    message: str


@dataclass(frozen=True)
class InstallProgressed(Event):
    env_id: EnvironmentId
    version: str
    progress: InstallProgress


@dataclass(frozen=True)
class InstallFinished(Event):
    env_id: EnvironmentId
    version: str
    success: bool
    error: Optional[str] = None


@dataclass(frozen=True)
class UninstallFinished(Event):
    env_id: EnvironmentId
    version: str
    success: bool
    error: Optional[str] = None


@dataclass(frozen=True)
class DefaultChanged(Event):
    env_id: EnvironmentId
    version: str
    previous: Optional[SemVer]
    success: bool
    error: Optional[str] = None


@dataclass(frozen=True)
class OperationQueued(Event):
    id: int
    request: OperationRequest


@dataclass(frozen=True)
class OperationCancelled(Event):
    id: int
    found: bool


@dataclass(frozen=True)
class OperationRejected(Event):
    request: object
    reason: str
