"""
NodeSwitch 核心模块。

提供后端抽象、版本模型、进度解析、运行环境管理、操作队列和编排功能。
"""

from .errors import (
    BackendError, BackendNotFoundError, CommandFailedError, VersionParseError,
    BackendIoError, BackendTimeoutError, UnsupportedOperationError,
)
from .interfaces import (
    IConfigManager, IVersionManager, IBackendProvider,
    ManagerCapabilities, BackendInfo, BackendDetection, ShellInitOptions,
)
from .config_manager import ConfigManager, ConfigValidationError, ConfigLoadError, ConfigSaveError, VersionCache
from .version_utils import SemVer, InstalledVersion, RemoteVersion, VersionGroup, parse_semver
from .progress import InstallPhase, InstallProgress, classify
from .schedule import ReleaseSchedule, ScheduleFetchError, fetch_release_schedule
from .fnm_manager import FnmManager, FnmProvider
from .nvm_manager import NvmManager, NvmProvider, NvmVariant
from .environment import Environment, EnvironmentId, EnvironmentRegistry, detect_environments
from .operation_queue import OperationKind, OperationRequest, OperationQueue, QueuedOperation, Admission
from .orchestrator import Orchestrator, NetworkStatus
from . import events

__all__ = [
    "BackendError", "BackendNotFoundError", "CommandFailedError", "VersionParseError",
    "BackendIoError", "BackendTimeoutError", "UnsupportedOperationError",
    "IConfigManager", "IVersionManager", "IBackendProvider",
    "ManagerCapabilities", "BackendInfo", "BackendDetection", "ShellInitOptions",
    "ConfigManager", "ConfigValidationError", "ConfigLoadError", "ConfigSaveError", "VersionCache",
    "SemVer", "InstalledVersion", "RemoteVersion", "VersionGroup", "parse_semver",
    "InstallPhase", "InstallProgress", "classify",
    "ReleaseSchedule", "ScheduleFetchError", "fetch_release_schedule",
    "FnmManager", "FnmProvider",
    "NvmManager", "NvmProvider", "NvmVariant",
    "Environment", "EnvironmentId", "EnvironmentRegistry", "detect_environments",
    "OperationKind", "OperationRequest", "OperationQueue", "QueuedOperation", "Admission",
    "Orchestrator", "NetworkStatus",
    "events",
]


def default_providers():
    """按默认优先级返回所有后端提供者。"""
    return [FnmProvider(), NvmProvider()]
