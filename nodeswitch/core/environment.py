"""
运行环境模块。

管理本机和各 WSL 发行版的运行环境：每个环境绑定一个版本管理器，
并缓存最近一次加载得到的已安装版本列表及加载状态。
"""

import sys
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from nodeswitch.core.interfaces import BackendDetection, IBackendProvider, IVersionManager
from nodeswitch.core.version_utils import (
    InstalledVersion,
    SemVer,
    VersionGroup,
    group_by_major,
    tag_default,
)
from nodeswitch.core.wsl import WslDistro, detect_wsl_distros, get_backend_version
from nodeswitch.utils.logger import get_logger

logger = get_logger()


def native_display_name() -> str:
    if sys.platform == "win32":
        return "Windows"
    if sys.platform == "darwin":
        return "macOS"
    return "Linux"


@dataclass(frozen=True)
class EnvironmentId:
    """环境标识：distro 为 None 表示本机，否则为 WSL 发行版。"""

    distro: Optional[str] = None

    @classmethod
    def native(cls) -> "EnvironmentId":
        return cls()

    @classmethod
    def wsl(cls, distro: str) -> "EnvironmentId":
        return cls(distro)

    @property
    def is_native(self) -> bool:
        return self.distro is None

    @property
    def display_name(self) -> str:
        if self.distro is None:
            return native_display_name()
        return f"WSL: {self.distro}"

    def __str__(self) -> str:
        return "native" if self.distro is None else f"wsl:{self.distro}"


class Environment:
    """
    单个运行环境及其缓存状态。

    属性:
        id: 环境标识
        name: 显示名称
        manager: 绑定的版本管理器，不可用的环境为 None
        installed_versions: 最近一次加载的已安装版本
        version_groups: 按主版本号分组的已安装版本
        default_version: 默认版本
        loading: 是否正在加载
        loaded: 是否曾成功加载
        error: 最近一次加载失败的错误信息
        unavailable_reason: 不可用的原因，可用环境为 None
    """

    def __init__(
        self,
        env_id: EnvironmentId,
        manager: Optional[IVersionManager] = None,
        unavailable_reason: Optional[str] = None,
    ):
        self.id = env_id
        self.name = env_id.display_name
        self.manager = manager
        self.unavailable_reason = unavailable_reason
        self.installed_versions: List[InstalledVersion] = []
        self.version_groups: List[VersionGroup] = []
        self.default_version: Optional[SemVer] = None
        self.loading = False
        self.loaded = False
        self.error: Optional[str] = None

    @classmethod
    def unavailable(cls, env_id: EnvironmentId, reason: str) -> "Environment":
        return cls(env_id, None, reason)

    @property
    def available(self) -> bool:
        return self.manager is not None and self.unavailable_reason is None

    @property
    def backend_name(self) -> Optional[str]:
        return self.manager.name if self.manager else None

    @property
    def needs_load(self) -> bool:
        """从未成功加载、没有错误且当前未在加载的可用环境需要加载。"""
        return self.available and not self.loading and not self.loaded and self.error is None

    def begin_load(self) -> None:
        self.loading = True

    def update_versions(self, versions: Sequence[InstalledVersion], default: Optional[SemVer] = None) -> None:
        """
        用一次成功加载的结果整体替换缓存。

        参数:
            versions: 已安装版本
            default: 后端给出的默认版本，None 时沿用列表中的默认标记
        """
        self.installed_versions = tag_default(versions, default)
        self.default_version = next((v.version for v in self.installed_versions if v.is_default), None)
        self.version_groups = group_by_major(self.installed_versions, self.version_groups)
        self.loading = False
        self.loaded = True
        self.error = None

    def set_error(self, message: str) -> None:
        """记录加载失败，保留之前的数据。"""
        self.loading = False
        self.error = message

    def toggle_group(self, major: int) -> Optional[bool]:
        """切换主版本分组的展开状态，返回新状态；分组不存在返回 None。"""
        for group in self.version_groups:
            if group.major == major:
                group.is_expanded = not group.is_expanded
                return group.is_expanded
        return None

    def has_version(self, version: SemVer) -> bool:
        return any(v.version == version for v in self.installed_versions)

    def __repr__(self) -> str:
        return f"Environment({self.id}, backend={self.backend_name}, available={self.available})"


class EnvironmentRegistry:
    """
    运行环境注册表。

    本机环境总在索引 0，WSL 发行版按枚举顺序排在其后；同一时刻只有一个活动环境。
    """

    def __init__(self, environments: Sequence[Environment]):
        if not environments:
            raise ValueError("至少需要一个运行环境")
        self.environments: List[Environment] = list(environments)
        self.active_index = 0

    def __len__(self) -> int:
        return len(self.environments)

    def __iter__(self):
        return iter(self.environments)

    @property
    def active(self) -> Environment:
        return self.environments[self.active_index]

    def get(self, env_id: EnvironmentId) -> Optional[Environment]:
        return next((e for e in self.environments if e.id == env_id), None)

    def index_of(self, env_id: EnvironmentId) -> Optional[int]:
        for index, env in enumerate(self.environments):
            if env.id == env_id:
                return index
        return None

    def select(self, index: int) -> Environment:
        """
        切换活动环境。

        抛出:
            IndexError: 索引越界
        """
        if index < 0 or index >= len(self.environments):
            raise IndexError(f"环境索引越界: {index}")
        self.active_index = index
        env = self.environments[index]
        logger.info(f"切换到环境: {env.name}")
        return env


def _pick_provider(
    providers: Sequence[IBackendProvider],
    detections: Dict[str, BackendDetection],
    preferred: str,
) -> Optional[IBackendProvider]:
    """配置的首选后端可用时使用它，否则使用第一个检测到的后端。"""
    for provider in providers:
        if provider.name == preferred and detections[provider.name].found:
            return provider
    for provider in providers:
        if detections[provider.name].found:
            return provider
    return None


def _provider_for_path(
    providers: Sequence[IBackendProvider],
    path: str,
    preferred: str,
) -> Optional[IBackendProvider]:
    by_name = {p.name: p for p in providers}
    for name in ("nvm", "fnm"):
        if name in path and name in by_name:
            return by_name[name]
    return by_name.get(preferred) or (providers[0] if providers else None)


def _wsl_environment(
    distro: WslDistro,
    providers: Sequence[IBackendProvider],
    preferred: str,
    versions: Dict[str, Optional[str]],
) -> Environment:
    env_id = EnvironmentId.wsl(distro.name)
    if not distro.is_running:
        return Environment.unavailable(env_id, "发行版未运行")
    if not distro.backend_path:
        return Environment.unavailable(env_id, "发行版中未找到 fnm 或 nvm")
    provider = _provider_for_path(providers, distro.backend_path, preferred)
    if provider is None:
        return Environment.unavailable(env_id, "没有可用的后端")
    manager = provider.create_manager_for_wsl(
        distro.name,
        distro.backend_path,
        version=versions.get(distro.name),
    )
    return Environment(env_id, manager)


def _wsl_versions(distros: Sequence[WslDistro]) -> Dict[str, Optional[str]]:
    versions: Dict[str, Optional[str]] = {}
    for distro in distros:
        # nvm.sh 是被 source 的脚本，不能直接执行
        if distro.backend_path and not distro.backend_path.endswith(".sh"):
            versions[distro.name] = get_backend_version(distro.name, distro.backend_path)
    return versions


def detect_environments(
    providers: Sequence[IBackendProvider],
    preferred: str = "fnm",
    data_dirs: Optional[Dict[str, Optional[Path]]] = None,
    mirror: Optional[str] = None,
    include_wsl: bool = True,
) -> EnvironmentRegistry:
    """
    并发检测所有运行环境。

    各后端的本机检测和 WSL 探测同时进行，合并结果时顺序固定：
    本机环境在索引 0，WSL 发行版按枚举顺序排列。

    参数:
        providers: 后端提供者
        preferred: 首选后端名称
        data_dirs: 各后端数据目录覆盖值
        mirror: Node.js 下载镜像地址
        include_wsl: 是否探测 WSL

    返回:
        EnvironmentRegistry 实例
    """
    data_dirs = data_dirs or {}
    ordered = sorted(providers, key=lambda p: p.name != preferred)
    search_paths = [path for p in ordered for path in p.wsl_search_paths()]

    with ThreadPoolExecutor(max_workers=len(providers) + 1, thread_name_prefix="nodeswitch-detect") as pool:
        detection_futures = {p.name: pool.submit(p.detect) for p in providers}
        wsl_future = pool.submit(detect_wsl_distros, search_paths) if include_wsl else None

        detections = {name: future.result() for name, future in detection_futures.items()}
        distros = wsl_future.result() if wsl_future is not None else []

    native_id = EnvironmentId.native()
    provider = _pick_provider(providers, detections, preferred)
    if provider is None:
        logger.warning("本机未检测到 fnm 或 nvm")
        native = Environment.unavailable(native_id, "未检测到 fnm 或 nvm")
    else:
        manager = provider.create_manager(
            detections[provider.name],
            data_dir=data_dirs.get(provider.name),
            mirror=mirror,
        )
        logger.info(f"本机使用后端: {provider.name}")
        native = Environment(native_id, manager)

    wsl_versions = _wsl_versions(distros)
    environments = [native]
    environments.extend(_wsl_environment(d, providers, preferred, wsl_versions) for d in distros)
    logger.info(f"共检测到 {len(environments)} 个运行环境")
    return EnvironmentRegistry(environments)
