"""
核心模块抽象接口定义。

定义配置管理器、版本管理器（每种后端工具一个实现）和后端提供者的抽象接口。
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

from nodeswitch.core.errors import UnsupportedOperationError
from nodeswitch.core.progress import InstallProgress
from nodeswitch.core.version_utils import InstalledVersion, RemoteVersion, SemVer


@dataclass(frozen=True)
class ManagerCapabilities:
    """后端能力标记。调用方只根据能力分支，不根据工具名称分支。"""

    supports_progress: bool = False
    supports_lts_filter: bool = False
    supports_use_version: bool = False
    supports_shell_integration: bool = False
    supports_auto_switch: bool = False
    supports_corepack: bool = False
    supports_resolve_engines: bool = False


@dataclass(frozen=True)
class BackendInfo:
    """已绑定后端的基本信息。"""

    name: str
    path: Optional[Path]
    version: Optional[str] = None
    data_dir: Optional[Path] = None
    in_path: bool = True


@dataclass(frozen=True)
class BackendDetection:
    """后端探测结果。"""

    found: bool
    path: Optional[Path] = None
    version: Optional[str] = None
    data_dir: Optional[Path] = None
    in_path: bool = False


@dataclass(frozen=True)
class ShellInitOptions:
    """Shell 初始化选项。"""

    use_on_cd: bool = False
    resolve_engines: bool = False
    corepack_enabled: bool = False


class IConfigManager(ABC):
    """配置管理器抽象接口。"""

    @abstractmethod
    def get_config(self) -> Dict[str, Any]:
        """获取配置字典。"""
        pass

    @abstractmethod
    def save_config(self, config: Optional[Dict[str, Any]] = None) -> None:
        """保存配置到文件。"""
        pass

    @abstractmethod
    def get_settings(self) -> Dict[str, Any]:
        """获取 settings 配置部分。"""
        pass

    @abstractmethod
    def load_version_cache(self):
        """加载磁盘版本缓存。"""
        pass

    @abstractmethod
    def save_version_cache(self, cache) -> None:
        """保存磁盘版本缓存。"""
        pass


class IVersionManager(ABC):
    """
    版本管理器抽象接口。

    每个实例绑定到一个环境（本机或某个 WSL 发行版）。
    所有失败以 BackendError 子类抛出。
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """后端名称。"""
        pass

    @abstractmethod
    def capabilities(self) -> ManagerCapabilities:
        """后端能力。"""
        pass

    @property
    @abstractmethod
    def backend_info(self) -> BackendInfo:
        """后端信息。"""
        pass

    @abstractmethod
    def list_installed(self) -> List[InstalledVersion]:
        """列出已安装版本。"""
        pass

    @abstractmethod
    def list_remote(self) -> List[RemoteVersion]:
        """列出远程可用版本。"""
        pass

    def list_remote_lts(self) -> List[RemoteVersion]:
        """列出远程 LTS 版本，默认按代号过滤 list_remote 的结果。"""
        return [v for v in self.list_remote() if v.lts_codename]

    @abstractmethod
    def current_version(self) -> Optional[SemVer]:
        """当前 shell 使用的版本。"""
        pass

    def default_version(self) -> Optional[SemVer]:
        """默认版本，默认从 list_installed 的 is_default 标记推导。"""
        return next((v.version for v in self.list_installed() if v.is_default), None)

    @abstractmethod
    def install(self, version: str) -> None:
        """安装指定版本（不跟踪进度）。"""
        pass

    @abstractmethod
    def install_with_progress(self, version: str) -> Iterator[InstallProgress]:
        """
        安装指定版本并返回进度事件流。

        事件流以恰好一个终止事件（COMPLETE 或 FAILED）结束。
        """
        pass

    @abstractmethod
    def uninstall(self, version: str) -> None:
        """卸载指定版本。"""
        pass

    @abstractmethod
    def set_default(self, version: str) -> None:
        """设置默认版本。"""
        pass

    def use_version(self, version: str) -> None:
        """切换当前使用的版本。"""
        raise UnsupportedOperationError("use_version")

    @abstractmethod
    def shell_init_command(self, shell: str, options: ShellInitOptions) -> Optional[str]:
        """生成指定 shell 的初始化命令，不支持的 shell 返回 None。"""
        pass


class IBackendProvider(ABC):
    """后端提供者抽象接口，负责探测后端并创建绑定到环境的版本管理器。"""

    @property
    @abstractmethod
    def name(self) -> str:
        pass

    @property
    @abstractmethod
    def display_name(self) -> str:
        pass

    @abstractmethod
    def detect(self) -> BackendDetection:
        """探测本机后端安装。"""
        pass

    @abstractmethod
    def create_manager(
        self,
        detection: BackendDetection,
        data_dir: Optional[Path] = None,
        mirror: Optional[str] = None,
    ) -> IVersionManager:
        """创建本机版本管理器。"""
        pass

    @abstractmethod
    def create_manager_for_wsl(
        self,
        distro: str,
        backend_path: str,
        version: Optional[str] = None,
    ) -> IVersionManager:
        """创建绑定到 WSL 发行版的版本管理器。"""
        pass

    @abstractmethod
    def wsl_search_paths(self) -> List[str]:
        """在 WSL 发行版中查找后端可执行文件的候选路径。"""
        pass
