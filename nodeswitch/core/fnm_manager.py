"""
fnm 后端模块。

通过子进程调用 fnm 完成版本的列出、安装、卸载和默认版本设置，
支持本机和 WSL 发行版两种运行环境。
"""

import os
import shutil
from pathlib import Path
from typing import Dict, Iterator, List, Optional

from nodeswitch.core.errors import BackendError, BackendNotFoundError
from nodeswitch.core.interfaces import (
    BackendDetection,
    BackendInfo,
    IBackendProvider,
    IVersionManager,
    ManagerCapabilities,
    ShellInitOptions,
)
from nodeswitch.core.process_runner import run_command, stream_command
from nodeswitch.core.progress import InstallProgress
from nodeswitch.core.version_utils import (
    InstalledVersion,
    RemoteVersion,
    SemVer,
    mark_latest,
    parse_current_version,
    parse_installed_list,
    parse_remote_list,
    tag_default,
)
from nodeswitch.utils.logger import get_logger

logger = get_logger()

VERSION_PROBE_TIMEOUT = 10

FNM_WSL_SEARCH_PATHS = [
    "$HOME/.local/share/fnm/fnm",
    "$HOME/.cargo/bin/fnm",
    "/usr/local/bin/fnm",
    "/usr/bin/fnm",
    "$HOME/.fnm/fnm",
]


def fnm_candidate_paths() -> List[Path]:
    """本机上 fnm 可执行文件的常见安装位置。"""
    home = Path.home()
    candidates = [
        home / ".fnm" / "fnm",
        home / ".local" / "bin" / "fnm",
        Path("/opt/homebrew/bin/fnm"),
        Path("/usr/local/bin/fnm"),
    ]
    local_app_data = os.environ.get("LOCALAPPDATA")
    if local_app_data:
        candidates.append(Path(local_app_data) / "fnm" / "fnm.exe")
    return candidates


def find_fnm_binary() -> Optional[Path]:
    """先在 PATH 中查找 fnm，再检查常见安装位置。"""
    found = shutil.which("fnm")
    if found:
        return Path(found)
    for candidate in fnm_candidate_paths():
        if candidate.is_file():
            return candidate
    return None


def find_fnm_dir() -> Optional[Path]:
    """
    定位 fnm 数据目录。

    依次检查 FNM_DIR、$XDG_DATA_HOME/fnm、~/.local/share/fnm、~/.fnm，
    优先返回包含 node-versions 子目录的候选项。
    """
    candidates: List[Path] = []
    fnm_dir = os.environ.get("FNM_DIR")
    if fnm_dir:
        candidates.append(Path(fnm_dir))
    xdg_data = os.environ.get("XDG_DATA_HOME")
    if xdg_data:
        candidates.append(Path(xdg_data) / "fnm")
    home = Path.home()
    candidates.extend([home / ".local" / "share" / "fnm", home / ".fnm"])

    for candidate in candidates:
        if (candidate / "node-versions").is_dir():
            return candidate
    for candidate in candidates:
        if candidate.is_dir():
            return candidate
    return None


def parse_fnm_version(output: str) -> str:
    """从 "fnm 1.37.1" 中提取版本号。"""
    text = output.strip()
    if text.startswith("fnm "):
        text = text[len("fnm "):]
    return text.strip()


def build_shell_init_command(tool: str, shell: str, options: ShellInitOptions) -> Optional[str]:
    """
    生成 fnm 的 shell 初始化命令。

    参数:
        tool: fnm 可执行文件名或路径
        shell: bash、zsh、fish、powershell 或 pwsh
        options: 初始化选项

    返回:
        初始化命令，不支持的 shell（如 cmd）返回 None
    """
    flags = ""
    if options.use_on_cd:
        flags += " --use-on-cd"
    if options.resolve_engines:
        flags += " --resolve-engines"
    if options.corepack_enabled:
        flags += " --corepack-enabled"

    shell = shell.lower()
    if shell in ("bash", "zsh"):
        return f'eval "$({tool} env{flags})"'
    if shell == "fish":
        return f"{tool} env{flags} | source"
    if shell in ("powershell", "pwsh"):
        return f"{tool} env{flags} | Out-String | Invoke-Expression"
    return None


class FnmManager(IVersionManager):
    """
    fnm 版本管理器。

    参数:
        fnm_path: fnm 可执行文件路径（WSL 环境下为发行版内的路径）
        data_dir: FNM_DIR 覆盖值
        mirror: Node.js 下载镜像地址
        wsl_distro: 绑定的 WSL 发行版名称，None 表示本机
        version: fnm 自身的版本号
    """

    def __init__(
        self,
        fnm_path: str,
        data_dir: Optional[Path] = None,
        mirror: Optional[str] = None,
        wsl_distro: Optional[str] = None,
        version: Optional[str] = None,
        in_path: bool = True,
    ):
        self.fnm_path = str(fnm_path)
        self.data_dir = data_dir
        self.mirror = mirror
        self.wsl_distro = wsl_distro
        self._info = BackendInfo(
            name="fnm",
            path=Path(self.fnm_path),
            version=version,
            data_dir=data_dir,
            in_path=in_path,
        )

    @property
    def name(self) -> str:
        return "fnm"

    @property
    def backend_info(self) -> BackendInfo:
        return self._info

    def capabilities(self) -> ManagerCapabilities:
        return ManagerCapabilities(
            supports_progress=True,
            supports_lts_filter=True,
            supports_use_version=True,
            supports_shell_integration=True,
            supports_auto_switch=True,
            supports_corepack=True,
            supports_resolve_engines=True,
        )

    def _command(self, *args: str) -> List[str]:
        if self.wsl_distro:
            return ["wsl.exe", "-d", self.wsl_distro, "--", self.fnm_path, *args]
        return [self.fnm_path, *args]

    def _env(self) -> Dict[str, Optional[str]]:
        # 环境变量不会透传进 WSL
        if self.wsl_distro:
            return {}
        return {
            "FNM_DIR": str(self.data_dir) if self.data_dir else None,
            "FNM_NODE_DIST_MIRROR": self.mirror,
        }

    def _run(self, *args: str) -> str:
        return run_command(self._command(*args), env=self._env())

    def list_installed(self) -> List[InstalledVersion]:
        versions = tag_default(parse_installed_list(self._run("list")), None)
        logger.debug(f"fnm 已安装 {len(versions)} 个版本")
        return versions

    def list_remote(self) -> List[RemoteVersion]:
        return mark_latest(parse_remote_list(self._run("list-remote")))

    def list_remote_lts(self) -> List[RemoteVersion]:
        return mark_latest(parse_remote_list(self._run("list-remote", "--lts")))

    def current_version(self) -> Optional[SemVer]:
        return parse_current_version(self._run("current"))

    def install(self, version: str) -> None:
        logger.info(f"fnm 安装 {version}")
        self._run("install", version, "--progress", "never")

    def install_with_progress(self, version: str) -> Iterator[InstallProgress]:
        logger.info(f"fnm 安装 {version}（跟踪进度）")
        return stream_command(
            self._command("install", version, "--progress", "never"),
            env=self._env(),
        )

    def uninstall(self, version: str) -> None:
        logger.info(f"fnm 卸载 {version}")
        self._run("uninstall", version)

    def set_default(self, version: str) -> None:
        logger.info(f"fnm 设置默认版本 {version}")
        self._run("default", version)

    def use_version(self, version: str) -> None:
        self._run("use", version)

    def shell_init_command(self, shell: str, options: ShellInitOptions) -> Optional[str]:
        return build_shell_init_command("fnm", shell, options)


class FnmProvider(IBackendProvider):
    """fnm 后端提供者。"""

    @property
    def name(self) -> str:
        return "fnm"

    @property
    def display_name(self) -> str:
        return "fnm (Fast Node Manager)"

    def detect(self) -> BackendDetection:
        path = find_fnm_binary()
        if path is None:
            logger.info("未检测到 fnm")
            return BackendDetection(found=False)

        version = None
        try:
            version = parse_fnm_version(
                run_command([str(path), "--version"], timeout=VERSION_PROBE_TIMEOUT)
            )
        except BackendError as e:
            logger.warning(f"获取 fnm 版本失败: {e}")

        in_path = shutil.which("fnm") is not None
        detection = BackendDetection(
            found=True,
            path=path,
            version=version,
            data_dir=find_fnm_dir(),
            in_path=in_path,
        )
        logger.info(f"检测到 fnm {version or ''}: {path}")
        return detection

    def create_manager(
        self,
        detection: BackendDetection,
        data_dir: Optional[Path] = None,
        mirror: Optional[str] = None,
    ) -> FnmManager:
        if not detection.found or detection.path is None:
            raise BackendNotFoundError("未找到 fnm")
        return FnmManager(
            str(detection.path),
            data_dir=data_dir or detection.data_dir,
            mirror=mirror,
            version=detection.version,
            in_path=detection.in_path,
        )

    def create_manager_for_wsl(self, distro: str, backend_path: str, version: Optional[str] = None) -> FnmManager:
        return FnmManager(backend_path, wsl_distro=distro, version=version)

    def wsl_search_paths(self) -> List[str]:
        return list(FNM_WSL_SEARCH_PATHS)
