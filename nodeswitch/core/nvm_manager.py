"""
nvm 后端模块。

支持三种形态：
    - unix: nvm 是 shell 函数，需要通过 bash -c 加载 nvm.sh 后调用
    - windows: nvm-windows 的 nvm.exe
    - wsl: 在 WSL 发行版中通过 bash -c 调用 nvm
"""

import os
import re
import shlex
import shutil
import sys
from enum import Enum
from pathlib import Path
from typing import Dict, Iterator, List, Optional

from nodeswitch.core.errors import (
    BackendError,
    BackendNotFoundError,
    UnsupportedOperationError,
    VersionParseError,
)
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
    tag_default,
    try_parse_semver,
)
from nodeswitch.utils.input_validator import InputValidationError, InputValidator
from nodeswitch.utils.logger import get_logger

logger = get_logger()

NVM_WSL_SEARCH_PATHS = [
    "$HOME/.nvm/nvm.sh",
    "$HOME/.config/nvm/nvm.sh",
    "/usr/local/nvm/nvm.sh",
]

_ANSI_ESCAPE = re.compile(r"\x1b\[[0-9;?]*[A-Za-z]")
_LTS_MARKER = re.compile(r"\((?:Latest )?LTS: ([^)]+)\)")
_LEADING_VERSION = re.compile(r"^v?(\d+(?:\.\d+)*)")


class NvmVariant(Enum):
    UNIX = "unix"
    WINDOWS = "windows"
    WSL = "wsl"


def clean_output(text: str) -> str:
    """去除 ANSI 转义序列。"""
    return _ANSI_ESCAPE.sub("", text)


def _alias_target(text: str) -> Optional[SemVer]:
    """
    从 "default -> 20 (-> v20.11.0 *)" 这样的别名行中取出最终版本。

    目标为 N/A 或无法解析时返回 None。
    """
    target = text.split("->")[-1].strip()
    match = _LEADING_VERSION.match(target)
    if not match:
        return None
    return try_parse_semver(match.group(1))


def parse_nvm_alias_default(output: str) -> Optional[SemVer]:
    """解析 "nvm alias default" 的输出。"""
    for line in clean_output(output).splitlines():
        line = line.strip()
        if line:
            return _alias_target(line)
    return None


def parse_unix_installed(output: str) -> List[InstalledVersion]:
    """
    解析 unix nvm 的 "nvm list" 输出。

    版本行形如 "->     v20.11.0 *" 或 "       v18.19.1 *"；
    "default -> ..." 行给出默认版本，其他别名行（node、stable、lts/*）被忽略。
    """
    default: Optional[SemVer] = None
    seen = set()
    versions: List[InstalledVersion] = []
    for raw_line in clean_output(output).splitlines():
        line = raw_line.strip()
        if not line:
            continue
        if line.startswith("default"):
            default = _alias_target(line)
            continue
        if line.startswith("->"):
            line = line[2:].strip()
        elif "->" in line:
            continue

        token = next((t for t in line.split() if t.startswith("v")), None)
        version = try_parse_semver(token) if token else None
        if version is None or version in seen:
            continue
        seen.add(version)
        versions.append(InstalledVersion(version=version))

    if default is None:
        return versions
    return tag_default(versions, default)


def parse_windows_installed(output: str) -> List[InstalledVersion]:
    """
    解析 nvm-windows 的 "nvm list" 输出。

    以 * 开头的行是当前使用的版本，nvm-windows 中即默认版本。
    """
    versions: List[InstalledVersion] = []
    for raw_line in clean_output(output).splitlines():
        line = raw_line.strip()
        if not line:
            continue
        is_current = line.startswith("*")
        tokens = line.lstrip("*").split()
        version = try_parse_semver(tokens[0]) if tokens else None
        if version is None:
            continue
        versions.append(InstalledVersion(version=version, is_default=is_current))
    return versions


def parse_unix_remote(output: str) -> List[RemoteVersion]:
    """
    解析 "nvm ls-remote" 输出。

    行形如 "        v20.11.0   (LTS: Iron)"，当前版本以 "->" 开头。
    """
    versions: List[RemoteVersion] = []
    for raw_line in clean_output(output).splitlines():
        line = raw_line.strip().lstrip("->").strip()
        if not line:
            continue
        version = try_parse_semver(line.split()[0])
        if version is None:
            continue
        match = _LTS_MARKER.search(line)
        versions.append(RemoteVersion(version=version, lts_codename=match.group(1).strip() if match else None))
    return versions


def parse_windows_remote(output: str) -> List[RemoteVersion]:
    """
    解析 nvm-windows 的 "nvm list available" 表格输出。

    第二列为 LTS 版本；nvm-windows 不提供代号，统一记为 "LTS"。
    """
    seen = set()
    versions: List[RemoteVersion] = []
    for raw_line in clean_output(output).splitlines():
        line = raw_line.strip()
        if not line.startswith("|"):
            continue
        cells = [c.strip() for c in line.strip("|").split("|")]
        for index, cell in enumerate(cells):
            version = try_parse_semver(cell)
            if version is None or version in seen:
                continue
            seen.add(version)
            versions.append(RemoteVersion(version=version, lts_codename="LTS" if index == 1 else None))
    return sorted(versions, key=lambda v: v.version)


def find_unix_nvm_dir() -> Optional[Path]:
    """依次检查 NVM_DIR、~/.nvm、$XDG_CONFIG_HOME/nvm，返回包含 nvm.sh 的目录。"""
    candidates: List[Path] = []
    nvm_dir = os.environ.get("NVM_DIR")
    if nvm_dir:
        candidates.append(Path(nvm_dir))
    candidates.append(Path.home() / ".nvm")
    xdg_config = os.environ.get("XDG_CONFIG_HOME")
    if xdg_config:
        candidates.append(Path(xdg_config) / "nvm")

    for candidate in candidates:
        if (candidate / "nvm.sh").is_file():
            return candidate
    return None


def find_windows_nvm_exe() -> Optional[Path]:
    """查找 nvm-windows：PATH、%APPDATA%\\nvm、%ProgramFiles%\\nvm。"""
    found = shutil.which("nvm")
    if found:
        return Path(found)
    for env_name in ("APPDATA", "ProgramFiles"):
        base = os.environ.get(env_name)
        if base:
            candidate = Path(base) / "nvm" / "nvm.exe"
            if candidate.is_file():
                return candidate
    return None


class NvmManager(IVersionManager):
    """
    nvm 版本管理器。

    参数:
        variant: nvm 形态
        nvm_dir: NVM_DIR（unix 和 wsl 形态）
        nvm_exe: nvm.exe 路径（windows 形态）
        wsl_distro: WSL 发行版名称（wsl 形态）
        version: nvm 自身的版本号
        mirror: Node.js 下载镜像地址（unix 形态）
    """

    def __init__(
        self,
        variant: NvmVariant,
        nvm_dir: Optional[str] = None,
        nvm_exe: Optional[str] = None,
        wsl_distro: Optional[str] = None,
        version: Optional[str] = None,
        mirror: Optional[str] = None,
    ):
        if variant is NvmVariant.WINDOWS and not nvm_exe:
            raise BackendNotFoundError("未找到 nvm.exe")
        if variant is not NvmVariant.WINDOWS and not nvm_dir:
            raise BackendNotFoundError("未找到 NVM_DIR")
        if variant is NvmVariant.WSL and not wsl_distro:
            raise ValueError("WSL 形态需要指定发行版")

        self.variant = variant
        self.nvm_dir = nvm_dir
        self.nvm_exe = nvm_exe
        self.wsl_distro = wsl_distro
        self.mirror = mirror
        path = nvm_exe if variant is NvmVariant.WINDOWS else f"{nvm_dir}/nvm.sh"
        self._info = BackendInfo(
            name="nvm",
            path=Path(path),
            version=version,
            data_dir=Path(nvm_dir) if nvm_dir else None,
            in_path=variant is NvmVariant.WINDOWS,
        )

    @property
    def name(self) -> str:
        return "nvm"

    @property
    def backend_info(self) -> BackendInfo:
        return self._info

    @property
    def is_windows(self) -> bool:
        return self.variant is NvmVariant.WINDOWS

    def capabilities(self) -> ManagerCapabilities:
        return ManagerCapabilities(
            supports_progress=False,
            supports_lts_filter=not self.is_windows,
            supports_use_version=self.is_windows,
            supports_shell_integration=self.variant is NvmVariant.UNIX,
        )

    def _script(self, args: List[str]) -> str:
        for arg in args:
            try:
                InputValidator.validate_command_arg(arg)
            except InputValidationError as e:
                raise VersionParseError(str(e)) from e
        nvm_args = " ".join(shlex.quote(a) for a in args)
        return (
            f'export NVM_DIR="{self.nvm_dir}"; '
            f'[ -s "$NVM_DIR/nvm.sh" ] && \\. "$NVM_DIR/nvm.sh"; '
            f"nvm {nvm_args}"
        )

    def _command(self, *args: str) -> List[str]:
        if self.variant is NvmVariant.WINDOWS:
            return [self.nvm_exe, *args]
        script = self._script(list(args))
        if self.variant is NvmVariant.WSL:
            return ["wsl.exe", "-d", self.wsl_distro, "--", "bash", "-c", script]
        return ["bash", "-c", script]

    def _env(self) -> Dict[str, Optional[str]]:
        if self.variant is not NvmVariant.UNIX:
            return {}
        return {"TERM": "dumb", "NO_COLOR": "1", "NVM_NODEJS_ORG_MIRROR": self.mirror}

    def _run(self, *args: str) -> str:
        return clean_output(run_command(self._command(*args), env=self._env()))

    def version(self) -> str:
        """nvm 自身的版本号。"""
        if self.is_windows:
            return self._run("version").strip()
        return self._run("--version").strip()

    def list_installed(self) -> List[InstalledVersion]:
        output = self._run("list")
        if self.is_windows:
            return parse_windows_installed(output)
        return parse_unix_installed(output)

    def list_remote(self) -> List[RemoteVersion]:
        if self.is_windows:
            return mark_latest(parse_windows_remote(self._run("list", "available")))
        return mark_latest(parse_unix_remote(self._run("ls-remote")))

    def list_remote_lts(self) -> List[RemoteVersion]:
        if self.is_windows:
            return super().list_remote_lts()
        return mark_latest(parse_unix_remote(self._run("ls-remote", "--lts")))

    def current_version(self) -> Optional[SemVer]:
        return parse_current_version(self._run("current"))

    def default_version(self) -> Optional[SemVer]:
        if self.is_windows:
            return super().default_version()
        try:
            return parse_nvm_alias_default(self._run("alias", "default"))
        except BackendError as e:
            logger.debug(f"读取 nvm 默认别名失败: {e}")
            return None

    def install(self, version: str) -> None:
        logger.info(f"nvm 安装 {version}")
        self._run("install", version)

    def install_with_progress(self, version: str) -> Iterator[InstallProgress]:
        logger.info(f"nvm 安装 {version}（跟踪进度）")
        return stream_command(self._command("install", version), env=self._env(), line_filter=clean_output)

    def uninstall(self, version: str) -> None:
        logger.info(f"nvm 卸载 {version}")
        self._run("uninstall", version)

    def set_default(self, version: str) -> None:
        logger.info(f"nvm 设置默认版本 {version}")
        # nvm-windows 没有 default 别名，use 会切换全局符号链接
        if self.is_windows:
            self._run("use", version)
        else:
            self._run("alias", "default", version)

    def use_version(self, version: str) -> None:
        # unix 形态下 use 只影响子 shell，没有意义
        if not self.is_windows:
            raise UnsupportedOperationError("use_version")
        self._run("use", version)

    def shell_init_command(self, shell: str, options: ShellInitOptions) -> Optional[str]:
        if self.variant is not NvmVariant.UNIX:
            return None
        if shell.lower() not in ("bash", "zsh"):
            return None
        return f'export NVM_DIR="{self.nvm_dir}"\n[ -s "$NVM_DIR/nvm.sh" ] && \\. "$NVM_DIR/nvm.sh"'


class NvmProvider(IBackendProvider):
    """nvm 后端提供者。"""

    @property
    def name(self) -> str:
        return "nvm"

    @property
    def display_name(self) -> str:
        return "nvm (Node Version Manager)"

    def detect(self) -> BackendDetection:
        nvm_dir = find_unix_nvm_dir()
        if nvm_dir is not None:
            version = self._probe_version(NvmManager(NvmVariant.UNIX, nvm_dir=str(nvm_dir)))
            logger.info(f"检测到 nvm {version or ''}: {nvm_dir}")
            return BackendDetection(
                found=True,
                path=nvm_dir / "nvm.sh",
                version=version,
                data_dir=nvm_dir,
                in_path=False,
            )

        if sys.platform == "win32":
            nvm_exe = find_windows_nvm_exe()
            if nvm_exe is not None:
                version = self._probe_version(NvmManager(NvmVariant.WINDOWS, nvm_exe=str(nvm_exe)))
                logger.info(f"检测到 nvm-windows {version or ''}: {nvm_exe}")
                return BackendDetection(
                    found=True,
                    path=nvm_exe,
                    version=version,
                    in_path=shutil.which("nvm") is not None,
                )

        logger.info("未检测到 nvm")
        return BackendDetection(found=False)

    @staticmethod
    def _probe_version(manager: NvmManager) -> Optional[str]:
        try:
            return manager.version() or None
        except BackendError as e:
            logger.warning(f"获取 nvm 版本失败: {e}")
            return None

    def create_manager(
        self,
        detection: BackendDetection,
        data_dir: Optional[Path] = None,
        mirror: Optional[str] = None,
    ) -> NvmManager:
        if not detection.found or detection.path is None:
            raise BackendNotFoundError("未找到 nvm")
        if detection.path.name == "nvm.sh":
            nvm_dir = data_dir or detection.data_dir or detection.path.parent
            return NvmManager(NvmVariant.UNIX, nvm_dir=str(nvm_dir), version=detection.version, mirror=mirror)
        return NvmManager(NvmVariant.WINDOWS, nvm_exe=str(detection.path), version=detection.version)

    def create_manager_for_wsl(self, distro: str, backend_path: str, version: Optional[str] = None) -> NvmManager:
        nvm_dir = backend_path.rsplit("/", 1)[0] if backend_path.endswith("/nvm.sh") else backend_path
        return NvmManager(NvmVariant.WSL, nvm_dir=nvm_dir, wsl_distro=distro, version=version)

    def wsl_search_paths(self) -> List[str]:
        return list(NVM_WSL_SEARCH_PATHS)
