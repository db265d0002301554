"""
WSL 发行版探测模块。

仅在 Windows 上有意义：枚举 WSL 发行版，判断其运行状态，并在运行中的
发行版内查找版本管理工具。
"""

import sys
from dataclasses import dataclass
from typing import List, Optional, Sequence

from nodeswitch.core.errors import BackendError
from nodeswitch.core.process_runner import run_command
from nodeswitch.utils.logger import get_logger

logger = get_logger()

WSL_EXE = "wsl.exe"
WSL_PROBE_TIMEOUT = 15


@dataclass
class WslDistro:
    """WSL 发行版信息。"""

    name: str
    is_default: bool = False
    version: int = 2
    is_running: bool = False
    backend_path: Optional[str] = None


def decode_wsl_output(data: Optional[bytes]) -> str:
    """
    解码 wsl.exe 的输出。

    wsl.exe 自身的输出是 UTF-16LE；发行版内命令的输出是 UTF-8。
    按 UTF-16LE 解码得到含字母的文本时采用该结果，否则按 UTF-8 解码。
    """
    if not data:
        return ""
    if len(data) >= 2:
        even = data[: len(data) - len(data) % 2]
        decoded = even.decode("utf-16-le", errors="ignore")
        if decoded and any(c.isalpha() and c.isascii() for c in decoded):
            return decoded.replace("\x00", "")
    return data.decode("utf-8", errors="replace").replace("\x00", "")


def parse_wsl_list(output: str, running: Sequence[str] = ()) -> List[WslDistro]:
    """
    解析 "wsl.exe --list --verbose" 的输出。

    第一行为表头；以 * 开头的行是默认发行版。

    参数:
        output: 解码后的输出
        running: 运行中的发行版名称

    返回:
        发行版列表，保持枚举顺序
    """
    distros: List[WslDistro] = []
    for raw_line in output.splitlines()[1:]:
        line = raw_line.replace("\x00", "").strip()
        if not line:
            continue
        is_default = line.startswith("*")
        parts = line.lstrip("*").split()
        if not parts:
            continue
        name = parts[0]
        version = 2
        if len(parts) >= 3 and parts[2].isdigit():
            version = int(parts[2])
        distros.append(
            WslDistro(
                name=name,
                is_default=is_default,
                version=version,
                is_running=name in running,
            )
        )
    return distros


def parse_running_distros(output: str) -> List[str]:
    names = []
    for line in output.splitlines():
        name = line.replace("\x00", "").strip()
        if name:
            names.append(name)
    return names


def get_running_distros() -> List[str]:
    """返回运行中的发行版名称，wsl.exe 不可用时返回空列表。"""
    try:
        output = run_command(
            [WSL_EXE, "--list", "--running", "--quiet"],
            timeout=WSL_PROBE_TIMEOUT,
            decoder=decode_wsl_output,
        )
    except BackendError as e:
        logger.debug(f"获取运行中的 WSL 发行版失败: {e}")
        return []
    return parse_running_distros(output)


def build_path_probe(paths: Sequence[str]) -> str:
    """
    生成在发行版内查找可执行文件的 sh 脚本，输出第一个存在的路径。

    .sh 结尾的路径是被 source 的脚本，只检查非空，不要求可执行。
    """
    checks = []
    for path in paths:
        test = "-s" if path.endswith(".sh") else "-x"
        checks.append(f"[ {test} {path} ] && {{ echo {path}; exit 0; }}")
    return "; ".join(checks)


def find_backend_path(distro: str, paths: Sequence[str]) -> Optional[str]:
    """
    在发行版内按顺序查找后端工具。

    参数:
        distro: 发行版名称
        paths: 候选路径，可包含 $HOME

    返回:
        展开后的路径，未找到返回 None
    """
    if not paths:
        return None
    script = build_path_probe(paths)
    try:
        output = run_command(
            [WSL_EXE, "-d", distro, "--", "sh", "-c", script],
            timeout=WSL_PROBE_TIMEOUT,
        )
    except BackendError as e:
        logger.debug(f"在 {distro} 中查找后端失败: {e}")
        return None
    path = output.strip()
    return path or None


def get_backend_version(distro: str, backend_path: str) -> Optional[str]:
    """在发行版内执行 "<tool> --version"，失败返回 None。"""
    try:
        output = run_command(
            [WSL_EXE, "-d", distro, "--", backend_path, "--version"],
            timeout=WSL_PROBE_TIMEOUT,
        )
    except BackendError as e:
        logger.debug(f"获取 {distro} 中后端版本失败: {e}")
        return None
    return output.strip() or None


def detect_wsl_distros(search_paths: Sequence[str]) -> List[WslDistro]:
    """
    枚举 WSL 发行版，并在运行中的发行版内查找后端工具。

    非 Windows 平台或 wsl.exe 不可用时返回空列表。

    参数:
        search_paths: 所有后端提供者的候选路径，按优先级排列
    """
    if sys.platform != "win32":
        return []

    logger.info("正在检测 WSL 发行版...")
    running = get_running_distros()
    try:
        output = run_command(
            [WSL_EXE, "--list", "--verbose"],
            timeout=WSL_PROBE_TIMEOUT,
            decoder=decode_wsl_output,
        )
    except BackendError as e:
        logger.warning(f"WSL 不可用: {e}")
        return []

    distros = parse_wsl_list(output, running)
    for distro in distros:
        if not distro.is_running:
            logger.debug(f"跳过未运行的发行版: {distro.name}")
            continue
        distro.backend_path = find_backend_path(distro.name, search_paths)
        if distro.backend_path:
            logger.info(f"在 {distro.name} 中找到后端: {distro.backend_path}")
        else:
            logger.warning(f"{distro.name} 中未找到后端")
    logger.info(f"共检测到 {len(distros)} 个 WSL 发行版，{len(running)} 个正在运行")
    return distros
