"""
安装进度解析模块。

将后端安装进程输出的单行文本归类为结构化的进度事件。
后端输出是非结构化文本，这里只保证给出合理的阶段信号。
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple


class InstallPhase(Enum):
    """安装阶段，按定义顺序单向推进。"""

    STARTING = 0
    DOWNLOADING = 1
    EXTRACTING = 2
    INSTALLING = 3
    COMPLETE = 4
    FAILED = 5

    @property
    def is_terminal(self) -> bool:
        return self in (InstallPhase.COMPLETE, InstallPhase.FAILED)


@dataclass(frozen=True)
class InstallProgress:
    """单个安装进度事件。"""

    phase: InstallPhase = InstallPhase.STARTING
    percent: Optional[float] = None
    bytes_downloaded: Optional[int] = None
    total_bytes: Optional[int] = None
    error: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.phase.is_terminal

    def to_dict(self) -> dict:
        return {
            "phase": self.phase.name.lower(),
            "percent": self.percent,
            "bytes_downloaded": self.bytes_downloaded,
            "total_bytes": self.total_bytes,
            "error": self.error,
        }


_PERCENT_TOKEN = re.compile(r"^\(?(\d+(?:\.\d+)?)%\)?$")
_UNIT_MULTIPLIERS = (
    ("GB", 1_000_000_000),
    ("G", 1_000_000_000),
    ("MB", 1_000_000),
    ("M", 1_000_000),
    ("KB", 1_000),
    ("K", 1_000),
    ("B", 1),
)


def classify(line: str) -> Optional[InstallProgress]:
    """
    归类一行安装输出。

    按以下优先级匹配（先匹配先生效）:
        1. 包含 "Installing Node" -> DOWNLOADING（下载前的提示）
        2. 包含 "Downloading" -> DOWNLOADING，并尽量提取百分比和 X/Y 字节数
        3. 包含 "Extracting" 或 "extract" -> EXTRACTING
        4. 包含 "Installing" -> INSTALLING
        5. 包含 "installed"、"complete" 或 "success" -> COMPLETE，percent 为 100
        6. 其余返回 None

    参数:
        line: 进程输出的一行文本

    返回:
        InstallProgress 或 None
    """
    line = line.strip()
    if not line:
        return None

    if "Installing Node" in line:
        return InstallProgress(phase=InstallPhase.DOWNLOADING)

    if "Downloading" in line:
        sizes = extract_bytes(line)
        return InstallProgress(
            phase=InstallPhase.DOWNLOADING,
            percent=extract_percentage(line),
            bytes_downloaded=sizes[0] if sizes else None,
            total_bytes=sizes[1] if sizes else None,
        )

    if "Extracting" in line or "extract" in line:
        return InstallProgress(phase=InstallPhase.EXTRACTING)

    if "Installing" in line:
        return InstallProgress(phase=InstallPhase.INSTALLING)

    if "installed" in line or "complete" in line or "success" in line:
        return InstallProgress(phase=InstallPhase.COMPLETE, percent=100.0)

    return None


def extract_percentage(line: str) -> Optional[float]:
    """提取形如 NN% 的百分比。"""
    for token in line.split():
        match = _PERCENT_TOKEN.match(token)
        if match:
            return float(match.group(1))
    return None


def extract_bytes(line: str) -> Optional[Tuple[int, int]]:
    """提取形如 10MB/22MB 的已下载/总字节数。"""
    parts = line.split("/")
    if len(parts) < 2:
        return None
    left = parts[0].split()
    right = parts[1].split()
    if not left or not right:
        return None
    downloaded = parse_byte_size(left[-1])
    total = parse_byte_size(right[0])
    if downloaded is None or total is None:
        return None
    return downloaded, total


def parse_byte_size(text: str) -> Optional[int]:
    """
    解析带单位的字节数，单位按 1000 进制换算。

    支持 B、K/KB、M/MB、G/GB，忽略两侧括号。
    """
    text = text.strip().strip("()")
    multiplier = 1
    for suffix, value in _UNIT_MULTIPLIERS:
        if text.upper().endswith(suffix):
            text = text[: -len(suffix)]
            multiplier = value
            break
    try:
        return int(float(text.strip()) * multiplier)
    except (ValueError, OverflowError):
        return None


class PhaseGate:
    """
    单次安装尝试的阶段守卫。

    只放行不回退的事件；终止事件之后不再放行任何事件。
    """

    def __init__(self):
        self._phase: Optional[InstallPhase] = None

    @property
    def phase(self) -> Optional[InstallPhase]:
        return self._phase

    @property
    def finished(self) -> bool:
        return self._phase is not None and self._phase.is_terminal

    def admit(self, progress: InstallProgress) -> bool:
        """判断事件是否可以转发，可以则推进当前阶段。"""
        if self.finished:
            return False
        if self._phase is not None and progress.phase.value < self._phase.value:
            return False
        self._phase = progress.phase
        return True
