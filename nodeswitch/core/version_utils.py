"""
版本工具模块。

提供 Node.js 版本号解析、比较，后端命令输出解析以及按主版本号分组等功能。
"""

import re
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from nodeswitch.core.errors import VersionParseError

_NUMERIC_FIELD = re.compile(r"^\d+$", re.ASCII)
_FIELD_NAMES = ("major", "minor", "patch")


@dataclass(frozen=True, order=True)
class SemVer:
    """
    语义化版本号。

    按 major、minor、patch 依次比较，文本形式为 v{major}.{minor}.{patch}。
    """

    major: int
    minor: int
    patch: int

    def __str__(self) -> str:
        return f"v{self.major}.{self.minor}.{self.patch}"

    @classmethod
    def parse(cls, text: str) -> "SemVer":
        """等同于 parse_semver。"""
        return parse_semver(text)


def parse_semver(text: str) -> SemVer:
    """
    解析版本号字符串。

    去除首尾空白和前导 v，要求至少三个以点分隔的数字字段。

    参数:
        text: 版本号字符串，如 "v20.11.0" 或 "18.19.1"

    返回:
        SemVer 实例

    抛出:
        VersionParseError: 格式无效时抛出，错误信息中包含出错的字段
    """
    if text is None:
        raise VersionParseError("版本号不能为空")
    stripped = text.strip()
    if stripped.startswith("v"):
        stripped = stripped[1:]
    parts = stripped.split(".")
    if len(parts) < 3:
        raise VersionParseError(f"期望 X.Y.Z 格式，实际为: {stripped}")

    values = []
    for name, part in zip(_FIELD_NAMES, parts):
        if not _NUMERIC_FIELD.match(part):
            raise VersionParseError(f"无效的 {name} 字段: {part}")
        values.append(int(part))
    return SemVer(*values)


def try_parse_semver(text: str) -> Optional[SemVer]:
    """解析版本号，失败时返回 None。"""
    try:
        return parse_semver(text)
    except VersionParseError:
        return None


@dataclass(frozen=True)
class InstalledVersion:
    """已安装版本记录。每次刷新整体替换，不逐字段修改。"""

    version: SemVer
    is_default: bool = False
    lts_codename: Optional[str] = None
    install_date: Optional[datetime] = None
    disk_size: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": str(self.version),
            "is_default": self.is_default,
            "lts_codename": self.lts_codename,
            "install_date": self.install_date.isoformat() if self.install_date else None,
            "disk_size": self.disk_size,
        }


@dataclass(frozen=True)
class RemoteVersion:
    """远程可用版本记录。"""

    version: SemVer
    lts_codename: Optional[str] = None
    is_latest: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": str(self.version),
            "lts_codename": self.lts_codename,
            "is_latest": self.is_latest,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RemoteVersion":
        return cls(
            version=parse_semver(data["version"]),
            lts_codename=data.get("lts_codename"),
            is_latest=bool(data.get("is_latest", False)),
        )


@dataclass
class VersionGroup:
    """
    按主版本号聚合的已安装版本。

    is_expanded 仅供界面使用，刷新时按主版本号保留。
    """

    major: int
    versions: List[InstalledVersion] = field(default_factory=list)
    is_expanded: bool = True


def parse_installed_list(output: str) -> List[InstalledVersion]:
    """
    解析后端 "list" 命令的输出。

    跳过 system 条目；包含 default 的行标记为默认版本；
    取第一个以 v 开头的字段作为版本号，无法解析的行直接丢弃。

    参数:
        output: 命令标准输出

    返回:
        已安装版本列表
    """
    result: List[InstalledVersion] = []
    for raw_line in output.splitlines():
        line = raw_line.strip()
        if not line:
            continue
        if line in ("system", "* system"):
            continue

        token = next((t for t in line.split() if t.startswith("v")), None)
        if token is None:
            continue
        version = try_parse_semver(token)
        if version is None:
            continue

        result.append(InstalledVersion(version=version, is_default="default" in line))
    return result


def parse_remote_list(output: str) -> List[RemoteVersion]:
    """
    解析后端 "list-remote" 命令的输出。

    每行以第一个空格切分，第一部分为版本号；剩余部分若被括号包裹，
    则括号内文本为 LTS 代号。版本号无法解析的行直接丢弃。

    参数:
        output: 命令标准输出

    返回:
        远程版本列表
    """
    result: List[RemoteVersion] = []
    for raw_line in output.splitlines():
        line = raw_line.strip()
        if not line:
            continue

        version_text, _, rest = line.partition(" ")
        version = try_parse_semver(version_text)
        if version is None:
            continue

        codename = None
        rest = rest.strip()
        if len(rest) >= 2 and rest.startswith("(") and rest.endswith(")"):
            codename = rest[1:-1]

        result.append(RemoteVersion(version=version, lts_codename=codename))
    return result


def mark_latest(versions: Iterable[RemoteVersion]) -> List[RemoteVersion]:
    """将列表中最高的版本标记为 is_latest，其余清除标记。"""
    items = list(versions)
    if not items:
        return items
    newest = max(v.version for v in items)
    return [replace(v, is_latest=(v.version == newest)) for v in items]


def tag_default(versions: Iterable[InstalledVersion], default: Optional[SemVer]) -> List[InstalledVersion]:
    """
    按后端给出的默认版本重新标记 is_default，保证最多一条记录为默认。

    default 为 None 时保留第一条已标记的记录。
    """
    items = list(versions)
    if default is None:
        default = next((v.version for v in items if v.is_default), None)
    return [replace(v, is_default=(default is not None and v.version == default)) for v in items]


def sort_versions_desc(versions: Iterable[InstalledVersion]) -> List[InstalledVersion]:
    """按版本号降序排列。"""
    return sorted(versions, key=lambda v: v.version, reverse=True)


def group_by_major(
    versions: Iterable[InstalledVersion],
    previous: Optional[Iterable[VersionGroup]] = None,
) -> List[VersionGroup]:
    """
    按主版本号分组。

    分组按主版本号降序排列，组内按完整版本号降序排列。
    previous 中同一主版本号的 is_expanded 状态会被保留。

    参数:
        versions: 已安装版本
        previous: 上一次刷新得到的分组

    返回:
        分组列表
    """
    expanded = {g.major: g.is_expanded for g in (previous or [])}
    buckets: Dict[int, List[InstalledVersion]] = {}
    for v in versions:
        buckets.setdefault(v.version.major, []).append(v)

    return [
        VersionGroup(
            major=major,
            versions=sort_versions_desc(buckets[major]),
            is_expanded=expanded.get(major, True),
        )
        for major in sorted(buckets, reverse=True)
    ]


def latest_by_major(versions: Iterable[SemVer]) -> Dict[int, SemVer]:
    """返回每个主版本号下的最高版本。"""
    latest: Dict[int, SemVer] = {}
    for v in versions:
        current = latest.get(v.major)
        if current is None or v > current:
            latest[v.major] = v
    return latest


def parse_current_version(output: str) -> Optional[SemVer]:
    """
    解析后端 "current" 命令输出。

    none、system 或空输出表示没有正在使用的版本，其余无法解析的输出抛出 VersionParseError。
    """
    text = output.strip()
    if not text or text in ("none", "system"):
        return None
    return parse_semver(text)
