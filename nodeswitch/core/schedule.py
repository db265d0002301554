"""
Node.js 发布计划模块。

提供发布计划的获取与查询功能，用于判断主版本是否仍受支持以及是否为 LTS。
"""

from dataclasses import dataclass
from datetime import date
from typing import Any, Dict, List, Optional

import requests

from nodeswitch.utils.logger import get_logger
from nodeswitch.utils.retry import RetryHandler

logger = get_logger()

SCHEDULE_URL = "https://raw.githubusercontent.com/nodejs/Release/main/schedule.json"

# 计划表中没有的主版本号，若不低于此值则视为仍受支持。需定期复核。
DEFAULT_ACTIVE_MAJOR_FLOOR = 18

REQUEST_TIMEOUT = 15


class ScheduleFetchError(Exception):
    """发布计划获取错误异常。"""
    pass


def _parse_date(value: Optional[str]) -> Optional[date]:
    if not value:
        return None
    try:
        return date.fromisoformat(value)
    except (TypeError, ValueError):
        return None


@dataclass(frozen=True)
class VersionSchedule:
    """单个主版本的发布计划。日期保留原始文本。"""

    start: str
    end: str
    lts: Optional[str] = None
    maintenance: Optional[str] = None
    codename: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "VersionSchedule":
        return cls(
            start=str(data.get("start", "")),
            end=str(data.get("end", "")),
            lts=data.get("lts"),
            maintenance=data.get("maintenance"),
            codename=data.get("codename"),
        )

    def to_dict(self) -> Dict[str, Any]:
        data = {"start": self.start, "end": self.end}
        for key in ("lts", "maintenance", "codename"):
            value = getattr(self, key)
            if value is not None:
                data[key] = value
        return data


class ReleaseSchedule:
    """
    发布计划，按主版本号索引。

    参数:
        versions: 主版本号到 VersionSchedule 的映射
        active_major_floor: 未知主版本被视为受支持的最低主版本号
    """

    def __init__(
        self,
        versions: Dict[int, VersionSchedule],
        active_major_floor: int = DEFAULT_ACTIVE_MAJOR_FLOOR,
    ):
        self.versions = versions
        self.active_major_floor = active_major_floor

    def is_active(self, major: int, today: Optional[date] = None) -> bool:
        """
        判断主版本是否仍受支持。

        计划表中没有该主版本时，按 active_major_floor 推断；
        结束日期无法解析时视为受支持。
        """
        schedule = self.versions.get(major)
        if schedule is None:
            return major >= self.active_major_floor
        end_date = _parse_date(schedule.end)
        if end_date is None:
            return True
        return end_date > (today or date.today())

    def is_lts(self, major: int) -> bool:
        schedule = self.versions.get(major)
        return schedule is not None and (schedule.lts is not None or schedule.codename is not None)

    def codename(self, major: int) -> Optional[str]:
        schedule = self.versions.get(major)
        return schedule.codename if schedule else None

    def active_versions(self, today: Optional[date] = None) -> List[int]:
        return sorted(m for m in self.versions if self.is_active(m, today))

    def active_lts_versions(self, today: Optional[date] = None) -> List[int]:
        return [m for m in self.active_versions(today) if self.is_lts(m)]

    @classmethod
    def from_dict(
        cls,
        raw: Dict[str, Any],
        active_major_floor: int = DEFAULT_ACTIVE_MAJOR_FLOOR,
    ) -> "ReleaseSchedule":
        """
        从 schedule.json 格式的字典构建。

        键形如 "v20"；无法解析为主版本号的键（如 "v0.12"）被忽略。
        """
        versions: Dict[int, VersionSchedule] = {}
        for key, value in raw.items():
            if not isinstance(value, dict):
                continue
            major_text = str(key).lstrip("v")
            if not major_text.isdigit():
                continue
            versions[int(major_text)] = VersionSchedule.from_dict(value)
        return cls(versions, active_major_floor)

    def to_dict(self) -> Dict[str, Any]:
        return {f"v{major}": s.to_dict() for major, s in sorted(self.versions.items())}


def fetch_release_schedule(
    url: str = SCHEDULE_URL,
    max_retries: int = 3,
    active_major_floor: int = DEFAULT_ACTIVE_MAJOR_FLOOR,
    session: Optional[requests.Session] = None,
) -> ReleaseSchedule:
    """
    从网络获取发布计划。

    参数:
        url: schedule.json 地址
        max_retries: 临时性网络错误的最大重试次数
        active_major_floor: 未知主版本的受支持下限
        session: 可选的 requests 会话

    返回:
        ReleaseSchedule 实例

    抛出:
        ScheduleFetchError: 请求或解析失败时抛出
    """
    http = session or requests

    def _get() -> Dict[str, Any]:
        response = http.get(url, timeout=REQUEST_TIMEOUT)
        response.raise_for_status()
        return response.json()

    logger.info(f"正在获取发布计划: {url}")
    try:
        raw = RetryHandler(max_retries=max_retries).execute(_get)
    except requests.exceptions.RequestException as e:
        logger.error(f"获取发布计划失败: {e}")
        raise ScheduleFetchError(f"获取发布计划失败: {e}") from e
    except ValueError as e:
        logger.error(f"解析发布计划失败: {e}")
        raise ScheduleFetchError(f"解析发布计划失败: {e}") from e

    if not isinstance(raw, dict):
        raise ScheduleFetchError("发布计划格式无效")
    schedule = ReleaseSchedule.from_dict(raw, active_major_floor)
    logger.info(f"已获取 {len(schedule.versions)} 个主版本的发布计划")
    return schedule
