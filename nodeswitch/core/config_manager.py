"""
配置管理器模块。

提供应用程序配置和版本缓存的加载、保存和验证功能。
"""

import copy
import json
import os
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from nodeswitch.utils.logger import get_app_dir, get_logger
from nodeswitch.utils.input_validator import InputValidator, InputValidationError
from nodeswitch.core.interfaces import IConfigManager, ShellInitOptions
from nodeswitch.core.version_utils import RemoteVersion
from nodeswitch.core.schedule import DEFAULT_ACTIVE_MAJOR_FLOOR, SCHEDULE_URL, ReleaseSchedule

logger = get_logger()


class ConfigValidationError(Exception):
    """配置验证错误异常。"""
    pass


class ConfigLoadError(Exception):
    """配置加载错误异常。"""
    pass


class ConfigSaveError(Exception):
    """配置保存错误异常。"""
    pass


def _atomic_save_json(file_path: Path, data: Any, indent: int = 2) -> None:
    """
    原子保存 JSON 数据到文件，防止写入中断导致文件损坏。

    参数:
        file_path: 目标文件路径
        data: 要保存的数据
        indent: JSON 缩进
    """
    temp_path = file_path.with_suffix(file_path.suffix + ".tmp")

    try:
        with open(temp_path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=indent, ensure_ascii=False)
        os.replace(temp_path, file_path)
    except (IOError, OSError, TypeError, ValueError):
        if temp_path.exists():
            try:
                temp_path.unlink()
            except OSError:
                logger.debug(f"无法删除临时文件: {temp_path}")
        raise


def _deep_merge(defaults: Dict[str, Any], overrides: Dict[str, Any]) -> Dict[str, Any]:
    """以 defaults 为基础合并 overrides，补齐缺失字段。"""
    merged = copy.deepcopy(defaults)
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


class VersionCache:
    """
    磁盘版本缓存。

    保存远程版本列表、发布计划及缓存时间。缓存时间仅作为过期提示，
    过期的数据依然可用。
    """

    def __init__(
        self,
        remote_versions: Optional[List[RemoteVersion]] = None,
        release_schedule: Optional[ReleaseSchedule] = None,
        cached_at: Optional[datetime] = None,
    ):
        self.remote_versions = remote_versions or []
        self.release_schedule = release_schedule
        self.cached_at = cached_at

    def is_stale(self, ttl_hours: float, now: Optional[datetime] = None) -> bool:
        """判断缓存是否超过 TTL。"""
        if self.cached_at is None:
            return True
        now = now or datetime.now(timezone.utc)
        return now - self.cached_at > timedelta(hours=ttl_hours)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "remote_versions": [v.to_dict() for v in self.remote_versions],
            "release_schedule": self.release_schedule.to_dict() if self.release_schedule else None,
            "cached_at": self.cached_at.isoformat() if self.cached_at else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "VersionCache":
        versions = []
        for item in data.get("remote_versions") or []:
            try:
                versions.append(RemoteVersion.from_dict(item))
            except (KeyError, ValueError, TypeError) as e:
                logger.debug(f"忽略无效的缓存版本条目 {item}: {e}")

        schedule_data = data.get("release_schedule")
        schedule = ReleaseSchedule.from_dict(schedule_data) if isinstance(schedule_data, dict) else None

        cached_at = None
        if data.get("cached_at"):
            try:
                cached_at = datetime.fromisoformat(data["cached_at"])
                if cached_at.tzinfo is None:
                    cached_at = cached_at.replace(tzinfo=timezone.utc)
            except (TypeError, ValueError):
                logger.debug(f"无效的缓存时间: {data['cached_at']}")
        return cls(versions, schedule, cached_at)


class ConfigManager(IConfigManager):
    """
    配置管理器类。

    负责管理应用程序配置的加载、保存、验证和访问，以及版本缓存文件。
    实现 IConfigManager 抽象接口。
    """

    REQUIRED_FIELDS = {
        "settings": dict,
    }

    SETTINGS_FIELDS = {
        "preferred_backend": str,
        "cache_ttl_hours": (int, float),
        "active_major_floor": int,
        "request_retry_count": int,
        "schedule_url": str,
        "shell_options": dict,
    }

    SUPPORTED_BACKENDS = ("fnm", "nvm")

    def __init__(self, config_dir: Optional[Path] = None):
        """
        初始化配置管理器。

        参数:
            config_dir: 配置目录，默认为应用程序目录下的 config
        """
        self.config_dir = Path(config_dir) if config_dir else get_app_dir() / "config"
        self.config_file = self.config_dir / "config.json"
        self.cache_file = self.config_dir / "cache.json"
        self._config: Dict[str, Any] = {}

    def _ensure_config_dir(self) -> None:
        """确保配置目录存在。"""
        self.config_dir.mkdir(parents=True, exist_ok=True)

    @staticmethod
    def get_builtin_default_config() -> Dict[str, Any]:
        """获取内置默认配置。"""
        return {
            "settings": {
                "preferred_backend": "fnm",
                "fnm_dir": None,
                "nvm_dir": None,
                "node_dist_mirror": None,
                "cache_ttl_hours": 1,
                "active_major_floor": DEFAULT_ACTIVE_MAJOR_FLOOR,
                "request_retry_count": 3,
                "schedule_url": SCHEDULE_URL,
                "shell_options": {
                    "use_on_cd": True,
                    "resolve_engines": False,
                    "corepack_enabled": False,
                },
            },
        }

    def load_config(self) -> Dict[str, Any]:
        """
        加载配置文件。

        文件不存在或内容无效时使用默认配置，缺失字段由默认配置补齐。

        返回:
            配置字典
        """
        defaults = self.get_builtin_default_config()
        if not self.config_file.exists():
            logger.info(f"配置文件不存在，使用默认配置: {self.config_file}")
            self._config = defaults
            return self._config

        try:
            logger.debug(f"从文件加载配置: {self.config_file}")
            with open(self.config_file, "r", encoding="utf-8") as f:
                loaded = json.load(f)
            if not isinstance(loaded, dict):
                raise ConfigValidationError("配置文件顶层必须是对象")
            config = _deep_merge(defaults, loaded)
            self.validate_config(config)
            self._config = config
        except (IOError, OSError, json.JSONDecodeError) as e:
            logger.error(f"加载配置文件失败，使用默认配置: {e}")
            self._config = defaults
        except ConfigValidationError as e:
            logger.error(f"配置验证失败，使用默认配置: {e}")
            self._config = defaults
        return self._config

    def save_config(self, config: Optional[Dict[str, Any]] = None) -> None:
        """
        保存配置到文件。

        参数:
            config: 要保存的配置字典，如果为 None 则保存当前配置
        """
        if config is not None:
            self.validate_config(config)
            self._config = config
        else:
            self.validate_config(self.config)

        try:
            self._ensure_config_dir()
            logger.debug(f"保存配置到 {self.config_file}")
            _atomic_save_json(self.config_file, self._config, indent=2)
        except (IOError, OSError, TypeError, ValueError) as e:
            logger.error(f"保存配置失败: {e}")
            raise ConfigSaveError(f"无法保存配置到 {self.config_file}: {e}") from e

    def validate_config(self, config: Dict[str, Any]) -> bool:
        """
        验证配置的有效性。

        参数:
            config: 要验证的配置字典

        返回:
            验证通过返回 True

        抛出:
            ConfigValidationError: 配置验证失败时抛出
        """
        for field, expected_type in self.REQUIRED_FIELDS.items():
            if not isinstance(config.get(field), expected_type):
                raise ConfigValidationError(f"字段 '{field}' 缺失或类型错误")

        settings = config["settings"]
        for field, expected_type in self.SETTINGS_FIELDS.items():
            value = settings.get(field)
            if isinstance(value, bool) or not isinstance(value, expected_type):
                raise ConfigValidationError(
                    f"字段 'settings.{field}' 类型错误，实际为 {type(value).__name__}"
                )

        if settings["preferred_backend"] not in self.SUPPORTED_BACKENDS:
            raise ConfigValidationError(f"不支持的后端: {settings['preferred_backend']}")

        mirror = settings.get("node_dist_mirror")
        if mirror:
            try:
                InputValidator.validate_url(mirror)
            except InputValidationError as e:
                raise ConfigValidationError(f"node_dist_mirror 无效: {e}") from e
        return True

    @property
    def config(self) -> Dict[str, Any]:
        """获取配置字典（延迟加载）。"""
        if not self._config:
            self.load_config()
        return self._config

    def get_config(self) -> Dict[str, Any]:
        """获取配置字典。"""
        return self.config

    def get_settings(self) -> Dict[str, Any]:
        """获取 settings 配置部分。"""
        return self.config["settings"]

    def set_setting(self, key: str, value: Any) -> None:
        """
        设置单个配置项并保存。

        参数:
            key: settings 下的键，支持 a.b 形式的嵌套键
            value: 新值
        """
        config = copy.deepcopy(self.config)
        target = config["settings"]
        keys = key.split(".")
        for k in keys[:-1]:
            target = target.setdefault(k, {})
        target[keys[-1]] = value
        self.save_config(config)
        logger.info(f"已设置 {key} = {value}")

    def get_preferred_backend(self) -> str:
        return self.get_settings()["preferred_backend"]

    def get_backend_dir(self, backend: str) -> Optional[Path]:
        """获取用户指定的后端数据目录（FNM_DIR / NVM_DIR）。"""
        value = self.get_settings().get(f"{backend}_dir")
        return Path(value) if value else None

    def get_node_dist_mirror(self) -> Optional[str]:
        return self.get_settings().get("node_dist_mirror") or None

    def get_cache_ttl_hours(self) -> float:
        return self.get_settings()["cache_ttl_hours"]

    def get_active_major_floor(self) -> int:
        return self.get_settings()["active_major_floor"]

    def get_request_retry_count(self) -> int:
        return self.get_settings()["request_retry_count"]

    def get_schedule_url(self) -> str:
        return self.get_settings()["schedule_url"]

    def get_shell_options(self) -> ShellInitOptions:
        options = self.get_settings()["shell_options"]
        return ShellInitOptions(
            use_on_cd=bool(options.get("use_on_cd", True)),
            resolve_engines=bool(options.get("resolve_engines", False)),
            corepack_enabled=bool(options.get("corepack_enabled", False)),
        )

    def load_version_cache(self) -> Optional[VersionCache]:
        """
        加载磁盘版本缓存。

        返回:
            VersionCache，文件不存在或损坏时返回 None
        """
        if not self.cache_file.exists():
            return None
        try:
            with open(self.cache_file, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (IOError, OSError, json.JSONDecodeError) as e:
            logger.warning(f"读取版本缓存失败: {e}")
            return None
        if not isinstance(data, dict):
            return None
        cache = VersionCache.from_dict(data)
        cache_floor = self.get_active_major_floor()
        if cache.release_schedule is not None:
            cache.release_schedule.active_major_floor = cache_floor
        logger.debug(f"已加载版本缓存: {len(cache.remote_versions)} 个版本，缓存时间 {cache.cached_at}")
        return cache

    def save_version_cache(self, cache: VersionCache) -> None:
        """
        保存磁盘版本缓存。

        参数:
            cache: 要保存的缓存
        """
        try:
            self._ensure_config_dir()
            _atomic_save_json(self.cache_file, cache.to_dict(), indent=2)
            logger.debug(f"版本缓存已保存到 {self.cache_file}")
        except (IOError, OSError, TypeError, ValueError) as e:
            logger.error(f"保存版本缓存失败: {e}")
            raise ConfigSaveError(f"无法保存缓存到 {self.cache_file}: {e}") from e

    def is_cache_stale(self, cache: Optional[VersionCache]) -> bool:
        """按配置的 TTL 判断缓存是否过期（仅提示）。"""
        return cache is None or cache.is_stale(self.get_cache_ttl_hours())
