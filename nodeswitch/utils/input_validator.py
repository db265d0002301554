"""
输入验证模块。

校验来自界面或命令行的版本号、URL 和命令参数。
"""

import re

from nodeswitch.utils.logger import get_logger

logger = get_logger()


class InputValidationError(Exception):
    """输入验证错误异常。"""
    pass


class InputValidator:
    """
    输入验证器类。

    版本号允许后端可识别的写法，例如 v20.11.0、20、lts/iron、latest。
    """

    VERSION_PATTERN = re.compile(r'^[a-zA-Z0-9._/*-]+$')
    MAX_VERSION_LENGTH = 100
    URL_PATTERN = re.compile(
        r'^https?://'
        r'(?:(?:[A-Z0-9](?:[A-Z0-9-]{0,61}[A-Z0-9])?\.)+'
        r'(?:[A-Z]{2,63}|[A-Z0-9-]{2,})|localhost)'
        r'(?::\d+)?'
        r'(?:/?|[/?]\S+)$',
        re.IGNORECASE
    )
    DANGEROUS_CHARS = (';', '|', '&', '>', '<', '`', '$', '\\', '"', "'", '\n')

    @classmethod
    def validate_version_string(cls, version: str) -> bool:
        """
        验证版本号字符串的有效性。

        参数:
            version: 版本号字符串

        返回:
            验证通过返回 True，否则抛出 InputValidationError
        """
        if not version or not version.strip():
            raise InputValidationError("版本号不能为空")

        version = version.strip()
        if len(version) > cls.MAX_VERSION_LENGTH:
            raise InputValidationError(f"版本号不能超过 {cls.MAX_VERSION_LENGTH} 个字符")

        if version.startswith("-") or not cls.VERSION_PATTERN.match(version):
            raise InputValidationError(f"版本号格式无效: {version}")

        return True

    @classmethod
    def sanitize_version_string(cls, version: str) -> str:
        """去除版本号两侧空白。"""
        if not version:
            return ""
        return version.strip()

    @classmethod
    def validate_url(cls, url: str) -> bool:
        """
        验证 URL 的有效性，空值视为有效。

        参数:
            url: URL 字符串

        返回:
            验证通过返回 True，否则抛出 InputValidationError
        """
        if not url or not url.strip():
            return True
        if not cls.URL_PATTERN.match(url.strip()):
            raise InputValidationError(f"URL 格式无效: {url}")
        return True

    @classmethod
    def validate_command_arg(cls, arg: str, max_length: int = 1024) -> bool:
        """
        验证拼接进 shell 脚本的参数，防止命令注入。

        参数:
            arg: 命令参数
            max_length: 最大长度

        返回:
            验证通过返回 True，否则抛出 InputValidationError
        """
        if arg is None:
            return True

        if len(arg) > max_length:
            raise InputValidationError("命令参数超过最大长度")

        for char in cls.DANGEROUS_CHARS:
            if char in arg:
                raise InputValidationError(f"命令参数包含非法字符: {char!r}")

        return True
