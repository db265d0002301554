"""
NodeSwitch 工具模块。

提供日志记录、输入校验和网络请求重试等工具功能。
"""

from .logger import get_logger, setup_logger, set_log_level
from .retry import RetryHandler
from .input_validator import InputValidator, InputValidationError

__all__ = [
    "get_logger",
    "setup_logger",
    "set_log_level",
    "RetryHandler",
    "InputValidator",
    "InputValidationError",
]
