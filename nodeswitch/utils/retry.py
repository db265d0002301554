"""
重试机制工具模块。

为网络请求（发布计划获取）提供指数退避重试。后端子进程调用不自动重试。
"""

import random
import time
from typing import Any, Callable, Optional, TypeVar

import requests

from nodeswitch.utils.logger import get_logger

logger = get_logger()

T = TypeVar('T')

RETRYABLE_STATUS_CODES = (408, 429)


class RetryHandler:
    """
    重试处理器类。

    仅对超时、连接错误和 5xx/408/429 响应重试。
    """

    def __init__(
        self,
        max_retries: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 30.0,
        backoff_factor: float = 2.0,
        jitter: bool = True,
        sleep: Optional[Callable[[float], None]] = None,
    ):
        """
        初始化重试处理器。

        参数:
            max_retries: 最大重试次数
            base_delay: 基础延迟时间（秒）
            max_delay: 最大延迟时间（秒）
            backoff_factor: 退避因子
            jitter: 是否添加随机抖动
            sleep: 等待函数，默认 time.sleep
        """
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.backoff_factor = backoff_factor
        self.jitter = jitter
        self._sleep = sleep or time.sleep

    def calculate_delay(self, attempt: int) -> float:
        """
        计算第 n 次重试的延迟时间。

        参数:
            attempt: 重试次数（从 0 开始）

        返回:
            延迟时间（秒）
        """
        delay = min(self.base_delay * (self.backoff_factor ** attempt), self.max_delay)
        if self.jitter:
            delay = delay * (0.5 + random.random() * 0.5)
        return delay

    @staticmethod
    def is_retryable_error(exception: Exception) -> bool:
        """判断错误是否可重试。"""
        if isinstance(exception, requests.exceptions.HTTPError):
            response = getattr(exception, "response", None)
            if response is None:
                return False
            status_code = response.status_code
            return status_code >= 500 or status_code in RETRYABLE_STATUS_CODES
        return isinstance(
            exception,
            (
                requests.exceptions.Timeout,
                requests.exceptions.ConnectionError,
                requests.exceptions.ChunkedEncodingError,
            ),
        )

    def execute(self, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """
        执行函数，遇到可重试错误时按退避策略重试。

        抛出:
            不可重试的错误立即抛出；超过最大重试次数后抛出最后一次错误
        """
        attempt = 0
        while True:
            try:
                return func(*args, **kwargs)
            except Exception as e:
                if not self.is_retryable_error(e):
                    raise
                if attempt >= self.max_retries:
                    logger.error(f"已达到最大重试次数 {self.max_retries}，放弃重试")
                    raise
                delay = self.calculate_delay(attempt)
                logger.warning(
                    f"请求失败 (尝试 {attempt + 1}/{self.max_retries + 1}): {e}，"
                    f"{delay:.2f} 秒后重试..."
                )
                self._sleep(delay)
                attempt += 1
