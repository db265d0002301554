"""
后端错误类型模块。

定义版本管理工具（fnm、nvm）调用过程中可能出现的错误。
"""

from typing import Optional


class BackendError(Exception):
    """后端错误基类。"""
    pass


class BackendNotFoundError(BackendError):
    """后端工具未安装或无法定位。"""

    def __init__(self, message: str = "未找到版本管理工具"):
        super().__init__(message)


class CommandFailedError(BackendError):
    """
    后端命令以非零退出码结束。

    属性:
        stderr: 捕获的标准错误输出
        exit_code: 进程退出码
    """

    def __init__(self, stderr: str, exit_code: Optional[int] = None):
        self.stderr = stderr
        self.exit_code = exit_code
        super().__init__(self.describe())

    def describe(self) -> str:
        """返回面向用户的错误描述，stderr 为空时合成一条消息。"""
        text = (self.stderr or "").strip()
        if text:
            return text
        if self.exit_code is not None:
            return f"命令执行失败，退出码 {self.exit_code}"
        return "命令执行失败"


class VersionParseError(BackendError, ValueError):
    """版本号文本格式错误。"""
    pass


class BackendIoError(BackendError):
    """进程启动或管道读写失败。"""
    pass


class BackendTimeoutError(BackendError):
    """等待后端命令超时。"""

    def __init__(self, message: str = "等待命令超时"):
        super().__init__(message)


class UnsupportedOperationError(BackendError):
    """当前后端不支持该操作。"""

    def __init__(self, operation: str):
        self.operation = operation
        super().__init__(f"当前后端不支持该操作: {operation}")
