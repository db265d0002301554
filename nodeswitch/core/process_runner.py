"""
子进程执行模块。

封装后端工具的非交互调用：一次性执行并捕获输出，或以流的方式
跟踪安装进度。Windows 下隐藏控制台窗口。
"""

import os
import queue
import subprocess
import sys
import threading
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional, Sequence

from nodeswitch.core.errors import (
    BackendIoError,
    BackendNotFoundError,
    BackendTimeoutError,
    CommandFailedError,
)
from nodeswitch.core.progress import InstallPhase, InstallProgress, PhaseGate, classify
from nodeswitch.utils.logger import get_logger

logger = get_logger()

LineFilter = Callable[[str], str]


def _hidden_window_kwargs() -> Dict[str, Any]:
    """Windows 下隐藏子进程控制台窗口所需的参数。"""
    if sys.platform != "win32":
        return {}
    startupinfo = subprocess.STARTUPINFO()
    startupinfo.dwFlags |= subprocess.STARTF_USESHOWWINDOW
    startupinfo.wShowWindow = subprocess.SW_HIDE
    return {"startupinfo": startupinfo, "creationflags": subprocess.CREATE_NO_WINDOW}


def build_env(overrides: Optional[Mapping[str, Optional[str]]] = None) -> Optional[Dict[str, str]]:
    """
    在当前进程环境变量的基础上叠加覆盖项，值为 None 的项被忽略。

    没有任何覆盖项时返回 None，子进程直接继承当前环境。
    """
    if not overrides:
        return None
    values = {k: str(v) for k, v in overrides.items() if v is not None}
    if not values:
        return None
    env = os.environ.copy()
    env.update(values)
    return env


def decode_output(data: Optional[bytes]) -> str:
    if not data:
        return ""
    return data.decode("utf-8", errors="replace")


def run_command(
    argv: Sequence[str],
    env: Optional[Mapping[str, Optional[str]]] = None,
    timeout: Optional[float] = None,
    decoder: Callable[[Optional[bytes]], str] = decode_output,
) -> str:
    """
    执行命令并返回标准输出。

    参数:
        argv: 命令及参数
        env: 额外的环境变量
        timeout: 超时时间（秒），None 表示不限时
        decoder: 输出解码函数

    返回:
        解码后的标准输出

    抛出:
        BackendNotFoundError: 可执行文件不存在
        BackendIoError: 进程无法启动
        BackendTimeoutError: 超时
        CommandFailedError: 退出码非零
    """
    argv = list(argv)
    logger.debug(f"执行命令: {' '.join(argv)}")
    try:
        result = subprocess.run(
            argv,
            stdin=subprocess.DEVNULL,
            capture_output=True,
            env=build_env(env),
            timeout=timeout,
            **_hidden_window_kwargs(),
        )
    except FileNotFoundError as e:
        logger.error(f"可执行文件不存在: {argv[0]}")
        raise BackendNotFoundError(f"可执行文件不存在: {argv[0]}") from e
    except subprocess.TimeoutExpired as e:
        logger.warning(f"命令执行超时 ({timeout} 秒): {argv[0]}")
        raise BackendTimeoutError(f"命令执行超时 ({timeout} 秒)") from e
    except OSError as e:
        logger.error(f"无法启动进程 {argv[0]}: {e}")
        raise BackendIoError(f"无法启动进程: {e}") from e

    logger.debug(f"命令退出码: {result.returncode}")
    if result.returncode != 0:
        stderr = decoder(result.stderr)
        logger.error(f"命令执行失败 (退出码 {result.returncode}): {stderr.strip()}")
        raise CommandFailedError(stderr, result.returncode)
    return decoder(result.stdout)


class _StreamState:
    """两个读取线程共享的少量状态。"""

    def __init__(self):
        self.lock = threading.Lock()
        self.last_stderr: Optional[str] = None

    def record_stderr(self, line: str) -> None:
        with self.lock:
            self.last_stderr = line

    def failure_message(self, exit_code: int) -> str:
        with self.lock:
            if self.last_stderr:
                return self.last_stderr
        return f"进程退出码 {exit_code}"


def _split_lines(raw: bytes, line_filter: Optional[LineFilter]) -> List[str]:
    # 进度条常以 \r 刷新同一行
    text = decode_output(raw).replace("\r", "\n")
    lines = []
    for line in text.split("\n"):
        if line_filter is not None:
            line = line_filter(line)
        line = line.strip()
        if line:
            lines.append(line)
    return lines


def _read_stream(
    stream,
    events: "queue.Queue[InstallProgress]",
    state: _StreamState,
    is_stderr: bool,
    line_filter: Optional[LineFilter],
) -> None:
    try:
        for raw in iter(stream.readline, b""):
            for line in _split_lines(raw, line_filter):
                if is_stderr:
                    state.record_stderr(line)
                progress = classify(line)
                # 终止事件只由进程退出决定
                if progress is not None and not progress.is_terminal:
                    events.put(progress)
    except (OSError, ValueError) as e:
        logger.debug(f"[ASYNC] 读取进程输出中断: {e}")
    finally:
        try:
            stream.close()
        except OSError:
            pass


def _wait_for_exit(
    process: subprocess.Popen,
    readers: List[threading.Thread],
    events: "queue.Queue[InstallProgress]",
    state: _StreamState,
) -> None:
    for reader in readers:
        reader.join()
    exit_code = process.wait()
    logger.debug(f"[ASYNC] 安装进程退出，退出码 {exit_code}")
    if exit_code == 0:
        events.put(InstallProgress(phase=InstallPhase.COMPLETE, percent=100.0))
    else:
        events.put(InstallProgress(phase=InstallPhase.FAILED, error=state.failure_message(exit_code)))


def _progress_events(
    process: subprocess.Popen,
    line_filter: Optional[LineFilter],
) -> Iterator[InstallProgress]:
    events: "queue.Queue[InstallProgress]" = queue.Queue()
    state = _StreamState()
    readers = [
        threading.Thread(
            target=_read_stream,
            args=(process.stdout, events, state, False, line_filter),
            name="nodeswitch-stdout",
            daemon=True,
        ),
        threading.Thread(
            target=_read_stream,
            args=(process.stderr, events, state, True, line_filter),
            name="nodeswitch-stderr",
            daemon=True,
        ),
    ]
    for reader in readers:
        reader.start()
    threading.Thread(
        target=_wait_for_exit,
        args=(process, readers, events, state),
        name="nodeswitch-waiter",
        daemon=True,
    ).start()

    gate = PhaseGate()
    starting = InstallProgress(phase=InstallPhase.STARTING)
    gate.admit(starting)
    yield starting

    while True:
        progress = events.get()
        if gate.admit(progress):
            yield progress
        if progress.is_terminal:
            return


def stream_command(
    argv: Sequence[str],
    env: Optional[Mapping[str, Optional[str]]] = None,
    line_filter: Optional[LineFilter] = None,
) -> Iterator[InstallProgress]:
    """
    启动命令并以进度事件流的形式跟踪其输出。

    标准输出和标准错误各由一个线程逐行读取并归类；第三个线程在两个
    读取线程结束后等待进程退出，发出 COMPLETE 或 FAILED 终止事件。
    事件流总是以 STARTING 开始，以恰好一个终止事件结束，
    之后不再产生任何事件。

    参数:
        argv: 命令及参数
        env: 额外的环境变量
        line_filter: 归类前对每行文本的处理，例如去除 ANSI 转义序列

    返回:
        InstallProgress 迭代器

    抛出:
        BackendNotFoundError: 可执行文件不存在
        BackendIoError: 进程无法启动
    """
    argv = list(argv)
    logger.debug(f"启动进程: {' '.join(argv)}")
    try:
        process = subprocess.Popen(
            argv,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            env=build_env(env),
            **_hidden_window_kwargs(),
        )
    except FileNotFoundError as e:
        logger.error(f"可执行文件不存在: {argv[0]}")
        raise BackendNotFoundError(f"可执行文件不存在: {argv[0]}") from e
    except OSError as e:
        logger.error(f"无法启动进程 {argv[0]}: {e}")
        raise BackendIoError(f"无法启动进程: {e}") from e
    return _progress_events(process, line_filter)
