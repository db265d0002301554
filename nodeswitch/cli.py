"""
NodeSwitch 命令行接口模块。
"""

import argparse
import json
import sys
from typing import List, Optional, Tuple

from nodeswitch import __version__
from nodeswitch.core import default_providers, events
from nodeswitch.core.config_manager import ConfigManager, ConfigSaveError, ConfigValidationError
from nodeswitch.core.environment import Environment, EnvironmentId, EnvironmentRegistry, detect_environments
from nodeswitch.core.errors import BackendError
from nodeswitch.core.orchestrator import Orchestrator
from nodeswitch.core.progress import InstallProgress
from nodeswitch.utils.logger import get_logger

logger = get_logger()

DEFAULT_TIMEOUT = 30 * 60
REMOTE_DISPLAY_LIMIT = 30


def create_parser() -> argparse.ArgumentParser:
    """
    创建并配置命令行参数解析器。

    返回:
        配置好的 ArgumentParser 实例
    """
    parser = argparse.ArgumentParser(
        prog="nodeswitch",
        description="NodeSwitch - Node.js 版本管理器",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
示例:
  nodeswitch list                    列出已安装的 Node.js 版本
  nodeswitch list --remote --lts     列出远程 LTS 版本
  nodeswitch install 20.11.0 18      安装多个版本
  nodeswitch default v20.11.0        设置默认版本
  nodeswitch --env 1 list            列出第二个环境（WSL）中的版本
  nodeswitch shell-init bash         输出 bash 初始化命令
        """,
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="启用详细输出",
    )

    parser.add_argument(
        "--env",
        "-e",
        type=int,
        default=None,
        help="运行环境索引（0 为本机，见 envs 命令）",
    )

    parser.add_argument(
        "--backend",
        "-b",
        choices=list(ConfigManager.SUPPORTED_BACKENDS),
        default=None,
        help="本机首选后端，默认使用配置中的值",
    )

    subparsers = parser.add_subparsers(
        dest="command",
        title="命令",
        description="可用的 CLI 命令",
    )

    list_parser = subparsers.add_parser(
        "list",
        help="列出已安装或远程可用的版本",
    )
    list_parser.add_argument(
        "--remote",
        "-r",
        action="store_true",
        help="显示远程可用版本",
    )
    list_parser.add_argument(
        "--lts",
        action="store_true",
        help="只显示 LTS 版本（配合 --remote）",
    )
    list_parser.add_argument(
        "--format",
        "-f",
        choices=["simple", "json"],
        default="simple",
        help="输出格式",
    )

    install_parser = subparsers.add_parser(
        "install",
        help="安装一个或多个版本",
    )
    install_parser.add_argument(
        "versions",
        nargs="+",
        help="要安装的版本",
    )

    uninstall_parser = subparsers.add_parser(
        "uninstall",
        help="卸载指定版本",
    )
    uninstall_parser.add_argument(
        "version",
        help="要卸载的版本",
    )

    default_parser = subparsers.add_parser(
        "default",
        help="设置默认版本",
    )
    default_parser.add_argument(
        "version",
        help="要设为默认的版本",
    )

    use_parser = subparsers.add_parser(
        "use",
        help="切换当前使用的版本（仅部分后端支持）",
    )
    use_parser.add_argument(
        "version",
        help="要切换到的版本",
    )

    subparsers.add_parser(
        "envs",
        help="列出检测到的运行环境",
    )

    shell_parser = subparsers.add_parser(
        "shell-init",
        help="输出 shell 初始化命令",
    )
    shell_parser.add_argument(
        "shell",
        choices=["bash", "zsh", "fish", "powershell", "cmd"],
        help="shell 类型",
    )

    subparsers.add_parser(
        "schedule",
        help="显示 Node.js 发布计划",
    )

    config_parser = subparsers.add_parser(
        "config",
        help="显示或修改配置",
    )
    config_parser.add_argument(
        "--set",
        "-s",
        type=str,
        help="设置配置值（格式：key=value，key 为 settings 下的键）",
    )

    return parser


def run_cli(args: argparse.Namespace) -> int:
    """
    运行命令行接口。

    参数:
        args: 解析后的命令行参数

    返回:
        退出码（0 表示成功）
    """
    if args.command is None:
        print("未指定命令。使用 --help 查看帮助信息。")
        return 1

    command_handlers = {
        "list": handle_list,
        "install": handle_install,
        "uninstall": handle_uninstall,
        "default": handle_default,
        "use": handle_use,
        "envs": handle_envs,
        "shell-init": handle_shell_init,
        "schedule": handle_schedule,
        "config": handle_config,
    }

    handler = command_handlers.get(args.command)
    if handler:
        logger.info(f"执行命令: {args.command}")
        return handler(args)
    else:
        print(f"未知命令: {args.command}")
        return 1


def _detect(args: argparse.Namespace, config: ConfigManager, include_wsl: bool) -> EnvironmentRegistry:
    return detect_environments(
        default_providers(),
        preferred=args.backend or config.get_preferred_backend(),
        data_dirs={name: config.get_backend_dir(name) for name in ConfigManager.SUPPORTED_BACKENDS},
        mirror=config.get_node_dist_mirror(),
        include_wsl=include_wsl,
    )


def _get_orchestrator(args: argparse.Namespace) -> Tuple[ConfigManager, Optional[Orchestrator]]:
    """
    检测运行环境并创建 Orchestrator，按 --env 选择活动环境。

    返回:
        (ConfigManager, Orchestrator) 元组；环境索引无效时 Orchestrator 为 None
    """
    config = ConfigManager()
    registry = _detect(args, config, include_wsl=bool(args.env))
    if args.env is not None:
        try:
            registry.select(args.env)
        except IndexError:
            print(f"环境索引无效: {args.env}（共 {len(registry)} 个环境）")
            return config, None
    return config, Orchestrator(registry, config=config)


def _pump(orchestrator: Orchestrator) -> bool:
    if orchestrator.run_until_idle(timeout=DEFAULT_TIMEOUT):
        return True
    print("等待操作完成超时")
    return False


def _print_progress(version: str, progress: InstallProgress) -> None:
    percent = progress.percent
    bar_len = 40
    filled = int(bar_len * percent / 100) if percent is not None else 0
    bar = "=" * filled + "-" * (bar_len - filled)
    label = progress.phase.name.lower()
    text = f"{percent:.0f}%" if percent is not None else "--"
    print(f"\r{version} [{bar}] {text} {label}", end="", flush=True)


class OperationReporter:
    """把操作相关事件输出到终端，并统计失败次数。"""

    def __init__(self):
        self.failures = 0
        self._progress_line = False

    def _end_progress_line(self) -> None:
        if self._progress_line:
            print()
            self._progress_line = False

    def __call__(self, event: events.Event) -> None:
        if isinstance(event, events.InstallProgressed):
            _print_progress(event.version, event.progress)
            self._progress_line = True
            return

        self._end_progress_line()
        if isinstance(event, events.InstallFinished):
            self._report(event.success, f"安装 {event.version}", event.error)
        elif isinstance(event, events.UninstallFinished):
            self._report(event.success, f"卸载 {event.version}", event.error)
        elif isinstance(event, events.DefaultChanged):
            self._report(event.success, f"设置默认版本 {event.version}", event.error)
        elif isinstance(event, events.OperationQueued):
            print(f"已排队 #{event.id}: {event.request}")
        elif isinstance(event, events.OperationRejected):
            print(f"请求被拒绝: {event.reason}")
            self.failures += 1

    def _report(self, success: bool, action: str, error: Optional[str]) -> None:
        if success:
            print(f"成功{action}")
        else:
            print(f"{action}失败: {error}")
            self.failures += 1


def _run_operations(args: argparse.Namespace, requests: List[events.Request]) -> int:
    _, orchestrator = _get_orchestrator(args)
    if orchestrator is None:
        return 1

    reporter = OperationReporter()
    orchestrator.subscribe(reporter)
    try:
        for request in requests:
            orchestrator.handle(request)
        if not _pump(orchestrator):
            return 1
    finally:
        orchestrator.shutdown()
    return 1 if reporter.failures else 0


def handle_list(args: argparse.Namespace) -> int:
    """
    处理 list 命令：列出已安装或远程可用的版本。

    参数:
        args: 解析后的命令行参数

    返回:
        退出码
    """
    _, orchestrator = _get_orchestrator(args)
    if orchestrator is None:
        return 1

    errors: List[str] = []
    remote: List = []

    def listener(event: events.Event) -> None:
        if isinstance(event, (events.EnvironmentLoadError, events.RemoteVersionsError)):
            errors.append(event.message)
        elif isinstance(event, events.RemoteVersionsLoaded):
            remote[:] = event.versions

    orchestrator.subscribe(listener)
    env = orchestrator.registry.active
    try:
        if args.remote:
            print(f"正在获取远程版本（{env.name}）...")
            orchestrator.handle(events.ListRemote(lts_only=args.lts))
        else:
            orchestrator.handle(events.ListInstalled())
        if not _pump(orchestrator):
            return 1
    finally:
        orchestrator.shutdown()

    if errors:
        print(f"获取版本失败: {errors[-1]}")
        return 1

    if args.remote:
        versions = sorted(remote, key=lambda v: v.version, reverse=True)
        if args.format == "json":
            print(json.dumps([v.to_dict() for v in versions], indent=2, ensure_ascii=False))
            return 0
        if not versions:
            print("未找到远程版本")
            return 0
        print(f"可用版本（{env.backend_name}）:")
        for v in versions[:REMOTE_DISPLAY_LIMIT]:
            codename = f" ({v.lts_codename})" if v.lts_codename else ""
            print(f"  {v.version}{codename}")
        if len(versions) > REMOTE_DISPLAY_LIMIT:
            print(f"  ... 还有 {len(versions) - REMOTE_DISPLAY_LIMIT} 个版本")
        return 0

    if args.format == "json":
        result = {
            "environment": str(env.id),
            "backend": env.backend_name,
            "default": str(env.default_version) if env.default_version else None,
            "versions": [v.to_dict() for v in env.installed_versions],
        }
        print(json.dumps(result, indent=2, ensure_ascii=False))
        return 0

    if not env.installed_versions:
        print(f"{env.name} 中没有已安装的版本")
        return 0
    print(f"{env.name} 已安装版本（{env.backend_name}）:")
    for group in env.version_groups:
        for v in group.versions:
            marker = " *" if v.is_default else "  "
            print(f"{marker} {v.version}")
    print(f"\n默认版本: {env.default_version or '未设置'}")
    return 0


def handle_install(args: argparse.Namespace) -> int:
    """处理 install 命令：安装一个或多个版本，多个安装并行进行。"""
    print(f"正在安装: {', '.join(args.versions)}")
    return _run_operations(args, [events.InstallVersion(v) for v in args.versions])


def handle_uninstall(args: argparse.Namespace) -> int:
    """处理 uninstall 命令：卸载指定版本。"""
    print(f"正在卸载 {args.version}...")
    return _run_operations(args, [events.UninstallVersion(args.version)])


def handle_default(args: argparse.Namespace) -> int:
    """处理 default 命令：设置默认版本。"""
    return _run_operations(args, [events.SetDefault(args.version)])


def handle_use(args: argparse.Namespace) -> int:
    """
    处理 use 命令：切换当前使用的版本。

    只有 nvm-windows 能在当前进程之外切换版本，其他后端提示使用 shell 集成。

    参数:
        args: 解析后的命令行参数

    返回:
        退出码
    """
    _, orchestrator = _get_orchestrator(args)
    if orchestrator is None:
        return 1
    orchestrator.shutdown()

    env = orchestrator.registry.active
    if not env.available:
        print(f"{env.name} 不可用: {env.unavailable_reason}")
        return 1
    if not env.manager.capabilities().supports_use_version:
        print(f"{env.backend_name} 不支持在当前终端外切换版本，请使用 shell-init 配置 shell 集成")
        return 1

    try:
        env.manager.use_version(args.version)
    except BackendError as e:
        print(f"切换到 {args.version} 失败: {e}")
        return 1
    print(f"已切换到 {args.version}")
    print("注意：可能需要重启终端才能使更改生效。")
    return 0


def handle_envs(args: argparse.Namespace) -> int:
    """处理 envs 命令：列出所有运行环境。"""
    config = ConfigManager()
    registry = _detect(args, config, include_wsl=True)

    print("运行环境:")
    for index, env in enumerate(registry):
        if env.available:
            info = env.manager.backend_info
            version = f" {info.version}" if info.version else ""
            print(f"  [{index}] {env.name}: {env.backend_name}{version}")
            if args.verbose and info.path:
                print(f"      路径: {info.path}")
        else:
            print(f"  [{index}] {env.name}: 不可用（{env.unavailable_reason}）")
    return 0


def handle_shell_init(args: argparse.Namespace) -> int:
    """处理 shell-init 命令：输出 shell 初始化命令。"""
    config, orchestrator = _get_orchestrator(args)
    if orchestrator is None:
        return 1
    orchestrator.shutdown()

    env = orchestrator.registry.active
    if not env.available:
        print(f"{env.name} 不可用: {env.unavailable_reason}")
        return 1
    command = env.manager.shell_init_command(args.shell, config.get_shell_options())
    if command is None:
        print(f"{env.backend_name} 不支持 {args.shell} 的 shell 集成")
        return 1
    print(command)
    return 0


def handle_schedule(args: argparse.Namespace) -> int:
    """处理 schedule 命令：显示受支持的主版本及其 LTS 状态。"""
    config = ConfigManager()
    # 发布计划与后端无关，不需要检测运行环境
    registry = EnvironmentRegistry([Environment.unavailable(EnvironmentId.native(), "未检测后端")])
    orchestrator = Orchestrator(registry, config=config)

    results: List = []

    def listener(event: events.Event) -> None:
        if isinstance(event, (events.ReleaseScheduleLoaded, events.ReleaseScheduleError)):
            results.append(event)

    orchestrator.subscribe(listener)
    try:
        orchestrator.handle(events.FetchReleaseSchedule())
        if not _pump(orchestrator):
            return 1
    finally:
        orchestrator.shutdown()

    schedule = orchestrator.release_schedule
    if results and isinstance(results[-1], events.ReleaseScheduleError):
        if schedule is None:
            print(f"获取发布计划失败: {results[-1].message}")
            return 1
        print(f"获取发布计划失败，显示缓存数据: {results[-1].message}")
    if schedule is None:
        print("没有可用的发布计划")
        return 1

    print("受支持的主版本:")
    for major in sorted(schedule.active_versions(), reverse=True):
        entry = schedule.versions[major]
        lts = ""
        if schedule.is_lts(major):
            lts = f" LTS ({entry.codename})" if entry.codename else " LTS"
        print(f"  v{major}{lts}  结束于 {entry.end}")
    return 0


def handle_config(args: argparse.Namespace) -> int:
    """
    处理 config 命令：显示或修改配置。

    参数:
        args: 解析后的命令行参数

    返回:
        退出码
    """
    config_manager = ConfigManager()

    if args.set:
        key, _, value = args.set.partition("=")
        if not key or not value:
            print("格式无效。请使用: key=value")
            return 1

        try:
            value = json.loads(value)
        except json.JSONDecodeError:
            pass

        try:
            config_manager.set_setting(key, value)
        except (ConfigValidationError, ConfigSaveError) as e:
            print(f"设置 {key} 失败: {e}")
            return 1
        print(f"已设置 {key} = {value}")
    else:
        print(json.dumps(config_manager.get_config(), indent=2, ensure_ascii=False))

    return 0


if __name__ == "__main__":
    sys.exit(run_cli(create_parser().parse_args()))
