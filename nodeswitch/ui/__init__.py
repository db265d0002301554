"""
NodeSwitch 图形界面桥接模块。

提供基于 PySide6 的 Qt 桥接对象，界面层通过它调用核心功能。
"""

from typing import Optional

from nodeswitch.core import ConfigManager, Orchestrator, default_providers, detect_environments


def create_core_bridge(config: Optional[ConfigManager] = None, parent=None):
    """
    检测运行环境并创建 CoreBridge。

    参数:
        config: 配置管理器，默认使用应用目录下的配置
        parent: Qt 父对象

    返回:
        CoreBridge 实例
    """
    from nodeswitch.ui.core_bridge import CoreBridge, QtTaskRunner

    config = config or ConfigManager()
    registry = detect_environments(
        default_providers(),
        preferred=config.get_preferred_backend(),
        data_dirs={name: config.get_backend_dir(name) for name in ("fnm", "nvm")},
        mirror=config.get_node_dist_mirror(),
    )
    orchestrator = Orchestrator(registry, config=config, runner=QtTaskRunner())
    return CoreBridge(orchestrator, parent)
