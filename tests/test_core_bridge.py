"""Tests for the Qt bridge around the orchestrator."""

from __future__ import annotations

import pytest

pytest.importorskip("PySide6")

from PySide6.QtCore import QCoreApplication  # noqa: E402

from conftest import ManualRunner, settle  # noqa: E402
from nodeswitch.core.environment import EnvironmentRegistry  # noqa: E402
from nodeswitch.core.orchestrator import Orchestrator  # noqa: E402
from nodeswitch.ui.core_bridge import CoreBridge  # noqa: E402


@pytest.fixture(scope="module")
def qapp():
    app = QCoreApplication.instance() or QCoreApplication([])
    yield app


@pytest.fixture
def bridge(qapp, registry: EnvironmentRegistry, runner: ManualRunner):
    bridge = CoreBridge(Orchestrator(registry, runner=runner), pump_interval_ms=1000)
    yield bridge
    bridge.deleteLater()


class TestCoreBridge:
    def test_environment_loaded_signal(self, bridge: CoreBridge, runner: ManualRunner) -> None:
        received = []
        bridge.environmentLoaded.connect(lambda env_id, versions, default: received.append((env_id, versions, default)))
        bridge.listInstalled()
        settle(bridge.orchestrator, runner)

        [(env_id, versions, default)] = received
        assert env_id == "native"
        assert [v["version"] for v in versions] == ["v20.11.0", "v18.19.1"]
        assert default == "v20.11.0"
        env = bridge.environments[0]
        assert env["backend"] == "fnm"
        assert env["defaultVersion"] == "v20.11.0"

    def test_install_flow(self, bridge: CoreBridge, runner: ManualRunner) -> None:
        progress = []
        finished = []
        queued = []
        bridge.installProgressed.connect(lambda env_id, version, data: progress.append(data["phase"]))
        bridge.installFinished.connect(lambda env_id, version, ok, error: finished.append((version, ok, error)))
        bridge.operationQueued.connect(lambda op_id, text: queued.append((op_id, text)))

        bridge.installVersion("21.6.1")
        bridge.uninstallVersion("18.19.1")
        assert queued == [(1, "uninstall 18.19.1")]
        assert bridge.pendingOperations[0]["operation"] == "uninstall 18.19.1"

        settle(bridge.orchestrator, runner)
        assert progress[0] == "starting"
        assert finished == [("21.6.1", True, "")]
        assert bridge.pendingOperations == []

    def test_rejection_and_cancel(self, bridge: CoreBridge) -> None:
        rejected = []
        cancelled = []
        bridge.operationRejected.connect(rejected.append)
        bridge.operationCancelled.connect(lambda op_id, found: cancelled.append((op_id, found)))
        bridge.installVersion("$(reboot)")
        bridge.cancelQueued(3)
        assert len(rejected) == 1
        assert cancelled == [(3, False)]

    def test_select_environment(self, bridge: CoreBridge) -> None:
        rejected = []
        bridge.operationRejected.connect(rejected.append)
        bridge.selectEnvironment(4)
        assert rejected
        assert bridge.activeIndex == 0

    def test_pump_processes_inbox(self, bridge: CoreBridge, runner: ManualRunner) -> None:
        loaded = []
        bridge.environmentLoaded.connect(lambda *args: loaded.append(True))
        bridge.refreshEnvironment()
        runner.run_all()
        bridge._pump()
        assert loaded == [True]
