"""Tests for the nodeswitch command line."""

from __future__ import annotations

import json
from unittest import mock

import pytest

from conftest import FakeManager
from nodeswitch import cli
from nodeswitch.core.environment import Environment, EnvironmentId, EnvironmentRegistry
from nodeswitch.core.errors import CommandFailedError
from nodeswitch.core.schedule import ReleaseSchedule, ScheduleFetchError, VersionSchedule
from nodeswitch.main import main


@pytest.fixture
def detected(manager: FakeManager):
    registry = EnvironmentRegistry(
        [
            Environment(EnvironmentId.native(), manager),
            Environment.unavailable(EnvironmentId.wsl("Debian"), "发行版未运行"),
        ]
    )
    with mock.patch.object(cli, "_detect", return_value=registry) as detect:
        yield detect


class TestParser:
    def test_install_accepts_many(self) -> None:
        args = cli.create_parser().parse_args(["-e", "1", "install", "20", "18.19.1"])
        assert args.command == "install"
        assert args.versions == ["20", "18.19.1"]
        assert args.env == 1

    def test_backend_choices(self) -> None:
        with pytest.raises(SystemExit):
            cli.create_parser().parse_args(["--backend", "volta", "list"])

    def test_no_command(self, capsys: pytest.CaptureFixture) -> None:
        assert main([]) == 1
        assert "usage: nodeswitch" in capsys.readouterr().out


class TestList:
    def test_installed(self, detected: mock.Mock, capsys: pytest.CaptureFixture) -> None:
        assert main(["list"]) == 0
        out = capsys.readouterr().out
        assert " * v20.11.0" in out
        assert "   v18.19.1" in out
        assert "默认版本: v20.11.0" in out
        assert detected.call_args[1]["include_wsl"] is False

    def test_installed_json(self, detected: mock.Mock, capsys: pytest.CaptureFixture) -> None:
        assert main(["list", "--format", "json"]) == 0
        data = json.loads(capsys.readouterr().out)
        assert data["default"] == "v20.11.0"
        assert [v["version"] for v in data["versions"]] == ["v20.11.0", "v18.19.1"]

    def test_remote(self, detected: mock.Mock, capsys: pytest.CaptureFixture) -> None:
        assert main(["list", "--remote"]) == 0
        out = capsys.readouterr().out
        assert "v20.12.0 (Iron)" in out
        assert out.index("v21.6.1") < out.index("v18.19.1")

    def test_load_failure(self, detected: mock.Mock, manager: FakeManager, capsys: pytest.CaptureFixture) -> None:
        manager.failures["list_installed"] = CommandFailedError("fnm: command not found", 127)
        assert main(["list"]) == 1
        assert "fnm: command not found" in capsys.readouterr().out

    def test_unavailable_environment(self, detected: mock.Mock, capsys: pytest.CaptureFixture) -> None:
        assert main(["--env", "1", "list"]) == 1
        assert "发行版未运行" in capsys.readouterr().out
        assert detected.call_args[1]["include_wsl"] is True

    def test_bad_environment_index(self, detected: mock.Mock, capsys: pytest.CaptureFixture) -> None:
        assert main(["--env", "5", "list"]) == 1
        assert "环境索引无效" in capsys.readouterr().out


class TestOperations:
    def test_install_many(self, detected: mock.Mock, manager: FakeManager, capsys: pytest.CaptureFixture) -> None:
        assert main(["install", "21.6.1", "16.20.2"]) == 0
        assert sorted(manager.calls_to("install")) == [("install", "16.20.2"), ("install", "21.6.1")]
        out = capsys.readouterr().out
        assert "成功安装 21.6.1" in out
        assert "成功安装 16.20.2" in out

    def test_install_rejected(self, detected: mock.Mock, manager: FakeManager, capsys: pytest.CaptureFixture) -> None:
        assert main(["install", "20;rm"]) == 1
        assert "请求被拒绝" in capsys.readouterr().out
        assert not manager.calls_to("install")

    def test_uninstall_failure(self, detected: mock.Mock, manager: FakeManager, capsys: pytest.CaptureFixture) -> None:
        manager.failures["uninstall"] = CommandFailedError("version not installed", 1)
        assert main(["uninstall", "12"]) == 1
        assert "卸载 12失败: version not installed" in capsys.readouterr().out

    def test_default(self, detected: mock.Mock, manager: FakeManager) -> None:
        assert main(["default", "18.19.1"]) == 0
        assert manager.calls_to("set_default") == [("set_default", "18.19.1")]

    def test_use_unsupported(self, detected: mock.Mock, capsys: pytest.CaptureFixture) -> None:
        assert main(["use", "18"]) == 1
        assert "shell-init" in capsys.readouterr().out

    def test_shell_init_unsupported(self, detected: mock.Mock, capsys: pytest.CaptureFixture) -> None:
        assert main(["shell-init", "cmd"]) == 1
        assert "不支持 cmd" in capsys.readouterr().out


class TestInformation:
    def test_envs(self, detected: mock.Mock, capsys: pytest.CaptureFixture) -> None:
        assert main(["envs"]) == 0
        out = capsys.readouterr().out
        assert "[0]" in out and "fnm 1.0.0" in out
        assert "[1] WSL: Debian: 不可用（发行版未运行）" in out

    def test_schedule(self, capsys: pytest.CaptureFixture) -> None:
        schedule = ReleaseSchedule(
            {
                20: VersionSchedule(start="2023-04-18", end="2099-04-30", lts="2023-10-24", codename="Iron"),
                23: VersionSchedule(start="2024-10-16", end="2099-06-01"),
                16: VersionSchedule(start="2021-04-20", end="2023-09-11", codename="Gallium"),
            }
        )
        with mock.patch("nodeswitch.core.orchestrator.fetch_release_schedule", return_value=schedule):
            assert main(["schedule"]) == 0
        out = capsys.readouterr().out
        assert "v20 LTS (Iron)" in out
        assert "v23  结束于 2099-06-01" in out
        assert "v16" not in out

    def test_schedule_failure(self, capsys: pytest.CaptureFixture) -> None:
        failure = ScheduleFetchError("获取发布计划失败: offline")
        with mock.patch("nodeswitch.core.orchestrator.fetch_release_schedule", side_effect=failure):
            assert main(["schedule"]) == 1
        assert "offline" in capsys.readouterr().out


class TestConfigCommand:
    def test_show(self, capsys: pytest.CaptureFixture) -> None:
        assert main(["config"]) == 0
        assert json.loads(capsys.readouterr().out)["settings"]["preferred_backend"] == "fnm"

    def test_set_parses_json_values(self) -> None:
        assert main(["config", "--set", "cache_ttl_hours=6"]) == 0
        assert main(["config", "--set", "preferred_backend=nvm"]) == 0
        config = cli.ConfigManager()
        assert config.get_cache_ttl_hours() == 6
        assert config.get_preferred_backend() == "nvm"

    def test_set_invalid(self, capsys: pytest.CaptureFixture) -> None:
        assert main(["config", "--set", "preferred_backend=volta"]) == 1
        assert main(["config", "--set", "novalue"]) == 1
        out = capsys.readouterr().out
        assert "设置 preferred_backend 失败" in out
        assert "格式无效" in out
