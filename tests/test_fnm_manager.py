"""Tests for nodeswitch.core.fnm_manager."""

from __future__ import annotations

from pathlib import Path
from unittest import mock

import pytest

from nodeswitch.core import fnm_manager
from nodeswitch.core.errors import BackendNotFoundError, CommandFailedError
from nodeswitch.core.fnm_manager import (
    FnmManager,
    FnmProvider,
    build_shell_init_command,
    find_fnm_dir,
    parse_fnm_version,
)
from nodeswitch.core.interfaces import BackendDetection, ShellInitOptions
from nodeswitch.core.version_utils import SemVer


@pytest.fixture
def run_command():
    with mock.patch.object(fnm_manager, "run_command", return_value="") as patched:
        yield patched


class TestFnmManagerCommands:
    def test_list_installed(self, run_command: mock.Mock) -> None:
        run_command.return_value = "* v20.11.0 default\n* v18.19.1\n* system\n"
        manager = FnmManager("/usr/bin/fnm")
        versions = manager.list_installed()
        assert [str(v.version) for v in versions] == ["v20.11.0", "v18.19.1"]
        assert manager.default_version() == SemVer(20, 11, 0)
        run_command.assert_called_with(["/usr/bin/fnm", "list"], env={"FNM_DIR": None, "FNM_NODE_DIST_MIRROR": None})

    def test_list_remote_marks_latest(self, run_command: mock.Mock) -> None:
        run_command.return_value = "v18.19.1 (Hydrogen)\nv21.6.1\nv20.11.0 (Iron)\n"
        versions = FnmManager("fnm").list_remote()
        latest = [v for v in versions if v.is_latest]
        assert [str(v.version) for v in latest] == ["v21.6.1"]
        assert versions[0].lts_codename == "Hydrogen"

    def test_list_remote_lts_uses_flag(self, run_command: mock.Mock) -> None:
        run_command.return_value = "v20.11.0 (Iron)\n"
        FnmManager("fnm").list_remote_lts()
        assert run_command.call_args[0][0] == ["fnm", "list-remote", "--lts"]

    def test_current_version_none(self, run_command: mock.Mock) -> None:
        run_command.return_value = "none\n"
        assert FnmManager("fnm").current_version() is None

    @pytest.mark.parametrize(
        ("method", "argv"),
        [
            ("install", ["fnm", "install", "20", "--progress", "never"]),
            ("uninstall", ["fnm", "uninstall", "20"]),
            ("set_default", ["fnm", "default", "20"]),
            ("use_version", ["fnm", "use", "20"]),
        ],
    )
    def test_operation_argv(self, run_command: mock.Mock, method: str, argv: list) -> None:
        getattr(FnmManager("fnm"), method)("20")
        assert run_command.call_args[0][0] == argv

    def test_environment_overrides(self, run_command: mock.Mock) -> None:
        run_command.return_value = ""
        manager = FnmManager("fnm", data_dir=Path("/data/fnm"), mirror="https://npmmirror.com/mirrors/node")
        manager.uninstall("18")
        assert run_command.call_args[1]["env"] == {
            "FNM_DIR": str(Path("/data/fnm")),
            "FNM_NODE_DIST_MIRROR": "https://npmmirror.com/mirrors/node",
        }

    def test_wsl_prefix_and_no_environment(self, run_command: mock.Mock) -> None:
        run_command.return_value = ""
        manager = FnmManager("/home/u/.local/share/fnm/fnm", wsl_distro="Ubuntu")
        manager.set_default("20")
        assert run_command.call_args[0][0] == [
            "wsl.exe", "-d", "Ubuntu", "--", "/home/u/.local/share/fnm/fnm", "default", "20",
        ]
        assert run_command.call_args[1]["env"] == {}

    def test_errors_propagate(self, run_command: mock.Mock) -> None:
        run_command.side_effect = CommandFailedError("error: Can't find version", 1)
        with pytest.raises(CommandFailedError, match="Can't find version"):
            FnmManager("fnm").uninstall("99")

    def test_install_with_progress_streams(self) -> None:
        with mock.patch.object(fnm_manager, "stream_command") as stream:
            stream.return_value = iter([])
            FnmManager("fnm", wsl_distro="Debian").install_with_progress("20")
        assert stream.call_args[0][0] == ["wsl.exe", "-d", "Debian", "--", "fnm", "install", "20", "--progress", "never"]

    def test_capabilities(self) -> None:
        caps = FnmManager("fnm").capabilities()
        assert caps.supports_progress and caps.supports_lts_filter and caps.supports_use_version


class TestShellInit:
    def test_bash_with_flags(self) -> None:
        options = ShellInitOptions(use_on_cd=True, corepack_enabled=True)
        assert build_shell_init_command("fnm", "bash", options) == 'eval "$(fnm env --use-on-cd --corepack-enabled)"'

    def test_fish(self) -> None:
        assert build_shell_init_command("fnm", "fish", ShellInitOptions()) == "fnm env | source"

    def test_powershell(self) -> None:
        command = build_shell_init_command("fnm", "PowerShell", ShellInitOptions(resolve_engines=True))
        assert command == "fnm env --resolve-engines | Out-String | Invoke-Expression"

    def test_cmd_not_supported(self) -> None:
        assert FnmManager("fnm").shell_init_command("cmd", ShellInitOptions()) is None


class TestDetection:
    def test_parse_version(self) -> None:
        assert parse_fnm_version("fnm 1.37.1\n") == "1.37.1"

    def test_find_fnm_dir_prefers_node_versions(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        empty = tmp_path / "empty"
        empty.mkdir()
        populated = tmp_path / "xdg" / "fnm"
        (populated / "node-versions").mkdir(parents=True)
        monkeypatch.setenv("FNM_DIR", str(empty))
        monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "xdg"))
        assert find_fnm_dir() == populated

    def test_detect_not_found(self) -> None:
        with mock.patch.object(fnm_manager, "find_fnm_binary", return_value=None):
            assert FnmProvider().detect() == BackendDetection(found=False)

    def test_detect_survives_version_failure(self, run_command: mock.Mock) -> None:
        run_command.side_effect = CommandFailedError("", 1)
        with mock.patch.object(fnm_manager, "find_fnm_binary", return_value=Path("/opt/fnm")), \
                mock.patch.object(fnm_manager, "find_fnm_dir", return_value=None):
            detection = FnmProvider().detect()
        assert detection.found
        assert detection.version is None

    def test_create_manager_requires_detection(self) -> None:
        with pytest.raises(BackendNotFoundError):
            FnmProvider().create_manager(BackendDetection(found=False))

    def test_create_manager_prefers_configured_dir(self) -> None:
        detection = BackendDetection(found=True, path=Path("/opt/fnm"), version="1.37.1", data_dir=Path("/a"))
        manager = FnmProvider().create_manager(detection, data_dir=Path("/b"), mirror="https://m.example.com")
        assert manager.data_dir == Path("/b")
        assert manager.backend_info.version == "1.37.1"

    def test_wsl_manager(self) -> None:
        manager = FnmProvider().create_manager_for_wsl("Ubuntu", "/usr/bin/fnm", version="fnm 1.35.0")
        assert manager.wsl_distro == "Ubuntu"
        assert "$HOME/.local/share/fnm/fnm" in FnmProvider().wsl_search_paths()
