"""Shared fixtures for nodeswitch tests."""

from __future__ import annotations

import os
import tempfile

# Logging is configured on first import, so the app dir must point somewhere disposable first.
os.environ.setdefault("NODESWITCH_HOME", tempfile.mkdtemp(prefix="nodeswitch-test-"))

from pathlib import Path  # noqa: E402
from typing import Callable, Dict, Iterator, List, Optional, Sequence  # noqa: E402

import pytest  # noqa: E402

from nodeswitch.core.config_manager import ConfigManager  # noqa: E402
from nodeswitch.core.environment import Environment, EnvironmentId, EnvironmentRegistry  # noqa: E402
from nodeswitch.core.interfaces import (  # noqa: E402
    BackendInfo,
    IVersionManager,
    ManagerCapabilities,
    ShellInitOptions,
)
from nodeswitch.core.orchestrator import Orchestrator  # noqa: E402
from nodeswitch.core.progress import InstallPhase, InstallProgress  # noqa: E402
from nodeswitch.core.version_utils import (  # noqa: E402
    InstalledVersion,
    RemoteVersion,
    SemVer,
    parse_semver,
)


def installed(text: str, is_default: bool = False) -> InstalledVersion:
    return InstalledVersion(version=parse_semver(text), is_default=is_default)


def remote(text: str, codename: Optional[str] = None) -> RemoteVersion:
    return RemoteVersion(version=parse_semver(text), lts_codename=codename)


DEFAULT_INSTALL_EVENTS = [
    InstallProgress(phase=InstallPhase.STARTING),
    InstallProgress(phase=InstallPhase.DOWNLOADING, percent=50.0),
    InstallProgress(phase=InstallPhase.COMPLETE, percent=100.0),
]


class FakeManager(IVersionManager):
    """In-memory backend that records every call."""

    def __init__(
        self,
        installed_versions: Sequence[InstalledVersion] = (),
        remote_versions: Sequence[RemoteVersion] = (),
        default: Optional[SemVer] = None,
        name: str = "fnm",
    ) -> None:
        self.installed = list(installed_versions)
        self.remote = list(remote_versions)
        self._default = default
        self._name = name
        self.calls: List[tuple] = []
        self.failures: Dict[str, Exception] = {}
        self.install_events: Dict[str, List[InstallProgress]] = {}

    @property
    def name(self) -> str:
        return self._name

    @property
    def backend_info(self) -> BackendInfo:
        return BackendInfo(name=self._name, path=None, version="1.0.0")

    def capabilities(self) -> ManagerCapabilities:
        return ManagerCapabilities(supports_progress=True, supports_lts_filter=True)

    def _record(self, *call) -> None:
        self.calls.append(call)
        failure = self.failures.get(call[0])
        if failure is not None:
            raise failure

    def calls_to(self, method: str) -> List[tuple]:
        return [c for c in self.calls if c[0] == method]

    def list_installed(self) -> List[InstalledVersion]:
        self._record("list_installed")
        return list(self.installed)

    def list_remote(self) -> List[RemoteVersion]:
        self._record("list_remote")
        return list(self.remote)

    def current_version(self) -> Optional[SemVer]:
        return None

    def default_version(self) -> Optional[SemVer]:
        self._record("default_version")
        return self._default

    def install(self, version: str) -> None:
        self._record("install", version)

    def install_with_progress(self, version: str) -> Iterator[InstallProgress]:
        self._record("install", version)
        events = self.install_events.get(version, DEFAULT_INSTALL_EVENTS)
        for event in events:
            if event.phase is InstallPhase.COMPLETE:
                self.installed.append(installed(version))
            yield event

    def uninstall(self, version: str) -> None:
        self._record("uninstall", version)
        self.installed = [v for v in self.installed if v.version != parse_semver(version)]

    def set_default(self, version: str) -> None:
        self._record("set_default", version)
        self.installed = [
            InstalledVersion(version=v.version, is_default=v.version == parse_semver(version))
            for v in self.installed
        ]

    def shell_init_command(self, shell: str, options: ShellInitOptions) -> Optional[str]:
        return None


class ManualRunner:
    """Task runner that only executes tasks when asked to."""

    def __init__(self) -> None:
        self.tasks: List[Callable[[], None]] = []

    def __call__(self, task: Callable[[], None]) -> None:
        self.tasks.append(task)

    def run_next(self) -> None:
        self.tasks.pop(0)()

    def run_all(self) -> None:
        while self.tasks:
            self.run_next()


class EventRecorder:
    def __init__(self) -> None:
        self.events: List[object] = []

    def __call__(self, event: object) -> None:
        self.events.append(event)

    def of_type(self, event_type: type) -> List:
        return [e for e in self.events if isinstance(e, event_type)]

    def clear(self) -> None:
        self.events.clear()


def settle(orchestrator: Orchestrator, runner: ManualRunner, max_rounds: int = 50) -> None:
    """Run worker tasks and deliver their messages until nothing is left."""
    for _ in range(max_rounds):
        runner.run_all()
        orchestrator.process_pending()
        if not runner.tasks and orchestrator.is_idle:
            return
    raise AssertionError("orchestrator did not settle")


@pytest.fixture(autouse=True)
def app_home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("NODESWITCH_HOME", str(home))
    return home


@pytest.fixture
def runner() -> ManualRunner:
    return ManualRunner()


@pytest.fixture
def recorder() -> EventRecorder:
    return EventRecorder()


@pytest.fixture
def manager() -> FakeManager:
    return FakeManager(
        installed_versions=[installed("20.11.0", is_default=True), installed("18.19.1")],
        remote_versions=[
            remote("21.6.1"),
            remote("20.12.0", "Iron"),
            remote("20.11.0", "Iron"),
            remote("18.19.1", "Hydrogen"),
        ],
    )


@pytest.fixture
def registry(manager: FakeManager) -> EnvironmentRegistry:
    return EnvironmentRegistry([Environment(EnvironmentId.native(), manager)])


@pytest.fixture
def config(tmp_path: Path) -> ConfigManager:
    return ConfigManager(tmp_path / "config")


@pytest.fixture
def orchestrator(
    registry: EnvironmentRegistry,
    runner: ManualRunner,
    recorder: EventRecorder,
) -> Orchestrator:
    orch = Orchestrator(registry, runner=runner)
    orch.subscribe(recorder)
    return orch
