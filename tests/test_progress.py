"""Tests for nodeswitch.core.progress."""

from __future__ import annotations

import pytest

from nodeswitch.core.progress import (
    InstallPhase,
    InstallProgress,
    PhaseGate,
    classify,
    extract_bytes,
    extract_percentage,
    parse_byte_size,
)


class TestClassify:
    def test_installing_node_is_downloading(self) -> None:
        result = classify("Installing Node v20.11.0 (x64)")
        assert result == InstallProgress(phase=InstallPhase.DOWNLOADING)

    def test_downloading_with_percent_and_bytes(self) -> None:
        result = classify("Downloading node-v20.11.0-linux-x64.tar.xz 10MB/22MB 45%")
        assert result.phase is InstallPhase.DOWNLOADING
        assert result.percent == 45.0
        assert result.bytes_downloaded == 10_000_000
        assert result.total_bytes == 22_000_000

    def test_downloading_without_numbers(self) -> None:
        result = classify("Downloading https://nodejs.org/dist/v20.11.0/")
        assert result.phase is InstallPhase.DOWNLOADING
        assert result.percent is None

    def test_extracting(self) -> None:
        assert classify("Extracting archive").phase is InstallPhase.EXTRACTING
        assert classify("going to extract files").phase is InstallPhase.EXTRACTING

    def test_installing(self) -> None:
        assert classify("Installing npm").phase is InstallPhase.INSTALLING

    def test_complete(self) -> None:
        result = classify("Now using node v20.11.0 - installed")
        assert result.phase is InstallPhase.COMPLETE
        assert result.percent == 100.0

    @pytest.mark.parametrize("line", ["", "   ", "Checksums matched!", "Computing checksum"])
    def test_unrecognised(self, line: str) -> None:
        assert classify(line) is None

    def test_installing_node_takes_priority(self) -> None:
        assert classify("Installing Node v18 complete").phase is InstallPhase.DOWNLOADING


class TestExtractors:
    def test_percentage_in_parentheses(self) -> None:
        assert extract_percentage("progress (12.5%)") == 12.5

    def test_no_percentage(self) -> None:
        assert extract_percentage("no numbers here") is None

    def test_bytes_with_units(self) -> None:
        assert extract_bytes("got 1.5GB/3G") == (1_500_000_000, 3_000_000_000)

    def test_bytes_unparseable(self) -> None:
        assert extract_bytes("a/b") is None
        assert extract_bytes("no slash") is None

    @pytest.mark.parametrize(
        ("text", "expected"),
        [("512", 512), ("10B", 10), ("2K", 2000), ("3KB", 3000), ("(4MB)", 4_000_000), ("bad", None)],
    )
    def test_parse_byte_size(self, text: str, expected: int) -> None:
        assert parse_byte_size(text) == expected


class TestPhaseGate:
    def test_rejects_backward_moves(self) -> None:
        gate = PhaseGate()
        assert gate.admit(InstallProgress(phase=InstallPhase.EXTRACTING))
        assert not gate.admit(InstallProgress(phase=InstallPhase.DOWNLOADING))
        assert gate.phase is InstallPhase.EXTRACTING

    def test_same_phase_updates_pass(self) -> None:
        gate = PhaseGate()
        assert gate.admit(InstallProgress(phase=InstallPhase.DOWNLOADING, percent=10.0))
        assert gate.admit(InstallProgress(phase=InstallPhase.DOWNLOADING, percent=20.0))

    def test_nothing_after_terminal(self) -> None:
        gate = PhaseGate()
        assert gate.admit(InstallProgress(phase=InstallPhase.COMPLETE))
        assert gate.finished
        assert not gate.admit(InstallProgress(phase=InstallPhase.FAILED))
        assert not gate.admit(InstallProgress(phase=InstallPhase.COMPLETE))


class TestInstallProgress:
    def test_terminal_phases(self) -> None:
        assert InstallProgress(phase=InstallPhase.FAILED, error="x").is_terminal
        assert not InstallProgress(phase=InstallPhase.INSTALLING).is_terminal

    def test_to_dict(self) -> None:
        data = InstallProgress(phase=InstallPhase.DOWNLOADING, percent=5.0).to_dict()
        assert data["phase"] == "downloading"
        assert data["percent"] == 5.0
