"""Tests for nodeswitch.core.version_utils."""

from __future__ import annotations

import pytest

from nodeswitch.core.errors import VersionParseError
from nodeswitch.core.version_utils import (
    InstalledVersion,
    RemoteVersion,
    SemVer,
    VersionGroup,
    group_by_major,
    latest_by_major,
    mark_latest,
    parse_current_version,
    parse_installed_list,
    parse_remote_list,
    parse_semver,
    tag_default,
    try_parse_semver,
)


class TestParseSemver:
    def test_with_prefix(self) -> None:
        assert parse_semver("v20.11.0") == SemVer(20, 11, 0)

    def test_without_prefix_and_whitespace(self) -> None:
        assert parse_semver("  18.19.1\n") == SemVer(18, 19, 1)

    def test_extra_fields_are_ignored(self) -> None:
        assert parse_semver("v1.2.3.4") == SemVer(1, 2, 3)

    def test_too_few_fields(self) -> None:
        with pytest.raises(VersionParseError):
            parse_semver("v20.11")

    def test_names_offending_field(self) -> None:
        with pytest.raises(VersionParseError, match="minor"):
            parse_semver("v20.x.0")

    def test_rejects_non_ascii_digits(self) -> None:
        with pytest.raises(VersionParseError):
            parse_semver("v２０.1.0")

    def test_try_parse_returns_none(self) -> None:
        assert try_parse_semver("system") is None

    def test_string_form_round_trips(self) -> None:
        version = SemVer(20, 11, 0)
        assert str(version) == "v20.11.0"
        assert parse_semver(str(version)) == version

    def test_ordering_is_numeric(self) -> None:
        assert SemVer(18, 9, 0) < SemVer(18, 10, 0) < SemVer(20, 0, 0)


class TestParseInstalledList:
    def test_fnm_output(self) -> None:
        output = "* v20.11.0 default\n* v18.19.1\n* system\n"
        result = parse_installed_list(output)
        assert [v.version for v in result] == [SemVer(20, 11, 0), SemVer(18, 19, 1)]
        assert result[0].is_default
        assert not result[1].is_default

    def test_drops_unparseable_lines(self) -> None:
        assert parse_installed_list("garbage\n\n  \nv1.x.0\n") == []

    def test_plain_versions(self) -> None:
        result = parse_installed_list("v16.20.2\n")
        assert result == [InstalledVersion(version=SemVer(16, 20, 2))]


class TestParseRemoteList:
    def test_codename_in_parentheses(self) -> None:
        result = parse_remote_list("v20.11.0 (Iron)\nv21.6.1\n")
        assert result == [
            RemoteVersion(SemVer(20, 11, 0), lts_codename="Iron"),
            RemoteVersion(SemVer(21, 6, 1)),
        ]

    def test_remainder_without_parentheses_is_not_codename(self) -> None:
        result = parse_remote_list("v20.11.0 Iron\n")
        assert result[0].lts_codename is None

    def test_bad_version_dropped(self) -> None:
        assert parse_remote_list("latest (Iron)\n\n") == []


class TestMarkLatest:
    def test_only_highest_is_latest(self) -> None:
        versions = [
            RemoteVersion(SemVer(18, 0, 0), is_latest=True),
            RemoteVersion(SemVer(21, 0, 0)),
            RemoteVersion(SemVer(20, 0, 0)),
        ]
        result = mark_latest(versions)
        assert [v.is_latest for v in result] == [False, True, False]

    def test_empty(self) -> None:
        assert mark_latest([]) == []


class TestTagDefault:
    def test_at_most_one_default(self) -> None:
        versions = [
            InstalledVersion(SemVer(20, 0, 0), is_default=True),
            InstalledVersion(SemVer(18, 0, 0), is_default=True),
        ]
        result = tag_default(versions, None)
        assert [v.is_default for v in result] == [True, False]

    def test_explicit_default_wins(self) -> None:
        versions = [InstalledVersion(SemVer(20, 0, 0), is_default=True), InstalledVersion(SemVer(18, 0, 0))]
        result = tag_default(versions, SemVer(18, 0, 0))
        assert [v.is_default for v in result] == [False, True]


class TestGroupByMajor:
    def test_groups_sorted_descending(self) -> None:
        versions = [
            InstalledVersion(SemVer(18, 19, 1)),
            InstalledVersion(SemVer(20, 10, 0)),
            InstalledVersion(SemVer(20, 11, 0)),
        ]
        groups = group_by_major(versions)
        assert [g.major for g in groups] == [20, 18]
        assert [v.version for v in groups[0].versions] == [SemVer(20, 11, 0), SemVer(20, 10, 0)]
        assert all(g.is_expanded for g in groups)

    def test_preserves_expansion_state(self) -> None:
        previous = [VersionGroup(major=20, is_expanded=False)]
        groups = group_by_major([InstalledVersion(SemVer(20, 1, 0)), InstalledVersion(SemVer(18, 1, 0))], previous)
        assert {g.major: g.is_expanded for g in groups} == {20: False, 18: True}

    def test_every_version_in_exactly_one_group(self) -> None:
        versions = [InstalledVersion(SemVer(m, n, 0)) for m in (16, 18, 20) for n in (1, 2)]
        groups = group_by_major(versions)
        flattened = [v for g in groups for v in g.versions]
        assert sorted(v.version for v in flattened) == sorted(v.version for v in versions)


class TestLatestByMajor:
    def test_highest_per_major(self) -> None:
        result = latest_by_major([SemVer(20, 1, 0), SemVer(20, 11, 0), SemVer(18, 2, 0)])
        assert result == {20: SemVer(20, 11, 0), 18: SemVer(18, 2, 0)}


class TestParseCurrentVersion:
    @pytest.mark.parametrize("output", ["none\n", "system", ""])
    def test_no_current_version(self, output: str) -> None:
        assert parse_current_version(output) is None

    def test_version(self) -> None:
        assert parse_current_version("v20.11.0\n") == SemVer(20, 11, 0)

    def test_garbage_raises(self) -> None:
        with pytest.raises(VersionParseError):
            parse_current_version("not a version")
