"""Tests for nodeswitch.core.schedule."""

from __future__ import annotations

from datetime import date
from unittest import mock

import pytest
import requests

from nodeswitch.core.schedule import (
    ReleaseSchedule,
    ScheduleFetchError,
    VersionSchedule,
    fetch_release_schedule,
)

RAW_SCHEDULE = {
    "v0.12": {"start": "2015-02-06", "end": "2016-12-31"},
    "v16": {
        "start": "2021-04-20",
        "lts": "2021-10-26",
        "maintenance": "2022-10-18",
        "end": "2023-09-11",
        "codename": "Gallium",
    },
    "v20": {
        "start": "2023-04-18",
        "lts": "2023-10-24",
        "maintenance": "2024-10-22",
        "end": "2026-04-30",
        "codename": "Iron",
    },
    "v21": {"start": "2023-10-17", "maintenance": "2024-04-01", "end": "2024-06-01"},
    "v22": {"start": "2024-04-24", "end": "not-a-date"},
}

TODAY = date(2024, 1, 1)


def make_session(payload=None, error: Exception = None) -> mock.Mock:
    session = mock.Mock()
    response = mock.Mock()
    if error is not None:
        response.raise_for_status.side_effect = error
    response.json.return_value = payload
    session.get.return_value = response
    return session


class TestReleaseSchedule:
    def test_from_dict_skips_non_major_keys(self) -> None:
        schedule = ReleaseSchedule.from_dict(RAW_SCHEDULE)
        assert sorted(schedule.versions) == [16, 20, 21, 22]
        assert schedule.versions[20].codename == "Iron"

    def test_is_active(self) -> None:
        schedule = ReleaseSchedule.from_dict(RAW_SCHEDULE)
        assert schedule.is_active(20, TODAY)
        assert not schedule.is_active(16, TODAY)
        assert schedule.is_active(21, TODAY)
        assert not schedule.is_active(21, date(2024, 6, 1))

    def test_unparseable_end_counts_as_active(self) -> None:
        assert ReleaseSchedule.from_dict(RAW_SCHEDULE).is_active(22, date(2099, 1, 1))

    def test_unknown_major_uses_floor(self) -> None:
        schedule = ReleaseSchedule({}, active_major_floor=18)
        assert schedule.is_active(18)
        assert schedule.is_active(30)
        assert not schedule.is_active(14)

    def test_lts(self) -> None:
        schedule = ReleaseSchedule.from_dict(RAW_SCHEDULE)
        assert schedule.is_lts(20)
        assert not schedule.is_lts(21)
        assert not schedule.is_lts(99)
        assert schedule.codename(16) == "Gallium"
        assert schedule.codename(99) is None

    def test_active_versions(self) -> None:
        schedule = ReleaseSchedule.from_dict(RAW_SCHEDULE)
        assert schedule.active_versions(TODAY) == [20, 21, 22]
        assert schedule.active_lts_versions(TODAY) == [20]

    def test_to_dict_keeps_only_set_fields(self) -> None:
        data = ReleaseSchedule({21: VersionSchedule(start="2023-10-17", end="2024-06-01")}).to_dict()
        assert data == {"v21": {"start": "2023-10-17", "end": "2024-06-01"}}


class TestFetch:
    def test_success(self) -> None:
        session = make_session(RAW_SCHEDULE)
        schedule = fetch_release_schedule(url="https://example.com/s.json", active_major_floor=20, session=session)
        session.get.assert_called_once_with("https://example.com/s.json", timeout=15)
        assert schedule.active_major_floor == 20
        assert 20 in schedule.versions

    def test_http_error(self) -> None:
        response = mock.Mock(status_code=404)
        session = make_session(error=requests.exceptions.HTTPError("404", response=response))
        with pytest.raises(ScheduleFetchError, match="获取发布计划失败"):
            fetch_release_schedule(session=session)
        assert session.get.call_count == 1

    def test_connection_error_after_retries(self) -> None:
        session = mock.Mock()
        session.get.side_effect = requests.exceptions.ConnectionError("down")
        with pytest.raises(ScheduleFetchError):
            fetch_release_schedule(max_retries=0, session=session)

    def test_invalid_json(self) -> None:
        session = make_session()
        session.get.return_value.json.side_effect = ValueError("Expecting value")
        with pytest.raises(ScheduleFetchError, match="解析发布计划失败"):
            fetch_release_schedule(session=session)

    def test_non_object_payload(self) -> None:
        with pytest.raises(ScheduleFetchError):
            fetch_release_schedule(session=make_session(["v20"]))
