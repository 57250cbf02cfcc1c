"""Unit tests for run window helpers."""

from datetime import UTC, datetime
from zoneinfo import ZoneInfo

import pytest

from campaign_dialer.services.run_window import (
    is_allowed_day,
    is_within_run_window,
    js_weekday,
    now_local,
    parse_time_to_minutes,
    today_date_string,
)

CHICAGO = ZoneInfo("America/Chicago")


def local(hour: int, minute: int, day: int = 3) -> datetime:
    return datetime(2026, 3, day, hour, minute, tzinfo=CHICAGO)


class TestParseTime:
    """Tests for HH:MM parsing."""

    def test_parse(self):
        """HH:MMを分に変換"""
        assert parse_time_to_minutes("09:30") == 570
        assert parse_time_to_minutes("17:00:59") == 1020

    @pytest.mark.parametrize("value", [None, "", "ab:cd", "9:xx"])
    def test_garbage_is_none(self, value):
        """空や不正値はNone"""
        assert parse_time_to_minutes(value) is None


class TestRunWindow:
    """Tests for start <= now < end."""

    @pytest.mark.parametrize(
        ("hour", "minute", "expected"),
        [(8, 59, False), (9, 0, True), (16, 59, True), (17, 0, False)],
    )
    def test_window_bounds(self, hour: int, minute: int, expected: bool):
        """開始時刻を含み終了時刻を含まない"""
        assert is_within_run_window("09:00", "17:00", local(hour, minute)) is expected

    def test_empty_bounds_always_allowed(self):
        """両方空なら常に許可"""
        assert is_within_run_window("", "", local(3, 0))
        assert is_within_run_window(None, None, local(23, 59))

    def test_open_end(self):
        """終了時刻なし"""
        assert is_within_run_window("09:00", "", local(23, 0))
        assert not is_within_run_window("09:00", "", local(8, 0))

    def test_open_start(self):
        """開始時刻なし"""
        assert is_within_run_window("", "17:00", local(0, 0))
        assert not is_within_run_window("", "17:00", local(17, 30))


class TestDays:
    """Tests for day-of-week filtering (0=Sun)."""

    def test_js_weekday(self):
        """日曜=0, 火曜=2, 土曜=6"""
        assert js_weekday(local(10, 0, day=1)) == 0
        assert js_weekday(local(10, 0, day=3)) == 2
        assert js_weekday(local(10, 0, day=7)) == 6

    def test_weekday_only(self):
        """平日のみ"""
        weekdays = [1, 2, 3, 4, 5]
        assert is_allowed_day(weekdays, local(10, 0, day=3))
        assert not is_allowed_day(weekdays, local(10, 0, day=1))

    def test_empty_allows_every_day(self):
        """空リストは毎日許可"""
        assert is_allowed_day([], local(10, 0, day=1))
        assert is_allowed_day(None, local(10, 0, day=7))


class TestLocalTime:
    """Tests for civil time conversion."""

    def test_now_local_uses_dialer_timezone(self):
        """UTCからシカゴ時間に変換"""
        now = now_local("America/Chicago", lambda: datetime(2026, 3, 4, 3, 0, tzinfo=UTC))
        assert (now.hour, now.day) == (21, 3)
        assert today_date_string(now) == "2026-03-03"
