"""Civil-time helpers for the dialer run window.

All run-window and daily-counter decisions are made in one fixed time zone
(``Settings.dialer_timezone``, America/Chicago by default).
"""

from collections.abc import Callable, Iterable
from datetime import UTC, datetime
from zoneinfo import ZoneInfo

Clock = Callable[[], datetime]


def utc_clock() -> datetime:
    return datetime.now(UTC)


def now_local(timezone: str | ZoneInfo, clock: Clock = utc_clock) -> datetime:
    """Current time in the dialer's civil time zone."""
    tz = ZoneInfo(timezone) if isinstance(timezone, str) else timezone
    return clock().astimezone(tz)


def today_date_string(now: datetime) -> str:
    """YYYY-MM-DD of a local datetime."""
    return now.strftime("%Y-%m-%d")


def parse_time_to_minutes(value: str | None) -> int | None:
    """Parse "HH:MM" or "HH:MM:SS" to minutes since midnight; blank or garbage yields None."""
    if not value or not isinstance(value, str):
        return None
    parts = value.strip().split(":")
    try:
        hours = int(parts[0])
    except ValueError:
        return None
    minutes = 0
    if len(parts) > 1 and parts[1]:
        try:
            minutes = int(parts[1])
        except ValueError:
            return None
    return hours * 60 + minutes


def is_within_run_window(start_time: str | None, end_time: str | None, now: datetime) -> bool:
    """
    Check ``start <= now < end`` at minute resolution.

    An empty bound leaves that side open; both empty means always allowed.
    """
    start = parse_time_to_minutes(start_time)
    end = parse_time_to_minutes(end_time)
    if start is None and end is None:
        return True
    current = now.hour * 60 + now.minute
    if start is not None and current < start:
        return False
    if end is not None and current >= end:
        return False
    return True


def js_weekday(now: datetime) -> int:
    """Day of week numbered 0=Sun .. 6=Sat, the convention stored in campaign configs."""
    return (now.weekday() + 1) % 7


def is_allowed_day(days_of_week: Iterable[int] | None, now: datetime) -> bool:
    """Empty or missing day list allows every day."""
    days = list(days_of_week or [])
    if not days:
        return True
    return js_weekday(now) in days
