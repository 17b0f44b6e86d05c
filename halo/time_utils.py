from __future__ import annotations

import calendar as cal
import os
from datetime import date, datetime, timezone, tzinfo
from zoneinfo import ZoneInfo


UTC_FORMAT = "%Y-%m-%dT%H:%M:%SZ"


def _configured_tz() -> tzinfo:
    """Return the timezone event start times are expressed in."""
    tz_name = os.getenv("HALO_TZ")
    if tz_name:
        return ZoneInfo(tz_name)
    system_tz = datetime.now().astimezone().tzinfo
    return system_tz if system_tz is not None else ZoneInfo("UTC")


def get_now() -> datetime:
    """Return the current time in the configured timezone.

    Uses the ``HALO_TZ`` environment variable if set, otherwise defaults to
    the system timezone.
    """
    return datetime.now(_configured_tz())


def today() -> date:
    return get_now().date()


def to_utc_string(local: datetime) -> str:
    """Format a naive local datetime as UTC, e.g. ``2024-01-01T08:00:00Z``.

    ``local`` is interpreted as wall-clock time in the configured timezone.
    """
    if local.tzinfo is None:
        local = local.replace(tzinfo=_configured_tz())
    return local.astimezone(timezone.utc).strftime(UTC_FORMAT)


def parse_utc_string(value: str) -> datetime:
    """Parse ``yyyy-MM-ddTHH:mm:ssZ`` into an aware UTC datetime."""
    return datetime.strptime(value, UTC_FORMAT).replace(tzinfo=timezone.utc)


def _plus_months(day: date, months: int) -> date:
    """Add months, clamping the day to the length of the target month."""
    year, month0 = divmod(day.year * 12 + day.month - 1 + months, 12)
    month = month0 + 1
    return day.replace(
        year=year, month=month, day=min(day.day, cal.monthrange(year, month)[1])
    )


def period_between(start: date, end: date) -> tuple[int, int, int]:
    """Return ``(years, months, days)`` between two dates.

    Components carry the sign of the interval; ``months`` is the remainder
    after whole years (``0..11`` in magnitude) and ``days`` the remainder after
    whole months.
    """
    total_months = (end.year * 12 + end.month) - (start.year * 12 + start.month)
    days = end.day - start.day
    if total_months > 0 and days < 0:
        total_months -= 1
        days = (end - _plus_months(start, total_months)).days
    elif total_months < 0 and days > 0:
        total_months += 1
        days -= cal.monthrange(end.year, end.month)[1]
    years = abs(total_months) // 12
    if total_months < 0:
        years = -years
    return years, total_months - years * 12, days


def days_to(now: date, day: date) -> int:
    """Approximate distance in days from ``now`` to ``day`` for display.

    Whole years are ignored and a month counts as 30 days.
    """
    _, months, days = period_between(now, day)
    return days + 30 * months


def format_datetime(dt: datetime | None) -> str:
    if not dt:
        return ""
    return f"{dt:%A}, {dt:%B} {dt.day}, {dt.year} {dt:%H:%M:%S}"
