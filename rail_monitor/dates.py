from __future__ import annotations

from datetime import date, datetime, timedelta
from zoneinfo import ZoneInfo

DEFAULT_TIMEZONE = "Europe/Helsinki"
DEFAULT_RANGE_DAYS = 14

FINNISH_WEEKDAYS = ("ma", "ti", "ke", "to", "pe", "la", "su")


def today(timezone: str = DEFAULT_TIMEZONE) -> date:
    """Current calendar date in the operating region, independent of the host timezone."""
    return datetime.now(ZoneInfo(timezone)).date()


def is_today(day: date, timezone: str = DEFAULT_TIMEZONE) -> bool:
    return day == today(timezone)


def business_days_in_range(start: date, end: date, timezone: str = DEFAULT_TIMEZONE) -> list[date]:
    """Monday-Friday dates in [start, end], ascending, never later than today."""
    upper = min(end, today(timezone))
    days: list[date] = []
    current = start
    while current <= upper:
        if current.weekday() < 5:
            days.append(current)
        current += timedelta(days=1)
    return days


def default_date_range(timezone: str = DEFAULT_TIMEZONE) -> tuple[date, date]:
    end = today(timezone)
    return end - timedelta(days=DEFAULT_RANGE_DAYS - 1), end


def is_end_date_in_future(end: date, timezone: str = DEFAULT_TIMEZONE) -> bool:
    return end > today(timezone)


def format_local_time(timestamp: datetime, timezone: str = DEFAULT_TIMEZONE) -> str:
    # Naive timestamps are wire values and therefore UTC.
    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=ZoneInfo("UTC"))
    return timestamp.astimezone(ZoneInfo(timezone)).strftime("%H:%M")


def format_local_date(day: date) -> str:
    """e.g. 2026-01-27 -> 'ti 27.1.'"""
    return f"{FINNISH_WEEKDAYS[day.weekday()]} {day.day}.{day.month}."
