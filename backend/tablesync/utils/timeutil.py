import calendar
from datetime import datetime, timedelta


def to_local_naive(value: datetime) -> datetime:
    """Convert an aware datetime to naive host-local time; naive values pass through."""
    if value.tzinfo is None:
        return value
    return value.astimezone().replace(tzinfo=None)


def start_of_day(value: datetime) -> datetime:
    return value.replace(hour=0, minute=0, second=0, microsecond=0)


def js_weekday(value: datetime) -> int:
    """Weekday numbered 0 = Sunday .. 6 = Saturday."""
    return (value.weekday() + 1) % 7


def start_of_week(value: datetime, week_start: int = 0) -> datetime:
    """Midnight of the most recent ``week_start`` day (0 = Sunday) at or before ``value``."""
    days_back = (js_weekday(value) - week_start) % 7
    return start_of_day(value) - timedelta(days=days_back)


def days_in_month(year: int, month: int) -> int:
    return calendar.monthrange(year, month)[1]


def add_months(value: datetime, months: int = 1, day: int | None = None) -> datetime:
    """Shift ``value`` by whole calendar months, clamping the day to the target month."""
    index = value.month - 1 + months
    year = value.year + index // 12
    month = index % 12 + 1
    target_day = value.day if day is None else day
    return value.replace(year=year, month=month, day=min(target_day, days_in_month(year, month)))
