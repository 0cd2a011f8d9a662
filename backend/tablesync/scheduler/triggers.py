"""
Next-run calculation for cron and fixed-time triggers.

All instants are naive datetimes in the host's local timezone.
"""
import re
from datetime import datetime, timedelta
from typing import Optional

from croniter import croniter

from tablesync.models.execution import CronValidation
from tablesync.models.task import FixedTimeConfig, Period, TaskConfig, TriggerMode
from tablesync.scheduler.errors import TriggerError
from tablesync.utils.timeutil import add_months, days_in_month, js_weekday


CANNOT_COMPUTE = "cannot compute"
NEXT_RUN_FORMAT = "%Y-%m-%d %H:%M:%S"

_TIME_RE = re.compile(r"^(\d{1,2}):(\d{2})$")


def _parse_cron(expression: str, now: datetime) -> croniter:
    # Six-field expressions carry seconds first, e.g. "0 0 9 * * *"
    return croniter(expression, now, second_at_beginning=True)


def validate_cron(expression: str) -> CronValidation:
    """Parse-only validation for UI feedback; never raises."""
    try:
        _parse_cron(expression, datetime.now())
    except (ValueError, TypeError) as e:
        return CronValidation(valid=False, error=str(e) or "invalid cron expression")
    return CronValidation(valid=True)


def next_cron_run(expression: str, now: datetime) -> datetime:
    """First fire time of ``expression`` strictly after ``now``."""
    try:
        return _parse_cron(expression, now).get_next(datetime)
    except (ValueError, TypeError) as e:
        raise TriggerError(f"invalid cron expression '{expression}': {e}") from e


def _parse_time_of_day(value: str) -> tuple[int, int]:
    match = _TIME_RE.match(value.strip())
    if not match:
        raise TriggerError(f"invalid time of day '{value}', expected HH:MM")
    hours, minutes = int(match.group(1)), int(match.group(2))
    if hours > 23 or minutes > 59:
        raise TriggerError(f"invalid time of day '{value}', expected HH:MM")
    return hours, minutes


def next_fixed_time_run(config: FixedTimeConfig, now: datetime) -> datetime:
    """
    Today's occurrence of ``config.time`` if still ahead of ``now``, otherwise
    the next occurrence according to ``config.period``.
    """
    hours, minutes = _parse_time_of_day(config.time)
    next_run = now.replace(hour=hours, minute=minutes, second=0, microsecond=0)
    if next_run > now:
        return next_run

    if config.period == Period.DAILY:
        return next_run + timedelta(days=1)

    if config.period == Period.WEEKLY:
        if config.week_day is None:
            return next_run + timedelta(days=1)
        delta = config.week_day - js_weekday(next_run)
        if delta <= 0:
            delta += 7
        return next_run + timedelta(days=delta)

    # monthly
    if config.month_day is None:
        return add_months(next_run, 1)
    if config.month_day > next_run.day:
        # Clamped to short months; a clamp landing on today has already passed
        candidate = next_run.replace(day=min(config.month_day, days_in_month(next_run.year, next_run.month)))
        if candidate > now:
            return candidate
    return add_months(next_run, 1, day=config.month_day)


def calculate_next_run(task: TaskConfig, now: Optional[datetime] = None) -> datetime:
    """
    Compute when ``task`` should fire next.

    Raises:
        TriggerError: if the trigger is missing or invalid.
    """
    now = now or datetime.now()
    if task.trigger_mode == TriggerMode.CRON:
        if not task.cron_expression:
            raise TriggerError("cron trigger without cron expression")
        return next_cron_run(task.cron_expression, now)
    if task.trigger_mode == TriggerMode.FIXED_TIME:
        if task.fixed_time_config is None:
            raise TriggerError("fixed time trigger without fixed time config")
        return next_fixed_time_run(task.fixed_time_config, now)
    raise TriggerError(f"unknown trigger mode: {task.trigger_mode}")


def format_next_run(task: TaskConfig, now: Optional[datetime] = None) -> str:
    try:
        return calculate_next_run(task, now).strftime(NEXT_RUN_FORMAT)
    except TriggerError:
        return CANNOT_COMPUTE
