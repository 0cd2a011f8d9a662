import re
from datetime import datetime, timedelta
from typing import Iterable, List, Optional

from tablesync.models.execution import FileDescriptor
from tablesync.models.task import (
    FileFilterConfig,
    FileNameMatchMode,
    TimeFilter,
    TimeFilterQuickOption,
)
from tablesync.utils.timeutil import start_of_day, start_of_week


SORT_KEYS = {
    "name": lambda f: f.name,
    "created_at": lambda f: f.created_at,
    "size": lambda f: f.size,
}


def wildcard_to_regex(pattern: str) -> re.Pattern:
    """``*`` matches any run of characters, ``?`` any single character; the rest is literal."""
    parts = []
    for ch in pattern:
        if ch == "*":
            parts.append(".*")
        elif ch == "?":
            parts.append(".")
        else:
            parts.append(re.escape(ch))
    return re.compile("".join(parts), re.IGNORECASE | re.DOTALL)


def match_file_name(name: str, mode: FileNameMatchMode, pattern: str) -> bool:
    if not pattern:
        return True
    if mode == FileNameMatchMode.EXACT:
        return name == pattern
    return wildcard_to_regex(pattern).fullmatch(name) is not None


def match_file_time(
    created_at: datetime,
    time_filter: TimeFilter,
    now: Optional[datetime] = None,
    week_start: int = 0,
) -> bool:
    now = now or datetime.now()
    today = start_of_day(now)
    option = time_filter.quick_option

    if option == TimeFilterQuickOption.TODAY:
        return today <= created_at < today + timedelta(days=1)
    if option == TimeFilterQuickOption.YESTERDAY:
        return today - timedelta(days=1) <= created_at < today
    if option == TimeFilterQuickOption.THIS_WEEK:
        week = start_of_week(now, week_start)
        return week <= created_at < week + timedelta(days=7)
    if option == TimeFilterQuickOption.CUSTOM:
        if time_filter.start_time is None or time_filter.end_time is None:
            return True
        return time_filter.start_time <= created_at <= time_filter.end_time
    return True


def filter_files(
    files: Iterable[FileDescriptor],
    filter_config: FileFilterConfig,
    now: Optional[datetime] = None,
    week_start: int = 0,
) -> List[FileDescriptor]:
    """Files passing both the name and the creation-time predicate, in input order."""
    now = now or datetime.now()
    name_filter = filter_config.file_name
    return [
        f
        for f in files
        if match_file_name(f.name, name_filter.mode, name_filter.pattern)
        and match_file_time(f.created_at, filter_config.time, now, week_start)
    ]


def search_files(files: Iterable[FileDescriptor], query: str) -> List[FileDescriptor]:
    if not query:
        return list(files)
    needle = query.lower()
    return [f for f in files if needle in f.name.lower()]


def sort_files(files: Iterable[FileDescriptor], sort_by: str = "name", order: str = "asc") -> List[FileDescriptor]:
    if sort_by not in SORT_KEYS:
        raise ValueError(f"unsupported sort key: {sort_by}")
    if order not in ("asc", "desc"):
        raise ValueError(f"unsupported sort order: {order}")
    return sorted(files, key=SORT_KEYS[sort_by], reverse=order == "desc")
