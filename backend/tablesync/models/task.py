"""
Scheduled task configuration models.

Task configs are persisted as a JSON array with camelCase keys; attributes are
snake_case in Python.
"""
from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from tablesync.utils.timeutil import to_local_naive


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json_dict(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class TriggerMode(str, Enum):
    CRON = "cron"
    FIXED_TIME = "fixed_time"


class Period(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class FileNameMatchMode(str, Enum):
    EXACT = "exact"
    FUZZY = "fuzzy"


class TimeFilterQuickOption(str, Enum):
    TODAY = "today"
    YESTERDAY = "yesterday"
    THIS_WEEK = "this_week"
    CUSTOM = "custom"


class TaskStatus(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"
    PAUSED = "paused"


class FixedTimeConfig(CamelModel):
    time: str  # HH:MM, validated when the next run is computed
    period: Period = Period.DAILY
    week_day: Optional[int] = Field(default=None, ge=0, le=6)  # 0 = Sunday
    month_day: Optional[int] = Field(default=None, ge=1, le=31)


class FileNameFilter(CamelModel):
    mode: FileNameMatchMode = FileNameMatchMode.FUZZY
    pattern: str = ""


class TimeFilter(CamelModel):
    quick_option: TimeFilterQuickOption = TimeFilterQuickOption.TODAY
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None

    @field_validator("start_time", "end_time")
    @classmethod
    def _localize(cls, value: Optional[datetime]) -> Optional[datetime]:
        return to_local_naive(value) if value is not None else None


class FileFilterConfig(CamelModel):
    file_name: FileNameFilter = Field(default_factory=FileNameFilter)
    time: TimeFilter = Field(default_factory=TimeFilter)


class SyncTarget(CamelModel):
    """Remote table destination; credentials are passed through untouched."""

    spreadsheet_token: str
    app_id: Optional[str] = None
    app_secret: Optional[str] = None


class TaskConfig(CamelModel):
    id: str
    name: str = ""
    template_id: Optional[str] = None
    template_name: Optional[str] = None
    enabled: bool = True

    trigger_mode: TriggerMode = TriggerMode.CRON
    cron_expression: Optional[str] = None
    fixed_time_config: Optional[FixedTimeConfig] = None

    paths: List[str] = Field(default_factory=list)
    file_filter: FileFilterConfig = Field(default_factory=FileFilterConfig)
    validate_before_trigger: bool = False
    max_retries: int = Field(default=0, ge=0)

    # Inline target; when absent the template id is resolved at run time
    sync_target: Optional[SyncTarget] = None

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    # Written back by the execution callback consumer only
    last_run_at: Optional[datetime] = None
    last_run_status: Optional[TaskStatus] = None
    last_run_message: Optional[str] = None

    @property
    def display_name(self) -> str:
        return self.name or self.id
