"""
Execution records produced by the scheduled task pipeline
"""
from datetime import datetime
from typing import Optional

from pydantic import ConfigDict, field_validator

from tablesync.models.task import CamelModel, TaskStatus
from tablesync.utils.timeutil import to_local_naive


SPREADSHEET_EXTENSIONS = {"xlsx", "xls", "csv"}


class FileDescriptor(CamelModel):
    name: str
    path: str
    size: int = 0
    created_at: datetime
    modified_at: datetime
    extension: str = ""
    is_spreadsheet: bool = False

    @field_validator("created_at", "modified_at")
    @classmethod
    def _localize(cls, value: datetime) -> datetime:
        return to_local_naive(value)


class ExecutionResult(CamelModel):
    success: bool
    files_processed: int = 0
    rows_synced: int = 0
    files_failed: int = 0
    message: str
    error: Optional[str] = None


class ExecutionLogEntry(CamelModel):
    """Log of one pipeline run; immutable once appended to the log store"""

    model_config = ConfigDict(frozen=True)

    id: str
    task_id: str
    start_time: datetime
    end_time: Optional[datetime] = None
    status: TaskStatus
    message: str
    files_processed: int = 0
    rows_synced: int = 0
    error_details: Optional[str] = None


class CronValidation(CamelModel):
    valid: bool
    error: Optional[str] = None
