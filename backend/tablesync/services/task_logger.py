"""
Service for recording scheduled task executions
"""
import uuid
from datetime import datetime
from typing import Callable, Optional

from loguru import logger

from tablesync.models.execution import ExecutionLogEntry
from tablesync.models.task import TaskStatus


class TaskLogger:
    """
    Helper class for recording one task run.

    Usage:
        task_log = TaskLogger(task.id, task.name)
        task_log.start()
        task_log.update_stats(files_processed=2, rows_synced=40)
        entry = task_log.complete("done")
    """

    def __init__(self, task_id: str, task_name: str = "", clock: Callable[[], datetime] = datetime.now):
        self.task_id = task_id
        self.task_name = task_name or task_id
        self.clock = clock
        self.log_id = uuid.uuid4().hex
        self.started_at: Optional[datetime] = None
        self.files_processed = 0
        self.rows_synced = 0

    def start(self) -> None:
        """Mark task as started"""
        self.started_at = self.clock()
        logger.info("📋 Task started: {} (log_id={})", self.task_name, self.log_id)

    def update_stats(self, files_processed: int = 0, rows_synced: int = 0) -> None:
        """Add to the run counters"""
        self.files_processed += files_processed
        self.rows_synced += rows_synced

    def _entry(self, status: TaskStatus, message: str, error_details: Optional[str]) -> ExecutionLogEntry:
        return ExecutionLogEntry(
            id=self.log_id,
            task_id=self.task_id,
            start_time=self.started_at or self.clock(),
            end_time=self.clock(),
            status=status,
            message=message,
            files_processed=self.files_processed,
            rows_synced=self.rows_synced,
            error_details=error_details,
        )

    def _duration(self, entry: ExecutionLogEntry) -> float:
        return (entry.end_time - entry.start_time).total_seconds()

    def complete(self, message: str, error_details: Optional[str] = None) -> ExecutionLogEntry:
        """Mark task as completed"""
        entry = self._entry(TaskStatus.SUCCESS, message, error_details)
        logger.info(
            "✅ Task completed: {} (duration={:.1f}s, files={}, rows={})",
            self.task_name,
            self._duration(entry),
            self.files_processed,
            self.rows_synced,
        )
        return entry

    def fail(self, error_message: str, error_traceback: Optional[str] = None) -> ExecutionLogEntry:
        """Mark task as failed"""
        entry = self._entry(TaskStatus.FAILED, error_message, error_traceback)
        logger.error(
            "❌ Task failed: {} (duration={:.1f}s, error={})", self.task_name, self._duration(entry), error_message
        )
        return entry
