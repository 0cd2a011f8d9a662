"""
One run of one scheduled task: scan paths, filter, sync each file, record.
"""
import asyncio
import inspect
import traceback as tb
from datetime import datetime
from typing import Awaitable, Callable, List, Optional

from loguru import logger
from tenacity import AsyncRetrying, RetryCallState, stop_after_attempt, wait_incrementing

from tablesync.models.execution import ExecutionLogEntry, ExecutionResult, FileDescriptor
from tablesync.models.task import SyncTarget, TaskConfig
from tablesync.scheduler.errors import (
    NoMatchingFilesError,
    NoPathsConfiguredError,
    PathScanError,
    SyncFailedError,
    TargetNotFoundError,
    TaskDisabledError,
    TaskError,
)
from tablesync.scheduler.file_filter import filter_files
from tablesync.scheduler.interfaces import (
    ExecutionCallback,
    FileListing,
    FileSyncer,
    SyncTargetResolver,
)
from tablesync.scheduler.log_store import ExecutionLogStore
from tablesync.services.task_logger import TaskLogger


class ExecutionPipeline:
    def __init__(
        self,
        listing: FileListing,
        syncer: FileSyncer,
        log_store: ExecutionLogStore,
        resolve_target: Optional[SyncTargetResolver] = None,
        retry_backoff_seconds: float = 1.0,
        week_start: int = 0,
        clock: Callable[[], datetime] = datetime.now,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.listing = listing
        self.syncer = syncer
        self.log_store = log_store
        self.resolve_target = resolve_target
        self.retry_backoff_seconds = retry_backoff_seconds
        self.week_start = week_start
        self.clock = clock
        self.sleep = sleep
        self.on_executed: Optional[ExecutionCallback] = None

    async def run(self, task: TaskConfig) -> ExecutionResult:
        """
        Execute ``task`` once. Every exit path appends exactly one log entry
        and notifies the execution callback; nothing is raised to the caller.
        """
        task_log = TaskLogger(task.id, task.display_name, self.clock)
        task_log.start()

        try:
            failures = await self._execute(task, task_log)
        except TaskError as e:
            entry = task_log.fail(str(e), tb.format_exc())
        except Exception as e:
            logger.exception("Unexpected error while running task {}", task.display_name)
            entry = task_log.fail(str(e) or type(e).__name__, tb.format_exc())
        else:
            message = f"Processed {task_log.files_processed} file(s), synced {task_log.rows_synced} row(s)"
            details = None
            if failures:
                message += f"; {len(failures)} file(s) failed"
                details = "\n".join(str(f) for f in failures)
            entry = task_log.complete(message, details)
            result = ExecutionResult(
                success=True,
                files_processed=task_log.files_processed,
                rows_synced=task_log.rows_synced,
                files_failed=len(failures),
                message=message,
                error=details,
            )
            return await self._finish(task, entry, result)

        result = ExecutionResult(
            success=False,
            files_processed=task_log.files_processed,
            rows_synced=task_log.rows_synced,
            message=entry.message,
            error=entry.error_details,
        )
        return await self._finish(task, entry, result)

    async def _execute(self, task: TaskConfig, task_log: TaskLogger) -> List[SyncFailedError]:
        if not task.enabled:
            raise TaskDisabledError()
        if not task.paths:
            raise NoPathsConfiguredError()

        # All-or-nothing scan: one failing path discards the others
        all_files: List[FileDescriptor] = []
        for path in task.paths:
            try:
                all_files.extend(await self.listing.list_directory(path))
            except Exception as e:
                raise PathScanError(path, e) from e

        candidates = filter_files(all_files, task.file_filter, self.clock(), self.week_start)
        logger.info(
            "Task {}: {} file(s) scanned, {} matching",
            task.display_name,
            len(all_files),
            len(candidates),
        )
        if not candidates:
            if task.validate_before_trigger:
                raise NoMatchingFilesError()
            return []

        target = self._resolve_target(task)
        failures: List[SyncFailedError] = []
        for file in candidates:
            try:
                rows = await self._sync_with_retry(file, target, task.max_retries)
            except Exception as e:
                failure = SyncFailedError(file.name, e)
                logger.error("❌ {}", failure)
                failures.append(failure)
                continue
            logger.info("File synced: {} ({} rows)", file.name, rows)
            task_log.update_stats(files_processed=1, rows_synced=rows)
        return failures

    def _resolve_target(self, task: TaskConfig) -> SyncTarget:
        if task.sync_target is not None:
            return task.sync_target
        if task.template_id and self.resolve_target is not None:
            target = self.resolve_target(task.template_id)
            if target is not None:
                return target
        raise TargetNotFoundError(task.template_id)

    async def _sync_with_retry(self, file: FileDescriptor, target: SyncTarget, max_retries: int) -> int:
        def _log_retry(retry_state: RetryCallState) -> None:
            logger.warning(
                "Retrying sync of {} ({}/{}) after error: {}",
                file.name,
                retry_state.attempt_number,
                max_retries,
                retry_state.outcome.exception() if retry_state.outcome else None,
            )

        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(max_retries + 1),
            wait=wait_incrementing(start=self.retry_backoff_seconds, increment=self.retry_backoff_seconds),
            before_sleep=_log_retry,
            sleep=self.sleep,
            reraise=True,
        ):
            with attempt:
                rows = await self.syncer.sync_file(file, target)
        return int(rows or 0)

    async def _finish(self, task: TaskConfig, entry: ExecutionLogEntry, result: ExecutionResult) -> ExecutionResult:
        self.log_store.append(task.id, entry)
        if self.on_executed is not None:
            try:
                outcome = self.on_executed(task.id, result)
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception:
                logger.exception("Execution callback failed for task {}", task.id)
        return result
