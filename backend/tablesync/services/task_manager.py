"""
Task persistence and engine wiring.

The task list lives as a JSON array under one key in the local key-value
store. The manager is the only writer of that list; the engine receives it at
startup and reports run outcomes back through the execution callback.
"""
import asyncio
import threading
from datetime import datetime
from typing import Callable, Dict, List, Optional

from loguru import logger
from pydantic import ValidationError

from tablesync.core.config import settings
from tablesync.models.execution import CronValidation, ExecutionLogEntry, ExecutionResult
from tablesync.models.task import TaskConfig, TaskStatus
from tablesync.scheduler.engine import ScheduledTaskEngine
from tablesync.scheduler.errors import TaskNotFoundError
from tablesync.scheduler.log_store import ExecutionLogStore
from tablesync.scheduler.pipeline import ExecutionPipeline
from tablesync.scheduler.triggers import calculate_next_run
from tablesync.services.file_listing import LocalDirectoryListing
from tablesync.services.kv_store import KeyValueStore
from tablesync.services.sync_client import HttpFileSyncer
from tablesync.services.templates import TemplateStore


# Fields owned by the manager and the run callback rather than by the caller
CARRIED_FIELDS = ("created_at", "last_run_at", "last_run_status", "last_run_message")


class TaskManager:
    def __init__(
        self,
        store: KeyValueStore,
        engine: ScheduledTaskEngine,
        storage_key: Optional[str] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.store = store
        self.engine = engine
        self.storage_key = storage_key or settings.tasks_storage_key
        self.clock = clock
        self._tasks: List[TaskConfig] = []
        self._write_lock = threading.Lock()
        self._save_version = 0
        self._written_version = 0
        self.engine.set_execution_callback(self._handle_execution)

    # Persistence

    def load_tasks(self) -> List[TaskConfig]:
        """Read the stored task list and hand it to the engine."""
        try:
            raw_tasks = self.store.get_json(self.storage_key, [])
        except ValueError as e:
            logger.error("Failed to load scheduled tasks: {}", e)
            raw_tasks = []

        tasks: List[TaskConfig] = []
        for raw in raw_tasks if isinstance(raw_tasks, list) else []:
            try:
                tasks.append(TaskConfig.model_validate(raw))
            except ValidationError as e:
                task_id = raw.get("id") if isinstance(raw, dict) else repr(raw)
                logger.error("Skipping invalid stored task {}: {}", task_id, e)

        self._tasks = tasks
        self.engine.initialize_tasks(tasks)
        return list(tasks)

    def _snapshot(self):
        self._save_version += 1
        return self._save_version, [t.to_json_dict() for t in self._tasks]

    def _write(self, version: int, payload: list) -> None:
        # A snapshot older than the last one written is dropped
        with self._write_lock:
            if version < self._written_version:
                return
            self.store.set_json(self.storage_key, payload)
            self._written_version = version

    def _save_tasks(self) -> None:
        self._write(*self._snapshot())

    async def _save_tasks_async(self) -> None:
        await asyncio.to_thread(self._write, *self._snapshot())

    def _index_of(self, task_id: str) -> int:
        for index, task in enumerate(self._tasks):
            if task.id == task_id:
                return index
        raise TaskNotFoundError(task_id)

    # Mutations; each one persists before touching the engine

    def _validate_trigger(self, task: TaskConfig) -> None:
        """Reject an enabled task whose next run cannot be computed, before anything is saved."""
        if task.enabled:
            calculate_next_run(task, self.clock())

    def add_task(self, task: TaskConfig) -> TaskConfig:
        if any(t.id == task.id for t in self._tasks):
            raise ValueError(f"task already exists: {task.id}")
        self._validate_trigger(task)
        now = self.clock()
        task = task.model_copy(update={"created_at": task.created_at or now, "updated_at": now})
        self._tasks.append(task)
        self._save_tasks()
        self.engine.register(task)
        return task

    def update_task(self, task: TaskConfig) -> TaskConfig:
        index = self._index_of(task.id)
        self._validate_trigger(task)
        current = self._tasks[index]
        carried = {name: getattr(current, name) for name in CARRIED_FIELDS if getattr(task, name) is None}
        task = task.model_copy(update={**carried, "updated_at": self.clock()})
        self._tasks[index] = task
        self._save_tasks()
        self.engine.register(task)
        return task

    def delete_task(self, task_id: str) -> None:
        self._tasks.pop(self._index_of(task_id))
        self._save_tasks()
        self.engine.unregister(task_id)

    def toggle_task(self, task_id: str) -> TaskConfig:
        index = self._index_of(task_id)
        task = self._tasks[index]
        updated = task.model_copy(update={"enabled": not task.enabled, "updated_at": self.clock()})
        self._validate_trigger(updated)
        self._tasks[index] = updated
        self._save_tasks()
        self.engine.set_enabled(task_id, updated.enabled)
        return updated

    async def _handle_execution(self, task_id: str, result: ExecutionResult) -> None:
        try:
            index = self._index_of(task_id)
        except TaskNotFoundError:
            logger.warning("Execution finished for unknown task {}, result not persisted", task_id)
            return
        self._tasks[index] = self._tasks[index].model_copy(
            update={
                "last_run_at": self.clock(),
                "last_run_status": TaskStatus.SUCCESS if result.success else TaskStatus.FAILED,
                "last_run_message": result.message,
            }
        )
        await self._save_tasks_async()

    # Queries and pass-throughs

    def get_tasks(self) -> List[TaskConfig]:
        return list(self._tasks)

    def get_task(self, task_id: str) -> TaskConfig:
        return self._tasks[self._index_of(task_id)]

    async def execute_now(self, task_id: str) -> ExecutionResult:
        return await self.engine.execute_now(task_id)

    def get_task_logs(self, task_id: str) -> List[ExecutionLogEntry]:
        return self.engine.get_logs(task_id)

    def get_next_run_time(self, task_id: str) -> str:
        return self.engine.get_next_run_time(self.get_task(task_id))

    def validate_cron(self, expression: str) -> CronValidation:
        return self.engine.validate_cron(expression)

    def get_task_stats(self) -> Dict[str, int]:
        total = len(self._tasks)
        enabled = sum(1 for t in self._tasks if t.enabled)
        return {"total": total, "enabled": enabled, "disabled": total - enabled}

    def destroy(self) -> None:
        self.engine.destroy()


def create_task_manager(store: Optional[KeyValueStore] = None) -> TaskManager:
    """Wire the engine with the local filesystem, the HTTP syncer and stored templates."""
    store = store or KeyValueStore()
    templates = TemplateStore(store)
    pipeline = ExecutionPipeline(
        listing=LocalDirectoryListing(),
        syncer=HttpFileSyncer(),
        log_store=ExecutionLogStore(settings.max_log_entries),
        resolve_target=templates.get_remote_sync_target,
        retry_backoff_seconds=settings.retry_backoff_seconds,
        week_start=settings.week_start,
    )
    return TaskManager(store, ScheduledTaskEngine(pipeline))
