"""
Scheduled task engine - task registry and per-task timers.

Each registered task moves through UNREGISTERED -> SCHEDULED -> FIRING ->
SCHEDULED | UNREGISTERED. Timers are one-shot ``loop.call_later`` handles and
``_arm`` is the only place that creates one, so a task never holds more than
one pending timer.
"""
import asyncio
from datetime import datetime
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional, Set

from loguru import logger

from tablesync.models.execution import CronValidation, ExecutionLogEntry, ExecutionResult
from tablesync.models.task import TaskConfig
from tablesync.scheduler.errors import TaskNotFoundError, TriggerError
from tablesync.scheduler.interfaces import ExecutionCallback
from tablesync.scheduler.log_store import ExecutionLogStore
from tablesync.scheduler.pipeline import ExecutionPipeline
from tablesync.scheduler.triggers import (
    NEXT_RUN_FORMAT,
    calculate_next_run,
    format_next_run,
    validate_cron,
)


class TaskState(str, Enum):
    UNREGISTERED = "unregistered"
    SCHEDULED = "scheduled"
    FIRING = "firing"


class ScheduledTaskEngine:
    def __init__(
        self,
        pipeline: ExecutionPipeline,
        clock: Callable[[], datetime] = datetime.now,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ):
        self.pipeline = pipeline
        self.clock = clock
        self._loop = loop
        self._tasks: Dict[str, TaskConfig] = {}
        self._timers: Dict[str, asyncio.TimerHandle] = {}
        self._scheduled_at: Dict[str, datetime] = {}
        self._firing: Set[str] = set()
        self._in_flight: Set[asyncio.Task] = set()

    @property
    def log_store(self) -> ExecutionLogStore:
        return self.pipeline.log_store

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        return self._loop or asyncio.get_running_loop()

    def set_execution_callback(self, callback: Optional[ExecutionCallback]) -> None:
        self.pipeline.on_executed = callback

    # Registry

    def register(self, task: TaskConfig) -> Optional[datetime]:
        """
        Store (or overwrite) ``task`` and arm its timer when enabled.

        Returns:
            The next scheduled run, or None for a disabled task.

        Raises:
            TriggerError: if the next run cannot be computed. The task stays
                registered without a timer until it is registered again.
        """
        self._tasks[task.id] = task
        if not task.enabled:
            self._cancel(task.id)
            return None
        return self._arm(task.id)

    def unregister(self, task_id: str) -> None:
        self._cancel(task_id)
        self._tasks.pop(task_id, None)
        self.log_store.remove(task_id)

    def set_enabled(self, task_id: str, enabled: bool) -> bool:
        task = self._tasks.get(task_id)
        if task is None:
            return False
        updated = task.model_copy(update={"enabled": enabled, "updated_at": self.clock()})
        if enabled:
            self.register(updated)
        else:
            self._tasks[task_id] = updated
            self._cancel(task_id)
        return True

    def initialize_tasks(self, tasks: Iterable[TaskConfig]) -> None:
        count = 0
        for task in tasks:
            count += 1
            try:
                self.register(task)
            except TriggerError:
                # already logged by _arm; the remaining tasks still get scheduled
                continue
        logger.info("Initialized {} scheduled task(s)", count)

    async def execute_now(self, task_id: str) -> ExecutionResult:
        """Run ``task_id`` immediately without touching its pending timer."""
        task = self._tasks.get(task_id)
        if task is None:
            raise TaskNotFoundError(task_id)
        return await self.pipeline.run(task)

    def destroy(self) -> None:
        """Cancel every timer and forget all tasks and logs; in-flight runs finish on their own."""
        for handle in self._timers.values():
            handle.cancel()
        self._timers.clear()
        self._scheduled_at.clear()
        self._tasks.clear()
        self.log_store.clear()

    async def wait_in_flight(self) -> None:
        """Wait for runs already started by timers."""
        if self._in_flight:
            await asyncio.gather(*list(self._in_flight), return_exceptions=True)

    # Timers

    def _arm(self, task_id: str, not_before: Optional[datetime] = None) -> datetime:
        self._cancel(task_id)
        task = self._tasks[task_id]
        now = self.clock()
        # Loop timers can fire slightly ahead of the wall clock; never re-arm for the slot just run
        if not_before is not None and now < not_before:
            now = not_before
        try:
            next_run = calculate_next_run(task, now)
        except TriggerError as e:
            logger.warning("Task {} cannot be scheduled: {}", task.display_name, e)
            raise

        # Measured against a fresh reading; a slow run can leave next_run behind the clock
        delay = (next_run - self.clock()).total_seconds()
        if delay <= 0:
            logger.warning("Task {} is past its run time {}, firing immediately", task.display_name, next_run)
            delay = 0
        else:
            logger.info(
                "Task {} will run at {} (in {}s)",
                task.display_name,
                next_run.strftime(NEXT_RUN_FORMAT),
                round(delay),
            )

        self._timers[task_id] = self.loop.call_later(delay, self._on_timer, task_id)
        self._scheduled_at[task_id] = next_run
        return next_run

    def _cancel(self, task_id: str) -> None:
        handle = self._timers.pop(task_id, None)
        if handle is not None:
            handle.cancel()
        self._scheduled_at.pop(task_id, None)

    def _on_timer(self, task_id: str) -> None:
        self._timers.pop(task_id, None)
        fired_for = self._scheduled_at.pop(task_id, None)
        fire = self.loop.create_task(self._fire(task_id, fired_for))
        self._in_flight.add(fire)
        fire.add_done_callback(self._in_flight.discard)

    async def _fire(self, task_id: str, fired_for: Optional[datetime] = None) -> None:
        task = self._tasks.get(task_id)
        if task is None:
            return
        self._firing.add(task_id)
        try:
            await self.pipeline.run(task)
        finally:
            self._firing.discard(task_id)

        # Re-read: the task may have been updated, disabled or removed mid-run
        current = self._tasks.get(task_id)
        if current is None or not current.enabled or task_id in self._timers:
            return
        try:
            self._arm(task_id, not_before=fired_for)
        except TriggerError:
            return  # logged in _arm; the task stays registered without a timer

    # Queries

    def get_state(self, task_id: str) -> TaskState:
        if task_id in self._firing:
            return TaskState.FIRING
        if task_id in self._timers:
            return TaskState.SCHEDULED
        return TaskState.UNREGISTERED

    def get_scheduled_time(self, task_id: str) -> Optional[datetime]:
        return self._scheduled_at.get(task_id)

    @property
    def timer_count(self) -> int:
        return len(self._timers)

    def get_logs(self, task_id: str) -> List[ExecutionLogEntry]:
        return self.log_store.query(task_id)

    def get_all_tasks(self) -> List[TaskConfig]:
        return list(self._tasks.values())

    def get_task(self, task_id: str) -> Optional[TaskConfig]:
        return self._tasks.get(task_id)

    def get_next_run_time(self, task: TaskConfig) -> str:
        return format_next_run(task, self.clock())

    def validate_cron(self, expression: str) -> CronValidation:
        return validate_cron(expression)
