"""
Tests for the scheduled task engine

Tests:
1. At most one pending timer per task across register / unregister / enable toggles
2. Invalid triggers leave the task registered without a timer
3. Timers fire, run the pipeline and re-arm past the slot that ran; overdue runs fire immediately
4. Disabling or re-registering during a run never leaves two timers
5. Manual execution leaves the schedule alone
"""

import asyncio
from datetime import datetime, timedelta

import pytest

from conftest import FakeListing, FakeSyncer
from tablesync.models.task import FileFilterConfig, FileNameFilter, FixedTimeConfig, Period, TriggerMode
from tablesync.scheduler.engine import ScheduledTaskEngine, TaskState
from tablesync.scheduler.errors import TaskNotFoundError, TriggerError


class SteppingClock:
    """Advances by ``step`` on every reading"""

    def __init__(self, start, step):
        self.current = start
        self.step = step

    def __call__(self):
        value = self.current
        self.current += self.step
        return value


class BlockingListing:
    def __init__(self):
        self.started = asyncio.Event()
        self.release = asyncio.Event()

    async def list_directory(self, path):
        self.started.set()
        await self.release.wait()
        return []


async def wait_until(predicate, timeout=2.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.01)


# Just before a 10:00 cron fire; timers armed from here are 100ms away
JUST_BEFORE_TEN = datetime(2024, 3, 15, 9, 59, 59, 900000)


# =============================================================================
# Registry
# =============================================================================

@pytest.mark.asyncio
async def test_one_timer_per_enabled_task(make_pipeline, make_task, now):
    engine = ScheduledTaskEngine(make_pipeline(), clock=lambda: now)

    assert engine.register(make_task("a")) == datetime(2024, 3, 16, 9, 0)
    engine.register(make_task("b"))
    engine.register(make_task("a", cron_expression="0 30 12 * * *"))
    assert engine.timer_count == 2
    assert engine.get_scheduled_time("a") == datetime(2024, 3, 15, 12, 30)

    assert engine.set_enabled("a", False)
    assert engine.timer_count == 1
    assert engine.get_state("a") == TaskState.UNREGISTERED
    assert engine.get_task("a").enabled is False

    assert engine.set_enabled("a", True)
    assert engine.set_enabled("a", True)
    assert engine.timer_count == 2

    engine.unregister("b")
    assert engine.timer_count == 1
    assert engine.get_task("b") is None
    assert not engine.set_enabled("b", True)

    engine.destroy()
    assert engine.timer_count == 0
    assert engine.get_all_tasks() == []


@pytest.mark.asyncio
async def test_register_disabled_task_has_no_timer(make_pipeline, make_task, now):
    engine = ScheduledTaskEngine(make_pipeline(), clock=lambda: now)
    assert engine.register(make_task(enabled=False)) is None
    assert engine.timer_count == 0
    assert len(engine.get_all_tasks()) == 1


@pytest.mark.asyncio
async def test_invalid_trigger_keeps_task_without_timer(make_pipeline, make_task, now):
    engine = ScheduledTaskEngine(make_pipeline(), clock=lambda: now)
    engine.register(make_task("a"))

    with pytest.raises(TriggerError):
        engine.register(make_task("a", cron_expression="not a cron"))

    assert engine.timer_count == 0
    assert engine.get_state("a") == TaskState.UNREGISTERED
    assert engine.get_task("a").cron_expression == "not a cron"


@pytest.mark.asyncio
async def test_initialize_tasks_skips_bad_triggers(make_pipeline, make_task, now):
    engine = ScheduledTaskEngine(make_pipeline(), clock=lambda: now)
    engine.initialize_tasks(
        [
            make_task("good"),
            make_task("bad", cron_expression="61 * * * *"),
            make_task("off", enabled=False),
        ]
    )
    assert engine.timer_count == 1
    assert engine.get_state("good") == TaskState.SCHEDULED
    assert len(engine.get_all_tasks()) == 3


@pytest.mark.asyncio
async def test_unregister_drops_logs(make_pipeline, make_task, now):
    engine = ScheduledTaskEngine(make_pipeline(FakeListing({"/data": []})), clock=lambda: now)
    engine.register(make_task())
    await engine.execute_now("task-1")
    assert len(engine.get_logs("task-1")) == 1

    engine.unregister("task-1")
    assert engine.get_logs("task-1") == []


# =============================================================================
# Firing
# =============================================================================

@pytest.mark.asyncio
async def test_timer_fires_and_rearms(make_pipeline, make_task):
    engine = ScheduledTaskEngine(make_pipeline(FakeListing({"/data": []})), clock=lambda: JUST_BEFORE_TEN)
    engine.register(make_task(cron_expression="0 0 10 * * *"))

    await wait_until(lambda: len(engine.get_logs("task-1")) >= 1)
    await wait_until(lambda: engine.get_state("task-1") == TaskState.SCHEDULED)

    # The clock still reads just before 10:00, yet the slot that ran is not armed again
    assert engine.timer_count == 1
    assert engine.get_scheduled_time("task-1") == datetime(2024, 3, 16, 10, 0)
    assert len(engine.get_logs("task-1")) == 1
    engine.destroy()
    await engine.wait_in_flight()


@pytest.mark.asyncio
async def test_early_timer_fires_fixed_time_slot_once(make_pipeline, make_task):
    # The loop timer runs ahead of the wall clock, which still reads 08:59:59.95 after the fire
    early = datetime(2024, 3, 15, 8, 59, 59, 950000)
    engine = ScheduledTaskEngine(make_pipeline(FakeListing({"/data": []})), clock=lambda: early)
    task = make_task(
        cron_expression=None,
        trigger_mode=TriggerMode.FIXED_TIME,
        fixed_time_config=FixedTimeConfig(time="09:00", period=Period.DAILY),
    )

    assert engine.register(task) == datetime(2024, 3, 15, 9, 0)
    await wait_until(lambda: len(engine.get_logs("task-1")) >= 1)
    await wait_until(lambda: engine.get_state("task-1") == TaskState.SCHEDULED)
    await asyncio.sleep(0.2)

    assert len(engine.get_logs("task-1")) == 1
    assert engine.get_scheduled_time("task-1") == datetime(2024, 3, 16, 9, 0)
    engine.destroy()
    await engine.wait_in_flight()


@pytest.mark.asyncio
async def test_overdue_run_fires_immediately(make_pipeline, make_task):
    # Every clock reading is an hour later, so each computed run is already behind
    clock = SteppingClock(datetime(2024, 3, 15, 8, 30), timedelta(hours=1))
    engine = ScheduledTaskEngine(make_pipeline(FakeListing({"/data": []})), clock=clock)
    engine.register(make_task(cron_expression="0 0 * * * *"))

    await wait_until(lambda: len(engine.get_logs("task-1")) >= 2)
    engine.destroy()
    await engine.wait_in_flight()
    assert engine.timer_count == 0


@pytest.mark.asyncio
async def test_disable_while_firing_does_not_rearm(make_pipeline, make_task):
    listing = BlockingListing()
    engine = ScheduledTaskEngine(make_pipeline(listing), clock=lambda: JUST_BEFORE_TEN)
    engine.register(make_task(cron_expression="0 0 10 * * *"))

    await asyncio.wait_for(listing.started.wait(), timeout=2.0)
    assert engine.get_state("task-1") == TaskState.FIRING
    assert engine.timer_count == 0

    engine.set_enabled("task-1", False)
    listing.release.set()
    await engine.wait_in_flight()

    assert engine.timer_count == 0
    assert engine.get_state("task-1") == TaskState.UNREGISTERED
    assert len(engine.get_logs("task-1")) == 1


@pytest.mark.asyncio
async def test_update_while_firing_keeps_single_timer(make_pipeline, make_task):
    listing = BlockingListing()
    engine = ScheduledTaskEngine(make_pipeline(listing), clock=lambda: JUST_BEFORE_TEN)
    engine.register(make_task(cron_expression="0 0 10 * * *"))

    await asyncio.wait_for(listing.started.wait(), timeout=2.0)
    engine.register(make_task(cron_expression="0 0 12 * * *"))
    assert engine.timer_count == 1

    listing.release.set()
    await engine.wait_in_flight()

    assert engine.timer_count == 1
    assert engine.get_scheduled_time("task-1") == datetime(2024, 3, 15, 12, 0)
    engine.destroy()


@pytest.mark.asyncio
async def test_unregister_while_firing(make_pipeline, make_task):
    listing = BlockingListing()
    engine = ScheduledTaskEngine(make_pipeline(listing), clock=lambda: JUST_BEFORE_TEN)
    engine.register(make_task(cron_expression="0 0 10 * * *"))

    await asyncio.wait_for(listing.started.wait(), timeout=2.0)
    engine.unregister("task-1")
    listing.release.set()
    await engine.wait_in_flight()

    assert engine.timer_count == 0
    assert engine.get_task("task-1") is None


# =============================================================================
# Manual runs and queries
# =============================================================================

@pytest.mark.asyncio
async def test_execute_now_leaves_schedule_alone(make_pipeline, make_task, now):
    engine = ScheduledTaskEngine(make_pipeline(FakeListing({"/data": []})), clock=lambda: now)
    engine.register(make_task())
    scheduled = engine.get_scheduled_time("task-1")

    result = await engine.execute_now("task-1")

    assert result.success
    assert engine.timer_count == 1
    assert engine.get_scheduled_time("task-1") == scheduled
    engine.destroy()


@pytest.mark.asyncio
async def test_execute_now_unknown_task(make_pipeline):
    engine = ScheduledTaskEngine(make_pipeline())
    with pytest.raises(TaskNotFoundError):
        await engine.execute_now("missing")


@pytest.mark.asyncio
async def test_execute_now_reports_disabled_task(make_pipeline, make_task, now):
    engine = ScheduledTaskEngine(make_pipeline(), clock=lambda: now)
    engine.register(make_task(enabled=False))
    result = await engine.execute_now("task-1")
    assert not result.success
    assert result.message == "task disabled"


def test_next_run_time_and_cron_validation(make_pipeline, make_task, now):
    engine = ScheduledTaskEngine(make_pipeline(), clock=lambda: now)
    assert engine.get_next_run_time(make_task()) == "2024-03-16 09:00:00"
    assert engine.get_next_run_time(make_task(cron_expression="bad")) == "cannot compute"
    assert engine.validate_cron("0 0 9 * * *").valid
    assert not engine.validate_cron("0 0 9").valid


# =============================================================================
# End to end
# =============================================================================

@pytest.mark.asyncio
async def test_daily_nine_am_sales_sync(make_pipeline, make_task, make_file):
    files = [make_file("sales-a.xlsx"), make_file("sales-b.xlsx"), make_file("notes.docx")]
    syncer = FakeSyncer(rows=25)
    results = []
    engine = ScheduledTaskEngine(
        make_pipeline(FakeListing({"/data": files}), syncer),
        clock=lambda: datetime(2024, 3, 15, 8, 59, 59, 900000),
    )
    engine.set_execution_callback(lambda task_id, result: results.append((task_id, result)))
    task = make_task(
        cron_expression="0 0 9 * * *",
        file_filter=FileFilterConfig(file_name=FileNameFilter(pattern="sales-*.xlsx")),
        validate_before_trigger=True,
        max_retries=2,
    )

    assert engine.register(task) == datetime(2024, 3, 15, 9, 0)
    await wait_until(lambda: len(results) >= 1)
    engine.destroy()
    await engine.wait_in_flight()

    task_id, result = results[0]
    assert task_id == "task-1"
    assert result.success
    assert result.files_processed == 2
    assert result.rows_synced == 50
    assert syncer.calls[:2] == ["sales-a.xlsx", "sales-b.xlsx"]
    assert results[0][1].message == "Processed 2 file(s), synced 50 row(s)"
