import asyncio
import json
import signal
import sys
from contextlib import suppress
from typing import Awaitable, Callable, TypeVar

import click
from loguru import logger

from tablesync.core.config import settings
from tablesync.core.logging import configure_logging
from tablesync.scheduler.errors import TaskNotFoundError
from tablesync.scheduler.triggers import validate_cron
from tablesync.services.task_manager import TaskManager, create_task_manager

T = TypeVar("T")


def _with_manager(action: Callable[[TaskManager], Awaitable[T]]) -> T:
    async def runner() -> T:
        manager = create_task_manager()
        manager.load_tasks()
        try:
            return await action(manager)
        finally:
            manager.destroy()
            await manager.engine.wait_in_flight()

    return asyncio.run(runner())


@click.group(help="Scheduled spreadsheet-to-table sync")
@click.option("--log-level", default=None, help="Override TABLESYNC_LOG_LEVEL.")
def cli(log_level: str | None):
    configure_logging(log_level or settings.log_level)


@cli.command("run-daemon", help="Load stored tasks and run their schedules until interrupted.")
def run_daemon():
    async def _serve(manager: TaskManager) -> None:
        stop = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            # add_signal_handler is not available on Windows event loops
            with suppress(NotImplementedError):
                loop.add_signal_handler(sig, stop.set)
        stats = manager.get_task_stats()
        logger.info("🚀 Scheduler running: {} enabled / {} total task(s)", stats["enabled"], stats["total"])
        await stop.wait()
        logger.info("Scheduler stopping")

    _with_manager(_serve)


@cli.command("serve", help="Serve the task API; stored schedules run inside the server.")
@click.option("--host", default="127.0.0.1", show_default=True)
@click.option("--port", default=8000, show_default=True, type=int)
def serve(host: str, port: int):
    import uvicorn

    from tablesync.main import app

    uvicorn.run(app, host=host, port=port, log_level=settings.log_level.lower())


@cli.command("run-now", help="Run one task immediately and print its result.")
@click.argument("task_id")
def run_now(task_id: str):
    try:
        result = _with_manager(lambda manager: manager.execute_now(task_id))
    except TaskNotFoundError as e:
        raise click.ClickException(str(e))
    click.echo(json.dumps(result.to_json_dict(), ensure_ascii=False, indent=2))
    if not result.success:
        sys.exit(1)


@cli.command("next-run", help="Print when a stored task will run next.")
@click.argument("task_id")
def next_run(task_id: str):
    async def _next(manager: TaskManager) -> str:
        return manager.get_next_run_time(task_id)

    try:
        click.echo(_with_manager(_next))
    except TaskNotFoundError as e:
        raise click.ClickException(str(e))


@cli.command("validate-cron", help="Check a cron expression without scheduling anything.")
@click.argument("expression")
def validate_cron_command(expression: str):
    validation = validate_cron(expression)
    if validation.valid:
        click.echo("valid")
        return
    click.echo(f"invalid: {validation.error}")
    sys.exit(1)


if __name__ == "__main__":
    cli()
