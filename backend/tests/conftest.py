"""
pytest configuration for the tablesync test suite
"""

from datetime import datetime

import pytest

from tablesync.models.db import create_db_engine, make_session_factory
from tablesync.models.execution import SPREADSHEET_EXTENSIONS, FileDescriptor
from tablesync.models.task import FileFilterConfig, SyncTarget, TaskConfig
from tablesync.scheduler.errors import SyncRejectedError
from tablesync.scheduler.log_store import ExecutionLogStore
from tablesync.scheduler.pipeline import ExecutionPipeline
from tablesync.services.file_listing import file_extension
from tablesync.services.kv_store import KeyValueStore


# Friday 2024-03-15 10:30 local time
FIXED_NOW = datetime(2024, 3, 15, 10, 30)


# =============================================================================
# Collaborator fakes
# =============================================================================

class FakeListing:
    """In-memory directory listing keyed by path"""

    def __init__(self, files_by_path=None, errors=None):
        self.files_by_path = files_by_path or {}
        self.errors = errors or {}
        self.calls = []

    async def list_directory(self, path):
        self.calls.append(path)
        if path in self.errors:
            raise self.errors[path]
        return list(self.files_by_path.get(path, []))


class FakeSyncer:
    """
    Returns a fixed row count per file. ``failures`` maps a file name to the
    number of attempts that should fail first; a negative count fails forever.
    """

    def __init__(self, rows=10, failures=None):
        self.rows = rows
        self.failures = dict(failures or {})
        self.calls = []
        self.targets = []

    async def sync_file(self, file, target):
        self.calls.append(file.name)
        self.targets.append(target)
        remaining = self.failures.get(file.name, 0)
        if remaining:
            if remaining > 0:
                self.failures[file.name] = remaining - 1
            raise SyncRejectedError(f"rejected {file.name}")
        return self.rows


async def no_sleep(seconds):
    return None


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def now():
    return FIXED_NOW


@pytest.fixture
def make_file(now):
    def _make_file(name, created_at=None, size=100, directory="/data"):
        created_at = created_at or now
        extension = file_extension(name)
        return FileDescriptor(
            name=name,
            path=f"{directory}/{name}",
            size=size,
            created_at=created_at,
            modified_at=created_at,
            extension=extension,
            is_spreadsheet=extension in SPREADSHEET_EXTENSIONS,
        )

    return _make_file


@pytest.fixture
def make_task():
    def _make_task(task_id="task-1", **overrides):
        fields = {
            "id": task_id,
            "name": "Daily sales",
            "cron_expression": "0 0 9 * * *",
            "paths": ["/data"],
            "sync_target": SyncTarget(spreadsheet_token="sheet-1"),
            "file_filter": FileFilterConfig(),
        }
        fields.update(overrides)
        return TaskConfig(**fields)

    return _make_task


@pytest.fixture
def make_pipeline(now):
    def _make_pipeline(listing=None, syncer=None, **overrides):
        fields = {
            "listing": listing or FakeListing(),
            "syncer": syncer or FakeSyncer(),
            "log_store": ExecutionLogStore(),
            "retry_backoff_seconds": 0,
            "clock": lambda: now,
            "sleep": no_sleep,
        }
        fields.update(overrides)
        return ExecutionPipeline(**fields)

    return _make_pipeline


@pytest.fixture
def kv_store(tmp_path):
    """Key-value store on a throwaway SQLite file"""
    engine = create_db_engine(f"sqlite:///{tmp_path}/tablesync.db")
    yield KeyValueStore(make_session_factory(engine))
    engine.dispose()
