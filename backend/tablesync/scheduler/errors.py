"""
Error taxonomy for the scheduled task engine.

Validation errors are raised before any side effect; collaborator errors are
wrapped with the path or file they concern.
"""
from typing import Optional


class TriggerError(ValueError):
    """The task trigger cannot produce a next run time."""


class ListingError(Exception):
    """A directory listing failed (missing, inaccessible or unsupported path)."""


class SyncError(Exception):
    """Base class for failures reported by the sync collaborator."""


class SyncHttpError(SyncError):
    """Network failure or non-2xx response from the sync endpoint."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class SyncRejectedError(SyncError):
    """The sync endpoint answered but rejected the file (quota, auth, bad data)."""


class TaskError(Exception):
    """Base class for errors that end or degrade a task run."""


class TaskNotFoundError(TaskError, KeyError):
    def __init__(self, task_id: str):
        super().__init__(f"task not found: {task_id}")
        self.task_id = task_id

    def __str__(self) -> str:
        return self.args[0]


class TaskDisabledError(TaskError):
    def __init__(self):
        super().__init__("task disabled")


class NoPathsConfiguredError(TaskError):
    def __init__(self):
        super().__init__("no paths configured")


class PathScanError(TaskError):
    def __init__(self, path: str, cause: BaseException):
        super().__init__(f"path scan failed: {path} - {cause}")
        self.path = path
        self.cause = cause


class NoMatchingFilesError(TaskError):
    def __init__(self):
        super().__init__("no matching files")


class TargetNotFoundError(TaskError):
    def __init__(self, template_id: Optional[str]):
        super().__init__(f"sync target not found: {template_id}")
        self.template_id = template_id


class SyncFailedError(TaskError):
    """A single file exhausted its retries; the run carries on."""

    def __init__(self, file_name: str, cause: BaseException):
        super().__init__(f"sync failed: {file_name} - {cause}")
        self.file_name = file_name
        self.cause = cause
