"""
Capabilities the engine consumes; hosts inject concrete implementations.
"""
from typing import Awaitable, Callable, List, Optional, Protocol, Union

from tablesync.models.execution import ExecutionResult, FileDescriptor
from tablesync.models.task import SyncTarget


class FileListing(Protocol):
    async def list_directory(self, path: str) -> List[FileDescriptor]:
        """Files directly under ``path``; raises ListingError when it cannot be listed."""
        ...


class FileSyncer(Protocol):
    async def sync_file(self, file: FileDescriptor, target: SyncTarget) -> int:
        """Push one file to the remote table and return the number of rows synced; raises SyncError."""
        ...


SyncTargetResolver = Callable[[str], Optional[SyncTarget]]

ExecutionCallback = Callable[[str, ExecutionResult], Union[Awaitable[None], None]]
