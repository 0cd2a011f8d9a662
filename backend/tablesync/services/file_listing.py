"""Directory listing capability backed by the local filesystem."""
import asyncio
import os
from datetime import datetime
from pathlib import Path
from typing import List

from loguru import logger

from tablesync.models.execution import SPREADSHEET_EXTENSIONS, FileDescriptor
from tablesync.scheduler.errors import ListingError


def file_extension(name: str) -> str:
    stem, dot, ext = name.rpartition(".")
    return ext.lower() if dot and stem else ""


def describe_file(path: Path) -> FileDescriptor:
    stat = path.stat()
    # Birth time is only reported on some platforms; ctime is the fallback
    created = getattr(stat, "st_birthtime", None) or stat.st_ctime
    extension = file_extension(path.name)
    return FileDescriptor(
        name=path.name,
        path=str(path),
        size=stat.st_size,
        created_at=datetime.fromtimestamp(created),
        modified_at=datetime.fromtimestamp(stat.st_mtime),
        extension=extension,
        is_spreadsheet=extension in SPREADSHEET_EXTENSIONS,
    )


class LocalDirectoryListing:
    """Lists the regular files directly under a directory; sub-directories are skipped."""

    async def list_directory(self, path: str) -> List[FileDescriptor]:
        directory = Path(path).expanduser()
        if not directory.exists():
            raise ListingError(f"path does not exist: {path}")
        if not directory.is_dir():
            raise ListingError(f"not a directory: {path}")

        # stat calls block, so the scan runs off the event loop
        files = await asyncio.to_thread(self._scan, directory, path)
        logger.debug("Listed {} file(s) under {}", len(files), path)
        return files

    def _scan(self, directory: Path, path: str) -> List[FileDescriptor]:
        files: List[FileDescriptor] = []
        try:
            with os.scandir(directory) as entries:
                for entry in entries:
                    if not entry.is_file():
                        continue
                    files.append(describe_file(Path(entry.path)))
        except OSError as e:
            raise ListingError(f"cannot list {path}: {e}") from e
        return files
