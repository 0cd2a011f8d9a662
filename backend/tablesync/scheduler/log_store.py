from collections import deque
from typing import Deque, Dict, List

from tablesync.models.execution import ExecutionLogEntry


DEFAULT_MAX_ENTRIES = 100


class ExecutionLogStore:
    """Per-task execution history, newest first, capped per task."""

    def __init__(self, max_entries: int = DEFAULT_MAX_ENTRIES):
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.max_entries = max_entries
        self._logs: Dict[str, Deque[ExecutionLogEntry]] = {}

    def append(self, task_id: str, entry: ExecutionLogEntry) -> None:
        logs = self._logs.get(task_id)
        if logs is None:
            logs = self._logs[task_id] = deque(maxlen=self.max_entries)
        # appendleft on a full deque drops the oldest entry from the right
        logs.appendleft(entry)

    def query(self, task_id: str) -> List[ExecutionLogEntry]:
        return list(self._logs.get(task_id, ()))

    def remove(self, task_id: str) -> None:
        self._logs.pop(task_id, None)

    def clear(self) -> None:
        self._logs.clear()

    def __len__(self) -> int:
        return sum(len(logs) for logs in self._logs.values())
