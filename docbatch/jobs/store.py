"""Task record store interface and in-memory implementation."""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional

from docbatch.jobs.models import TaskRecord


class TaskRecordStore(ABC):
    """Abstract key-value storage for task records (local or durable).

    Implementations hold no business logic. Records returned are snapshots:
    mutating them does not change the stored state until put() is called.
    """

    @abstractmethod
    async def get(self, task_id: str) -> Optional[TaskRecord]:
        ...

    @abstractmethod
    async def put(self, task: TaskRecord) -> None:
        ...

    @abstractmethod
    async def delete(self, task_id: str) -> bool:
        """Remove a record. Returns False if it did not exist."""
        ...

    @abstractmethod
    async def list(self) -> List[TaskRecord]:
        """Snapshot of every stored record, in insertion order."""
        ...

    async def count(self) -> int:
        return len(await self.list())


class InMemoryTaskStore(TaskRecordStore):
    """Dict-backed store for a single process. Copies on every read and write."""

    def __init__(self):
        self._tasks: Dict[str, TaskRecord] = {}

    async def get(self, task_id: str) -> Optional[TaskRecord]:
        task = self._tasks.get(task_id)
        return task.model_copy(deep=True) if task is not None else None

    async def put(self, task: TaskRecord) -> None:
        self._tasks[task.id] = task.model_copy(deep=True)

    async def delete(self, task_id: str) -> bool:
        return self._tasks.pop(task_id, None) is not None

    async def list(self) -> List[TaskRecord]:
        return [task.model_copy(deep=True) for task in self._tasks.values()]

    async def count(self) -> int:
        return len(self._tasks)
