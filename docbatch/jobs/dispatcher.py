"""Job dispatcher interface and the contract between it and the task manager."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Iterable, Optional, Tuple

from docbatch.jobs.models import JobOutcome, JobRecord, ProcessingOptions, WorkerPoolUsage


@dataclass(frozen=True)
class WorkItem:
    """One pending job waiting for an execution slot."""
    task_id: str
    index: int


class JobSink(ABC):
    """Receives job lifecycle calls from a dispatcher (the task manager)."""

    @abstractmethod
    async def claim_job(
        self, task_id: str, index: int
    ) -> Optional[Tuple[JobRecord, ProcessingOptions]]:
        """Mark a job running. Returns None if the item is stale (cancelled, already run)."""
        ...

    @abstractmethod
    async def record_job_outcome(self, task_id: str, index: int, outcome: JobOutcome) -> None:
        ...


class JobDispatcher(ABC):
    """Abstract interface for job dispatching (local pool or remote workers)."""

    @abstractmethod
    def attach(self, sink: JobSink) -> None:
        """Set the sink that claims jobs and receives their outcomes."""
        ...

    @abstractmethod
    async def submit(self, items: Iterable[WorkItem]) -> None:
        """Queue jobs for processing, preserving the given order."""
        ...

    @abstractmethod
    async def discard(self, task_id: str) -> int:
        """Drop a task's queued items. Returns how many were removed."""
        ...

    @abstractmethod
    def usage(self) -> WorkerPoolUsage:
        ...

    @abstractmethod
    async def start(self) -> None:
        """Start the dispatcher (e.g., start worker loops)."""
        ...

    @abstractmethod
    async def stop(self) -> None:
        """Stop the dispatcher gracefully."""
        ...
