"""Task queue manager: the only component that changes task state.

Every mutation (create, claim, outcome, cancel, retry, cleanup) runs under a
lock scoped to one task id, so jobs of different tasks progress without
contending while concurrent outcomes for the same task are serialised.
"""

import asyncio
import logging
import math
import weakref
from datetime import datetime, timedelta
from typing import List, Optional, Sequence, Tuple

from docbatch.jobs import export
from docbatch.jobs.dispatcher import JobDispatcher, JobSink, WorkItem
from docbatch.jobs.errors import (
    InvalidInputError,
    InvalidStateError,
    RetryLimitExceededError,
    TaskNotFoundError,
)
from docbatch.jobs.events import EventBus, TaskEvent, TaskEventType
from docbatch.jobs.models import (
    FileRef,
    JobOutcome,
    JobRecord,
    JobStatus,
    ProcessingOptions,
    SystemStats,
    TaskPage,
    TaskRecord,
    TaskStatus,
    new_task_id,
)
from docbatch.jobs.state import RETRYABLE, derive_status, ensure_transition
from docbatch.jobs.stats import compute_stats
from docbatch.jobs.store import TaskRecordStore
from docbatch.processing import formats

logger = logging.getLogger(__name__)


def _elapsed_ms(start: datetime, end: datetime) -> int:
    return int((end - start).total_seconds() * 1000)


class TaskQueueManager(JobSink):
    def __init__(
        self,
        store: TaskRecordStore,
        dispatcher: JobDispatcher,
        max_files_per_task: int = 50,
        max_total_size_bytes: int = 1024 * 1024 * 1024,
        max_retries: int = 3,
        events: Optional[EventBus] = None,
    ):
        self._store = store
        self._dispatcher = dispatcher
        self._max_files = max_files_per_task
        self._max_total_size = max_total_size_bytes
        self._max_retries = max_retries
        self.events = events or EventBus()
        # A lock lives only while some call holds or awaits it.
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = (
            weakref.WeakValueDictionary()
        )
        dispatcher.attach(self)

    @property
    def max_retries(self) -> int:
        return self._max_retries

    def _lock_for(self, task_id: str) -> asyncio.Lock:
        return self._locks.setdefault(task_id, asyncio.Lock())

    async def _require(self, task_id: str) -> TaskRecord:
        task = await self._store.get(task_id)
        if task is None:
            raise TaskNotFoundError(f"Task '{task_id}' not found", task_id=task_id)
        return task

    def _emit(self, event_type: TaskEventType, task: TaskRecord, **payload) -> None:
        self.events.publish(TaskEvent(type=event_type, task_id=task.id, payload=payload))

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    def validate_files(self, files: Sequence[FileRef]) -> None:
        """Raise InvalidInputError if the batch cannot be accepted as a whole."""
        if not files:
            raise InvalidInputError("File list must not be empty")

        if len(files) > self._max_files:
            raise InvalidInputError(
                f"Too many files in batch: {len(files)} > {self._max_files}"
            )

        total_size = sum(f.size for f in files)
        if total_size > self._max_total_size:
            raise InvalidInputError(
                f"Batch too large: {total_size // (1024 * 1024)}MB > "
                f"{self._max_total_size // (1024 * 1024)}MB"
            )

        for position, f in enumerate(files, start=1):
            if not formats.is_safe(f.name):
                raise InvalidInputError(f"File {position} has an unsafe file type: {f.name}")
            if not formats.is_supported(f.name):
                raise InvalidInputError(f"File {position} has an unsupported format: {f.name}")

    async def create_task(
        self,
        files: Sequence[FileRef],
        options: Optional[ProcessingOptions] = None,
        task_id: Optional[str] = None,
    ) -> TaskRecord:
        """Validate a batch, store it as a pending task and queue its jobs.

        task_id may be pre-allocated (uploads are saved under it before the
        task exists); it must not already be in use.
        """
        self.validate_files(files)

        task = TaskRecord(
            id=task_id or new_task_id(),
            options=options or ProcessingOptions(),
            jobs=[JobRecord(index=i, file=f) for i, f in enumerate(files)],
        )
        async with self._lock_for(task.id):
            if await self._store.get(task.id) is not None:
                raise InvalidInputError(f"Task id '{task.id}' is already in use", task_id=task.id)
            await self._store.put(task)
            await self._dispatcher.submit(WorkItem(task.id, job.index) for job in task.jobs)
            self._emit(TaskEventType.TASK_CREATED, task, file_count=task.file_count)

        logger.info("Created task %s with %d file(s)", task.id, task.file_count)
        return task

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get_task(self, task_id: str) -> TaskRecord:
        return await self._require(task_id)

    async def get_results(self, task_id: str) -> List[JobRecord]:
        task = await self._require(task_id)
        return task.jobs

    async def list_tasks(
        self, page: int = 1, limit: int = 20, status: Optional[TaskStatus] = None
    ) -> TaskPage:
        if page < 1 or limit < 1:
            raise InvalidInputError("page and limit must be positive")

        tasks = await self._store.list()
        if status is not None:
            tasks = [t for t in tasks if t.status == status]
        tasks.sort(key=lambda t: t.created_at, reverse=True)

        start = (page - 1) * limit
        return TaskPage(
            tasks=tasks[start:start + limit],
            page=page,
            limit=limit,
            total=len(tasks),
            pages=math.ceil(len(tasks) / limit),
        )

    async def stats(self) -> SystemStats:
        return compute_stats(await self._store.list(), self._dispatcher.usage())

    async def export_results(self, task_id: str, fmt: str = "json") -> export.ExportArtifact:
        task = await self._require(task_id)
        return export.export_task(task, fmt)

    # ------------------------------------------------------------------
    # Cancel / retry
    # ------------------------------------------------------------------

    async def cancel_task(self, task_id: str) -> TaskRecord:
        """Cancel a task none of whose jobs has started yet."""
        async with self._lock_for(task_id):
            task = await self._require(task_id)
            if task.status != TaskStatus.PENDING:
                raise InvalidStateError(
                    f"Only pending tasks can be cancelled; task is '{task.status.value}'",
                    task_id=task_id,
                )
            if any(job.status != JobStatus.PENDING for job in task.jobs):
                raise InvalidStateError(
                    "Task already has processed jobs and cannot be cancelled",
                    task_id=task_id,
                )

            ensure_transition(task.status, TaskStatus.CANCELLED, task_id)
            task.status = TaskStatus.CANCELLED
            task.completed_at = datetime.utcnow()
            await self._store.put(task)
            removed = await self._dispatcher.discard(task_id)
            self._emit(TaskEventType.TASK_CANCELLED, task)

        logger.info("Cancelled task %s (%d queued job(s) dropped)", task_id, removed)
        return task

    async def retry_task(self, task_id: str) -> TaskRecord:
        """Re-queue every job of a failed/partial task that did not complete."""
        async with self._lock_for(task_id):
            task = await self._require(task_id)
            if task.status not in RETRYABLE:
                raise InvalidStateError(
                    f"Only failed or partial tasks can be retried; task is '{task.status.value}'",
                    task_id=task_id,
                )
            if task.retry_count >= self._max_retries:
                raise RetryLimitExceededError(
                    f"Task '{task_id}' reached the retry limit ({self._max_retries})",
                    task_id=task_id,
                )

            ensure_transition(task.status, TaskStatus.PENDING, task_id)
            requeued = []
            for job in task.jobs:
                if job.status == JobStatus.COMPLETED:
                    continue
                job.status = JobStatus.PENDING
                job.error = None
                job.result = None
                job.processing_time_ms = None
                job.started_at = None
                job.completed_at = None
                requeued.append(WorkItem(task_id, job.index))

            task.retry_count += 1
            task.status = TaskStatus.PENDING
            task.started_at = None
            task.completed_at = None
            task.processing_time_ms = None
            await self._store.put(task)
            await self._dispatcher.submit(requeued)
            self._emit(TaskEventType.TASK_RETRIED, task, retry_count=task.retry_count)

        logger.info(
            "Retrying task %s (attempt %d, %d job(s) re-queued)",
            task_id, task.retry_count, len(requeued),
        )
        return task

    # ------------------------------------------------------------------
    # Worker pool callbacks
    # ------------------------------------------------------------------

    async def claim_job(
        self, task_id: str, index: int
    ) -> Optional[Tuple[JobRecord, ProcessingOptions]]:
        async with self._lock_for(task_id):
            task = await self._store.get(task_id)
            if task is None or task.status not in (TaskStatus.PENDING, TaskStatus.PROCESSING):
                return None
            if not 0 <= index < len(task.jobs):
                return None
            job = task.jobs[index]
            if job.status != JobStatus.PENDING:
                return None

            now = datetime.utcnow()
            job.status = JobStatus.RUNNING
            job.started_at = now
            if task.status == TaskStatus.PENDING:
                ensure_transition(task.status, TaskStatus.PROCESSING, task_id)
                task.status = TaskStatus.PROCESSING
                task.started_at = now
                self._emit(TaskEventType.TASK_STARTED, task)
                logger.info("Task %s started processing", task_id)
            await self._store.put(task)
            return job, task.options

    async def record_job_outcome(self, task_id: str, index: int, outcome: JobOutcome) -> None:
        """Store a finished job and settle the task once no job is left."""
        async with self._lock_for(task_id):
            task = await self._require(task_id)
            if not 0 <= index < len(task.jobs):
                raise InvalidInputError(
                    f"Task '{task_id}' has no job {index}", task_id=task_id
                )
            job = task.jobs[index]
            if task.is_terminal or job.status != JobStatus.RUNNING:
                logger.warning(
                    "Ignoring late outcome for task %s job %d (task %s, job %s)",
                    task_id, index, task.status.value, job.status.value,
                )
                return

            now = datetime.utcnow()
            job.completed_at = now
            job.processing_time_ms = outcome.processing_time_ms
            if outcome.succeeded:
                job.status = JobStatus.COMPLETED
                job.result = outcome.result
                job.error = None
            else:
                job.status = JobStatus.FAILED
                job.result = None
                job.error = outcome.error or "Processing failed"

            final = derive_status(task.jobs)
            if final is not None:
                ensure_transition(task.status, final, task_id)
                task.status = final
                task.completed_at = now
                if task.started_at is not None:
                    task.processing_time_ms = _elapsed_ms(task.started_at, now)

            await self._store.put(task)
            self._emit(
                TaskEventType.JOB_FINISHED,
                task,
                job_index=index,
                job_status=job.status.value,
                progress=task.progress.model_dump(),
            )
            if final is not None:
                self._emit(TaskEventType.TASK_FINISHED, task, status=final.value)

        if final is not None:
            progress = task.progress
            logger.info(
                "Task %s finished: %s (%d completed, %d failed)",
                task_id, final.value, progress.completed, progress.failed,
            )

    # ------------------------------------------------------------------
    # Housekeeping
    # ------------------------------------------------------------------

    async def cleanup_finished(self, older_than_hours: float = 24) -> List[str]:
        """Delete terminal tasks finished before the cutoff. Returns their ids."""
        cutoff = datetime.utcnow() - timedelta(hours=older_than_hours)
        removed = []
        for candidate in await self._store.list():
            async with self._lock_for(candidate.id):
                task = await self._store.get(candidate.id)
                if task is None or not task.is_terminal or task.completed_at is None:
                    continue
                if task.completed_at >= cutoff:
                    continue
                await self._store.delete(task.id)
                removed.append(task.id)

        logger.info("Cleaned up %d finished task(s)", len(removed))
        return removed
