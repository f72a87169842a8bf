"""Read-side progress and system statistics.

Everything here is a pure function of a task snapshot; nothing mutates
the store.
"""

from collections import Counter
from typing import TYPE_CHECKING, Iterable, Optional

from docbatch.jobs.models import (
    JobStatus,
    SystemStats,
    TaskProgress,
    TaskStatus,
    WorkerPoolUsage,
)

if TYPE_CHECKING:
    from docbatch.jobs.models import TaskRecord


def task_progress(task: "TaskRecord") -> TaskProgress:
    total = len(task.jobs)
    completed = sum(1 for job in task.jobs if job.status == JobStatus.COMPLETED)
    failed = sum(1 for job in task.jobs if job.status == JobStatus.FAILED)
    # Integer half-up rounding (12.5 -> 13).
    done = completed + failed
    percentage = (200 * done + total) // (2 * total) if total else 0
    return TaskProgress(
        total=total, completed=completed, failed=failed, percentage=percentage
    )


def success_rate(task: "TaskRecord") -> int:
    """Share of jobs that completed, as a rounded percentage."""
    progress = task_progress(task)
    if not progress.total:
        return 0
    return (200 * progress.completed + progress.total) // (2 * progress.total)


def compute_stats(
    tasks: Iterable["TaskRecord"],
    pool: Optional[WorkerPoolUsage] = None,
) -> SystemStats:
    tasks = list(tasks)
    by_status = Counter(task.status for task in tasks)

    # Jobs still waiting for a slot; cancelled tasks never run theirs.
    queue_length = sum(
        1
        for task in tasks
        if task.status in (TaskStatus.PENDING, TaskStatus.PROCESSING)
        for job in task.jobs
        if job.status == JobStatus.PENDING
    )

    timings = [t.processing_time_ms for t in tasks if t.processing_time_ms is not None]
    average = sum(timings) / len(timings) if timings else None

    return SystemStats(
        queue_length=queue_length,
        active_tasks=by_status[TaskStatus.PROCESSING],
        pending_tasks=by_status[TaskStatus.PENDING],
        completed_tasks=by_status[TaskStatus.COMPLETED],
        failed_tasks=by_status[TaskStatus.FAILED],
        partial_tasks=by_status[TaskStatus.PARTIAL],
        cancelled_tasks=by_status[TaskStatus.CANCELLED],
        total_tasks=len(tasks),
        average_processing_time_ms=average,
        worker_pool=pool,
    )
