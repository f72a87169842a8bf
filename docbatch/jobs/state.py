"""Task status transitions and the rule deriving a finished task's status."""

from typing import Dict, FrozenSet, Iterable, Optional

from docbatch.jobs.errors import InvalidStateError
from docbatch.jobs.models import JobRecord, JobStatus, TaskStatus

# processing -> cancelled is deliberately absent: in-flight jobs cannot be
# aborted yet, so cancel is only legal before the first job is claimed.
TRANSITIONS: Dict[TaskStatus, FrozenSet[TaskStatus]] = {
    TaskStatus.PENDING: frozenset({TaskStatus.PROCESSING, TaskStatus.CANCELLED}),
    TaskStatus.PROCESSING: frozenset(
        {TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.PARTIAL}
    ),
    TaskStatus.FAILED: frozenset({TaskStatus.PENDING}),
    TaskStatus.PARTIAL: frozenset({TaskStatus.PENDING}),
    TaskStatus.COMPLETED: frozenset(),
    TaskStatus.CANCELLED: frozenset(),
}

RETRYABLE = frozenset({TaskStatus.FAILED, TaskStatus.PARTIAL})


def can_transition(current: TaskStatus, target: TaskStatus) -> bool:
    return target in TRANSITIONS[current]


def ensure_transition(
    current: TaskStatus, target: TaskStatus, task_id: Optional[str] = None
) -> None:
    """Raise InvalidStateError unless current -> target is a legal move."""
    if not can_transition(current, target):
        raise InvalidStateError(
            f"Cannot move task from '{current.value}' to '{target.value}'",
            task_id=task_id,
        )


def derive_status(jobs: Iterable[JobRecord]) -> Optional[TaskStatus]:
    """Return the terminal status for a job set, or None while work remains.

    completed iff every job completed, failed iff every job failed,
    partial for any mix once nothing is pending or running.
    """
    completed = failed = 0
    for job in jobs:
        if job.status == JobStatus.COMPLETED:
            completed += 1
        elif job.status == JobStatus.FAILED:
            failed += 1
        else:
            return None

    if failed == 0:
        return TaskStatus.COMPLETED
    if completed == 0:
        return TaskStatus.FAILED
    return TaskStatus.PARTIAL
