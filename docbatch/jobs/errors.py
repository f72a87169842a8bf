"""Error taxonomy for the batch task queue.

Structural errors (bad input, unknown task, illegal transition, retry cap)
are raised synchronously to the caller. Processing errors are recorded on
the failing job and never raised out of the worker pool.
"""

from typing import Optional


class BatchError(Exception):
    """Base class for task queue errors."""
    def __init__(self, message: str, task_id: Optional[str] = None):
        self.message = message
        self.task_id = task_id
        super().__init__(self.message)


class InvalidInputError(BatchError):
    """Rejected submission: empty or oversized file set, unsupported format."""
    pass


class TaskNotFoundError(BatchError):
    """Raised when a task id is unknown."""
    pass


class InvalidStateError(BatchError):
    """Operation not legal for the task's current status."""
    pass


class RetryLimitExceededError(BatchError):
    """The task has already been retried the maximum number of times."""
    pass


class ProcessingError(BatchError):
    """A file processor invocation failed."""
    pass


class ProcessingTimeoutError(ProcessingError):
    """A file processor invocation exceeded its deadline."""
    pass
