"""Task and job records for batch document processing."""

import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field


class TaskStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    PARTIAL = "partial"
    CANCELLED = "cancelled"


class JobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_TASK_STATUSES = frozenset(
    {TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.PARTIAL, TaskStatus.CANCELLED}
)


class ProcessingOptions(BaseModel):
    """Configuration snapshot handed untouched to the file processor."""
    model_config = ConfigDict(frozen=True)

    target_language: str = "en"
    source_language: str = "zh"
    output_format: str = "docx"
    include_original: bool = False
    generate_manual: bool = False
    priority: str = "normal"


class FileRef(BaseModel):
    """An uploaded file the processor can resolve by path."""
    model_config = ConfigDict(frozen=True)

    name: str
    path: str
    size: int = 0
    content_type: Optional[str] = None


class JobRecord(BaseModel):
    """Processing of one file within a task."""
    index: int
    file: FileRef
    status: JobStatus = JobStatus.PENDING
    result: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    processing_time_ms: Optional[int] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def file_name(self) -> str:
        return self.file.name


class TaskProgress(BaseModel):
    total: int
    completed: int = 0
    failed: int = 0
    percentage: int = 0


def new_task_id() -> str:
    return f"batch_{uuid.uuid4().hex}"


class TaskRecord(BaseModel):
    """One batch submission: a fixed list of jobs plus shared options."""
    id: str = Field(default_factory=new_task_id)
    status: TaskStatus = TaskStatus.PENDING
    options: ProcessingOptions = Field(default_factory=ProcessingOptions)
    jobs: List[JobRecord]
    retry_count: int = 0
    created_at: datetime = Field(default_factory=datetime.utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    processing_time_ms: Optional[int] = None

    @computed_field  # type: ignore[misc]
    @property
    def progress(self) -> TaskProgress:
        # Import here: stats depends on this module.
        from docbatch.jobs.stats import task_progress

        return task_progress(self)

    @property
    def file_count(self) -> int:
        return len(self.jobs)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_TASK_STATUSES


class JobOutcome(BaseModel):
    """What a worker slot reports back after one processor invocation."""
    succeeded: bool
    result: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    processing_time_ms: int = 0

    @classmethod
    def success(cls, result: Dict[str, Any], processing_time_ms: int) -> "JobOutcome":
        return cls(succeeded=True, result=result, processing_time_ms=processing_time_ms)

    @classmethod
    def failure(cls, error: str, processing_time_ms: int) -> "JobOutcome":
        return cls(succeeded=False, error=error, processing_time_ms=processing_time_ms)


class TaskPage(BaseModel):
    tasks: List[TaskRecord]
    page: int
    limit: int
    total: int
    pages: int


class WorkerPoolUsage(BaseModel):
    size: int
    busy: int
    available: int


class SystemStats(BaseModel):
    queue_length: int
    active_tasks: int
    pending_tasks: int
    completed_tasks: int
    failed_tasks: int
    partial_tasks: int
    cancelled_tasks: int
    total_tasks: int
    average_processing_time_ms: Optional[float] = None
    worker_pool: Optional[WorkerPoolUsage] = None
