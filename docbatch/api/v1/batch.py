"""Batch task API: submit uploads, poll status and results, cancel, retry, export."""

import logging
import os
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, File, Form, HTTPException, UploadFile
from fastapi.responses import Response

from docbatch.api.v1.error_handling import handle_batch_errors
from docbatch.config import Settings, settings
from docbatch.jobs.errors import InvalidInputError
from docbatch.jobs.models import FileRef, ProcessingOptions, TaskRecord, TaskStatus, new_task_id
from docbatch.jobs.stats import success_rate
from docbatch.processing.formats import supported_formats

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/batch")

# These will be set by main.py during lifespan
_manager = None
_uploads = None
_settings: Settings = settings


def set_manager(manager):
    global _manager
    _manager = manager


def set_upload_store(store):
    global _uploads
    _uploads = store


def set_settings(app_settings: Settings):
    global _settings
    _settings = app_settings


def _require_ready():
    if _manager is None or _uploads is None:
        raise HTTPException(status_code=503, detail="Task queue not initialized")
    return _manager, _uploads


def _task_summary(task: TaskRecord) -> Dict[str, Any]:
    data = task.model_dump(mode="json", exclude={"jobs", "options"})
    data["file_count"] = task.file_count
    return data


def _task_detail(task: TaskRecord) -> Dict[str, Any]:
    data = task.model_dump(mode="json", exclude={"jobs"})
    data["file_count"] = task.file_count
    data["files"] = [job.file_name for job in task.jobs]
    return data


async def _save_upload(upload: UploadFile, path: str, max_bytes: int, batch_budget: int) -> int:
    """Stream an upload to disk in 1 MB chunks. Returns the byte count.

    Stops as soon as the file passes max_bytes (413) or the batch runs out of
    batch_budget (InvalidInputError).
    """
    total = 0
    try:
        with open(path, "wb") as dst:
            while True:
                chunk = await upload.read(1024 * 1024)
                if not chunk:
                    break
                total += len(chunk)
                if total > max_bytes:
                    raise HTTPException(
                        status_code=413,
                        detail=f"File '{upload.filename}' too large (max {max_bytes // (1024 * 1024)} MB)",
                    )
                if total > batch_budget:
                    raise InvalidInputError(
                        f"Batch too large: exceeds {_settings.max_total_size_bytes // (1024 * 1024)}MB"
                    )
                dst.write(chunk)
    except (HTTPException, InvalidInputError):
        os.remove(path)
        raise
    except OSError as exc:
        raise HTTPException(status_code=500, detail=f"Failed to save upload: {exc}")
    return total


# ---------------------------------------------------------------------------
# POST /batch/tasks
# ---------------------------------------------------------------------------

@router.post("/tasks", status_code=202)
@handle_batch_errors
async def create_batch_task(
    files: Optional[List[UploadFile]] = File(None),
    target_language: str = Form("en"),
    source_language: str = Form("zh"),
    output_format: str = Form("docx"),
    include_original: bool = Form(False),
    generate_manual: bool = Form(False),
    priority: str = Form("normal"),
):
    """Accept a batch of uploads, persist them, and queue one job per file."""
    manager, uploads = _require_ready()
    files = files or []

    # Reject bad names and counts before anything is written to disk
    manager.validate_files([FileRef(name=f.filename or "", path="") for f in files])

    options = ProcessingOptions(
        target_language=target_language,
        source_language=source_language,
        output_format=output_format,
        include_original=include_original,
        generate_manual=generate_manual,
        priority=priority,
    )

    task_id = new_task_id()
    try:
        refs = []
        budget = _settings.max_total_size_bytes
        for index, upload in enumerate(files):
            name = upload.filename or f"file{index}"
            path = uploads.upload_path(task_id, index, name)
            size = await _save_upload(upload, path, _settings.max_upload_bytes, budget)
            budget -= size
            refs.append(
                FileRef(name=name, path=path, size=size, content_type=upload.content_type)
            )
        task = await manager.create_task(refs, options, task_id=task_id)
    except Exception:
        uploads.remove_task(task_id)
        raise

    return {
        "task_id": task.id,
        "status": task.status.value,
        "file_count": task.file_count,
        "progress": task.progress.model_dump(),
        "created_at": task.created_at.isoformat(),
        "message": f"Batch accepted. Poll GET /api/v1/batch/tasks/{task.id} for status.",
    }


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------

@router.get("/tasks")
@handle_batch_errors
async def list_tasks(page: int = 1, limit: int = 20, status: Optional[TaskStatus] = None):
    """List tasks newest first, optionally filtered by status."""
    manager, _ = _require_ready()
    result = await manager.list_tasks(page=page, limit=limit, status=status)
    return {
        "tasks": [_task_summary(t) for t in result.tasks],
        "pagination": {
            "page": result.page,
            "limit": result.limit,
            "total": result.total,
            "pages": result.pages,
        },
    }


@router.get("/tasks/{task_id}")
@handle_batch_errors
async def get_task(task_id: str):
    manager, _ = _require_ready()
    return _task_detail(await manager.get_task(task_id))


@router.get("/tasks/{task_id}/results")
@handle_batch_errors
async def get_task_results(task_id: str):
    """Per-file outcomes so far; callers may poll while the task is running."""
    manager, _ = _require_ready()
    task = await manager.get_task(task_id)
    progress = task.progress
    return {
        "task_id": task.id,
        "status": task.status.value,
        "results": [job.model_dump(mode="json") for job in task.jobs],
        "summary": {
            "total": progress.total,
            "completed": progress.completed,
            "failed": progress.failed,
            "success_rate": success_rate(task),
        },
    }


@router.get("/stats")
async def get_stats():
    manager, _ = _require_ready()
    stats = await manager.stats()
    return stats.model_dump(mode="json")


@router.get("/formats")
async def get_formats():
    return {
        "formats": supported_formats(),
        "max_files_per_task": _settings.max_files_per_task,
        "max_upload_bytes": _settings.max_upload_bytes,
    }


# ---------------------------------------------------------------------------
# Mutations
# ---------------------------------------------------------------------------

@router.delete("/tasks/{task_id}")
@handle_batch_errors
async def cancel_task(task_id: str):
    """Cancel a task that has not started; running tasks answer 409."""
    manager, uploads = _require_ready()
    task = await manager.cancel_task(task_id)
    uploads.remove_task(task_id)
    return {"task_id": task.id, "status": task.status.value, "message": "Task cancelled"}


@router.post("/tasks/{task_id}/retry")
@handle_batch_errors
async def retry_task(task_id: str):
    manager, _ = _require_ready()
    task = await manager.retry_task(task_id)
    return {
        "task_id": task.id,
        "status": task.status.value,
        "retry_count": task.retry_count,
        "max_retries": manager.max_retries,
        "message": "Retry started",
    }


@router.get("/tasks/{task_id}/export")
@handle_batch_errors
async def export_task(task_id: str, format: str = "json"):
    manager, _ = _require_ready()
    artifact = await manager.export_results(task_id, format)
    return Response(
        content=artifact.content,
        media_type=artifact.media_type,
        headers={"Content-Disposition": f'attachment; filename="{artifact.filename}"'},
    )


@router.post("/cleanup")
async def cleanup_tasks(hours: float = 24):
    """Drop finished tasks (and their uploads) older than `hours`."""
    manager, uploads = _require_ready()
    removed = await manager.cleanup_finished(older_than_hours=hours)
    for task_id in removed:
        uploads.remove_task(task_id)
    return {"cleaned_count": len(removed), "hours": hours}
