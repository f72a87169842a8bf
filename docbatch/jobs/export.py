"""Export a finished task's per-file outcomes as JSON or a ZIP archive."""

import io
import json
import re
import zipfile
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Dict

from docbatch.jobs.errors import InvalidInputError, InvalidStateError
from docbatch.jobs.models import JobRecord, JobStatus, TaskRecord, TaskStatus

EXPORTABLE = frozenset({TaskStatus.COMPLETED, TaskStatus.PARTIAL})
EXPORT_FORMATS = ("json", "zip")


@dataclass
class ExportArtifact:
    filename: str
    media_type: str
    content: bytes


def _safe_stem(name: str) -> str:
    stem = re.sub(r"[^A-Za-z0-9_-]+", "_", Path(name).stem).strip("_")
    return stem or "file"


def _job_entry(job: JobRecord) -> Dict[str, Any]:
    entry: Dict[str, Any] = {
        "file_index": job.index,
        "file_name": job.file_name,
        "status": job.status.value,
        "processing_time_ms": job.processing_time_ms,
    }
    if job.status == JobStatus.COMPLETED:
        entry["result"] = job.result
    else:
        entry["error"] = job.error
    return entry


def build_manifest(task: TaskRecord) -> Dict[str, Any]:
    return {
        "task": {
            "id": task.id,
            "status": task.status.value,
            "created_at": task.created_at.isoformat(),
            "completed_at": task.completed_at.isoformat() if task.completed_at else None,
            "processing_time_ms": task.processing_time_ms,
            "retry_count": task.retry_count,
            "options": task.options.model_dump(),
            "progress": task.progress.model_dump(),
        },
        "results": [_job_entry(job) for job in task.jobs],
        "exported_at": datetime.utcnow().isoformat(),
    }


def export_task(task: TaskRecord, fmt: str = "json") -> ExportArtifact:
    """Serialise a completed or partial task.

    json -> one document with the task summary and every file's outcome.
    zip  -> manifest.json plus results/<index>_<name>.json per completed file.
    """
    if task.status not in EXPORTABLE:
        raise InvalidStateError(
            f"Task is '{task.status.value}'; only completed or partial tasks can be exported",
            task_id=task.id,
        )
    fmt = (fmt or "").lower()
    if fmt not in EXPORT_FORMATS:
        raise InvalidInputError(
            f"Unsupported export format '{fmt}'. Valid: {list(EXPORT_FORMATS)}",
            task_id=task.id,
        )

    manifest = build_manifest(task)
    base_name = f"batch_results_{task.id}"

    if fmt == "json":
        return ExportArtifact(
            filename=f"{base_name}.json",
            media_type="application/json",
            content=json.dumps(manifest, ensure_ascii=False, indent=2, default=str).encode("utf-8"),
        )

    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as archive:
        archive.writestr(
            "manifest.json", json.dumps(manifest, ensure_ascii=False, indent=2, default=str)
        )
        for job in task.jobs:
            if job.status != JobStatus.COMPLETED:
                continue
            archive.writestr(
                f"results/{job.index:03d}_{_safe_stem(job.file_name)}.json",
                json.dumps(job.result, ensure_ascii=False, indent=2, default=str),
            )
    return ExportArtifact(
        filename=f"{base_name}.zip", media_type="application/zip", content=buffer.getvalue()
    )
