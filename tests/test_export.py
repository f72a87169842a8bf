"""Result export as JSON and ZIP."""

import io
import json
import zipfile

import pytest

from docbatch.jobs.errors import InvalidInputError, InvalidStateError
from docbatch.jobs.export import export_task
from docbatch.jobs.models import FileRef, JobRecord, JobStatus, TaskRecord, TaskStatus


@pytest.fixture
def partial_task():
    return TaskRecord(
        status=TaskStatus.PARTIAL,
        jobs=[
            JobRecord(
                index=0,
                file=FileRef(name="说明书 v1.docx", path="/tmp/a.docx"),
                status=JobStatus.COMPLETED,
                result={"translation": {"translated_text": "Manual"}},
                processing_time_ms=12,
            ),
            JobRecord(
                index=1,
                file=FileRef(name="table.xlsx", path="/tmp/b.xlsx"),
                status=JobStatus.FAILED,
                error="Processing 'table.xlsx' timed out after 300s",
            ),
        ],
    )


def test_json_export_lists_every_file_outcome(partial_task):
    artifact = export_task(partial_task, "json")

    data = json.loads(artifact.content)
    assert artifact.media_type == "application/json"
    assert artifact.filename == f"batch_results_{partial_task.id}.json"
    assert data["task"]["status"] == "partial"
    assert data["task"]["progress"]["percentage"] == 100
    assert data["results"][0]["result"]["translation"]["translated_text"] == "Manual"
    assert "timed out" in data["results"][1]["error"]


def test_zip_export_contains_manifest_and_completed_results(partial_task):
    artifact = export_task(partial_task, "ZIP")

    with zipfile.ZipFile(io.BytesIO(artifact.content)) as archive:
        names = sorted(archive.namelist())
        manifest = json.loads(archive.read("manifest.json"))

    assert artifact.media_type == "application/zip"
    assert names == ["manifest.json", "results/000_v1.json"]
    assert len(manifest["results"]) == 2


@pytest.mark.parametrize("status", [TaskStatus.PENDING, TaskStatus.PROCESSING, TaskStatus.FAILED])
def test_unfinished_or_failed_tasks_cannot_be_exported(partial_task, status):
    partial_task.status = status

    with pytest.raises(InvalidStateError):
        export_task(partial_task, "json")


def test_unknown_format_is_rejected(partial_task):
    with pytest.raises(InvalidInputError, match="xml"):
        export_task(partial_task, "xml")
