"""
Shared test fixtures for the batch task queue.

Provides: file factories, scripted/gated fake processors, a running
worker pool + task manager pair, and a polling helper for async state.
"""

import asyncio
import threading
import time
from typing import Dict, List, Optional

import pytest
import pytest_asyncio

from docbatch.jobs.manager import TaskQueueManager
from docbatch.jobs.models import FileRef, TaskStatus
from docbatch.jobs.store import InMemoryTaskStore
from docbatch.jobs.worker_pool import WorkerPool
from docbatch.processing.processor import FileProcessor


class ScriptedProcessor(FileProcessor):
    """Synchronous processor whose behaviour is scripted per file name.

    script[name] may be an Exception (raised), a float (seconds to sleep
    before succeeding) or absent (succeed immediately). Tracks peak
    concurrency across executor threads.
    """

    def __init__(self, script: Optional[Dict[str, object]] = None):
        self.script = dict(script or {})
        self.calls: List[str] = []
        self.active = 0
        self.peak = 0
        self._lock = threading.Lock()

    def process(self, file, options, context):
        with self._lock:
            self.calls.append(file.name)
            self.active += 1
            self.peak = max(self.peak, self.active)
        try:
            action = self.script.get(file.name)
            if isinstance(action, Exception):
                raise action
            if isinstance(action, (int, float)):
                time.sleep(action)
            return {"file_name": file.name, "target_language": options.target_language}
        finally:
            with self._lock:
                self.active -= 1


class GatedProcessor(FileProcessor):
    """Async processor that blocks every call until release() is called."""

    def __init__(self, failures=()):
        self.failures = set(failures)
        self.started: List[str] = []
        self._gate = asyncio.Event()

    def release(self) -> None:
        self._gate.set()

    async def process(self, file, options, context):
        self.started.append(file.name)
        await self._gate.wait()
        if file.name in self.failures:
            raise RuntimeError(f"cannot process {file.name}")
        return {"file_name": file.name}


@pytest.fixture
def make_files(tmp_path):
    """Factory: make_files(n, ext='.txt') -> list of FileRef on disk."""
    def _make(count: int, ext: str = ".txt", prefix: str = "doc") -> List[FileRef]:
        refs = []
        for i in range(count):
            path = tmp_path / f"{prefix}{i}{ext}"
            path.write_text(f"document {i}\n", encoding="utf-8")
            refs.append(FileRef(name=path.name, path=str(path), size=path.stat().st_size))
        return refs
    return _make


@pytest_asyncio.fixture
async def start_queue():
    """Factory fixture: await start_queue(processor, size=..., ...) -> (manager, pool)."""
    pools: List[WorkerPool] = []

    async def _start(processor, size: int = 2, job_timeout: float = 5.0, **manager_kwargs):
        pool = WorkerPool(processor, size=size, job_timeout=job_timeout)
        manager = TaskQueueManager(InMemoryTaskStore(), pool, **manager_kwargs)
        await pool.start()
        pools.append(pool)
        return manager, pool

    yield _start

    for pool in pools:
        await pool.stop()


async def wait_for_status(manager, task_id, *statuses: TaskStatus, timeout: float = 5.0):
    """Poll until the task reaches one of the statuses; return the task."""
    deadline = time.monotonic() + timeout
    while True:
        task = await manager.get_task(task_id)
        if task.status in statuses:
            return task
        if time.monotonic() > deadline:
            raise AssertionError(f"task {task_id} stuck in {task.status.value}")
        await asyncio.sleep(0.01)


async def wait_until(predicate, timeout: float = 5.0):
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("condition not reached")
        await asyncio.sleep(0.01)
