"""In-process worker pool using asyncio.

A fixed number of worker coroutines share one FIFO intake queue. Each worker
claims the next job, runs the file processor under a timeout, and reports the
outcome back to the task manager. Idle workers sleep on a condition and are
woken by submit(); there is no polling interval.
"""

import asyncio
import inspect
import logging
import time
from collections import deque
from concurrent.futures import ThreadPoolExecutor
from typing import Deque, Iterable, List, Optional

from docbatch.jobs.dispatcher import JobDispatcher, JobSink, WorkItem
from docbatch.jobs.errors import ProcessingError, ProcessingTimeoutError
from docbatch.jobs.models import JobOutcome, JobRecord, ProcessingOptions, WorkerPoolUsage
from docbatch.processing.processor import FileProcessor, ProcessContext

logger = logging.getLogger(__name__)


class IntakeQueue:
    """FIFO of work items that supports removing every item of one task."""

    def __init__(self):
        self._items: Deque[WorkItem] = deque()
        self._ready = asyncio.Condition()

    def __len__(self) -> int:
        return len(self._items)

    async def put_many(self, items: Iterable[WorkItem]) -> int:
        async with self._ready:
            before = len(self._items)
            self._items.extend(items)
            added = len(self._items) - before
            self._ready.notify(added)
        return added

    async def get(self) -> WorkItem:
        async with self._ready:
            while not self._items:
                await self._ready.wait()
            return self._items.popleft()

    async def remove_task(self, task_id: str) -> int:
        async with self._ready:
            kept = deque(item for item in self._items if item.task_id != task_id)
            removed = len(self._items) - len(kept)
            self._items = kept
        return removed


class WorkerPool(JobDispatcher):
    """Runs at most `size` jobs at once across all tasks."""

    def __init__(self, processor: FileProcessor, size: int = 4, job_timeout: float = 300.0):
        if size < 1:
            raise ValueError("Worker pool size must be at least 1")
        self._processor = processor
        self._size = size
        self._job_timeout = job_timeout
        self._intake = IntakeQueue()
        self._sink: Optional[JobSink] = None
        self._workers: List[asyncio.Task] = []
        self._busy = 0
        self._running = False
        # Sync processors run here. Calls abandoned after a timeout keep their
        # thread until they return, hence the headroom over `size`.
        self._executor: Optional[ThreadPoolExecutor] = None

    @property
    def queued(self) -> int:
        return len(self._intake)

    def attach(self, sink: JobSink) -> None:
        self._sink = sink

    async def submit(self, items: Iterable[WorkItem]) -> None:
        added = await self._intake.put_many(items)
        logger.debug("Queued %d job(s), intake depth %d", added, len(self._intake))

    async def discard(self, task_id: str) -> int:
        return await self._intake.remove_task(task_id)

    def usage(self) -> WorkerPoolUsage:
        return WorkerPoolUsage(size=self._size, busy=self._busy, available=self._size - self._busy)

    async def start(self) -> None:
        if self._sink is None:
            raise RuntimeError("WorkerPool.start() called before a JobSink was attached")
        if self._workers:
            return
        self._executor = ThreadPoolExecutor(
            max_workers=self._size * 2, thread_name_prefix="docbatch-worker"
        )
        self._running = True
        self._workers = [
            asyncio.create_task(self._worker_loop(slot), name=f"docbatch-slot-{slot}")
            for slot in range(self._size)
        ]
        logger.info("Worker pool started with %d slot(s)", self._size)

    async def stop(self) -> None:
        self._running = False
        pending = set(self._workers)
        while pending:
            # wait_for() on 3.10/3.11 can swallow a cancel that lands as the
            # job finishes, so keep cancelling until every slot has exited.
            for worker in pending:
                worker.cancel()
            _, pending = await asyncio.wait(pending, timeout=1.0)
        self._workers = []
        if self._executor is not None:
            self._executor.shutdown(wait=False, cancel_futures=True)
            self._executor = None
        logger.info("Worker pool stopped")

    async def _worker_loop(self, slot: int) -> None:
        """Claim and run jobs one at a time until the pool stops."""
        while self._running:
            item = await self._intake.get()

            try:
                claimed = await self._sink.claim_job(item.task_id, item.index)
            except Exception:
                logger.exception("Slot %d could not claim %s", slot, item)
                continue
            if claimed is None:
                continue

            job, options = claimed
            self._busy += 1
            try:
                outcome = await self._run_job(item, job, options)
            finally:
                self._busy -= 1

            try:
                await self._sink.record_job_outcome(item.task_id, item.index, outcome)
            except Exception:
                logger.exception("Slot %d could not record outcome for %s", slot, item)

    def _context(self, item: WorkItem) -> ProcessContext:
        return ProcessContext(
            task_id=item.task_id,
            job_index=item.index,
            deadline=time.monotonic() + self._job_timeout,
        )

    async def _start_in_thread(
        self, item: WorkItem, job: JobRecord, options: ProcessingOptions
    ) -> asyncio.Future:
        """Hand a sync processor call to the executor and wait until a thread runs it.

        Threads still busy with abandoned calls can delay the start; the job
        timeout only counts from the moment the call begins.
        """
        loop = asyncio.get_running_loop()
        picked_up = loop.create_future()

        def mark_picked_up() -> None:
            if not picked_up.done():
                picked_up.set_result(None)

        def run():
            loop.call_soon_threadsafe(mark_picked_up)
            return self._processor.process(job.file, options, self._context(item))

        call = loop.run_in_executor(self._executor, run)
        await asyncio.wait({picked_up, call}, return_when=asyncio.FIRST_COMPLETED)
        if not picked_up.done():
            picked_up.cancel()
        return call

    async def _run_job(
        self, item: WorkItem, job: JobRecord, options: ProcessingOptions
    ) -> JobOutcome:
        started = time.monotonic()

        def elapsed_ms() -> int:
            return int((time.monotonic() - started) * 1000)

        try:
            if inspect.iscoroutinefunction(self._processor.process):
                call = self._processor.process(job.file, options, self._context(item))
            else:
                call = await self._start_in_thread(item, job, options)
                started = time.monotonic()
            result = await asyncio.wait_for(call, timeout=self._job_timeout)
            if not isinstance(result, dict):
                raise ProcessingError(
                    f"Processor returned {type(result).__name__}, expected dict"
                )
        except asyncio.TimeoutError:
            error = ProcessingTimeoutError(
                f"Processing '{job.file_name}' timed out after {self._job_timeout:g}s",
                task_id=item.task_id,
            )
            logger.warning("Task %s job %d: %s", item.task_id, item.index, error.message)
            return JobOutcome.failure(error.message, elapsed_ms())
        except ProcessingError as e:
            logger.warning("Task %s job %d failed: %s", item.task_id, item.index, e.message)
            return JobOutcome.failure(e.message, elapsed_ms())
        except Exception as e:
            logger.warning(
                "Task %s job %d failed: %s: %s", item.task_id, item.index, type(e).__name__, e
            )
            return JobOutcome.failure(f"{type(e).__name__}: {e}", elapsed_ms())

        return JobOutcome.success(result, elapsed_ms())
