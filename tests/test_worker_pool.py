"""Worker pool and intake queue, exercised against a recording sink."""

import asyncio

import pytest
import pytest_asyncio

from conftest import ScriptedProcessor, wait_until
from docbatch.jobs.dispatcher import JobSink, WorkItem
from docbatch.jobs.errors import ProcessingError
from docbatch.jobs.models import FileRef, JobRecord, JobStatus, ProcessingOptions
from docbatch.jobs.worker_pool import IntakeQueue, WorkerPool
from docbatch.processing.processor import FileProcessor


class RecordingSink(JobSink):
    """Hands out jobs for known items and records every outcome."""

    def __init__(self, names, skip=()):
        self.jobs = {
            index: JobRecord(index=index, file=FileRef(name=name, path=f"/tmp/{name}"))
            for index, name in enumerate(names)
        }
        self.skip = set(skip)
        self.claimed = []
        self.outcomes = {}

    async def claim_job(self, task_id, index):
        if index in self.skip:
            return None
        self.claimed.append(index)
        job = self.jobs[index]
        job.status = JobStatus.RUNNING
        return job, ProcessingOptions()

    async def record_job_outcome(self, task_id, index, outcome):
        self.outcomes[index] = outcome


class CancelSwallowingSink(RecordingSink):
    """Claims hang and turn cancellation into a normal return."""

    def __init__(self, names):
        super().__init__(names)
        self.entered = asyncio.Event()

    async def claim_job(self, task_id, index):
        self.entered.set()
        try:
            await asyncio.sleep(30)
        except asyncio.CancelledError:
            return None
        return await super().claim_job(task_id, index)


@pytest_asyncio.fixture
async def pools():
    started = []
    yield started
    for pool in started:
        await pool.stop()


async def _run(processor, names, size=2, timeout=5.0, skip=()):
    sink = RecordingSink(names, skip=skip)
    pool = WorkerPool(processor, size=size, job_timeout=timeout)
    pool.attach(sink)
    await pool.start()
    return pool, sink


class TestIntakeQueue:

    @pytest.mark.asyncio
    async def test_get_returns_items_in_fifo_order(self):
        intake = IntakeQueue()
        await intake.put_many([WorkItem("a", 0), WorkItem("a", 1), WorkItem("b", 0)])

        assert [await intake.get() for _ in range(3)] == [
            WorkItem("a", 0), WorkItem("a", 1), WorkItem("b", 0)
        ]

    @pytest.mark.asyncio
    async def test_remove_task_drops_only_that_task(self):
        intake = IntakeQueue()
        await intake.put_many([WorkItem("a", 0), WorkItem("b", 0), WorkItem("a", 1)])

        removed = await intake.remove_task("a")

        assert removed == 2
        assert len(intake) == 1
        assert await intake.get() == WorkItem("b", 0)

    @pytest.mark.asyncio
    async def test_idle_getter_wakes_on_put(self):
        intake = IntakeQueue()
        getter = asyncio.create_task(intake.get())
        await asyncio.sleep(0.01)
        assert not getter.done()

        await intake.put_many([WorkItem("a", 3)])

        assert await asyncio.wait_for(getter, timeout=1.0) == WorkItem("a", 3)


class TestWorkerPool:

    def test_pool_size_must_be_positive(self):
        with pytest.raises(ValueError):
            WorkerPool(ScriptedProcessor(), size=0)

    @pytest.mark.asyncio
    async def test_start_without_sink_raises(self):
        pool = WorkerPool(ScriptedProcessor(), size=1)

        with pytest.raises(RuntimeError):
            await pool.start()

    @pytest.mark.asyncio
    async def test_success_outcome_carries_result_and_timing(self, pools):
        pool, sink = await _run(ScriptedProcessor(), ["a.txt"])
        pools.append(pool)

        await pool.submit([WorkItem("t", 0)])
        await wait_until(lambda: 0 in sink.outcomes)

        outcome = sink.outcomes[0]
        assert outcome.succeeded
        assert outcome.result["file_name"] == "a.txt"
        assert outcome.processing_time_ms >= 0

    @pytest.mark.asyncio
    async def test_processor_exception_becomes_failed_outcome(self, pools):
        processor = ScriptedProcessor({"a.txt": ProcessingError("unreadable table")})
        pool, sink = await _run(processor, ["a.txt", "b.txt"])
        pools.append(pool)

        await pool.submit([WorkItem("t", 0), WorkItem("t", 1)])
        await wait_until(lambda: len(sink.outcomes) == 2)

        assert not sink.outcomes[0].succeeded
        assert sink.outcomes[0].error == "unreadable table"
        assert sink.outcomes[1].succeeded

    @pytest.mark.asyncio
    async def test_slow_processor_times_out(self, pools):
        processor = ScriptedProcessor({"slow.txt": 1.0})
        pool, sink = await _run(processor, ["slow.txt"], timeout=0.1)
        pools.append(pool)

        await pool.submit([WorkItem("t", 0)])
        await wait_until(lambda: 0 in sink.outcomes)

        assert not sink.outcomes[0].succeeded
        assert "timed out after 0.1s" in sink.outcomes[0].error

    @pytest.mark.asyncio
    async def test_async_processor_is_awaited_directly(self, pools):
        class AsyncProcessor(FileProcessor):
            async def process(self, file, options, context):
                await asyncio.sleep(0)
                return {"async": True, "job": context.job_index}

        pool, sink = await _run(AsyncProcessor(), ["a.txt"])
        pools.append(pool)

        await pool.submit([WorkItem("t", 0)])
        await wait_until(lambda: 0 in sink.outcomes)

        assert sink.outcomes[0].result == {"async": True, "job": 0}

    @pytest.mark.asyncio
    async def test_non_dict_result_fails_the_job(self, pools):
        class BadProcessor(FileProcessor):
            def process(self, file, options, context):
                return "not a dict"

        pool, sink = await _run(BadProcessor(), ["a.txt"])
        pools.append(pool)

        await pool.submit([WorkItem("t", 0)])
        await wait_until(lambda: 0 in sink.outcomes)

        assert "expected dict" in sink.outcomes[0].error

    @pytest.mark.asyncio
    async def test_stale_items_are_skipped(self, pools):
        processor = ScriptedProcessor()
        pool, sink = await _run(processor, ["a.txt", "b.txt"], skip={0})
        pools.append(pool)

        await pool.submit([WorkItem("t", 0), WorkItem("t", 1)])
        await wait_until(lambda: 1 in sink.outcomes)

        assert sink.claimed == [1]
        assert processor.calls == ["b.txt"]
        assert 0 not in sink.outcomes

    @pytest.mark.asyncio
    async def test_discard_removes_queued_items(self):
        pool = WorkerPool(ScriptedProcessor(), size=1)
        await pool.submit([WorkItem("x", 0), WorkItem("y", 0), WorkItem("x", 1)])

        assert await pool.discard("x") == 2
        assert pool.queued == 1

    @pytest.mark.asyncio
    async def test_sync_job_timeout_starts_when_a_thread_picks_it_up(self, pools):
        # One slot means two executor threads; both stay busy with abandoned calls.
        processor = ScriptedProcessor({"slow0.txt": 0.8, "slow1.txt": 0.8})
        pool, sink = await _run(processor, ["slow0.txt", "slow1.txt", "fast.txt"], size=1, timeout=0.2)
        pools.append(pool)

        await pool.submit([WorkItem("t", 0), WorkItem("t", 1), WorkItem("t", 2)])
        await wait_until(lambda: len(sink.outcomes) == 3)

        assert not sink.outcomes[0].succeeded
        assert not sink.outcomes[1].succeeded
        assert sink.outcomes[2].succeeded
        assert sink.outcomes[2].result["file_name"] == "fast.txt"

    @pytest.mark.asyncio
    async def test_stop_right_after_submit_returns(self):
        for _ in range(20):
            pool, _ = await _run(ScriptedProcessor(), ["a.txt"], size=1)
            await pool.submit([WorkItem("t", 0)])

            stopper = asyncio.ensure_future(pool.stop())
            done, _ = await asyncio.wait([stopper], timeout=2.0)

            assert stopper in done

    @pytest.mark.asyncio
    async def test_stop_returns_when_a_slot_swallows_cancellation(self):
        sink = CancelSwallowingSink(["a.txt"])
        pool = WorkerPool(ScriptedProcessor(), size=1)
        pool.attach(sink)
        await pool.start()
        await pool.submit([WorkItem("t", 0)])
        await asyncio.wait_for(sink.entered.wait(), timeout=1.0)

        stopper = asyncio.ensure_future(pool.stop())
        done, _ = await asyncio.wait([stopper], timeout=2.0)

        assert stopper in done
        assert sink.claimed == []

    @pytest.mark.asyncio
    async def test_usage_reports_idle_slots(self, pools):
        pool, _ = await _run(ScriptedProcessor(), [], size=3)
        pools.append(pool)

        usage = pool.usage()

        assert (usage.size, usage.busy, usage.available) == (3, 0, 3)
