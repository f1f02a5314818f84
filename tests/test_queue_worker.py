"""
Queue worker loop tests: claiming, concurrency ceiling and shutdown.
"""

import asyncio
import dataclasses
from unittest.mock import AsyncMock, MagicMock

import pytest

from api.database import create_listing_job, get_db, get_listing_job
from api.job_queue import JobQueueClient
from api.queue_worker import QueueWorker


@pytest.fixture
def processor():
    processor = MagicMock()
    processor.process = AsyncMock(return_value={})
    return processor


@pytest.fixture
def browser_manager():
    manager = MagicMock()
    manager.shutdown = AsyncMock()
    return manager


@pytest.fixture
def make_worker(db_path, processor, browser_manager, worker_config):
    def factory(queue=None, **overrides):
        return QueueWorker(
            queue=queue or JobQueueClient("worker_test", db_path=db_path),
            processor=processor,
            browser_manager=browser_manager,
            config=dataclasses.replace(worker_config, **overrides),
        )
    return factory


@pytest.mark.orchestration
class TestTick:

    @pytest.mark.asyncio
    async def test_empty_queue(self, make_worker, processor):
        worker = make_worker()
        assert await worker.tick() is None
        processor.process.assert_not_called()

    @pytest.mark.asyncio
    async def test_claims_and_runs_job(self, make_worker, processor, db_path):
        job_id = await create_listing_job("user_1", ["mercari"], {}, db_path=db_path)
        worker = make_worker()

        assert await worker.tick() == job_id
        assert worker.in_flight == [job_id]

        await worker.wait_idle()
        assert worker.in_flight == []
        processor.process.assert_awaited_once()
        assert processor.process.await_args.args[0].id == job_id

    @pytest.mark.asyncio
    async def test_concurrency_ceiling(self, make_worker, processor, db_path):
        release = asyncio.Event()

        async def hold(job):
            await release.wait()
            return {}

        processor.process.side_effect = hold
        first = await create_listing_job("user_1", ["mercari"], {}, db_path=db_path)
        await asyncio.sleep(0.01)
        second = await create_listing_job("user_1", ["facebook"], {}, db_path=db_path)
        worker = make_worker(MAX_CONCURRENT_JOBS=1)

        assert await worker.tick() == first
        assert await worker.tick() is None

        release.set()
        await worker.wait_idle()
        assert await worker.tick() == second
        await worker.wait_idle()

    @pytest.mark.asyncio
    async def test_ticks_do_not_overlap(self, make_worker):
        queue = MagicMock()
        queue.worker_id = "worker_test"

        async def slow_claim():
            await asyncio.sleep(0.05)
            return None

        queue.claim = AsyncMock(side_effect=slow_claim)
        worker = make_worker(queue=queue, MAX_CONCURRENT_JOBS=4)

        await asyncio.gather(worker.tick(), worker.tick(), worker.tick())
        assert queue.claim.await_count == 1

    @pytest.mark.asyncio
    async def test_claim_error_is_contained(self, make_worker):
        queue = MagicMock()
        queue.worker_id = "worker_test"
        queue.claim = AsyncMock(side_effect=RuntimeError("database is locked"))
        worker = make_worker(queue=queue)

        assert await worker.tick() is None
        assert await worker.tick() is None
        assert queue.claim.await_count == 2

    @pytest.mark.asyncio
    async def test_unreadable_job_is_failed_not_stranded(self, make_worker, processor, db_path):
        job_id = await create_listing_job("user_1", ["mercari"], {}, db_path=db_path)
        async with get_db(db_path) as db:
            await db.execute("UPDATE listing_jobs SET payload_json = '{bad' WHERE id = ?", (job_id,))
            await db.commit()
        worker = make_worker()

        assert await worker.tick() is None

        row = await get_listing_job(job_id, db_path=db_path)
        assert row["status"] == "failed"
        assert row["error"].startswith("JSONDecodeError: ")
        assert row["completed_at"] is not None
        processor.process.assert_not_called()

        assert await worker.tick() is None

    @pytest.mark.asyncio
    async def test_processing_error_releases_slot(self, make_worker, processor, db_path):
        processor.process.side_effect = RuntimeError("boom")
        await create_listing_job("user_1", ["mercari"], {}, db_path=db_path)
        worker = make_worker()

        assert await worker.tick() is not None
        await worker.wait_idle()
        assert worker.in_flight == []

    @pytest.mark.asyncio
    async def test_no_claims_after_stop_requested(self, make_worker, processor, db_path):
        await create_listing_job("user_1", ["mercari"], {}, db_path=db_path)
        worker = make_worker()
        worker.request_stop()

        assert await worker.tick() is None
        processor.process.assert_not_called()


@pytest.mark.orchestration
class TestLifecycle:

    @pytest.mark.asyncio
    async def test_loop_processes_queued_jobs(self, make_worker, processor, db_path):
        job_id = await create_listing_job("user_1", ["mercari"], {}, db_path=db_path)
        worker = make_worker()

        worker.start()
        for _ in range(100):
            if processor.process.await_count:
                break
            await asyncio.sleep(0.01)
        await worker.stop()

        assert processor.process.await_args.args[0].id == job_id

    @pytest.mark.asyncio
    async def test_stop_shuts_down_engine(self, make_worker, browser_manager):
        worker = make_worker()
        worker.start()
        await asyncio.sleep(0.02)

        await worker.stop()
        await worker.stop()

        assert worker._task.done()
        assert browser_manager.shutdown.await_count == 2

    @pytest.mark.asyncio
    async def test_start_is_idempotent(self, make_worker):
        worker = make_worker()
        worker.start()
        task = worker._task
        worker.start()

        assert worker._task is task
        await worker.stop()
