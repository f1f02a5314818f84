#!/usr/bin/env python3
"""
Listing Queue Worker

Polls the listing_jobs table on a fixed interval:
- claims at most one job per tick, and only below the concurrency ceiling
- runs each claimed job as its own asyncio task
- never lets a job failure crash the loop

Stopping the worker stops claiming and shuts the browser engine down.
In-flight jobs are not cancelled.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Optional

from api.config import WorkerConfig, get_config
from api.job_processor import JobProcessor
from api.job_queue import JobQueueClient
from api.logging_config import logger
from core.browser import BrowserEngineManager
from core.models import Job


@dataclass
class QueueWorker:
    queue: JobQueueClient
    processor: JobProcessor
    browser_manager: BrowserEngineManager
    config: WorkerConfig = field(default_factory=get_config)
    _task: Optional[asyncio.Task] = None
    _stop_event: asyncio.Event = field(default_factory=asyncio.Event)
    _in_flight: dict[str, asyncio.Task] = field(default_factory=dict)
    _ticking: bool = False

    @property
    def worker_id(self) -> str:
        return self.queue.worker_id

    @property
    def in_flight(self) -> list[str]:
        return list(self._in_flight)

    def start(self):
        if self._task and not self._task.done():
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self.run_loop(), name=f"listing-worker:{self.worker_id}")
        logger.info(f"QueueWorker started: {self.worker_id}")

    def request_stop(self):
        """Stop claiming new jobs. Safe to call from a signal handler callback."""
        if not self._stop_event.is_set():
            logger.info(f"QueueWorker stop requested: {self.worker_id}")
        self._stop_event.set()

    async def stop(self):
        self.request_stop()
        if self._task and not self._task.done():
            try:
                await self._task
            except Exception as e:
                logger.error(f"QueueWorker loop ended with error: {e}")
        await self.browser_manager.shutdown()
        logger.info(f"QueueWorker stopped: {self.worker_id} ({len(self._in_flight)} jobs still in flight)")

    async def run_loop(self):
        interval = self.config.poll_interval_seconds
        logger.info(
            f"Polling every {interval:g}s, max {self.config.MAX_CONCURRENT_JOBS} concurrent job(s)"
        )
        while not self._stop_event.is_set():
            await self.tick()
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass

    async def tick(self) -> Optional[str]:
        """Claim and start at most one job. Returns the started job id, if any."""
        if self._ticking or self._stop_event.is_set():
            return None
        if len(self._in_flight) >= self.config.MAX_CONCURRENT_JOBS:
            return None

        self._ticking = True
        try:
            try:
                job = await self.queue.claim()
            except Exception as e:
                logger.error(f"Failed to claim job: {e}")
                return None
            if job is None:
                return None

            self._in_flight[job.id] = asyncio.create_task(self._run_job(job), name=f"listing-job:{job.id}")
            return job.id
        finally:
            self._ticking = False

    async def _run_job(self, job: Job):
        try:
            await self.processor.process(job)
        except Exception as e:
            logger.error(f"Unhandled error in job processing ({job.id}): {e}")
        finally:
            self._in_flight.pop(job.id, None)

    async def wait_idle(self):
        """Wait for every in-flight job to finish."""
        tasks = list(self._in_flight.values())
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
