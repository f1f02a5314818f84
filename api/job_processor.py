#!/usr/bin/env python3
"""
Job Processor

Runs one claimed listing job end to end:
- platforms run serially, each in its own browser context
- a platform failure is recorded in the result and never stops its siblings
- the result map is written once, after every platform ran
- a job is completed only if every platform succeeded

Nothing raised while processing a job escapes ``process``.
"""

from __future__ import annotations

import asyncio
import math
import traceback
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional

from adapters import PROCESSORS, StepReporter, get_processor
from adapters.base import PlatformProcessor
from adapters.validation import normalize_listing
from api.config import WorkerConfig, get_config
from api.job_queue import JobEventLogger, JobQueueClient, PlatformAccountStore
from api.logging_config import log_browser_event, logger
from api.vault import CredentialVault
from core.browser import BrowserEngineManager
from core.error_handler import (
    StepTimeout,
    format_error,
    get_error_category,
    is_auth_error,
)
from core.images import ImageFetcher
from core.models import AccountStatus, EventLevel, Job, PlatformResult
from core.screenshot_manager import ScreenshotConfig, ScreenshotManager

NO_PLATFORMS_REASON = "Job has no platforms"
FAILED_PLATFORMS_REASON = "Some platforms failed to list"


@dataclass
class JobProcessor:
    queue: JobQueueClient
    events: JobEventLogger
    vault: CredentialVault
    accounts: PlatformAccountStore
    browser_manager: BrowserEngineManager
    config: WorkerConfig = field(default_factory=get_config)
    processors: dict[str, type[PlatformProcessor]] = field(default_factory=lambda: dict(PROCESSORS))
    image_fetcher_factory: Optional[Callable[[], ImageFetcher]] = None
    artifacts: Optional[ScreenshotManager] = None

    def __post_init__(self):
        if self.image_fetcher_factory is None:
            self.image_fetcher_factory = lambda: ImageFetcher(
                base_url=self.config.IMAGE_BASE_URL,
                timeout=self.config.IMAGE_DOWNLOAD_TIMEOUT_SECONDS,
            )
        if self.artifacts is None and self.config.CAPTURE_ARTIFACTS:
            self.artifacts = ScreenshotManager(ScreenshotConfig(base_dir=Path(self.config.ARTIFACTS_DIR)))

    async def process(self, job: Job) -> dict[str, dict[str, Any]]:
        """Process a claimed job. Returns the per-platform result map."""
        try:
            return await self._process(job)
        except Exception as e:
            error = format_error(e)
            logger.error(f"Job {job.id} failed: {error}")
            await self.events.log(
                job.id,
                EventLevel.ERROR,
                f"Job failed: {error}",
                {"error": error, "stack": traceback.format_exc()},
            )
            await self._safe_mark_failed(job.id, error)
            return {}

    async def _process(self, job: Job) -> dict[str, dict[str, Any]]:
        if not job.platforms:
            await self.events.log(job.id, EventLevel.ERROR, NO_PLATFORMS_REASON)
            await self.queue.mark_failed(job.id, NO_PLATFORMS_REASON)
            return {}

        engine = await self.browser_manager.get_or_create_engine()

        total = len(job.platforms)
        results: dict[str, dict[str, Any]] = {}
        async with self.image_fetcher_factory() as images:
            for index, platform in enumerate(job.platforms):
                await self.queue.update_progress(
                    job.id, math.floor(index / total * 100), f"Processing {platform}..."
                )
                await self.events.log(job.id, EventLevel.INFO, f"Starting {platform} listing", {"platform": platform})

                result = await self._run_platform(job, platform, index, total, engine, images)
                results[platform] = result.to_dict()

        await self.queue.update_result(job.id, results)

        failed = sorted(p for p, r in results.items() if not r.get("success"))
        if not failed:
            await self.queue.update_progress(job.id, 100, "Completed")
            await self.queue.mark_completed(job.id)
            await self.events.log(job.id, EventLevel.SUCCESS, "Job completed", {"platforms": list(results)})
        else:
            await self.queue.mark_failed(job.id, FAILED_PLATFORMS_REASON)
            logger.info(f"Job {job.id} failed on: {', '.join(failed)}")
        return results

    async def _run_platform(
        self,
        job: Job,
        platform: str,
        index: int,
        total: int,
        engine: Any,
        images: ImageFetcher,
    ) -> PlatformResult:
        step = "load_processor"
        key = (platform or "").strip().lower()
        processor: Optional[PlatformProcessor] = None
        try:
            processor_class = get_processor(platform, self.processors)

            step = "load_session"
            session = await self.vault.get_decrypted_session(job.user_id, key)

            processor = processor_class(
                engine,
                job,
                session,
                page_timeout_ms=self.config.PAGE_TIMEOUT_MS,
                listing_url_timeout=self.config.LISTING_URL_TIMEOUT_SECONDS,
                reporter=StepReporter(
                    lambda percent, message: self.queue.update_progress(job.id, percent, message),
                    index,
                    total,
                ),
                artifacts=self.artifacts,
            )

            step = "initialize"
            await self._run_step(step, processor.initialize())

            step = "upload_images"
            refs = normalize_listing(job.payload, key).images
            paths = await self._run_step(step, self._upload(processor, images, refs))
            await self.events.log(
                job.id, EventLevel.INFO, f"Uploaded {len(paths)} images", {"platform": platform}
            )

            step = "fill_form"
            await self._run_step(step, processor.fill_form(job.payload))
            step = "submit"
            await self._run_step(step, processor.submit())
            step = "get_listing_url"
            listing_url = await self._run_step(step, processor.get_listing_url())

            await self.events.log(
                job.id,
                EventLevel.SUCCESS,
                f"Listing created: {listing_url}",
                {"platform": platform, "listingUrl": listing_url},
            )
            return PlatformResult(success=True, listing_url=listing_url)

        except Exception as e:
            error = format_error(e)
            stack = traceback.format_exc()

            artifacts = await processor.capture_artifacts(f"{step}_failed") if processor else {}
            await self.events.log(
                job.id,
                EventLevel.ERROR,
                f"{platform} listing failed: {error}",
                {
                    "platform": platform,
                    "step": step,
                    "error": error,
                    "category": get_error_category(e).value,
                    "stack": stack,
                    "artifacts": artifacts,
                },
            )

            if is_auth_error(e):
                await self.accounts.set_status(job.user_id, key, AccountStatus.NEEDS_REAUTH)

            return PlatformResult(success=False, error=error)

        finally:
            if processor is not None:
                await processor.cleanup()
                log_browser_event(f"{job.id}/{platform}", "context closed", f"last step: {step}")

    async def _upload(self, processor: PlatformProcessor, images: ImageFetcher, refs: list[str]) -> list[str]:
        paths = await images.fetch_all(refs)
        await processor.upload_images(paths)
        return paths

    async def _run_step(self, step: str, awaitable: Awaitable[Any]) -> Any:
        timeout = self.config.step_timeouts.get(step)
        try:
            return await asyncio.wait_for(awaitable, timeout)
        except asyncio.TimeoutError as e:
            raise StepTimeout(f"{step} timed out after {timeout:g}s") from e

    async def _safe_mark_failed(self, job_id: str, reason: str):
        try:
            await self.queue.mark_failed(job_id, reason)
        except Exception as e:
            logger.error(f"Failed to mark job {job_id} as failed: {e}")
