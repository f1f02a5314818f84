"""
Job queue client, event logger and account store used by the worker.

Thin async wrappers over the SQLite store. Progress, event and account-status
writes are best effort: failures are logged and swallowed so they never abort
a job. Claims and terminal writes propagate store errors to the caller.
"""

from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from api import database
from api.logging_config import logger, log_job_event
from core.error_handler import format_error
from core.models import AccountStatus, EventLevel, Job, JobEvent, JobStatus

PathLike = Union[str, Path]


class JobQueueClient:
    """Claim and update listing jobs on behalf of one worker."""

    def __init__(self, worker_id: str, db_path: Optional[PathLike] = None):
        self.worker_id = worker_id
        self.db_path = db_path

    async def claim(self) -> Optional[Job]:
        row = await database.claim_next_listing_job(self.worker_id, db_path=self.db_path)
        if not row:
            return None
        try:
            job = Job.from_row(row)
        except Exception as e:
            # The row is already running; fail it so it is never stranded
            error = format_error(e)
            logger.error(f"Claimed job {row['id']} is unreadable: {error}")
            await self.mark_failed(row["id"], error)
            return None
        logger.info(f"Claimed job {job.id} ({', '.join(job.platforms) or 'no platforms'})")
        return job

    async def update_progress(self, job_id: str, percent: int, message: str):
        try:
            await database.update_listing_job_progress(job_id, percent, message, db_path=self.db_path)
        except Exception as e:
            logger.warning(f"Failed to update progress for job {job_id}: {e}")

    async def update_result(self, job_id: str, result: Dict[str, Dict[str, Any]]):
        await database.merge_listing_job_result(job_id, result, db_path=self.db_path)

    async def mark_completed(self, job_id: str) -> bool:
        changed = await database.finish_listing_job(job_id, JobStatus.COMPLETED.value, db_path=self.db_path)
        if not changed:
            logger.warning(f"Job {job_id} was not running; completion ignored")
        return changed

    async def mark_failed(self, job_id: str, reason: str) -> bool:
        changed = await database.finish_listing_job(
            job_id, JobStatus.FAILED.value, error=reason, db_path=self.db_path
        )
        if not changed:
            logger.warning(f"Job {job_id} was not running; failure ignored ({reason})")
        return changed

    async def get_job(self, job_id: str) -> Optional[Job]:
        row = await database.get_listing_job(job_id, db_path=self.db_path)
        return Job.from_row(row) if row else None


class JobEventLogger:
    """Append structured events to a job's audit trail."""

    def __init__(self, db_path: Optional[PathLike] = None):
        self.db_path = db_path

    async def log(
        self,
        job_id: str,
        level: Union[EventLevel, str],
        message: str,
        metadata: Optional[Dict[str, Any]] = None,
    ):
        level = EventLevel(level).value
        log_job_event(job_id, level, message, metadata)
        try:
            await database.insert_job_event(job_id, level, message, metadata, db_path=self.db_path)
        except Exception as e:
            logger.warning(f"Failed to record event for job {job_id}: {e}")

    async def list_events(self, job_id: str) -> List[JobEvent]:
        rows = await database.list_job_events(job_id, db_path=self.db_path)
        return [JobEvent.from_row(row) for row in rows]


class PlatformAccountStore:
    def __init__(self, db_path: Optional[PathLike] = None):
        self.db_path = db_path

    async def set_status(self, user_id: str, platform: str, status: Union[AccountStatus, str]):
        status = AccountStatus(status).value
        try:
            changed = await database.set_platform_account_status(
                user_id, platform, status, db_path=self.db_path
            )
            if changed:
                logger.info(f"Account {platform} for user {user_id} -> {status}")
        except Exception as e:
            logger.warning(f"Failed to set {platform} account status for user {user_id}: {e}")
