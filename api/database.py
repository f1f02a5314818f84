"""
Database module for the listing worker.
Implements SQLite persistence with async support.

The job store is shared with the API service that enqueues listing jobs and
stores encrypted marketplace sessions; the worker only claims jobs, reports
progress and writes terminal state.
"""

import json
import aiosqlite
from datetime import datetime
from typing import Optional, List, Dict, Any, Union
from pathlib import Path
from contextlib import asynccontextmanager
import uuid

from api.config import config

# Database configuration
DB_PATH = Path(config.DATABASE_PATH)

PathLike = Union[str, Path]


def _resolve(db_path: Optional[PathLike]) -> Path:
    path = Path(db_path) if db_path else DB_PATH
    path.parent.mkdir(parents=True, exist_ok=True)
    return path


def _now() -> str:
    return datetime.now().isoformat()


async def init_database(db_path: Optional[PathLike] = None):
    """Initialize the database schema."""
    async with aiosqlite.connect(_resolve(db_path)) as db:
        # Listing jobs
        await db.execute("""
            CREATE TABLE IF NOT EXISTS listing_jobs (
                id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL,
                platforms_json TEXT NOT NULL,
                payload_json TEXT,
                status TEXT NOT NULL DEFAULT 'queued',
                progress_percent INTEGER DEFAULT 0,
                progress_message TEXT,
                result_json TEXT,
                error TEXT,
                claimed_by TEXT,
                created_at TEXT,
                updated_at TEXT,
                started_at TEXT,
                completed_at TEXT
            )
        """)

        # Connected marketplace accounts
        await db.execute("""
            CREATE TABLE IF NOT EXISTS platform_accounts (
                user_id TEXT NOT NULL,
                platform TEXT NOT NULL,
                status TEXT NOT NULL,
                session_payload_encrypted TEXT,
                session_meta_json TEXT,
                last_verified_at TEXT,
                updated_at TEXT,
                PRIMARY KEY (user_id, platform)
            )
        """)

        # Append-only job audit trail
        await db.execute("""
            CREATE TABLE IF NOT EXISTS listing_job_events (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                job_id TEXT NOT NULL,
                level TEXT NOT NULL,
                message TEXT,
                metadata_json TEXT,
                created_at TEXT NOT NULL,
                FOREIGN KEY (job_id) REFERENCES listing_jobs(id)
            )
        """)

        # Create indexes
        await db.execute("CREATE INDEX IF NOT EXISTS idx_listing_jobs_status_created ON listing_jobs(status, created_at)")
        await db.execute("CREATE INDEX IF NOT EXISTS idx_listing_jobs_user_id ON listing_jobs(user_id)")
        await db.execute("CREATE INDEX IF NOT EXISTS idx_job_events_job_id ON listing_job_events(job_id)")

        await db.commit()


@asynccontextmanager
async def get_db(db_path: Optional[PathLike] = None):
    """Get a database connection."""
    db = await aiosqlite.connect(_resolve(db_path))
    db.row_factory = aiosqlite.Row
    try:
        yield db
    finally:
        await db.close()


# Listing job operations
async def create_listing_job(
    user_id: str,
    platforms: List[str],
    payload: Dict[str, Any],
    *,
    job_id: Optional[str] = None,
    db_path: Optional[PathLike] = None,
) -> str:
    """Insert a queued listing job and return its id."""
    job_id = job_id or f"job_{uuid.uuid4().hex}"
    now = _now()
    async with get_db(db_path) as db:
        await db.execute(
            """INSERT INTO listing_jobs
               (id, user_id, platforms_json, payload_json, status, progress_percent,
                progress_message, result_json, created_at, updated_at)
               VALUES (?, ?, ?, ?, 'queued', 0, 'Queued', '{}', ?, ?)""",
            (job_id, user_id, json.dumps(list(platforms)), json.dumps(payload or {}), now, now),
        )
        await db.commit()
    return job_id


async def get_listing_job(job_id: str, *, db_path: Optional[PathLike] = None) -> Optional[Dict[str, Any]]:
    async with get_db(db_path) as db:
        cursor = await db.execute("SELECT * FROM listing_jobs WHERE id = ?", (job_id,))
        row = await cursor.fetchone()
        return dict(row) if row else None


async def list_listing_jobs(
    *,
    status: Optional[str] = None,
    limit: int = 50,
    db_path: Optional[PathLike] = None,
) -> List[Dict[str, Any]]:
    async with get_db(db_path) as db:
        if status:
            cursor = await db.execute(
                "SELECT * FROM listing_jobs WHERE status = ? ORDER BY created_at DESC LIMIT ?",
                (status, limit),
            )
        else:
            cursor = await db.execute(
                "SELECT * FROM listing_jobs ORDER BY created_at DESC LIMIT ?",
                (limit,),
            )
        rows = await cursor.fetchall()
        return [dict(row) for row in rows]


async def claim_next_listing_job(worker_id: str, *, db_path: Optional[PathLike] = None) -> Optional[Dict[str, Any]]:
    """
    Atomically claim the oldest queued listing job.

    The transaction takes SQLite's write lock up front, and the status check in
    the UPDATE makes the transition queued -> running a compare-and-swap. The
    claim is committed only if exactly one row changed.

    Returns the claimed row dict, or None.
    """
    now = _now()
    async with get_db(db_path) as db:
        await db.execute("BEGIN IMMEDIATE")

        cursor = await db.execute(
            """SELECT id FROM listing_jobs
               WHERE status = 'queued'
               ORDER BY created_at ASC
               LIMIT 1"""
        )
        row = await cursor.fetchone()
        if not row:
            await db.execute("COMMIT")
            return None

        job_id = row["id"]
        cursor = await db.execute(
            """UPDATE listing_jobs
               SET status = 'running',
                   progress_percent = 0,
                   progress_message = 'Claimed by worker',
                   claimed_by = ?,
                   started_at = ?,
                   updated_at = ?
               WHERE id = ? AND status = 'queued'""",
            (worker_id, now, now, job_id),
        )
        if cursor.rowcount != 1:
            await db.rollback()
            return None
        await db.commit()

        cursor = await db.execute("SELECT * FROM listing_jobs WHERE id = ?", (job_id,))
        claimed = await cursor.fetchone()
        return dict(claimed) if claimed else None


async def update_listing_job_progress(
    job_id: str,
    percent: int,
    message: str,
    *,
    db_path: Optional[PathLike] = None,
) -> bool:
    """Write progress for a running job. Never lowers the stored percent."""
    percent = max(0, min(100, int(percent)))
    async with get_db(db_path) as db:
        cursor = await db.execute(
            """UPDATE listing_jobs
               SET progress_percent = ?, progress_message = ?, updated_at = ?
               WHERE id = ? AND status = 'running' AND progress_percent <= ?""",
            (percent, message, _now(), job_id, percent),
        )
        await db.commit()
        return cursor.rowcount == 1


async def merge_listing_job_result(
    job_id: str,
    result: Dict[str, Dict[str, Any]],
    *,
    db_path: Optional[PathLike] = None,
) -> bool:
    """Merge per-platform entries into the stored result mapping."""
    async with get_db(db_path) as db:
        await db.execute("BEGIN IMMEDIATE")
        cursor = await db.execute("SELECT result_json FROM listing_jobs WHERE id = ?", (job_id,))
        row = await cursor.fetchone()
        if not row:
            await db.rollback()
            return False

        merged = json.loads(row["result_json"] or "{}")
        merged.update(result)
        await db.execute(
            "UPDATE listing_jobs SET result_json = ?, updated_at = ? WHERE id = ?",
            (json.dumps(merged), _now(), job_id),
        )
        await db.commit()
        return True


async def finish_listing_job(
    job_id: str,
    status: str,
    *,
    error: Optional[str] = None,
    db_path: Optional[PathLike] = None,
) -> bool:
    """Move a running job to a terminal status. No-op unless the job is running."""
    now = _now()
    async with get_db(db_path) as db:
        cursor = await db.execute(
            """UPDATE listing_jobs
               SET status = ?, error = ?, completed_at = ?, updated_at = ?
               WHERE id = ? AND status = 'running'""",
            (status, error, now, now, job_id),
        )
        await db.commit()
        return cursor.rowcount == 1


# Job event operations
async def insert_job_event(
    job_id: str,
    level: str,
    message: str,
    metadata: Optional[Dict[str, Any]] = None,
    *,
    db_path: Optional[PathLike] = None,
):
    async with get_db(db_path) as db:
        await db.execute(
            """INSERT INTO listing_job_events (job_id, level, message, metadata_json, created_at)
               VALUES (?, ?, ?, ?, ?)""",
            (job_id, level, message, json.dumps(metadata or {}, default=str), _now()),
        )
        await db.commit()


async def list_job_events(job_id: str, *, db_path: Optional[PathLike] = None) -> List[Dict[str, Any]]:
    async with get_db(db_path) as db:
        cursor = await db.execute(
            "SELECT * FROM listing_job_events WHERE job_id = ? ORDER BY id ASC",
            (job_id,),
        )
        rows = await cursor.fetchall()
        return [dict(row) for row in rows]


# Platform account operations
async def get_platform_account(
    user_id: str,
    platform: str,
    *,
    db_path: Optional[PathLike] = None,
) -> Optional[Dict[str, Any]]:
    async with get_db(db_path) as db:
        cursor = await db.execute(
            "SELECT * FROM platform_accounts WHERE user_id = ? AND platform = ?",
            (user_id, platform),
        )
        row = await cursor.fetchone()
        return dict(row) if row else None


async def save_platform_account(
    user_id: str,
    platform: str,
    *,
    status: str,
    session_payload_encrypted: Optional[str],
    session_meta: Optional[Dict[str, Any]] = None,
    db_path: Optional[PathLike] = None,
):
    """Save or replace a user's account row for one platform."""
    now = _now()
    async with get_db(db_path) as db:
        await db.execute(
            """INSERT OR REPLACE INTO platform_accounts
               (user_id, platform, status, session_payload_encrypted, session_meta_json,
                last_verified_at, updated_at)
               VALUES (?, ?, ?, ?, ?, ?, ?)""",
            (
                user_id,
                platform,
                status,
                session_payload_encrypted,
                json.dumps(session_meta or {}),
                now,
                now,
            ),
        )
        await db.commit()


async def set_platform_account_status(
    user_id: str,
    platform: str,
    status: str,
    *,
    db_path: Optional[PathLike] = None,
) -> bool:
    async with get_db(db_path) as db:
        cursor = await db.execute(
            "UPDATE platform_accounts SET status = ?, updated_at = ? WHERE user_id = ? AND platform = ?",
            (status, _now(), user_id, platform),
        )
        await db.commit()
        return cursor.rowcount == 1
