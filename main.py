#!/usr/bin/env python3
"""
Listing Worker - Main Entry Point

Unified entry point for the marketplace listing automation worker.

Usage:
    # Run the worker loop
    python main.py worker

    # Create the database schema
    python main.py init-db

    # Queue a listing job
    python main.py enqueue --user user_1 --platforms mercari,facebook --payload listing.json

    # Store a captured marketplace session
    python main.py connect --user user_1 --platform mercari --session session.json

    # Show recent jobs, or one job with its events
    python main.py status [JOB_ID]
"""

import sys
import json
import signal
import asyncio
import argparse
import logging

from dotenv import load_dotenv

load_dotenv()

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def build_worker(config):
    """Wire the queue client, vault, engine and processor into a worker."""
    from api.job_processor import JobProcessor
    from api.job_queue import JobEventLogger, JobQueueClient, PlatformAccountStore
    from api.queue_worker import QueueWorker
    from api.vault import CredentialVault
    from core.browser import BrowserEngineManager

    browser_manager = BrowserEngineManager(
        headless=config.HEADLESS,
        proxy=config.proxy_settings,
        launch_args=config.CHROMIUM_ARGS,
    )
    queue = JobQueueClient(config.WORKER_ID, db_path=config.DATABASE_PATH)
    processor = JobProcessor(
        queue=queue,
        events=JobEventLogger(db_path=config.DATABASE_PATH),
        vault=CredentialVault(config.ENCRYPTION_KEY, db_path=config.DATABASE_PATH),
        accounts=PlatformAccountStore(db_path=config.DATABASE_PATH),
        browser_manager=browser_manager,
        config=config,
    )
    return QueueWorker(
        queue=queue,
        processor=processor,
        browser_manager=browser_manager,
        config=config,
    )


async def run_worker() -> int:
    """Run the worker until SIGINT/SIGTERM. Returns the process exit code."""
    from api.config import get_config
    from api.database import init_database
    from api.logging_config import configure_worker_logging
    from core.error_handler import EngineUnavailable

    config = get_config()
    missing = config.validate()
    if missing:
        print("❌ Missing required configuration:")
        for name in missing:
            print(f"  - {name}")
        print("\nPlease set these in your .env file or environment.")
        return 1

    configure_worker_logging(config.WORKER_ID)
    await init_database(config.DATABASE_PATH)
    worker = build_worker(config)

    try:
        await worker.browser_manager.get_or_create_engine()
    except EngineUnavailable as e:
        logger.error(f"Browser engine unavailable: {e}")
        return 1

    loop = asyncio.get_running_loop()

    def _signal_handler(signum, frame):
        logger.info(f"Received signal {signum}, shutting down...")
        loop.call_soon_threadsafe(worker.request_stop)

    signal.signal(signal.SIGINT, _signal_handler)
    signal.signal(signal.SIGTERM, _signal_handler)

    logger.info(f"🚀 Listing worker {config.WORKER_ID} started")
    await worker.run_loop()
    await worker.stop()
    return 0


async def init_db():
    from api.config import get_config
    from api.database import init_database

    config = get_config()
    await init_database(config.DATABASE_PATH)
    print(f"✅ Database ready: {config.DATABASE_PATH}")


async def enqueue_job(user_id: str, platforms: str, payload_path: str):
    """Queue a listing job from a JSON payload file."""
    from api.config import get_config
    from api.database import create_listing_job, init_database

    config = get_config()
    with open(payload_path) as f:
        payload = json.load(f)

    await init_database(config.DATABASE_PATH)
    platform_list = [p.strip().lower() for p in platforms.split(",") if p.strip()]
    job_id = await create_listing_job(user_id, platform_list, payload, db_path=config.DATABASE_PATH)
    print(f"✅ Queued {job_id} for {', '.join(platform_list)}")


async def connect_account(user_id: str, platform: str, session_path: str):
    """Encrypt and store a captured session for a user's marketplace account."""
    from api.config import get_config
    from api.database import init_database
    from api.vault import CredentialVault

    config = get_config()
    if not config.ENCRYPTION_KEY:
        print("❌ ENCRYPTION_KEY is not set")
        sys.exit(1)

    with open(session_path) as f:
        session = json.load(f)

    await init_database(config.DATABASE_PATH)
    vault = CredentialVault(config.ENCRYPTION_KEY, db_path=config.DATABASE_PATH)
    await vault.connect_account(user_id, platform.lower(), session)
    print(f"✅ Connected {platform} for {user_id} ({len(session.get('cookies') or [])} cookies)")


async def show_status(job_id: str = None):
    from api.config import get_config
    from api.database import get_listing_job, list_job_events, list_listing_jobs
    from core.models import Job

    config = get_config()
    if not job_id:
        for row in await list_listing_jobs(db_path=config.DATABASE_PATH):
            job = Job.from_row(row)
            print(f"{job.id}  {job.status.value:<9}  {job.progress.percent:>3}%  {','.join(job.platforms)}")
        return

    row = await get_listing_job(job_id, db_path=config.DATABASE_PATH)
    if not row:
        print(f"❌ Job not found: {job_id}")
        sys.exit(1)

    job = Job.from_row(row)
    print(json.dumps({k: v for k, v in job.to_dict().items() if k != "payload"}, indent=2))
    for event in await list_job_events(job_id, db_path=config.DATABASE_PATH):
        print(f"{event['created_at']}  {event['level']:<7}  {event['message']}")


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Listing Worker - marketplace listing automation"
    )

    subparsers = parser.add_subparsers(dest='command', help='Command to run')

    subparsers.add_parser('worker', help='Run the listing worker')
    subparsers.add_parser('init-db', help='Create the database schema')

    enqueue_parser = subparsers.add_parser('enqueue', help='Queue a listing job')
    enqueue_parser.add_argument('--user', required=True, help='Owner user id')
    enqueue_parser.add_argument('--platforms', required=True, help='Comma separated platforms (mercari,facebook)')
    enqueue_parser.add_argument('--payload', required=True, help='Path to listing payload JSON')

    connect_parser = subparsers.add_parser('connect', help='Store a captured marketplace session')
    connect_parser.add_argument('--user', required=True, help='Owner user id')
    connect_parser.add_argument('--platform', required=True, help='Platform id')
    connect_parser.add_argument('--session', required=True, help='Path to session JSON (cookies, userAgent)')

    status_parser = subparsers.add_parser('status', help='Show jobs and events')
    status_parser.add_argument('job_id', nargs='?', help='Job id to inspect')

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        return

    if args.command == 'worker':
        sys.exit(asyncio.run(run_worker()))

    elif args.command == 'init-db':
        asyncio.run(init_db())

    elif args.command == 'enqueue':
        asyncio.run(enqueue_job(args.user, args.platforms, args.payload))

    elif args.command == 'connect':
        asyncio.run(connect_account(args.user, args.platform, args.session))

    elif args.command == 'status':
        asyncio.run(show_status(args.job_id))


if __name__ == "__main__":
    main()
