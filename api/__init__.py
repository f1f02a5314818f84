"""
Worker services for the listing automation system.

Modules:
- config: Environment-driven worker configuration
- database: SQLite job store
- vault: Encrypted marketplace sessions
- job_queue: Queue client, event logger and account store
- job_processor: Per-job orchestration
- queue_worker: Polling loop
"""
