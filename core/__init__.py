"""
Core components for the listing worker.

Modules:
- models: Jobs, accounts, sessions and results
- error_handler: Error taxonomy and classification
- browser: Shared Playwright engine
- images: Image reference resolution and download
- screenshot_manager: Failure artifacts
"""

from .error_handler import ListingWorkerError, ErrorCategory
from .models import Job, JobStatus, PlatformResult, PlatformType

__all__ = [
    "ListingWorkerError",
    "ErrorCategory",
    "Job",
    "JobStatus",
    "PlatformResult",
    "PlatformType",
]
