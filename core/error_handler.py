"""
Error taxonomy for the listing worker.

Configuration faults are never retried, automation faults stay isolated to one
platform run, orchestration faults fail the whole job, and infrastructure
faults on best-effort writes are logged and dropped.
"""

import re
from enum import Enum
from typing import Union


class ErrorCategory(str, Enum):
    CONFIGURATION = "configuration"
    AUTOMATION = "automation"
    ORCHESTRATION = "orchestration"
    INFRASTRUCTURE = "infrastructure"


# Error text that points at an expired or rejected marketplace session
AUTH_ERROR_PATTERN = re.compile(r"auth|login", re.IGNORECASE)


class ListingWorkerError(Exception):
    category = ErrorCategory.ORCHESTRATION


# === Configuration faults ===

class ConfigurationError(ListingWorkerError):
    category = ErrorCategory.CONFIGURATION


class AccountNotConnected(ConfigurationError):
    def __init__(self, platform: str):
        self.platform = platform
        super().__init__(f"Platform account not found or not connected: {platform}")


class DecryptionError(ConfigurationError):
    pass


class EngineUnavailable(ConfigurationError):
    pass


class UnsupportedPlatform(ConfigurationError):
    def __init__(self, platform: str):
        self.platform = platform
        super().__init__(f"Unsupported platform: {platform}")


# === Automation faults ===

class AutomationError(ListingWorkerError):
    category = ErrorCategory.AUTOMATION


class SessionInvalid(AutomationError):
    pass


class FormValidationError(AutomationError):
    """Raised with the name of every missing or invalid field."""

    def __init__(self, *fields: str):
        self.fields = list(fields)
        super().__init__("; ".join(self.fields))


class SubmissionRejected(AutomationError):
    pass


class VerificationRequired(AutomationError):
    pass


class ImageUploadError(AutomationError):
    pass


class ImageDownloadError(AutomationError):
    pass


class ListingUrlNotFound(AutomationError):
    pass


class StepTimeout(AutomationError):
    pass


# === Orchestration faults ===

class ProcessorStateError(ListingWorkerError):
    category = ErrorCategory.ORCHESTRATION


def format_error(error: BaseException) -> str:
    """Render an exception the way it is stored in a job result."""
    message = str(error).strip()
    name = error.__class__.__name__
    return f"{name}: {message}" if message else name


def is_auth_error(error: Union[str, BaseException]) -> bool:
    if isinstance(error, SessionInvalid):
        return True
    text = error if isinstance(error, str) else format_error(error)
    return bool(AUTH_ERROR_PATTERN.search(text or ""))


def get_error_category(error: BaseException) -> ErrorCategory:
    if isinstance(error, ListingWorkerError):
        return error.category
    if isinstance(error, (ConnectionError, OSError)):
        return ErrorCategory.INFRASTRUCTURE
    return ErrorCategory.ORCHESTRATION
