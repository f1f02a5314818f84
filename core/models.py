#!/usr/bin/env python3
"""
Unified Data Models for the Listing Worker

All shared data models are defined here to ensure consistency across the codebase.
Rows coming out of the job store are converted with the ``from_row`` helpers.
"""

import json
from typing import List, Optional, Dict, Any
from dataclasses import dataclass, field
from enum import Enum
from datetime import datetime


# ============== Enums ==============

class PlatformType(str, Enum):
    """Marketplaces the worker can publish to."""
    MERCARI = "mercari"
    FACEBOOK = "facebook"


class JobStatus(str, Enum):
    """Listing job status values."""
    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class AccountStatus(str, Enum):
    """Platform account connection status."""
    CONNECTED = "connected"
    NEEDS_REAUTH = "needs_reauth"
    DISCONNECTED = "disconnected"


class EventLevel(str, Enum):
    """Job event levels."""
    INFO = "info"
    SUCCESS = "success"
    ERROR = "error"


def _load_json(raw: Any, default: Any) -> Any:
    if raw is None or raw == "":
        return default
    if isinstance(raw, (dict, list)):
        return raw
    return json.loads(raw)


# ============== Job Models ==============

@dataclass
class Progress:
    """Advisory progress reported while a job is running."""
    percent: int = 0
    message: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {"percent": self.percent, "message": self.message}


@dataclass
class PlatformResult:
    """Outcome of one platform run inside a job."""
    success: bool
    listing_url: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"success": self.success}
        if self.listing_url is not None:
            out["listingUrl"] = self.listing_url
        if self.error is not None:
            out["error"] = self.error
        return out


@dataclass
class Job:
    """A request to publish one listing to one or more marketplaces."""
    id: str
    user_id: str
    platforms: List[str]
    payload: Dict[str, Any] = field(default_factory=dict)
    status: JobStatus = JobStatus.QUEUED
    progress: Progress = field(default_factory=Progress)
    result: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    error: Optional[str] = None
    claimed_by: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    started_at: Optional[str] = None
    completed_at: Optional[str] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Job":
        platforms = _load_json(row.get("platforms_json"), [])
        return cls(
            id=str(row["id"]),
            user_id=str(row["user_id"]),
            platforms=[str(p) for p in platforms] if isinstance(platforms, list) else [],
            payload=_load_json(row.get("payload_json"), {}),
            status=JobStatus(row.get("status") or JobStatus.QUEUED.value),
            progress=Progress(
                percent=int(row.get("progress_percent") or 0),
                message=row.get("progress_message") or "",
            ),
            result=_load_json(row.get("result_json"), {}),
            error=row.get("error"),
            claimed_by=row.get("claimed_by"),
            created_at=row.get("created_at"),
            updated_at=row.get("updated_at"),
            started_at=row.get("started_at"),
            completed_at=row.get("completed_at"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "platforms": list(self.platforms),
            "payload": self.payload,
            "status": self.status.value,
            "progress": self.progress.to_dict(),
            "result": self.result,
            "error": self.error,
            "claimed_by": self.claimed_by,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
        }


@dataclass
class JobEvent:
    """Append-only audit entry tied to a job."""
    job_id: str
    level: EventLevel
    message: str
    metadata: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=datetime.now)

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "JobEvent":
        return cls(
            job_id=str(row["job_id"]),
            level=EventLevel(row["level"]),
            message=row.get("message") or "",
            metadata=_load_json(row.get("metadata_json"), {}),
            timestamp=datetime.fromisoformat(row["created_at"]),
        )


# ============== Account Models ==============

@dataclass
class PlatformAccount:
    """A user's stored marketplace session."""
    user_id: str
    platform: str
    status: AccountStatus
    session_payload_encrypted: Optional[str] = None
    session_meta: Dict[str, Any] = field(default_factory=dict)
    last_verified_at: Optional[str] = None
    updated_at: Optional[str] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "PlatformAccount":
        return cls(
            user_id=str(row["user_id"]),
            platform=str(row["platform"]),
            status=AccountStatus(row["status"]),
            session_payload_encrypted=row.get("session_payload_encrypted"),
            session_meta=_load_json(row.get("session_meta_json"), {}),
            last_verified_at=row.get("last_verified_at"),
            updated_at=row.get("updated_at"),
        )


@dataclass
class SessionPayload:
    """Decrypted cookie/header bundle for acting as a logged-in user."""
    cookies: List[Dict[str, Any]] = field(default_factory=list)
    user_agent: Optional[str] = None
    session: Optional[Dict[str, Any]] = None
    captured_at: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SessionPayload":
        cookies = data.get("cookies")
        session = data.get("session")
        return cls(
            cookies=cookies if isinstance(cookies, list) else [],
            user_agent=data.get("userAgent") or data.get("user_agent"),
            session=session if isinstance(session, dict) else None,
            captured_at=data.get("capturedAt") or data.get("captured_at"),
        )
