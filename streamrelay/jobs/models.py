"""Upload request and job record models."""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from streamrelay.transfer.errors import InvalidUploadRequest

DEFAULT_CONTENT_TYPE = "video/webm"


class JobStatus(str, Enum):
    PENDING = "pending"
    DOWNLOADING = "downloading"
    UPLOADING = "uploading"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED})

# Single forward-only path; retries happen inside UPLOADING
_ALLOWED_TRANSITIONS = {
    JobStatus.PENDING: {JobStatus.DOWNLOADING, JobStatus.FAILED},
    JobStatus.DOWNLOADING: {JobStatus.UPLOADING, JobStatus.FAILED},
    JobStatus.UPLOADING: {JobStatus.COMPLETED, JobStatus.FAILED},
    JobStatus.COMPLETED: set(),
    JobStatus.FAILED: set(),
}


class InvalidJobTransition(RuntimeError):
    pass


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_job_id() -> str:
    return f"job_{uuid.uuid4().hex}"


class UploadRequest(BaseModel):
    """An accepted transfer request. Immutable once built."""

    model_config = {"frozen": True}

    source_url: str
    destination_url: str
    auth_token: str = Field(repr=False)
    content_type: str = DEFAULT_CONTENT_TYPE
    content_length: Optional[int] = Field(default=None, ge=0)
    synchronous: bool = False
    metadata: Optional[Dict[str, Any]] = None

    @classmethod
    def accept(
        cls,
        source_url: Optional[str],
        destination_url: Optional[str],
        auth_token: Optional[str],
        **optional: Any,
    ) -> "UploadRequest":
        """Build a request, rejecting it if any required field is blank."""
        provided = {
            "source_url": source_url,
            "destination_url": destination_url,
            "auth_token": auth_token,
        }
        missing = [name for name, value in provided.items() if not value or not value.strip()]
        if missing:
            raise InvalidUploadRequest(
                f"Missing required fields: {', '.join(missing)}",
                required=list(provided),
            )
        # Drop unset optionals so model defaults apply
        extras = {k: v for k, v in optional.items() if v is not None}
        return cls(**provided, **extras)


class JobResult(BaseModel):
    status_code: int
    assigned_id: Optional[str] = None
    raw_body: Optional[str] = None
    bytes_sent: int = 0


class JobError(BaseModel):
    message: str
    code: Optional[str] = None
    status_code: Optional[int] = None


class Job(BaseModel):
    """Tracks one transfer from acceptance to terminal outcome."""

    id: str = Field(default_factory=new_job_id)
    status: JobStatus = JobStatus.PENDING
    created_at: datetime = Field(default_factory=_utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    # Request snapshot for observability (never the token or destination)
    source_url: str
    content_type: str = DEFAULT_CONTENT_TYPE
    content_length: Optional[int] = None
    metadata: Optional[Dict[str, Any]] = None

    attempts: int = 0
    result: Optional[JobResult] = None
    error: Optional[JobError] = None

    @classmethod
    def from_request(cls, request: UploadRequest) -> "Job":
        return cls(
            source_url=request.source_url,
            content_type=request.content_type,
            content_length=request.content_length,
            metadata=request.metadata,
        )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def advance(self, status: JobStatus) -> None:
        """Move to the next non-terminal stage."""
        if status in TERMINAL_STATUSES:
            raise InvalidJobTransition("Use complete() or fail() to finish a job")
        self._transition(status)
        if status == JobStatus.DOWNLOADING:
            self.started_at = _utcnow()

    def complete(self, result: JobResult) -> None:
        self._transition(JobStatus.COMPLETED)
        self.result = result
        self.completed_at = _utcnow()

    def fail(self, error: JobError) -> None:
        self._transition(JobStatus.FAILED)
        self.error = error
        self.completed_at = _utcnow()

    def snapshot(self) -> "Job":
        """Deep copy safe to hand out while the original keeps changing."""
        return self.model_copy(deep=True)

    def _transition(self, status: JobStatus) -> None:
        if status not in _ALLOWED_TRANSITIONS[self.status]:
            raise InvalidJobTransition(
                f"Job {self.id}: cannot move from {self.status.value} to {status.value}"
            )
        self.status = status
