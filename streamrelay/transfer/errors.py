"""Transfer error taxonomy and the single retry classification function."""

from dataclasses import dataclass
from typing import List, Optional

import httpx


class InvalidUploadRequest(ValueError):
    """Required request fields are missing. Raised before any job exists."""

    kind = "validation_error"

    def __init__(self, message: str, required: Optional[List[str]] = None):
        super().__init__(message)
        self.required = required or []


class TransferError(Exception):
    """Base for classified failures of the resolve/relay stages."""

    kind = "transfer_error"
    retryable = False

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        body: Optional[str] = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


# Content-length resolution (never retried)

class SizeUnavailable(TransferError):
    kind = "size_unavailable"


class ProbeTimeout(TransferError):
    kind = "probe_timeout"


# Download side

class SourceFetchFailed(TransferError):
    kind = "source_fetch_failed"


class SourceTimeout(TransferError):
    kind = "source_timeout"
    retryable = True


# Destination side

class UpstreamServerError(TransferError):
    kind = "upstream_server_error"
    retryable = True


class ResumeIncomplete(TransferError):
    kind = "resume_incomplete"
    retryable = True


class UpstreamRejected(TransferError):
    kind = "upstream_rejected"


@dataclass(frozen=True)
class ErrorClassification:
    kind: str
    retryable: bool


def classify_error(exc: BaseException) -> ErrorClassification:
    """Tag any failure raised by an attempt as `{kind, retryable}`.

    Transport-level resets and timeouts are retryable; unknown errors are not.
    """
    if isinstance(exc, TransferError):
        return ErrorClassification(exc.kind, exc.retryable)
    if isinstance(exc, httpx.TimeoutException):
        return ErrorClassification("transport_timeout", True)
    if isinstance(exc, (httpx.NetworkError, httpx.RemoteProtocolError)):
        return ErrorClassification("transport_error", True)
    return ErrorClassification("internal_error", False)
