"""Single download-to-upload attempt.

Opens a read stream on the source and feeds it, chunk by chunk, into a PUT
against the destination's resumable upload URL. Only one bounded chunk is
held in memory at a time. No retry logic lives here.
"""

import json
import logging
from dataclasses import dataclass
from typing import AsyncIterator, Optional

import httpx

from streamrelay.transfer.errors import (
    ResumeIncomplete,
    SourceFetchFailed,
    SourceTimeout,
    UpstreamRejected,
    UpstreamServerError,
)

logger = logging.getLogger(__name__)

# YouTube answers 200 or 201 once the whole body has been accepted
SUCCESS_STATUS_CODES = frozenset({200, 201})
RESUME_INCOMPLETE_STATUS = 308


@dataclass(frozen=True)
class Transfer:
    """A fully specified transfer: every field resolved, nothing optional."""
    source_url: str
    destination_url: str
    auth_token: str
    content_type: str
    content_length: int


@dataclass(frozen=True)
class RelayConfig:
    chunk_size: int = 64 * 1024
    connect_timeout_s: float = 30.0
    source_read_timeout_s: float = 60.0
    upload_timeout_s: float = 600.0
    follow_source_redirects: bool = True

    @classmethod
    def from_settings(cls, settings) -> "RelayConfig":
        return cls(
            chunk_size=settings.chunk_size_bytes,
            connect_timeout_s=settings.connect_timeout_s,
            source_read_timeout_s=settings.source_read_timeout_s,
            upload_timeout_s=settings.upload_timeout_s,
            follow_source_redirects=settings.follow_source_redirects,
        )


@dataclass(frozen=True)
class RelayResult:
    status_code: int
    assigned_id: Optional[str]
    raw_body: Optional[str]
    bytes_sent: int


class BodyForwarder:
    """Pass-through body for the PUT, pulling raw chunks from the source.

    Enforces the declared length so the destination never receives a body
    that disagrees with its Content-Length header.
    """

    def __init__(self, source: httpx.Response, declared_length: int, chunk_size: int):
        self._source = source
        self._declared_length = declared_length
        self._chunk_size = chunk_size
        self.bytes_sent = 0

    async def __aiter__(self) -> AsyncIterator[bytes]:
        try:
            async for chunk in self._source.aiter_raw(self._chunk_size):
                if self.bytes_sent + len(chunk) > self._declared_length:
                    raise SourceFetchFailed(
                        f"Source sent more than the declared {self._declared_length} bytes"
                    )
                self.bytes_sent += len(chunk)
                yield chunk
        except httpx.TimeoutException as exc:
            raise SourceTimeout(
                f"Download stalled after {self.bytes_sent} bytes"
            ) from exc

        if self.bytes_sent != self._declared_length:
            raise SourceFetchFailed(
                f"Source ended after {self.bytes_sent} of "
                f"{self._declared_length} declared bytes"
            )


async def relay_once(
    client: httpx.AsyncClient,
    transfer: Transfer,
    config: Optional[RelayConfig] = None,
) -> RelayResult:
    """Perform exactly one download-to-upload attempt.

    Raises a TransferError subclass for classified failures. Transport
    errors on the destination side (resets, timeouts) propagate as raw
    httpx exceptions; the caller classifies them.
    """
    config = config or RelayConfig()
    source = await _open_source(client, transfer.source_url, config)
    try:
        if source.status_code >= 400:
            raise SourceFetchFailed(
                f"Failed to download source: HTTP {source.status_code}",
                status_code=source.status_code,
            )

        body = BodyForwarder(source, transfer.content_length, config.chunk_size)
        response = await client.put(
            transfer.destination_url,
            content=body,
            headers={
                "Authorization": f"Bearer {transfer.auth_token}",
                "Content-Type": transfer.content_type,
                "Content-Length": str(transfer.content_length),
            },
            timeout=httpx.Timeout(
                config.upload_timeout_s,
                connect=config.connect_timeout_s,
            ),
            # A 308 here means "resume incomplete", not a redirect
            follow_redirects=False,
        )
    finally:
        await source.aclose()

    logger.debug(
        "Destination responded",
        extra={"status_code": response.status_code, "bytes_sent": body.bytes_sent},
    )
    return interpret_upload_response(response, body.bytes_sent)


async def _open_source(
    client: httpx.AsyncClient,
    source_url: str,
    config: RelayConfig,
) -> httpx.Response:
    request = client.build_request(
        "GET",
        source_url,
        timeout=httpx.Timeout(
            config.source_read_timeout_s,
            connect=config.connect_timeout_s,
        ),
    )
    try:
        return await client.send(
            request,
            stream=True,
            follow_redirects=config.follow_source_redirects,
        )
    except httpx.TimeoutException as exc:
        raise SourceTimeout("Download timeout") from exc


def interpret_upload_response(response: httpx.Response, bytes_sent: int) -> RelayResult:
    """Map the destination's final answer to a result or a classified error."""
    status = response.status_code
    body = response.text

    if status in SUCCESS_STATUS_CODES:
        return RelayResult(
            status_code=status,
            assigned_id=_extract_assigned_id(body),
            raw_body=body or None,
            bytes_sent=bytes_sent,
        )

    if status == RESUME_INCOMPLETE_STATUS:
        # Chunked resume isn't implemented; a retry restarts from byte 0
        raise ResumeIncomplete(
            "Upload incomplete (308), will retry",
            status_code=status,
            body=body or None,
        )

    if status >= 500:
        raise UpstreamServerError(
            f"Upload failed: HTTP {status}",
            status_code=status,
            body=body or None,
        )

    raise UpstreamRejected(
        f"Upload rejected: HTTP {status} - {body}",
        status_code=status,
        body=body or None,
    )


def _extract_assigned_id(body: str) -> Optional[str]:
    """Best-effort parse of the destination's resource id. Never fails."""
    if not body:
        return None
    try:
        data = json.loads(body)
    except ValueError:
        return None
    if not isinstance(data, dict):
        return None
    assigned = data.get("id")
    return str(assigned) if assigned is not None else None
