"""Resolve the byte size of a source payload with a metadata-only probe."""

import logging

import httpx

from streamrelay.transfer.errors import ProbeTimeout, SizeUnavailable, SourceFetchFailed

logger = logging.getLogger(__name__)

DEFAULT_PROBE_TIMEOUT_S = 15.0


async def resolve_content_length(
    client: httpx.AsyncClient,
    source_url: str,
    timeout_s: float = DEFAULT_PROBE_TIMEOUT_S,
    follow_redirects: bool = True,
) -> int:
    """Return the source's Content-Length via a HEAD request.

    The resumable destination needs the declared length up front, so a
    source that doesn't report one cannot be relayed unless the caller
    passes `content_length` explicitly.

    Raises:
        ProbeTimeout: the probe did not finish within `timeout_s`.
        SourceFetchFailed: the source answered with an error status.
        SizeUnavailable: no usable Content-Length header.
    """
    try:
        response = await client.head(
            source_url,
            timeout=timeout_s,
            follow_redirects=follow_redirects,
        )
    except httpx.TimeoutException as exc:
        raise ProbeTimeout(f"HEAD request timed out after {timeout_s:g}s") from exc

    if response.status_code >= 400:
        raise SourceFetchFailed(
            f"Source probe failed: HTTP {response.status_code}",
            status_code=response.status_code,
        )

    raw = response.headers.get("content-length")
    if raw is None:
        raise SizeUnavailable(
            "Source URL does not provide Content-Length. "
            "Pass content_length in the request body."
        )
    try:
        length = int(raw)
    except ValueError:
        raise SizeUnavailable(f"Source reported an invalid Content-Length: {raw!r}") from None
    if length < 0:
        raise SizeUnavailable(f"Source reported a negative Content-Length: {length}")

    logger.debug("Resolved content length", extra={"content_length": length})
    return length
