"""Upload orchestrator: retry loop, job state machine and dispatch modes.

Everything runs on the asyncio event loop; suspension happens only at the
probe, source read and destination write. Each accepted job is executed
exactly once, in a background task. Synchronous callers simply await that
same task instead of returning early.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Dict, List, Optional

import httpx

from streamrelay.jobs.models import Job, JobError, JobResult, JobStatus, UploadRequest
from streamrelay.jobs.store import JobStore
from streamrelay.logging_config import reset_job_id, set_job_id
from streamrelay.transfer.content_length import DEFAULT_PROBE_TIMEOUT_S, resolve_content_length
from streamrelay.transfer.errors import classify_error
from streamrelay.transfer.relay import RelayConfig, RelayResult, Transfer, relay_once
from streamrelay.transfer.retry import RetryPolicy

logger = logging.getLogger(__name__)

ResolveFn = Callable[[str], Awaitable[int]]
RelayFn = Callable[[Transfer], Awaitable[RelayResult]]
SleepFn = Callable[[float], Awaitable[None]]


class UploadOrchestrator:
    """Accepts upload requests and drives them to a terminal job state.

    resolve_fn / relay_fn default to the real HTTP implementations bound to
    `client`; tests inject fakes instead.
    """

    def __init__(
        self,
        store: JobStore,
        client: Optional[httpx.AsyncClient] = None,
        policy: Optional[RetryPolicy] = None,
        relay_config: Optional[RelayConfig] = None,
        probe_timeout_s: float = DEFAULT_PROBE_TIMEOUT_S,
        eviction_interval_s: float = 60.0,
        resolve_fn: Optional[ResolveFn] = None,
        relay_fn: Optional[RelayFn] = None,
        sleep_fn: SleepFn = asyncio.sleep,
    ):
        if client is None and (resolve_fn is None or relay_fn is None):
            raise ValueError("An httpx.AsyncClient is required for the default resolve/relay")
        self._store = store
        self._client = client
        self._policy = policy or RetryPolicy()
        self._relay_config = relay_config or RelayConfig()
        self._probe_timeout_s = probe_timeout_s
        self._eviction_interval_s = eviction_interval_s
        self._resolve_fn = resolve_fn or self._resolve_over_http
        self._relay_fn = relay_fn or self._relay_over_http
        self._sleep = sleep_fn

        self._tasks: Dict[str, asyncio.Task] = {}
        self._sweeper: Optional[asyncio.Task] = None
        self._running = False

    @property
    def store(self) -> JobStore:
        return self._store

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def submit(self, request: UploadRequest) -> Job:
        """Accept a request and return its job immediately, still pending."""
        job = await self._accept(request)
        self._launch(job, request)
        return job.snapshot()

    async def submit_and_wait(self, request: UploadRequest) -> Job:
        """Accept a request and hold until its job reaches a terminal state."""
        job = await self._accept(request)
        task = self._launch(job, request)
        # Shielded: a caller that goes away must not abort the transfer
        await asyncio.shield(task)
        return job.snapshot()

    async def get(self, job_id: str) -> Optional[Job]:
        return await self._store.get(job_id)

    async def drain(self) -> None:
        """Wait for every in-flight job to finish."""
        if self._tasks:
            await asyncio.gather(*self._tasks.values())

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        self._running = True
        self._sweeper = asyncio.create_task(self._eviction_loop())

    async def stop(self, grace_s: float = 30.0) -> None:
        self._running = False
        if self._sweeper:
            self._sweeper.cancel()
            try:
                await self._sweeper
            except asyncio.CancelledError:
                pass
            self._sweeper = None

        if self._tasks:
            logger.info("Waiting for in-flight jobs", extra={"in_flight": len(self._tasks)})
            _, pending = await asyncio.wait(list(self._tasks.values()), timeout=grace_s)
            if pending:
                logger.warning(
                    "Shutting down with unfinished jobs",
                    extra={"unfinished": len(pending)},
                )

    async def sweep(self) -> List[str]:
        """One eviction pass over the store."""
        evicted = await self._store.evict_overflow()
        if evicted:
            logger.info("Evicted old jobs", extra={"evicted": len(evicted)})
        return evicted

    async def _eviction_loop(self) -> None:
        while self._running:
            await asyncio.sleep(self._eviction_interval_s)
            try:
                await self.sweep()
            except Exception:
                logger.exception("Eviction sweep failed")

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def _accept(self, request: UploadRequest) -> Job:
        job = Job.from_request(request)
        await self._store.add(job)
        logger.info(
            "Upload accepted",
            extra={"job_id": job.id, "synchronous": request.synchronous},
        )
        return job

    def _launch(self, job: Job, request: UploadRequest) -> asyncio.Task:
        if job.id in self._tasks or job.status != JobStatus.PENDING:
            raise RuntimeError(f"Job {job.id} has already been started")

        task = asyncio.create_task(self._execute(job, request), name=f"upload-{job.id}")
        self._tasks[job.id] = task
        task.add_done_callback(lambda _t, job_id=job.id: self._tasks.pop(job_id, None))
        return task

    async def _execute(self, job: Job, request: UploadRequest) -> None:
        token = set_job_id(job.id)
        try:
            await self._run(job, request)
        finally:
            reset_job_id(token)

    async def _run(self, job: Job, request: UploadRequest) -> None:
        try:
            await self._advance(job, JobStatus.DOWNLOADING)

            content_length = request.content_length
            if content_length is None:
                content_length = await self._resolve_fn(request.source_url)
                job.content_length = content_length

            await self._advance(job, JobStatus.UPLOADING)

            transfer = Transfer(
                source_url=request.source_url,
                destination_url=request.destination_url,
                auth_token=request.auth_token,
                content_type=request.content_type,
                content_length=content_length,
            )
            outcome = await self._upload_with_retry(job, transfer)
        except asyncio.CancelledError:
            logger.warning("Upload cancelled", extra={"attempts": job.attempts})
            if not job.is_terminal:
                job.fail(JobError(message="Upload cancelled before completion", code="cancelled"))
                await self._save(job)
            raise
        except Exception as exc:
            classification = classify_error(exc)
            if classification.kind == "internal_error":
                logger.exception("Upload failed unexpectedly")
            else:
                logger.error(
                    "Upload failed",
                    extra={"kind": classification.kind, "attempts": job.attempts},
                )
            job.fail(JobError(
                message=str(exc) or type(exc).__name__,
                code=classification.kind,
                status_code=getattr(exc, "status_code", None),
            ))
        else:
            job.complete(JobResult(
                status_code=outcome.status_code,
                assigned_id=outcome.assigned_id,
                raw_body=outcome.raw_body,
                bytes_sent=outcome.bytes_sent,
            ))
            logger.info(
                "Upload completed",
                extra={
                    "attempts": job.attempts,
                    "bytes_sent": outcome.bytes_sent,
                    "assigned_id": outcome.assigned_id,
                },
            )

        await self._save(job)

    async def _upload_with_retry(self, job: Job, transfer: Transfer) -> RelayResult:
        for attempt in range(1, self._policy.max_attempts + 1):
            job.attempts = attempt
            await self._save(job)
            try:
                return await self._relay_fn(transfer)
            except Exception as exc:
                classification = classify_error(exc)
                if not self._policy.should_retry(attempt, classification.retryable):
                    raise
                delay = self._policy.delay_seconds(attempt)
                logger.warning(
                    "Upload attempt failed, retrying",
                    extra={
                        "attempt": attempt,
                        "delay_s": delay,
                        "kind": classification.kind,
                        "error": str(exc),
                    },
                )
                await self._sleep(delay)
        raise RuntimeError("retry loop exited without an outcome")  # pragma: no cover

    async def _advance(self, job: Job, status: JobStatus) -> None:
        job.advance(status)
        logger.debug("Job status changed", extra={"status": status.value})
        await self._save(job)

    async def _save(self, job: Job) -> None:
        if not await self._store.update(job):
            logger.debug("Job no longer in store, update dropped")

    # Default HTTP-backed stages

    async def _resolve_over_http(self, source_url: str) -> int:
        return await resolve_content_length(
            self._client,
            source_url,
            timeout_s=self._probe_timeout_s,
            follow_redirects=self._relay_config.follow_source_redirects,
        )

    async def _relay_over_http(self, transfer: Transfer) -> RelayResult:
        return await relay_once(self._client, transfer, self._relay_config)
