"""Tests for UploadOrchestrator: state machine, retries, dispatch modes."""

from __future__ import annotations

import asyncio

import httpx
import pytest

from streamrelay.jobs.models import Job, JobStatus, UploadRequest
from streamrelay.jobs.orchestrator import UploadOrchestrator
from streamrelay.jobs.store import InMemoryJobStore
from streamrelay.transfer.errors import (
    ResumeIncomplete,
    SizeUnavailable,
    UpstreamRejected,
    UpstreamServerError,
)
from streamrelay.transfer.retry import RetryPolicy
from tests.fakes.transfer import (
    RecordingJobStore,
    ScriptedRelay,
    SleepRecorder,
    StaticResolver,
    ok_result,
)


def _request(**overrides) -> UploadRequest:
    fields = {
        "source_url": "https://cdn.example.com/v.webm",
        "destination_url": "https://upload.example.com/u?upload_id=1",
        "auth_token": "tok",
        "content_length": 1000,
    }
    fields.update(overrides)
    return UploadRequest.accept(**fields)


def _orchestrator(
    store: InMemoryJobStore,
    relay: ScriptedRelay,
    resolver: StaticResolver | None = None,
    sleeper: SleepRecorder | None = None,
    max_attempts: int = 3,
) -> UploadOrchestrator:
    return UploadOrchestrator(
        store=store,
        policy=RetryPolicy(max_attempts=max_attempts),
        resolve_fn=resolver or StaticResolver(),
        relay_fn=relay,
        sleep_fn=sleeper or SleepRecorder(),
    )


def _assert_result_error_exclusive(history: list[Job]) -> None:
    for snapshot in history:
        assert not (snapshot.result is not None and snapshot.error is not None)
        if not snapshot.is_terminal:
            assert snapshot.result is None and snapshot.error is None


class TestRetryLoop:
    """Bounded retries around single relay attempts."""

    @pytest.mark.asyncio
    async def test_retryable_failures_then_success(
        self, store: RecordingJobStore, sleeper: SleepRecorder
    ) -> None:
        """Two retryable failures, then success on attempt 3."""
        relay = ScriptedRelay(
            UpstreamServerError("HTTP 503", status_code=503),
            ResumeIncomplete("HTTP 308", status_code=308),
            ok_result("vid-final"),
        )
        orchestrator = _orchestrator(store, relay, sleeper=sleeper)

        job = await orchestrator.submit_and_wait(_request())

        assert job.status == JobStatus.COMPLETED
        assert job.attempts == 3
        assert job.result.assigned_id == "vid-final"
        assert job.error is None
        assert relay.calls == 3
        # Backoff only between attempts, never before the first
        assert sleeper.delays == [2.0, 4.0]

    @pytest.mark.asyncio
    async def test_non_retryable_failure_stops_immediately(
        self, store: RecordingJobStore, sleeper: SleepRecorder
    ) -> None:
        relay = ScriptedRelay(
            UpstreamRejected("HTTP 401", status_code=401, body="bad token"),
            ok_result(),
        )
        orchestrator = _orchestrator(store, relay, sleeper=sleeper)

        job = await orchestrator.submit_and_wait(_request())

        assert job.status == JobStatus.FAILED
        assert relay.calls == 1
        assert sleeper.delays == []
        assert job.error.code == "upstream_rejected"
        assert job.error.status_code == 401
        assert job.result is None

    @pytest.mark.asyncio
    async def test_exhausted_attempts_surface_last_error(
        self, store: RecordingJobStore, sleeper: SleepRecorder
    ) -> None:
        relay = ScriptedRelay(
            UpstreamServerError("first", status_code=500),
            UpstreamServerError("second", status_code=502),
            UpstreamServerError("third", status_code=503),
        )
        orchestrator = _orchestrator(store, relay, sleeper=sleeper)

        job = await orchestrator.submit_and_wait(_request())

        assert job.status == JobStatus.FAILED
        assert job.attempts == 3
        assert job.error.message == "third"
        assert job.error.status_code == 503
        assert len(sleeper.delays) == 2

    @pytest.mark.asyncio
    async def test_transport_reset_is_retried(self, store: RecordingJobStore) -> None:
        relay = ScriptedRelay(httpx.ReadError("connection reset"), ok_result())
        orchestrator = _orchestrator(store, relay)

        job = await orchestrator.submit_and_wait(_request())

        assert job.status == JobStatus.COMPLETED
        assert relay.calls == 2

    @pytest.mark.asyncio
    async def test_unexpected_error_fails_job(self, store: RecordingJobStore) -> None:
        relay = ScriptedRelay(KeyError("bug"))
        orchestrator = _orchestrator(store, relay)

        job = await orchestrator.submit_and_wait(_request())

        assert job.status == JobStatus.FAILED
        assert job.error.code == "internal_error"
        assert relay.calls == 1


class TestStateMachine:
    """Status path and content-length resolution stage."""

    @pytest.mark.asyncio
    async def test_status_sequence_on_success(self, store: RecordingJobStore) -> None:
        orchestrator = _orchestrator(store, ScriptedRelay(ok_result()))

        job = await orchestrator.submit_and_wait(_request())

        assert store.statuses(job.id) == ["pending", "downloading", "uploading", "completed"]
        _assert_result_error_exclusive(store.history[job.id])

    @pytest.mark.asyncio
    async def test_status_sequence_with_retries(self, store: RecordingJobStore) -> None:
        relay = ScriptedRelay(UpstreamServerError("503"), ok_result())
        orchestrator = _orchestrator(store, relay)

        job = await orchestrator.submit_and_wait(_request())

        assert store.statuses(job.id) == ["pending", "downloading", "uploading", "completed"]
        _assert_result_error_exclusive(store.history[job.id])

    @pytest.mark.asyncio
    async def test_missing_size_fails_without_transfer(self, store: RecordingJobStore) -> None:
        relay = ScriptedRelay(ok_result())
        resolver = StaticResolver(SizeUnavailable("no Content-Length"))
        orchestrator = _orchestrator(store, relay, resolver=resolver)

        job = await orchestrator.submit_and_wait(_request(content_length=None))

        assert job.status == JobStatus.FAILED
        assert job.error.code == "size_unavailable"
        assert relay.calls == 0
        assert job.attempts == 0
        assert store.statuses(job.id) == ["pending", "downloading", "failed"]

    @pytest.mark.asyncio
    async def test_resolves_length_when_absent(self, store: RecordingJobStore) -> None:
        relay = ScriptedRelay(ok_result())
        resolver = StaticResolver(4096)
        orchestrator = _orchestrator(store, relay, resolver=resolver)

        job = await orchestrator.submit_and_wait(_request(content_length=None))

        assert resolver.calls == ["https://cdn.example.com/v.webm"]
        assert relay.transfers[0].content_length == 4096
        assert job.content_length == 4096

    @pytest.mark.asyncio
    async def test_explicit_length_skips_probe(self, store: RecordingJobStore) -> None:
        relay = ScriptedRelay(ok_result())
        resolver = StaticResolver(4096)
        orchestrator = _orchestrator(store, relay, resolver=resolver)

        await orchestrator.submit_and_wait(_request(content_length=1000))

        assert resolver.calls == []
        assert relay.transfers[0].content_length == 1000

    @pytest.mark.asyncio
    async def test_transfer_carries_request_fields(self, store: RecordingJobStore) -> None:
        relay = ScriptedRelay(ok_result())
        orchestrator = _orchestrator(store, relay)

        await orchestrator.submit_and_wait(_request(content_type="video/mp4"))

        transfer = relay.transfers[0]
        assert transfer.auth_token == "tok"
        assert transfer.content_type == "video/mp4"
        assert transfer.destination_url == "https://upload.example.com/u?upload_id=1"


class TestDispatchModes:
    """Async vs sync submission over the same execution path."""

    @pytest.mark.asyncio
    async def test_async_submit_returns_pending_then_completes(
        self, store: RecordingJobStore
    ) -> None:
        orchestrator = _orchestrator(store, ScriptedRelay(ok_result("v9")))

        job = await orchestrator.submit(_request())

        assert job.status == JobStatus.PENDING
        assert orchestrator.in_flight == 1

        await orchestrator.drain()

        polled = await orchestrator.get(job.id)
        assert polled.status == JobStatus.COMPLETED
        assert polled.result.assigned_id == "v9"
        assert orchestrator.in_flight == 0

    @pytest.mark.asyncio
    async def test_each_job_runs_exactly_once(self, store: RecordingJobStore) -> None:
        relay = ScriptedRelay(ok_result(), ok_result())
        orchestrator = _orchestrator(store, relay)
        request = _request()
        job = Job.from_request(request)
        await store.add(job)

        orchestrator._launch(job, request)
        with pytest.raises(RuntimeError):
            orchestrator._launch(job, request)
        await orchestrator.drain()

        assert relay.calls == 1
        with pytest.raises(RuntimeError):
            orchestrator._launch(job, request)

    @pytest.mark.asyncio
    async def test_sync_caller_cancellation_does_not_abort_job(
        self, store: RecordingJobStore
    ) -> None:
        gate = asyncio.Event()

        async def slow_relay(transfer):
            await gate.wait()
            return ok_result("late")

        orchestrator = UploadOrchestrator(
            store=store,
            resolve_fn=StaticResolver(),
            relay_fn=slow_relay,
            sleep_fn=SleepRecorder(),
        )
        caller = asyncio.create_task(orchestrator.submit_and_wait(_request()))
        await asyncio.sleep(0)
        await asyncio.sleep(0)
        caller.cancel()
        with pytest.raises(asyncio.CancelledError):
            await caller

        gate.set()
        await orchestrator.drain()

        (job_id,) = store.history
        assert (await store.get(job_id)).status == JobStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_concurrent_jobs_progress_independently(
        self, store: RecordingJobStore
    ) -> None:
        relay = ScriptedRelay(UpstreamRejected("no"), ok_result("b"))
        orchestrator = _orchestrator(store, relay)

        first = await orchestrator.submit(_request(source_url="https://a/1"))
        second = await orchestrator.submit(_request(source_url="https://a/2"))
        await orchestrator.drain()

        statuses = {
            (await orchestrator.get(first.id)).status,
            (await orchestrator.get(second.id)).status,
        }
        assert statuses == {JobStatus.FAILED, JobStatus.COMPLETED}


class TestLifecycle:
    """Eviction sweep and start/stop."""

    @pytest.mark.asyncio
    async def test_sweep_evicts_oldest(self) -> None:
        store = InMemoryJobStore(max_jobs=2)
        relay = ScriptedRelay(ok_result(), ok_result(), ok_result())
        orchestrator = _orchestrator(store, relay)

        jobs = [await orchestrator.submit_and_wait(_request()) for _ in range(3)]
        evicted = await orchestrator.sweep()

        assert evicted == [jobs[0].id]
        assert await orchestrator.get(jobs[0].id) is None
        assert await orchestrator.get(jobs[2].id) is not None

    @pytest.mark.asyncio
    async def test_start_and_stop(self, store: RecordingJobStore) -> None:
        orchestrator = UploadOrchestrator(
            store=store,
            resolve_fn=StaticResolver(),
            relay_fn=ScriptedRelay(ok_result()),
            eviction_interval_s=0.01,
        )
        await orchestrator.start()
        await orchestrator.submit(_request())
        await orchestrator.stop(grace_s=1.0)

        assert orchestrator.in_flight == 0

    @pytest.mark.asyncio
    async def test_cancelled_job_is_recorded_as_failed(
        self, store: RecordingJobStore
    ) -> None:
        """A task cancelled mid-upload still leaves a terminal job behind."""
        started = asyncio.Event()

        async def hanging_relay(transfer):
            started.set()
            await asyncio.Event().wait()

        orchestrator = UploadOrchestrator(
            store=store,
            resolve_fn=StaticResolver(),
            relay_fn=hanging_relay,
            sleep_fn=SleepRecorder(),
        )
        job = await orchestrator.submit(_request())
        await started.wait()

        task = orchestrator._tasks[job.id]
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        stored = await orchestrator.get(job.id)
        assert stored.status == JobStatus.FAILED
        assert stored.error.code == "cancelled"
        assert stored.completed_at is not None
        assert store.statuses(job.id) == ["pending", "downloading", "uploading", "failed"]

    def test_requires_client_for_http_defaults(self) -> None:
        with pytest.raises(ValueError):
            UploadOrchestrator(store=InMemoryJobStore())
