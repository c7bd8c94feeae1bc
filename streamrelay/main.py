"""Stream Relay - FastAPI application.

Relays large videos from a source URL straight into a resumable upload
endpoint, tracking each transfer as a pollable background job.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

import httpx
from fastapi import FastAPI

from streamrelay.config import settings
from streamrelay.api.v1.router import v1_router, upload_router_compat
from streamrelay.api.v1.health import router as health_root_router
from streamrelay.api.v1 import health as health_api
from streamrelay.api.v1 import jobs as jobs_api
from streamrelay.api.v1 import upload as upload_api
from streamrelay.auth.bearer import CredentialExchanger
from streamrelay.jobs.orchestrator import UploadOrchestrator
from streamrelay.jobs.store import InMemoryJobStore
from streamrelay.logging_config import configure_logging
from streamrelay.transfer.relay import RelayConfig
from streamrelay.transfer.retry import RetryPolicy

logger = logging.getLogger(__name__)


def wire_routes(
    orchestrator: Optional[UploadOrchestrator],
    exchanger: Optional[CredentialExchanger] = None,
) -> None:
    """Hand the orchestrator (and an optional credential exchanger) to every router module."""
    health_api.set_orchestrator(orchestrator)
    jobs_api.set_orchestrator(orchestrator)
    jobs_api.set_credential_exchanger(exchanger)
    upload_api.set_orchestrator(orchestrator)


def build_orchestrator(client: httpx.AsyncClient) -> UploadOrchestrator:
    return UploadOrchestrator(
        store=InMemoryJobStore(max_jobs=settings.job_retention_max),
        client=client,
        policy=RetryPolicy.from_settings(settings),
        relay_config=RelayConfig.from_settings(settings),
        probe_timeout_s=settings.probe_timeout_s,
        eviction_interval_s=settings.eviction_interval_s,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown logic."""
    configure_logging(level=settings.log_level, service_name=settings.service_name)

    # One pooled client shared by every probe, download and upload
    client = httpx.AsyncClient()
    orchestrator = build_orchestrator(client)
    await orchestrator.start()
    wire_routes(orchestrator)

    logger.info(
        "Stream relay started",
        extra={
            "port": settings.port,
            "max_attempts": settings.max_attempts,
            "job_retention_max": settings.job_retention_max,
        },
    )

    yield

    logger.info("Shutting down stream relay")
    await orchestrator.stop(grace_s=settings.shutdown_grace_s)
    await client.aclose()


app = FastAPI(
    title="Stream Relay",
    description="Streams videos from a source URL into resumable upload endpoints",
    version="0.1.0",
    lifespan=lifespan,
)

# Mount routers
app.include_router(health_root_router, tags=["health"])  # GET /health at root
app.include_router(v1_router)  # All /api/v1/* endpoints
app.include_router(upload_router_compat)  # /upload, /job/{id} compat layer


def run() -> None:
    import uvicorn

    uvicorn.run("streamrelay.main:app", host="0.0.0.0", port=settings.port)
