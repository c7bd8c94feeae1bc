"""Transfer job API: submit an upload, poll its status."""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Header, HTTPException
from fastapi.responses import JSONResponse
from pydantic import AliasChoices, BaseModel, Field

from streamrelay.auth.bearer import ClientCredentials, CredentialExchanger, resolve_bearer_token
from streamrelay.config import settings
from streamrelay.jobs.models import Job, JobStatus, UploadRequest
from streamrelay.transfer.errors import InvalidUploadRequest

router = APIRouter()

# These will be set by main.py during lifespan
_orchestrator = None
_credential_exchanger: Optional[CredentialExchanger] = None


def set_orchestrator(orchestrator):
    global _orchestrator
    _orchestrator = orchestrator


def set_credential_exchanger(exchanger: Optional[CredentialExchanger]):
    global _credential_exchanger
    _credential_exchanger = exchanger


class UploadRequestBody(BaseModel):
    """Upload submission. Also accepts the legacy camelCase names."""

    source_url: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("source_url", "videoUrl")
    )
    destination_url: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("destination_url", "uploadUrl")
    )
    auth_token: Optional[str] = Field(
        default=None, repr=False, validation_alias=AliasChoices("auth_token", "oauthToken")
    )
    content_type: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("content_type", "contentType")
    )
    content_length: Optional[int] = Field(
        default=None, ge=0, validation_alias=AliasChoices("content_length", "contentLength")
    )
    metadata: Optional[Dict[str, Any]] = Field(
        default=None, validation_alias=AliasChoices("metadata", "videoMetadata")
    )
    sync: bool = Field(default=False, validation_alias=AliasChoices("sync", "synchronous"))

    # Credential triple for the external exchange
    client_id: Optional[str] = Field(default=None, validation_alias=AliasChoices("client_id", "clientId"))
    client_secret: Optional[str] = Field(
        default=None, repr=False, validation_alias=AliasChoices("client_secret", "clientSecret")
    )
    refresh_token: Optional[str] = Field(
        default=None, repr=False, validation_alias=AliasChoices("refresh_token", "refreshToken")
    )

    def credentials(self) -> Optional[ClientCredentials]:
        if self.client_id and self.client_secret and self.refresh_token:
            return ClientCredentials(self.client_id, self.client_secret, self.refresh_token)
        return None


async def build_upload_request(
    body: UploadRequestBody,
    authorization: Optional[str],
) -> UploadRequest:
    """Validate a submission into an UploadRequest. Raises InvalidUploadRequest."""
    token = await resolve_bearer_token(
        body_token=body.auth_token,
        authorization=authorization,
        credentials=body.credentials(),
        exchanger=_credential_exchanger,
    )
    return UploadRequest.accept(
        body.source_url,
        body.destination_url,
        token,
        content_type=body.content_type or settings.default_content_type,
        content_length=body.content_length,
        synchronous=body.sync,
        metadata=body.metadata,
    )


def validation_error_response(exc: InvalidUploadRequest) -> JSONResponse:
    return JSONResponse(
        status_code=400,
        content={"error": str(exc), "required": exc.required},
    )


def job_payload(job: Job) -> Dict[str, Any]:
    return job.model_dump(mode="json")


def terminal_status_code(job: Job) -> int:
    """HTTP status for a synchronous submission's final answer."""
    return 201 if job.status == JobStatus.COMPLETED else 502


@router.post("/jobs")
async def submit_job(
    body: UploadRequestBody,
    authorization: Optional[str] = Header(None),
):
    """Start relaying a source URL to an upload URL.

    Async (default): 202 with the job id to poll.
    Sync: held open until the job finishes; 201 on success, 502 on failure.
    """
    if _orchestrator is None:
        raise HTTPException(status_code=503, detail="Upload orchestrator not initialized")

    try:
        request = await build_upload_request(body, authorization)
    except InvalidUploadRequest as exc:
        return validation_error_response(exc)

    if request.synchronous:
        job = await _orchestrator.submit_and_wait(request)
        return JSONResponse(status_code=terminal_status_code(job), content=job_payload(job))

    job = await _orchestrator.submit(request)
    return JSONResponse(
        status_code=202,
        content={
            "job_id": job.id,
            "status": "accepted",
            "message": "Upload started. Poll GET /api/v1/jobs/{id} for status.",
            "poll_url": f"/api/v1/jobs/{job.id}",
        },
    )


@router.get("/jobs/{job_id}")
async def get_job_status(job_id: str):
    """Get the current snapshot of a job."""
    if _orchestrator is None:
        raise HTTPException(status_code=503, detail="Upload orchestrator not initialized")

    job = await _orchestrator.get(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Job not found")
    return job_payload(job)
