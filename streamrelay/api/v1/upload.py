"""Legacy upload API with camelCase payloads.

Provides the two paths existing automation already calls:
  POST /upload      start relaying videoUrl to uploadUrl
  GET  /job/{id}    poll in camelCase

This is a thin layer over the /api/v1/jobs system. Validation errors list
the camelCase field names, and a failed sync upload answers 500 (the
/api/v1/jobs route answers 502).
"""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Header, HTTPException
from fastapi.responses import JSONResponse

from streamrelay.api.v1.jobs import UploadRequestBody, build_upload_request
from streamrelay.jobs.models import Job, JobStatus
from streamrelay.transfer.errors import InvalidUploadRequest

# Request field names as the legacy callers send them
LEGACY_FIELD_NAMES = {
    "source_url": "videoUrl",
    "destination_url": "uploadUrl",
    "auth_token": "oauthToken",
}

router = APIRouter()

# Wired in during lifespan (same pattern as jobs.py)
_orchestrator = None


def set_orchestrator(orchestrator):
    global _orchestrator
    _orchestrator = orchestrator


# ---------------------------------------------------------------------------
# POST /upload
# ---------------------------------------------------------------------------

@router.post("/upload")
async def upload_video(
    body: UploadRequestBody,
    authorization: Optional[str] = Header(None),
):
    """Relay a video from videoUrl to a resumable uploadUrl.

    Returns:
        202 {jobId, status, message, pollUrl}, or with sync=true the
        finished job (201 completed / 500 failed).
    """
    if _orchestrator is None:
        raise HTTPException(status_code=503, detail="Orchestrator not ready")

    try:
        request = await build_upload_request(body, authorization)
    except InvalidUploadRequest as exc:
        return JSONResponse(
            status_code=400,
            content={
                "error": "Missing required fields",
                "required": [LEGACY_FIELD_NAMES.get(name, name) for name in exc.required],
            },
        )

    if request.synchronous:
        job = await _orchestrator.submit_and_wait(request)
        status_code = 201 if job.status == JobStatus.COMPLETED else 500
        return JSONResponse(status_code=status_code, content=compat_job_payload(job))

    job = await _orchestrator.submit(request)
    return JSONResponse(
        status_code=202,
        content={
            "jobId": job.id,
            "status": "accepted",
            "message": "Upload started. Poll GET /job/:id for status.",
            "pollUrl": f"/job/{job.id}",
        },
    )


# ---------------------------------------------------------------------------
# GET /job/{job_id}
# ---------------------------------------------------------------------------

@router.get("/job/{job_id}")
async def get_job(job_id: str):
    if _orchestrator is None:
        raise HTTPException(status_code=503, detail="Orchestrator not ready")

    job = await _orchestrator.get(job_id)
    if job is None:
        return JSONResponse(status_code=404, content={"error": "Job not found", "jobId": job_id})
    return compat_job_payload(job)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def compat_job_payload(job: Job) -> Dict[str, Any]:
    """Render a job with the legacy camelCase field names."""
    result = None
    if job.result is not None:
        result = {
            "statusCode": job.result.status_code,
            "videoId": job.result.assigned_id,
            "rawResponse": job.result.raw_body,
            "bytesSent": job.result.bytes_sent,
        }

    error = None
    if job.error is not None:
        error = {
            "message": job.error.message,
            "code": job.error.code,
            "statusCode": job.error.status_code,
        }

    return {
        "id": job.id,
        "status": job.status.value,
        "createdAt": job.created_at.isoformat(),
        "completedAt": job.completed_at.isoformat() if job.completed_at else None,
        "videoUrl": job.source_url,
        "videoMetadata": job.metadata,
        "attempts": job.attempts,
        "result": result,
        "error": error,
    }
