"""Health check endpoint."""

from datetime import datetime, timezone

from fastapi import APIRouter

router = APIRouter()

# Set by main.py during lifespan
_orchestrator = None


def set_orchestrator(orchestrator):
    global _orchestrator
    _orchestrator = orchestrator


@router.get("/health")
async def health_check():
    """Liveness plus job store occupancy."""
    response = {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
    if _orchestrator is not None:
        response["jobs"] = await _orchestrator.store.count()
        response["in_flight"] = _orchestrator.in_flight
    return response
