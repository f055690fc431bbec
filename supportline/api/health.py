"""Health check endpoint."""
import logging
from fastapi import APIRouter, Request

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/health")
async def health_check(request: Request):
    """Liveness plus whether the call core is wired up."""
    manager = getattr(request.app.state, "session_manager", None)
    logger.debug(f"[HEALTH] Health check - Core ready: {manager is not None}")
    return {
        "status": "healthy",
        "core_ready": manager is not None,
    }
