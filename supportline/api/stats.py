"""Routing stats endpoint."""
import logging
from typing import Optional
from fastapi import APIRouter, Depends, Header, HTTPException

from supportline.core.config import settings
from supportline.core.dependencies import get_session_manager
from supportline.services.call_session.manager import CallSessionManager

router = APIRouter()
logger = logging.getLogger(__name__)


async def require_stats_key(x_api_key: Optional[str] = Header(None)) -> None:
    """Require the stats API key when one is configured."""
    if settings.stats_api_key and x_api_key != settings.stats_api_key:
        raise HTTPException(status_code=401, detail="Invalid API key")


@router.get("/api/routing/stats", dependencies=[Depends(require_stats_key)])
async def get_routing_stats(
    session_manager: CallSessionManager = Depends(get_session_manager),
):
    """Routing counters, cache hit rate and gateway retries."""
    return session_manager.get_routing_stats()
