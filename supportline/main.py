"""Main FastAPI application."""
import logging
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from supportline.api import health, stats
from supportline.api.webhooks import sms, stream, voice
from supportline.core.config import settings
from supportline.core.dependencies import build_session_manager
from supportline.core.errors import InvalidRequest
from supportline.core.logging import setup_logging
from supportline.db.database import AsyncSessionLocal, init_db

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    # Startup
    setup_logging()
    await init_db()
    http_client = httpx.AsyncClient(timeout=settings.gateway_timeout_seconds)
    session_manager = build_session_manager(settings, http_client, session_factory=AsyncSessionLocal)
    session_manager.router.cache.start_sweeper(settings.cache_sweep_interval_seconds)
    app.state.session_manager = session_manager
    logger.info(f"[STARTUP] {settings.support_line_name} voice core ready")
    yield
    # Shutdown
    await session_manager.shutdown()
    await session_manager.router.cache.stop_sweeper()
    await http_client.aclose()
    logger.info("[SHUTDOWN] Voice core stopped")


app = FastAPI(
    title="Support Line Voice Core",
    description="Conversational core for a telephone support line",
    version="0.1.0",
    lifespan=lifespan,
)


@app.exception_handler(InvalidRequest)
async def invalid_request_handler(request: Request, exc: InvalidRequest):
    logger.warning(f"[API] Invalid request to {request.url.path}: {exc}")
    return JSONResponse(status_code=400, content={"detail": str(exc)})


app.include_router(health.router, tags=["health"])
app.include_router(voice.router, prefix="/webhooks", tags=["webhooks"])
app.include_router(sms.router, prefix="/webhooks", tags=["webhooks"])
app.include_router(stream.router, prefix="/webhooks", tags=["webhooks"])
app.include_router(stats.router, tags=["stats"])
