"""Health check endpoints.

/health is liveness only. /health/ready gates on Redis, which holds every
stored summary; the database (per-meeting configuration) and the LLM keys
are reported but do not gate, since meetings run on default configuration
and queue nothing when summaries cannot be generated.
"""

from __future__ import annotations

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy import text

from src.meetbot.config import get_settings
from src.meetbot.core.database import get_engine
from src.meetbot.core.redis import ping_redis

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check():
    """Liveness: the process is up. No dependencies are touched."""
    settings = get_settings()
    return {"status": "ok", "environment": settings.ENVIRONMENT.value}


async def _check_database() -> str | None:
    try:
        async with get_engine().connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception as exc:
        return str(exc) or exc.__class__.__name__
    return None


@router.get("/health/ready")
async def readiness_check(request: Request):
    """Readiness plus a snapshot of the meeting services."""
    checks: dict = {}

    redis_error = await ping_redis()
    checks["redis"] = "ok" if redis_error is None else "error"
    if redis_error:
        checks["redis_error"] = redis_error

    database_error = await _check_database()
    checks["database"] = "ok" if database_error is None else "degraded"
    if database_error:
        checks["database_error"] = database_error

    settings = get_settings()
    checks["llm"] = "ok" if (settings.ANTHROPIC_API_KEY or settings.OPENAI_API_KEY) else "no_keys"

    state = request.app.state
    store = getattr(state, "summary_store", None)
    controller = getattr(state, "lifecycle_controller", None)
    checks["summary_overflow"] = store.overflow_size if store is not None else None
    checks["active_meetings"] = controller.active_meeting_count if controller is not None else None
    checks["webhook_ingestion"] = getattr(state, "webhook_strategy", None) is not None

    ready = redis_error is None and store is not None and controller is not None
    return JSONResponse(
        status_code=status.HTTP_200_OK if ready else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"status": "ready" if ready else "degraded", "checks": checks},
    )
