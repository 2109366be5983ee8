"""V1 API router -- aggregates all v1 endpoint routers."""

from __future__ import annotations

from fastapi import APIRouter

from src.meetbot.api.v1 import health, meetings, notifications, summaries

router = APIRouter()

router.include_router(health.router)
router.include_router(notifications.router)
router.include_router(meetings.router)
router.include_router(summaries.router)
