"""FastAPI dependency injection for services and requester identity.

Services are created once in the application lifespan and kept on
``app.state``; a missing service means its initialisation failed, which
endpoints report as 503.
"""

from __future__ import annotations

from typing import Any

from fastapi import HTTPException, Request, status

from src.meetbot.core.security import verify_token


def _get_state_service(request: Request, name: str, label: str) -> Any:
    service = getattr(request.app.state, name, None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"{label} not initialized",
        )
    return service


def get_lifecycle_controller(request: Request) -> Any:
    """Retrieve MeetingLifecycleController from app.state, 503 if not available."""
    return _get_state_service(request, "lifecycle_controller", "Meeting lifecycle controller")


def get_summary_store(request: Request) -> Any:
    """Retrieve SummaryStore from app.state, 503 if not available."""
    return _get_state_service(request, "summary_store", "Summary store")


def get_config_service(request: Request) -> Any:
    """Retrieve MeetingConfigService from app.state, 503 if not available."""
    return _get_state_service(request, "config_service", "Configuration service")


def get_webhook_strategy(request: Request) -> Any:
    """Retrieve WebhookTranscriptionStrategy from app.state, 503 if not available."""
    return _get_state_service(request, "webhook_strategy", "Webhook ingestion")


async def get_requester_id(request: Request) -> str:
    """Identity of the caller: the ``sub`` claim of the bearer token.

    Raises:
        HTTPException(401): Missing or invalid bearer token.
    """
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    payload = verify_token(auth_header[7:])
    return payload["sub"]
