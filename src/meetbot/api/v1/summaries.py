"""Summary read and deletion endpoints.

Every read is made on behalf of the bearer token's subject and only returns
summaries that subject participated in. Listing a meeting the requester does
not belong to is a 403, which is distinct from an empty 200 list for a
member with nothing readable (yet).
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, status

from src.meetbot.api.deps import get_requester_id, get_summary_store
from src.meetbot.meetings.exceptions import (
    AccessCheckUnavailableError,
    AccessDeniedError,
    StorageUnavailableError,
    SummaryNotFoundError,
)
from src.meetbot.meetings.schemas import Summary

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/v1", tags=["summaries"])


def _to_http_error(exc: Exception) -> HTTPException:
    if isinstance(exc, AccessDeniedError):
        return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied")
    if isinstance(exc, SummaryNotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Summary not found")
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail="Summary storage or membership check unavailable",
    )


_READ_ERRORS = (
    AccessDeniedError,
    SummaryNotFoundError,
    AccessCheckUnavailableError,
    StorageUnavailableError,
)


@router.get("/summaries/{summary_id}", response_model=Summary)
async def get_summary(
    summary_id: str,
    requester_id: str = Depends(get_requester_id),
    store: Any = Depends(get_summary_store),
) -> Summary:
    try:
        return await store.get(summary_id, requester_id=requester_id)
    except _READ_ERRORS as exc:
        raise _to_http_error(exc) from exc


@router.get("/meetings/{meeting_id}/summaries", response_model=list[Summary])
async def list_summaries(
    meeting_id: str,
    start: datetime | None = Query(None, description="Earliest period start"),
    end: datetime | None = Query(None, description="Latest period end"),
    requester_id: str = Depends(get_requester_id),
    store: Any = Depends(get_summary_store),
) -> list[Summary]:
    """Summaries of a meeting the requester may read, oldest first."""
    try:
        return await store.list_for_meeting(
            meeting_id, requester_id=requester_id, start=start, end=end
        )
    except _READ_ERRORS as exc:
        raise _to_http_error(exc) from exc


@router.get("/meetings/{meeting_id}/summaries/search", response_model=list[Summary])
async def search_summaries(
    meeting_id: str,
    q: str = Query(..., min_length=1, description="Case-insensitive search text"),
    requester_id: str = Depends(get_requester_id),
    store: Any = Depends(get_summary_store),
) -> list[Summary]:
    try:
        return await store.search(meeting_id, q, requester_id=requester_id)
    except _READ_ERRORS as exc:
        raise _to_http_error(exc) from exc


@router.delete("/meetings/{meeting_id}/summaries")
async def delete_summaries(
    meeting_id: str,
    requester_id: str = Depends(get_requester_id),
    store: Any = Depends(get_summary_store),
) -> dict:
    """Delete all of a meeting's summaries. Requires meeting membership."""
    try:
        await store.list_for_meeting(meeting_id, requester_id=requester_id)
        removed = await store.delete_for_meeting(meeting_id)
    except _READ_ERRORS as exc:
        raise _to_http_error(exc) from exc
    logger.info("summaries.deleted", meeting_id=meeting_id, requester_id=requester_id, removed=removed)
    return {"meeting_id": meeting_id, "deleted": removed}
