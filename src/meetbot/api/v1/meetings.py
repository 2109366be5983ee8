"""Meeting event, chat command and configuration endpoints.

Meeting events are delivered by the hosting bot adapter when the platform
reports a meeting starting or ending, participants joining, or a chat
message addressed to the bot.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

import structlog
from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from src.meetbot.api.deps import get_config_service, get_lifecycle_controller
from src.meetbot.meetings.exceptions import MeetingStartError
from src.meetbot.meetings.schemas import MeetingConfiguration, Participant

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/v1/meetings", tags=["meetings"])


# ── Request/Response Schemas ─────────────────────────────────────────────────


class MeetingStartRequest(BaseModel):
    tenant_id: str
    start_time: datetime | None = None
    organizer_id: str | None = None
    chat_id: str | None = None


class MeetingStateResponse(BaseModel):
    meeting_id: str
    tenant_id: str
    start_time: datetime
    end_time: datetime | None = None
    participant_ids: list[str] = Field(default_factory=list)
    configuration: MeetingConfiguration


class ParticipantsJoinedRequest(BaseModel):
    participants: list[Participant] = Field(min_length=1)


class CommandRequest(BaseModel):
    text: str


class CommandResponse(BaseModel):
    reply: str


# ── Lifecycle Events ─────────────────────────────────────────────────────────


@router.post("/{meeting_id}/start", response_model=MeetingStateResponse)
async def start_meeting(
    meeting_id: str,
    body: MeetingStartRequest,
    controller: Any = Depends(get_lifecycle_controller),
) -> MeetingStateResponse:
    """Begin transcript capture and periodic summaries for a meeting."""
    try:
        state = await controller.start_meeting(
            meeting_id,
            tenant_id=body.tenant_id,
            start_time=body.start_time,
            organizer_id=body.organizer_id,
            chat_id=body.chat_id,
        )
    except MeetingStartError as exc:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=str(exc),
        ) from exc
    return MeetingStateResponse.model_validate(state.model_dump())


@router.post("/{meeting_id}/end")
async def end_meeting(
    meeting_id: str,
    controller: Any = Depends(get_lifecycle_controller),
) -> dict:
    """Flush a final summary and stop serving the meeting."""
    ended = await controller.end_meeting(meeting_id)
    if not ended:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Meeting {meeting_id} is not active",
        )
    return {"status": "ended", "meeting_id": meeting_id}


@router.post("/{meeting_id}/participants")
async def participants_joined(
    meeting_id: str,
    body: ParticipantsJoinedRequest,
    controller: Any = Depends(get_lifecycle_controller),
) -> dict:
    """Record joining participants; late joiners get a catch-up card."""
    if not controller.is_active(meeting_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Meeting {meeting_id} is not active",
        )
    delivered = await controller.participants_joined(meeting_id, body.participants)
    return {"recorded": len(body.participants), "catch_up_delivered": delivered}


@router.post("/{meeting_id}/commands", response_model=CommandResponse)
async def handle_command(
    meeting_id: str,
    body: CommandRequest,
    controller: Any = Depends(get_lifecycle_controller),
) -> CommandResponse:
    """Answer a chat command (help, status, summary) addressed to the bot."""
    reply = await controller.handle_command(meeting_id, body.text)
    return CommandResponse(reply=reply)


# ── Configuration ────────────────────────────────────────────────────────────


@router.get("/{meeting_id}/configuration", response_model=MeetingConfiguration)
async def get_configuration(
    meeting_id: str,
    config_service: Any = Depends(get_config_service),
) -> MeetingConfiguration:
    return await config_service.get(meeting_id)


@router.put("/{meeting_id}/configuration", response_model=MeetingConfiguration)
async def update_configuration(
    meeting_id: str,
    body: MeetingConfiguration,
    config_service: Any = Depends(get_config_service),
    controller: Any = Depends(get_lifecycle_controller),
) -> MeetingConfiguration:
    """Replace a meeting's configuration. Out-of-range values are rejected with 422."""
    configuration = await config_service.update(meeting_id, body)
    controller.apply_configuration(meeting_id, configuration)
    return configuration
