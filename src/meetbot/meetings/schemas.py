"""Pydantic v2 schemas for the meeting intelligence domain.

Defines the data contracts shared by transcript ingestion, the segment
buffer, summarization, summary storage, late-joiner catch-up and the
meeting lifecycle controller.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator


# ── Enums ────────────────────────────────────────────────────────────────────


class TranscriptMethod(str, Enum):
    """How live transcript content reaches the buffer."""

    POLLING = "polling"
    WEBHOOK = "webhook"


# ── Transcript ───────────────────────────────────────────────────────────────


class TranscriptSegment(BaseModel):
    """One utterance of live transcript. Immutable once created."""

    model_config = ConfigDict(frozen=True)

    meeting_id: str
    speaker_id: str = ""
    speaker_name: str = ""
    text: str
    timestamp: datetime
    is_final: bool = True

    @field_validator("meeting_id")
    @classmethod
    def _meeting_id_not_empty(cls, value: str) -> str:
        if not value:
            raise ValueError("meeting_id must not be empty")
        return value


# ── Configuration ────────────────────────────────────────────────────────────


class MeetingConfiguration(BaseModel):
    """Per-meeting behaviour settings.

    Out-of-range values are rejected at construction and on assignment, so a
    configuration instance is never partially applied.
    """

    model_config = ConfigDict(validate_assignment=True)

    summary_interval_minutes: int = Field(
        10, ge=5, le=30, description="Minutes between periodic summaries"
    )
    auto_post_to_chat: bool = Field(True, description="Post each summary to the meeting chat")
    late_joiner_notifications: bool = Field(
        True, description="Send catch-up summaries to late joiners"
    )
    retention_days: int = Field(
        30, ge=30, le=365, description="How long persisted summaries are kept"
    )
    transcript_method: TranscriptMethod = TranscriptMethod.POLLING


# ── Participants & Meetings ──────────────────────────────────────────────────


class Participant(BaseModel):
    """A meeting attendee as reported by the platform or a join event."""

    id: str
    name: str = ""
    email: str | None = None
    join_time: datetime | None = None


class MeetingDetails(BaseModel):
    """Meeting metadata fetched from the platform."""

    meeting_id: str
    subject: str = ""
    start_time: datetime | None = None
    end_time: datetime | None = None
    organizer_id: str | None = None
    chat_id: str | None = None


class MeetingState(BaseModel):
    """Runtime record of a meeting the bot is actively serving.

    Owned by the lifecycle controller from meeting start to meeting end.
    """

    meeting_id: str
    tenant_id: str
    start_time: datetime
    end_time: datetime | None = None
    organizer_id: str | None = None
    chat_id: str | None = None
    participant_ids: list[str] = Field(default_factory=list)
    configuration: MeetingConfiguration = Field(default_factory=MeetingConfiguration)

    def add_participant(self, participant_id: str) -> None:
        """Record a participant once, preserving join order."""
        if participant_id and participant_id not in self.participant_ids:
            self.participant_ids.append(participant_id)


# ── Summaries ────────────────────────────────────────────────────────────────


class ActionItem(BaseModel):
    """An action item extracted from a summarized transcript span."""

    model_config = ConfigDict(frozen=True)

    description: str
    assigned_to: str | None = None


class Summary(BaseModel):
    """A generated summary of one transcript span. Immutable after creation.

    ``id``, ``created_at`` and ``ttl_seconds`` are assigned by the summary
    store when left unset.
    """

    model_config = ConfigDict(frozen=True)

    id: str | None = None
    meeting_id: str
    tenant_id: str = ""
    period_start: datetime
    period_end: datetime
    content: str
    key_topics: list[str] = Field(default_factory=list)
    decisions: list[str] = Field(default_factory=list)
    action_items: list[ActionItem] = Field(default_factory=list)
    participants: list[str] = Field(default_factory=list)
    created_at: datetime | None = None
    ttl_seconds: int | None = None
    degraded: bool = Field(
        False, description="True when persisted with no participant list (unreadable)"
    )


class SummaryOptions(BaseModel):
    """Knobs for a single summarization call."""

    max_output_tokens: int = 2000
    temperature: float = Field(0.7, ge=0.0, le=2.0)
    include_key_topics: bool = True
    include_decisions: bool = True
    include_action_items: bool = True
