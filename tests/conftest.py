"""Shared fixtures for meeting intelligence tests.

Provides:
- buffer: a fresh TranscriptBuffer
- backend: InMemorySummaryBackend with switchable outages
- mock_platform: AsyncMock standing in for PlatformClient
- meeting_state: an active MeetingState with two known participants
"""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from src.meetbot.meetings.schemas import (
    MeetingConfiguration,
    MeetingDetails,
    MeetingState,
    Participant,
)
from src.meetbot.meetings.transcription.buffer import TranscriptBuffer

from tests.factories import MEETING_ID, MEETING_START, InMemorySummaryBackend


@pytest.fixture
def buffer():
    return TranscriptBuffer()


@pytest.fixture
def backend():
    return InMemorySummaryBackend()


@pytest.fixture
def mock_platform():
    """PlatformClient double with a two-person roster."""
    platform = AsyncMock()
    platform.get_participants = AsyncMock(
        return_value=[
            Participant(id="alice", name="Alice", email="alice@example.com"),
            Participant(id="bob", name="Bob", email="bob@example.com"),
        ]
    )
    platform.get_meeting_details = AsyncMock(
        return_value=MeetingDetails(
            meeting_id=MEETING_ID,
            subject="Launch sync",
            organizer_id="organizer-1",
            chat_id="chat-1",
        )
    )
    platform.post_chat_message = AsyncMock(return_value={"id": "msg-1"})
    platform.send_private_notification = AsyncMock(return_value={"id": "msg-2"})
    return platform


@pytest.fixture
def meeting_state():
    return MeetingState(
        meeting_id=MEETING_ID,
        tenant_id="tenant-1",
        start_time=MEETING_START,
        organizer_id="organizer-1",
        chat_id="chat-1",
        participant_ids=["alice", "bob"],
        configuration=MeetingConfiguration(),
    )
