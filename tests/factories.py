"""Builders and in-memory doubles shared across test modules."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from src.meetbot.meetings.exceptions import StorageUnavailableError
from src.meetbot.meetings.schemas import Summary, TranscriptSegment

MEETING_ID = "meeting-123"
MEETING_START = datetime(2026, 3, 2, 14, 0, tzinfo=timezone.utc)


def make_segment(
    text: str = "Let's get started.",
    meeting_id: str = MEETING_ID,
    speaker: str = "Alice",
    at: datetime | None = None,
) -> TranscriptSegment:
    return TranscriptSegment(
        meeting_id=meeting_id,
        speaker_id=speaker,
        speaker_name=speaker,
        text=text,
        timestamp=at or datetime.now(timezone.utc),
    )


def make_summary(
    meeting_id: str = MEETING_ID,
    start_offset_minutes: int = 0,
    length_minutes: int = 10,
    participants: list[str] | None = None,
    content: str = "The team reviewed the launch plan.",
    **extra,
) -> Summary:
    start = MEETING_START + timedelta(minutes=start_offset_minutes)
    return Summary(
        meeting_id=meeting_id,
        tenant_id="tenant-1",
        period_start=start,
        period_end=start + timedelta(minutes=length_minutes),
        content=content,
        participants=participants if participants is not None else ["alice", "bob"],
        **extra,
    )


class InMemorySummaryBackend:
    """Dict-backed SummaryBackend.

    ``fail_writes`` makes the next N upserts raise StorageUnavailableError;
    ``down`` makes every call raise until cleared.
    """

    def __init__(self) -> None:
        self.summaries: dict[str, Summary] = {}
        self.upsert_calls = 0
        self.fail_writes = 0
        self.down = False

    def _check(self) -> None:
        if self.down:
            raise StorageUnavailableError("backend down")

    async def upsert(self, summary: Summary) -> None:
        self.upsert_calls += 1
        self._check()
        if self.fail_writes > 0:
            self.fail_writes -= 1
            raise StorageUnavailableError("write failed")
        self.summaries[summary.id] = summary

    async def get(self, summary_id: str) -> Summary | None:
        self._check()
        return self.summaries.get(summary_id)

    async def query_meeting(self, meeting_id: str) -> list[Summary]:
        self._check()
        return sorted(
            (s for s in self.summaries.values() if s.meeting_id == meeting_id),
            key=lambda s: s.period_start,
        )

    async def delete_meeting(self, meeting_id: str) -> int:
        self._check()
        doomed = [sid for sid, s in self.summaries.items() if s.meeting_id == meeting_id]
        for sid in doomed:
            del self.summaries[sid]
        return len(doomed)
