"""Common contract for transcript ingestion strategies.

A strategy turns a meeting id into a stream of TranscriptSegment objects
appended to the shared TranscriptBuffer. Strategies are long-lived and serve
many meetings at once; ``start``/``stop`` manage one meeting's ingestion.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Hashable

import structlog

from src.meetbot.core.monitoring import transcript_segments_total
from src.meetbot.meetings.schemas import TranscriptMethod
from src.meetbot.meetings.transcription.buffer import TranscriptBuffer
from src.meetbot.meetings.transcription.vtt import parse_vtt

logger = structlog.get_logger(__name__)


class TranscriptionStrategy(ABC):
    """Base class for polling and webhook ingestion.

    Tracks, per cursor key, how many cues of a cumulative transcript have
    already been buffered, so re-reading the same transcript only feeds the
    cues that are new since the previous read.
    """

    method: TranscriptMethod

    def __init__(self, buffer: TranscriptBuffer) -> None:
        self._buffer = buffer
        self._cursors: dict[Hashable, int] = {}

    @abstractmethod
    async def start(self, meeting_id: str) -> None:
        """Begin ingesting transcript content for a meeting."""

    @abstractmethod
    async def stop(self, meeting_id: str) -> None:
        """Stop ingesting for a meeting and release provider resources."""

    def _ingest(self, meeting_id: str, cursor_key: Hashable, content: str) -> int:
        """Parse cumulative VTT content and buffer the cues not seen before.

        Returns:
            Number of segments appended.
        """
        segments = parse_vtt(content, meeting_id)
        seen = self._cursors.get(cursor_key, 0)
        new_segments = segments[seen:]
        for segment in new_segments:
            self._buffer.add_segment(meeting_id, segment)
        self._cursors[cursor_key] = max(seen, len(segments))

        if new_segments:
            transcript_segments_total.labels(method=self.method.value).inc(len(new_segments))
            logger.debug(
                "transcription.segments_ingested",
                meeting_id=meeting_id,
                method=self.method.value,
                count=len(new_segments),
            )
        return len(new_segments)

    def _forget_meeting(self, meeting_id: str) -> None:
        """Drop every cursor belonging to a meeting."""
        for key in list(self._cursors):
            if key == meeting_id or (isinstance(key, tuple) and key and key[0] == meeting_id):
                del self._cursors[key]
