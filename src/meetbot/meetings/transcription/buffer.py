"""Bounded per-meeting FIFO buffer of live transcript segments.

Producers (ingestion strategies) append, the summarization orchestrator
snapshots and acknowledges. Each meeting owns an independent deque capped at
MAX_SEGMENTS_PER_MEETING; appending to a full deque evicts the oldest segment.

All operations are safe to call from concurrent producers and consumers
(asyncio tasks or threads) without external locking.
"""

from __future__ import annotations

import threading
from collections import deque
from datetime import datetime, timedelta, timezone

import structlog

from src.meetbot.core.monitoring import transcript_buffer_evictions_total
from src.meetbot.meetings.schemas import TranscriptSegment

logger = structlog.get_logger(__name__)

MAX_SEGMENTS_PER_MEETING = 1000


class TranscriptBuffer:
    """Thread-safe map of meeting id to a bounded segment queue."""

    def __init__(self, max_segments: int = MAX_SEGMENTS_PER_MEETING) -> None:
        self._max_segments = max_segments
        self._queues: dict[str, deque[TranscriptSegment]] = {}
        self._lock = threading.Lock()

    @staticmethod
    def _require_meeting_id(meeting_id: str) -> None:
        if not meeting_id:
            raise ValueError("meeting_id must not be empty")

    def add_segment(self, meeting_id: str, segment: TranscriptSegment) -> None:
        """Append a segment, evicting the meeting's oldest one when full.

        Raises:
            ValueError: If meeting_id is empty or segment is None.
        """
        self._require_meeting_id(meeting_id)
        if segment is None:
            raise ValueError("segment must not be None")

        evicted: TranscriptSegment | None = None
        with self._lock:
            queue = self._queues.setdefault(meeting_id, deque())
            if len(queue) >= self._max_segments:
                evicted = queue.popleft()
            queue.append(segment)

        if evicted is not None:
            transcript_buffer_evictions_total.inc()
            logger.warning(
                "buffer.segment_evicted",
                meeting_id=meeting_id,
                evicted_timestamp=evicted.timestamp.isoformat(),
                capacity=self._max_segments,
            )

    def get_segments(
        self,
        meeting_id: str,
        duration: timedelta | None = None,
    ) -> list[TranscriptSegment]:
        """Return a snapshot copy of the meeting's segments in insertion order.

        With ``duration``, only segments stamped at or after ``now - duration``
        are returned. An unknown meeting yields an empty list.
        """
        self._require_meeting_id(meeting_id)
        with self._lock:
            queue = self._queues.get(meeting_id)
            snapshot = list(queue) if queue else []

        if duration is not None:
            cutoff = datetime.now(timezone.utc) - duration
            snapshot = [s for s in snapshot if s.timestamp >= cutoff]
        return snapshot

    def has_segments(self, meeting_id: str) -> bool:
        """True when the meeting has at least one buffered segment."""
        self._require_meeting_id(meeting_id)
        with self._lock:
            return bool(self._queues.get(meeting_id))

    def segment_count(self, meeting_id: str) -> int:
        """Number of segments currently buffered for the meeting."""
        self._require_meeting_id(meeting_id)
        with self._lock:
            queue = self._queues.get(meeting_id)
            return len(queue) if queue else 0

    def clear_buffer(self, meeting_id: str) -> None:
        """Discard every segment buffered for the meeting."""
        self._require_meeting_id(meeting_id)
        with self._lock:
            removed = self._queues.pop(meeting_id, None)
        logger.debug(
            "buffer.cleared",
            meeting_id=meeting_id,
            removed=len(removed) if removed else 0,
        )

    def clear_through(self, meeting_id: str, last_segment: TranscriptSegment) -> int:
        """Remove segments from the head up to and including ``last_segment``.

        Used to acknowledge a drained snapshot while keeping anything appended
        after it. If ``last_segment`` is no longer buffered (it was evicted),
        every segment of the snapshot is already gone and nothing is removed.

        Returns:
            Number of segments removed.
        """
        self._require_meeting_id(meeting_id)
        with self._lock:
            queue = self._queues.get(meeting_id)
            if not queue or not any(s is last_segment for s in queue):
                return 0
            removed = 0
            while queue:
                segment = queue.popleft()
                removed += 1
                if segment is last_segment:
                    break
            if not queue:
                del self._queues[meeting_id]
            return removed
