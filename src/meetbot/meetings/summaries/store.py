"""Resilient summary store.

Writes go to the durable backend; when the backend is unavailable the summary
is parked in an in-memory overflow queue and ``save`` still returns normally.
Every later successful write drains the queue oldest-first (one drain at a
time), stopping at the first failure with the failed summary kept at the head.
Delivery is at-least-once: writes are upserts by id, so a replayed summary
never duplicates.

Reads apply per-summary access control, and listing a meeting additionally
checks that the requester belongs to that meeting.
"""

from __future__ import annotations

import asyncio
import uuid
from collections import deque
from datetime import datetime, timezone
from typing import Protocol

import structlog

from src.meetbot.core.monitoring import (
    summary_overflow_dropped_total,
    summary_overflow_queue_size,
    summary_store_operations_total,
)
from src.meetbot.meetings.exceptions import (
    AccessDeniedError,
    StorageUnavailableError,
    SummaryNotFoundError,
)
from src.meetbot.meetings.schemas import Summary
from src.meetbot.meetings.summaries.access import (
    SummaryAccessPolicy,
    can_access_summary,
    filter_accessible,
)

logger = structlog.get_logger(__name__)

SECONDS_PER_DAY = 86_400
OVERFLOW_WARN_THRESHOLD = 10
OVERFLOW_HARD_LIMIT = 1000


class SummaryBackend(Protocol):
    """Durable persistence used by SummaryStore.

    Implementations raise StorageUnavailableError when the backing service
    cannot be reached.
    """

    async def upsert(self, summary: Summary) -> None: ...

    async def get(self, summary_id: str) -> Summary | None: ...

    async def query_meeting(self, meeting_id: str) -> list[Summary]: ...

    async def delete_meeting(self, meeting_id: str) -> int: ...


class SummaryStore:
    """Summary persistence with an overflow queue and access-controlled reads.

    Args:
        backend: Durable backend (Redis in production).
        access_policy: Meeting membership checks for list/search.
        default_retention_days: Retention used when ``save`` gets none.
    """

    def __init__(
        self,
        backend: SummaryBackend,
        access_policy: SummaryAccessPolicy,
        default_retention_days: int = 30,
    ) -> None:
        self._backend = backend
        self._access = access_policy
        self._default_retention_days = default_retention_days
        self._overflow: deque[Summary] = deque()
        self._flush_lock = asyncio.Lock()

    @property
    def overflow_size(self) -> int:
        return len(self._overflow)

    # ── Writes ──────────────────────────────────────────────────────────

    async def save(self, summary: Summary, retention_days: int | None = None) -> Summary:
        """Persist a summary, queueing it in memory if the backend is down.

        Assigns ``id``, ``created_at`` and ``ttl_seconds`` when unset.

        Returns:
            The summary as stored (or queued).
        """
        days = retention_days or self._default_retention_days
        prepared = summary.model_copy(
            update={
                "id": summary.id or f"summary-{uuid.uuid4()}",
                "created_at": summary.created_at or datetime.now(timezone.utc),
                "ttl_seconds": summary.ttl_seconds or days * SECONDS_PER_DAY,
            }
        )

        try:
            await self._backend.upsert(prepared)
        except StorageUnavailableError:
            summary_store_operations_total.labels(operation="save", outcome="queued").inc()
            self._enqueue(prepared)
            return prepared

        summary_store_operations_total.labels(operation="save", outcome="success").inc()
        logger.info(
            "store.summary_saved",
            summary_id=prepared.id,
            meeting_id=prepared.meeting_id,
            ttl_seconds=prepared.ttl_seconds,
        )
        await self.flush_overflow()
        return prepared

    def _enqueue(self, summary: Summary) -> None:
        if len(self._overflow) >= OVERFLOW_HARD_LIMIT:
            dropped = self._overflow.popleft()
            summary_overflow_dropped_total.inc()
            logger.critical(
                "store.overflow_data_loss",
                dropped_summary_id=dropped.id,
                dropped_meeting_id=dropped.meeting_id,
                limit=OVERFLOW_HARD_LIMIT,
            )

        self._overflow.append(summary)
        size = len(self._overflow)
        summary_overflow_queue_size.set(size)

        log = logger.error if size > OVERFLOW_WARN_THRESHOLD else logger.warning
        log(
            "store.summary_queued",
            summary_id=summary.id,
            meeting_id=summary.meeting_id,
            overflow_size=size,
        )

    async def flush_overflow(self) -> int:
        """Drain queued summaries oldest-first until empty or a write fails.

        A drain already in progress makes this a no-op.

        Returns:
            Number of summaries written.
        """
        if not self._overflow or self._flush_lock.locked():
            return 0

        flushed = 0
        async with self._flush_lock:
            while self._overflow:
                summary = self._overflow[0]
                try:
                    await self._backend.upsert(summary)
                except StorageUnavailableError:
                    logger.warning(
                        "store.overflow_flush_interrupted",
                        summary_id=summary.id,
                        remaining=len(self._overflow),
                    )
                    break
                # The head may have been dropped by the safety valve meanwhile
                if self._overflow and self._overflow[0] is summary:
                    self._overflow.popleft()
                flushed += 1
            summary_overflow_queue_size.set(len(self._overflow))

        if flushed:
            summary_store_operations_total.labels(operation="flush", outcome="success").inc(flushed)
            logger.info("store.overflow_flushed", flushed=flushed, remaining=len(self._overflow))
        return flushed

    async def delete_for_meeting(self, meeting_id: str) -> int:
        """Remove every stored (and queued) summary of a meeting."""
        queued = [s for s in self._overflow if s.meeting_id == meeting_id]
        for summary in queued:
            self._overflow.remove(summary)
        summary_overflow_queue_size.set(len(self._overflow))

        removed = await self._backend.delete_meeting(meeting_id)
        summary_store_operations_total.labels(operation="delete", outcome="success").inc()
        logger.info(
            "store.meeting_summaries_deleted",
            meeting_id=meeting_id,
            removed=removed,
            removed_queued=len(queued),
        )
        return removed + len(queued)

    # ── Reads ───────────────────────────────────────────────────────────

    async def get(self, summary_id: str, requester_id: str | None = None) -> Summary:
        """Fetch one summary.

        Raises:
            SummaryNotFoundError: No such summary (or it expired).
            AccessDeniedError: The requester is not on its participant list.
        """
        summary = await self._backend.get(summary_id)
        if summary is None:
            raise SummaryNotFoundError(summary_id)
        if requester_id is not None and not can_access_summary(requester_id, summary):
            logger.info("store.access_denied", summary_id=summary_id, requester_id=requester_id)
            raise AccessDeniedError(requester_id, f"summary {summary_id}")
        return summary

    async def list_for_meeting(
        self,
        meeting_id: str,
        requester_id: str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[Summary]:
        """Summaries of a meeting within ``[start, end]``, ordered by period start.

        A summary is in range when it starts at or after ``start`` and ends at
        or before ``end``. Without a requester no access filtering is applied
        (internal callers such as catch-up).

        Raises:
            AccessDeniedError: The requester is not a member of the meeting.
        """
        summaries = await self._backend.query_meeting(meeting_id)

        if requester_id is not None:
            await self._access.validate_meeting_access(requester_id, meeting_id, summaries)
            summaries = filter_accessible(requester_id, summaries)

        if start is not None:
            summaries = [s for s in summaries if s.period_start >= start]
        if end is not None:
            summaries = [s for s in summaries if s.period_end <= end]

        summary_store_operations_total.labels(operation="list", outcome="success").inc()
        return sorted(summaries, key=lambda s: s.period_start)

    async def search(
        self,
        meeting_id: str,
        query: str,
        requester_id: str | None = None,
    ) -> list[Summary]:
        """Case-insensitive substring search over content, topics and decisions."""
        summaries = await self.list_for_meeting(meeting_id, requester_id=requester_id)
        needle = query.strip().casefold()
        if not needle:
            return summaries

        def matches(summary: Summary) -> bool:
            haystacks = [summary.content, *summary.key_topics, *summary.decisions]
            return any(needle in text.casefold() for text in haystacks)

        return [s for s in summaries if matches(s)]
