"""SummarizationOrchestrator -- one summarization pass per call.

A pass drains the meeting's buffered segments, asks the generator for summary
fields, attaches the participant list used for access control, persists the
summary and (optionally) posts it to the meeting chat. The drained segments
are acknowledged in the buffer only after the store accepted the summary, so
a failed pass leaves them for the next one.

Passes for the same meeting are serialized with a per-meeting asyncio.Lock;
passes for different meetings run independently. ``run`` never raises: the
periodic timer and the meeting-end flush both rely on that.
"""

from __future__ import annotations

import asyncio
import time

import structlog

from src.meetbot.core.monitoring import summary_generation_seconds, summary_passes_total
from src.meetbot.meetings.platform.client import PlatformClient
from src.meetbot.meetings.schemas import ActionItem, MeetingState, Summary, SummaryOptions
from src.meetbot.meetings.summaries.formatting import format_summary_message
from src.meetbot.meetings.summaries.generator import SummaryGenerator
from src.meetbot.meetings.summaries.store import SummaryStore
from src.meetbot.meetings.transcription.buffer import TranscriptBuffer

logger = structlog.get_logger(__name__)

SUSTAINED_FAILURE_THRESHOLD = 3


class SummarizationOrchestrator:
    """Runs summarization passes for active meetings.

    Args:
        buffer: Shared transcript buffer.
        generator: LLM-backed summary generator.
        store: Resilient summary store.
        platform_client: Roster lookups, chat posts, organizer notices.
        options: Options applied to every generation call.
    """

    def __init__(
        self,
        buffer: TranscriptBuffer,
        generator: SummaryGenerator,
        store: SummaryStore,
        platform_client: PlatformClient,
        options: SummaryOptions | None = None,
    ) -> None:
        self._buffer = buffer
        self._generator = generator
        self._store = store
        self._platform = platform_client
        self._options = options or SummaryOptions()
        self._locks: dict[str, asyncio.Lock] = {}
        self._consecutive_failures: dict[str, int] = {}

    def _lock_for(self, meeting_id: str) -> asyncio.Lock:
        return self._locks.setdefault(meeting_id, asyncio.Lock())

    def consecutive_failures(self, meeting_id: str) -> int:
        return self._consecutive_failures.get(meeting_id, 0)

    def forget(self, meeting_id: str) -> None:
        """Drop per-meeting bookkeeping once a meeting has ended."""
        lock = self._locks.get(meeting_id)
        if lock is not None and not lock.locked():
            del self._locks[meeting_id]
        self._consecutive_failures.pop(meeting_id, None)

    async def run(self, state: MeetingState, trigger: str = "timer") -> Summary | None:
        """Execute one pass for ``state.meeting_id``.

        Returns:
            The stored summary, or None when there was nothing to summarize or
            the pass failed (the failure is logged and counted).
        """
        meeting_id = state.meeting_id
        async with self._lock_for(meeting_id):
            start_time = time.perf_counter()
            try:
                summary = await self._summarize(state, trigger)
            except Exception:
                failures = self._consecutive_failures.get(meeting_id, 0) + 1
                self._consecutive_failures[meeting_id] = failures
                summary_passes_total.labels(trigger=trigger, outcome="error").inc()
                logger.error(
                    "summary.pass_failed",
                    meeting_id=meeting_id,
                    trigger=trigger,
                    consecutive_failures=failures,
                    exc_info=True,
                )
                if failures == SUSTAINED_FAILURE_THRESHOLD:
                    await self._notify_sustained_failure(state, failures)
                return None
            finally:
                summary_generation_seconds.observe(time.perf_counter() - start_time)

            if summary is None:
                summary_passes_total.labels(trigger=trigger, outcome="empty").inc()
                return None

            self._consecutive_failures.pop(meeting_id, None)
            summary_passes_total.labels(trigger=trigger, outcome="success").inc()
            return summary

    async def _summarize(self, state: MeetingState, trigger: str) -> Summary | None:
        meeting_id = state.meeting_id
        if not self._buffer.has_segments(meeting_id):
            logger.debug("summary.buffer_empty", meeting_id=meeting_id, trigger=trigger)
            return None

        segments = self._buffer.get_segments(meeting_id)
        if not segments:
            return None
        last_drained = segments[-1]
        ordered = sorted(segments, key=lambda s: s.timestamp)

        generated = await self._generator.generate(ordered, self._options, meeting_id=meeting_id)
        participants = await self._resolve_participants(state)

        summary = Summary(
            meeting_id=meeting_id,
            tenant_id=state.tenant_id,
            period_start=ordered[0].timestamp,
            period_end=ordered[-1].timestamp,
            content=generated.summary,
            key_topics=generated.key_topics,
            decisions=generated.decisions,
            action_items=[
                ActionItem(description=item.description, assigned_to=item.assigned_to)
                for item in generated.action_items
            ],
            participants=participants,
            degraded=not participants,
        )
        if summary.degraded:
            logger.warning(
                "summary.no_participants",
                meeting_id=meeting_id,
                hint="summary will not be readable by anyone",
            )

        saved = await self._store.save(summary, retention_days=state.configuration.retention_days)

        if state.configuration.auto_post_to_chat:
            await self._post_to_chat(state, saved)

        removed = self._buffer.clear_through(meeting_id, last_drained)
        logger.info(
            "summary.pass_completed",
            meeting_id=meeting_id,
            trigger=trigger,
            summary_id=saved.id,
            segments=len(segments),
            acknowledged=removed,
        )
        return saved

    async def _resolve_participants(self, state: MeetingState) -> list[str]:
        """Platform roster, or the locally tracked join-event roster."""
        try:
            roster = await self._platform.get_participants(state.meeting_id)
        except Exception:
            logger.warning(
                "summary.roster_fetch_failed",
                meeting_id=state.meeting_id,
                fallback_count=len(state.participant_ids),
                exc_info=True,
            )
            return list(state.participant_ids)

        participant_ids = [p.id for p in roster]
        return participant_ids or list(state.participant_ids)

    async def _post_to_chat(self, state: MeetingState, summary: Summary) -> None:
        try:
            await self._platform.post_chat_message(
                state.chat_id or state.meeting_id,
                format_summary_message(summary),
            )
        except Exception:
            logger.warning(
                "summary.chat_post_failed",
                meeting_id=state.meeting_id,
                summary_id=summary.id,
                exc_info=True,
            )

    async def _notify_sustained_failure(self, state: MeetingState, failures: int) -> None:
        if not state.organizer_id:
            return
        try:
            await self._platform.send_private_notification(
                state.organizer_id,
                text=(
                    f"Meeting summaries have failed {failures} times in a row. "
                    "Transcript content is being kept and summarization will keep retrying."
                ),
            )
        except Exception:
            logger.warning(
                "summary.organizer_notice_failed",
                meeting_id=state.meeting_id,
                exc_info=True,
            )
