"""MeetingLifecycleController -- owns every meeting the bot is serving.

Transitions:
- start: resolve configuration, create MeetingState, start transcript
  ingestion (a failure there is logged, not fatal), start the summary timer.
- participants joined: extend the roster, send catch-up to late joiners.
- end: stop the timer, stop ingestion, run a final pass over whatever is still
  buffered, clear the buffer, forget the meeting. Each step is isolated so a
  failing step never prevents the rest of the teardown.

Start and end for the same meeting are serialized by a per-meeting transition
lock: a second start waits and then returns the existing state, and an end
that arrives mid-start tears down only once start has finished.

The summary timer is one asyncio task per meeting that sleeps for the
meeting's configured interval and then runs an orchestrator pass. Ingestion
is cancelled before the final pass so that pass sees a buffer that is no
longer being appended to.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timezone

import structlog

from src.meetbot.core.monitoring import active_meetings, meeting_events_total
from src.meetbot.meetings.catchup import CatchUpService
from src.meetbot.meetings.configuration import MeetingConfigService
from src.meetbot.meetings.exceptions import MeetingStartError
from src.meetbot.meetings.platform.client import PlatformClient
from src.meetbot.meetings.schemas import (
    MeetingConfiguration,
    MeetingState,
    Participant,
    Summary,
)
from src.meetbot.meetings.summaries.formatting import format_summary_message
from src.meetbot.meetings.summaries.orchestrator import SummarizationOrchestrator
from src.meetbot.meetings.transcription.base import TranscriptionStrategy
from src.meetbot.meetings.transcription.buffer import TranscriptBuffer
from src.meetbot.meetings.transcription.factory import TranscriptionStrategyFactory

logger = structlog.get_logger(__name__)

SECONDS_PER_MINUTE = 60.0

HELP_TEXT = (
    "**Meeting Summary Bot Commands:**\n"
    "- `help` - Show this help message\n"
    "- `status` - Show bot status for this meeting\n"
    "- `summary` - Generate a summary of the discussion so far"
)

COMMANDS = frozenset({"help", "status", "summary"})


async def _cancel_task(task: asyncio.Task) -> None:
    if task.done():
        return
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass


class MeetingLifecycleController:
    """Coordinates ingestion, summarization and catch-up per meeting."""

    def __init__(
        self,
        buffer: TranscriptBuffer,
        strategy_factory: TranscriptionStrategyFactory,
        orchestrator: SummarizationOrchestrator,
        catch_up: CatchUpService,
        config_service: MeetingConfigService,
        platform_client: PlatformClient,
    ) -> None:
        self._buffer = buffer
        self._factory = strategy_factory
        self._orchestrator = orchestrator
        self._catch_up = catch_up
        self._config = config_service
        self._platform = platform_client

        self._active: dict[str, MeetingState] = {}
        self._timers: dict[str, asyncio.Task] = {}
        self._strategies: dict[str, TranscriptionStrategy] = {}
        self._transition_locks: dict[str, asyncio.Lock] = {}
        self._transition_waiters: dict[str, int] = {}

    # ── Queries ─────────────────────────────────────────────────────────

    @property
    def active_meeting_count(self) -> int:
        return len(self._active)

    def get_state(self, meeting_id: str) -> MeetingState | None:
        return self._active.get(meeting_id)

    def is_active(self, meeting_id: str) -> bool:
        return meeting_id in self._active

    @asynccontextmanager
    async def _transition(self, meeting_id: str):
        """Hold the meeting's transition lock; dropped once nobody waits on it."""
        lock = self._transition_locks.setdefault(meeting_id, asyncio.Lock())
        self._transition_waiters[meeting_id] = self._transition_waiters.get(meeting_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._transition_waiters[meeting_id] -= 1
            if not self._transition_waiters[meeting_id]:
                del self._transition_waiters[meeting_id]
                del self._transition_locks[meeting_id]

    # ── Start ───────────────────────────────────────────────────────────

    async def start_meeting(
        self,
        meeting_id: str,
        tenant_id: str,
        start_time: datetime | None = None,
        organizer_id: str | None = None,
        chat_id: str | None = None,
    ) -> MeetingState:
        """Bring a meeting under management.

        Raises:
            MeetingStartError: The meeting could not be initialised. Any
                partially created state has been rolled back.
        """
        async with self._transition(meeting_id):
            return await self._start_locked(meeting_id, tenant_id, start_time, organizer_id, chat_id)

    async def _start_locked(
        self,
        meeting_id: str,
        tenant_id: str,
        start_time: datetime | None,
        organizer_id: str | None,
        chat_id: str | None,
    ) -> MeetingState:
        existing = self._active.get(meeting_id)
        if existing is not None:
            logger.warning("lifecycle.already_active", meeting_id=meeting_id)
            return existing

        try:
            configuration = await self._config.get(meeting_id)
            strategy = self._factory.create(configuration.transcript_method)
            state = MeetingState(
                meeting_id=meeting_id,
                tenant_id=tenant_id,
                start_time=start_time or datetime.now(timezone.utc),
                organizer_id=organizer_id,
                chat_id=chat_id,
                configuration=configuration,
            )
            await self._fill_meeting_details(state)
            self._active[meeting_id] = state

            await self._start_ingestion(state, strategy)
            self._timers[meeting_id] = asyncio.create_task(
                self._summary_timer(meeting_id),
                name=f"summary-timer-{meeting_id}",
            )
        except Exception as exc:
            logger.error("lifecycle.start_failed", meeting_id=meeting_id, exc_info=True)
            await self._rollback(meeting_id)
            await self._notify_organizer(
                organizer_id,
                meeting_id,
                "The meeting summary bot could not start for your meeting. "
                "No summaries will be produced.",
            )
            raise MeetingStartError(f"could not start meeting {meeting_id}") from exc

        meeting_events_total.labels(event="started").inc()
        active_meetings.set(len(self._active))
        logger.info(
            "lifecycle.meeting_started",
            meeting_id=meeting_id,
            tenant_id=tenant_id,
            transcript_method=configuration.transcript_method.value,
            interval_minutes=configuration.summary_interval_minutes,
        )
        return state

    async def _fill_meeting_details(self, state: MeetingState) -> None:
        if state.organizer_id and state.chat_id:
            return
        try:
            details = await self._platform.get_meeting_details(state.meeting_id)
        except Exception:
            logger.warning("lifecycle.details_unavailable", meeting_id=state.meeting_id, exc_info=True)
            return
        state.organizer_id = state.organizer_id or details.organizer_id
        state.chat_id = state.chat_id or details.chat_id

    async def _start_ingestion(self, state: MeetingState, strategy: TranscriptionStrategy) -> None:
        self._strategies[state.meeting_id] = strategy
        try:
            await strategy.start(state.meeting_id)
        except Exception:
            logger.error(
                "lifecycle.ingestion_start_failed",
                meeting_id=state.meeting_id,
                method=strategy.method.value,
                exc_info=True,
            )

    async def _rollback(self, meeting_id: str) -> None:
        timer = self._timers.pop(meeting_id, None)
        if timer is not None:
            await _cancel_task(timer)
        strategy = self._strategies.pop(meeting_id, None)
        if strategy is not None:
            try:
                await strategy.stop(meeting_id)
            except Exception:
                logger.warning("lifecycle.rollback_stop_failed", meeting_id=meeting_id, exc_info=True)
        self._active.pop(meeting_id, None)

    async def _summary_timer(self, meeting_id: str) -> None:
        while True:
            state = self._active.get(meeting_id)
            if state is None:
                return
            await asyncio.sleep(state.configuration.summary_interval_minutes * SECONDS_PER_MINUTE)

            state = self._active.get(meeting_id)
            if state is None:
                return
            await self._orchestrator.run(state, trigger="timer")

    # ── Events During the Meeting ───────────────────────────────────────

    async def participants_joined(self, meeting_id: str, participants: list[Participant]) -> int:
        """Record joiners and send catch-up to the late ones.

        Returns:
            Number of catch-up cards delivered.
        """
        state = self._active.get(meeting_id)
        if state is None:
            logger.warning("lifecycle.join_for_inactive_meeting", meeting_id=meeting_id)
            return 0

        for participant in participants:
            state.add_participant(participant.id)
        meeting_events_total.labels(event="participant_joined").inc(len(participants))

        if not state.configuration.late_joiner_notifications:
            return 0

        delivered = await asyncio.gather(
            *(
                self._catch_up.on_participant_join(meeting_id, participant, state.start_time)
                for participant in participants
            )
        )
        return sum(1 for ok in delivered if ok)

    async def force_summary(self, meeting_id: str) -> Summary | None:
        """Run an immediate summarization pass for an active meeting."""
        state = self._active.get(meeting_id)
        if state is None:
            return None
        return await self._orchestrator.run(state, trigger="manual")

    def apply_configuration(self, meeting_id: str, configuration: MeetingConfiguration) -> None:
        """Use a new configuration for an active meeting from the next timer cycle."""
        state = self._active.get(meeting_id)
        if state is not None:
            state.configuration = configuration

    async def handle_command(self, meeting_id: str, text: str) -> str:
        """Answer a chat command addressed to the bot."""
        words = text.strip().lower().split()
        command = next((word for word in words if word in COMMANDS), "")
        try:
            if command == "help":
                return HELP_TEXT
            if command == "status":
                return self._status_text(meeting_id)
            if command == "summary":
                return await self._summary_command(meeting_id)
        except Exception:
            logger.error("lifecycle.command_failed", meeting_id=meeting_id, command=command, exc_info=True)
            return "Sorry, something went wrong while handling that command."
        return "I didn't recognize that command. Type `help` to see what I can do."

    def _status_text(self, meeting_id: str) -> str:
        lines = [f"Active meetings: {self.active_meeting_count}"]
        state = self._active.get(meeting_id)
        if state is None:
            lines.append("This meeting is not being summarized.")
        else:
            lines.append(f"Buffered transcript segments: {self._buffer.segment_count(meeting_id)}")
            lines.append(f"Summary interval: {state.configuration.summary_interval_minutes} minutes")
            lines.append(f"Transcript method: {state.configuration.transcript_method.value}")
        return "\n".join(lines)

    async def _summary_command(self, meeting_id: str) -> str:
        state = self._active.get(meeting_id)
        if state is None:
            return "There is no active meeting to summarize."
        if not self._buffer.has_segments(meeting_id):
            return "Nothing new to summarize yet."

        summary = await self.force_summary(meeting_id)
        if summary is None:
            return "Sorry, I couldn't generate a summary right now. I'll keep trying."
        if state.configuration.auto_post_to_chat:
            return "Summary posted to the meeting chat."
        return format_summary_message(summary)

    # ── End ─────────────────────────────────────────────────────────────

    async def end_meeting(self, meeting_id: str) -> bool:
        """Tear a meeting down, flushing a final summary first.

        Returns:
            False when the meeting was not active (or another end got there
            first).
        """
        async with self._transition(meeting_id):
            return await self._end_locked(meeting_id)

    async def _end_locked(self, meeting_id: str) -> bool:
        state = self._active.get(meeting_id)
        if state is None:
            logger.warning("lifecycle.end_for_inactive_meeting", meeting_id=meeting_id)
            return False

        try:
            timer = self._timers.pop(meeting_id, None)
            if timer is not None:
                try:
                    await _cancel_task(timer)
                except Exception:
                    logger.warning("lifecycle.timer_stop_failed", meeting_id=meeting_id, exc_info=True)

            strategy = self._strategies.pop(meeting_id, None)
            if strategy is not None:
                try:
                    await strategy.stop(meeting_id)
                except Exception:
                    logger.error("lifecycle.ingestion_stop_failed", meeting_id=meeting_id, exc_info=True)

            try:
                if self._buffer.has_segments(meeting_id):
                    await self._orchestrator.run(state, trigger="meeting_end")
            except Exception:
                logger.error("lifecycle.final_summary_failed", meeting_id=meeting_id, exc_info=True)

            try:
                self._buffer.clear_buffer(meeting_id)
            except Exception:
                logger.warning("lifecycle.buffer_clear_failed", meeting_id=meeting_id, exc_info=True)

            state.end_time = datetime.now(timezone.utc)
        finally:
            self._active.pop(meeting_id, None)
            self._orchestrator.forget(meeting_id)
            self._config.evict(meeting_id)

        meeting_events_total.labels(event="ended").inc()
        active_meetings.set(len(self._active))
        logger.info(
            "lifecycle.meeting_ended",
            meeting_id=meeting_id,
            duration_minutes=round((state.end_time - state.start_time).total_seconds() / 60, 1),
            participants=len(state.participant_ids),
        )
        return True

    async def shutdown(self) -> None:
        """End every active meeting (process shutdown)."""
        for meeting_id in list(self._active):
            await self.end_meeting(meeting_id)

    # ── Notifications ───────────────────────────────────────────────────

    async def _notify_organizer(self, organizer_id: str | None, meeting_id: str, text: str) -> None:
        if not organizer_id:
            return
        try:
            await self._platform.send_private_notification(organizer_id, text=text)
        except Exception:
            logger.warning("lifecycle.organizer_notice_failed", meeting_id=meeting_id, exc_info=True)
