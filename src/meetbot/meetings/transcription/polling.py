"""Polling transcript ingestion.

One background asyncio task per meeting asks the platform for the meeting's
completed transcript content every POLL_INTERVAL_SECONDS and buffers any new
cues. The loop never gives up on its own: only ``stop`` (task cancellation)
ends it.

Backoff:
- Rate limited: exponential, starting at 2s and doubling up to 60s.
- Any other failure: fixed 5s.
- A successful read resets both the error count and the rate-limit delay.
- From CRITICAL_ERROR_THRESHOLD consecutive failures on, every failure is
  logged at critical severity.
"""

from __future__ import annotations

import asyncio

import structlog

from src.meetbot.core.monitoring import transcript_source_errors_total
from src.meetbot.meetings.exceptions import RateLimitedError, SourceNotAvailableError
from src.meetbot.meetings.platform.client import PlatformClient
from src.meetbot.meetings.schemas import TranscriptMethod
from src.meetbot.meetings.transcription.base import TranscriptionStrategy
from src.meetbot.meetings.transcription.buffer import TranscriptBuffer

logger = structlog.get_logger(__name__)

POLL_INTERVAL_SECONDS = 2.0
RATE_LIMIT_BASE_DELAY_SECONDS = 2.0
RATE_LIMIT_MAX_DELAY_SECONDS = 60.0
ERROR_RETRY_DELAY_SECONDS = 5.0
CRITICAL_ERROR_THRESHOLD = 6


class PollingTranscriptionStrategy(TranscriptionStrategy):
    """Ingest transcript content by periodically polling the platform."""

    method = TranscriptMethod.POLLING

    def __init__(self, client: PlatformClient, buffer: TranscriptBuffer) -> None:
        super().__init__(buffer)
        self._client = client
        self._tasks: dict[str, asyncio.Task] = {}

    def is_polling(self, meeting_id: str) -> bool:
        task = self._tasks.get(meeting_id)
        return task is not None and not task.done()

    async def start(self, meeting_id: str) -> None:
        if self.is_polling(meeting_id):
            logger.warning("polling.already_running", meeting_id=meeting_id)
            return
        self._tasks[meeting_id] = asyncio.create_task(
            self._poll_loop(meeting_id),
            name=f"transcript-poll-{meeting_id}",
        )
        logger.info("polling.started", meeting_id=meeting_id, interval=POLL_INTERVAL_SECONDS)

    async def stop(self, meeting_id: str) -> None:
        task = self._tasks.pop(meeting_id, None)
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._forget_meeting(meeting_id)
        logger.info("polling.stopped", meeting_id=meeting_id)

    async def _poll_loop(self, meeting_id: str) -> None:
        consecutive_errors = 0
        rate_limit_delay = RATE_LIMIT_BASE_DELAY_SECONDS

        while True:
            delay = POLL_INTERVAL_SECONDS
            try:
                content = await self._client.get_available_transcript_content(meeting_id)
                self._ingest(meeting_id, meeting_id, content)
                consecutive_errors = 0
                rate_limit_delay = RATE_LIMIT_BASE_DELAY_SECONDS
            except SourceNotAvailableError:
                # Transcription has not produced anything yet
                logger.debug("polling.transcript_not_available", meeting_id=meeting_id)
                consecutive_errors = 0
            except RateLimitedError:
                consecutive_errors += 1
                delay = rate_limit_delay
                rate_limit_delay = min(rate_limit_delay * 2, RATE_LIMIT_MAX_DELAY_SECONDS)
                transcript_source_errors_total.labels(method="polling", kind="rate_limited").inc()
                logger.warning(
                    "polling.rate_limited",
                    meeting_id=meeting_id,
                    retry_in=delay,
                    consecutive_errors=consecutive_errors,
                )
            except Exception:
                consecutive_errors += 1
                delay = ERROR_RETRY_DELAY_SECONDS
                transcript_source_errors_total.labels(method="polling", kind="error").inc()
                logger.error(
                    "polling.fetch_failed",
                    meeting_id=meeting_id,
                    retry_in=delay,
                    consecutive_errors=consecutive_errors,
                    exc_info=True,
                )

            if consecutive_errors >= CRITICAL_ERROR_THRESHOLD:
                logger.critical(
                    "polling.persistent_failure",
                    meeting_id=meeting_id,
                    consecutive_errors=consecutive_errors,
                )

            await asyncio.sleep(delay)
