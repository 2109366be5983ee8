"""Late-joiner catch-up.

When a participant joins more than LATE_JOIN_THRESHOLD after the meeting
started, the summaries covering the time they missed are bundled into an
adaptive card and sent to them privately. Delivery is bounded by
DELIVERY_TIMEOUT_SECONDS and every failure is logged and swallowed: a slow or
broken catch-up must never hold up the meeting-event pipeline.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import structlog

from src.meetbot.core.monitoring import catch_up_deliveries_total
from src.meetbot.meetings.platform.client import PlatformClient
from src.meetbot.meetings.schemas import Participant
from src.meetbot.meetings.summaries.formatting import build_catch_up_card
from src.meetbot.meetings.summaries.store import SummaryStore

logger = structlog.get_logger(__name__)

LATE_JOIN_THRESHOLD = timedelta(minutes=5)
DELIVERY_TIMEOUT_SECONDS = 10.0


def is_late_joiner(meeting_start: datetime, join_time: datetime) -> bool:
    """Joined strictly more than LATE_JOIN_THRESHOLD after the start."""
    return join_time - meeting_start > LATE_JOIN_THRESHOLD


class CatchUpService:
    """Sends missed-summary cards to late joiners."""

    def __init__(
        self,
        store: SummaryStore,
        platform_client: PlatformClient,
        timeout_seconds: float = DELIVERY_TIMEOUT_SECONDS,
    ) -> None:
        self._store = store
        self._platform = platform_client
        self._timeout_seconds = timeout_seconds

    async def on_participant_join(
        self,
        meeting_id: str,
        participant: Participant,
        meeting_start: datetime,
    ) -> bool:
        """Deliver a catch-up card if the participant is late.

        Returns:
            True when a card was delivered.
        """
        join_time = participant.join_time or datetime.now(timezone.utc)
        if not is_late_joiner(meeting_start, join_time):
            catch_up_deliveries_total.labels(outcome="on_time").inc()
            return False

        try:
            delivered = await asyncio.wait_for(
                self._deliver(meeting_id, participant, meeting_start, join_time),
                timeout=self._timeout_seconds,
            )
        except asyncio.TimeoutError:
            catch_up_deliveries_total.labels(outcome="timeout").inc()
            logger.warning(
                "catchup.timed_out",
                meeting_id=meeting_id,
                participant_id=participant.id,
                timeout=self._timeout_seconds,
            )
            return False
        except Exception:
            catch_up_deliveries_total.labels(outcome="error").inc()
            logger.error(
                "catchup.delivery_failed",
                meeting_id=meeting_id,
                participant_id=participant.id,
                exc_info=True,
            )
            return False

        catch_up_deliveries_total.labels(outcome="delivered" if delivered else "nothing_missed").inc()
        return delivered

    async def _deliver(
        self,
        meeting_id: str,
        participant: Participant,
        meeting_start: datetime,
        join_time: datetime,
    ) -> bool:
        missed = await self._store.list_for_meeting(meeting_id, start=meeting_start, end=join_time)
        if not missed:
            logger.info("catchup.nothing_missed", meeting_id=meeting_id, participant_id=participant.id)
            return False

        await self._platform.send_private_notification(
            participant.id,
            text="Here's a catch-up on what you missed.",
            card=build_catch_up_card(missed),
        )
        logger.info(
            "catchup.delivered",
            meeting_id=meeting_id,
            participant_id=participant.id,
            summaries=len(missed),
            minutes_late=round((join_time - meeting_start).total_seconds() / 60, 1),
        )
        return True
