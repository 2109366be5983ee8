"""Read-access rules for stored summaries.

A summary is readable by the participants recorded on it (compared
case-insensitively). Listing a meeting's summaries additionally requires the
requester to belong to the meeting: either on the platform's current roster
or on the participant list of one of the meeting's stored summaries, which
keeps history readable after the live meeting is gone.
"""

from __future__ import annotations

import structlog

from src.meetbot.meetings.exceptions import AccessCheckUnavailableError, AccessDeniedError
from src.meetbot.meetings.platform.client import PlatformClient
from src.meetbot.meetings.schemas import Summary

logger = structlog.get_logger(__name__)


def can_access_summary(requester_id: str, summary: Summary) -> bool:
    """True when ``requester_id`` is one of the summary's participants."""
    if not requester_id:
        return False
    wanted = requester_id.casefold()
    return any(p.casefold() == wanted for p in summary.participants)


def filter_accessible(requester_id: str, summaries: list[Summary]) -> list[Summary]:
    return [s for s in summaries if can_access_summary(requester_id, s)]


class SummaryAccessPolicy:
    """Meeting-level membership checks backed by the platform roster."""

    def __init__(self, platform_client: PlatformClient) -> None:
        self._platform = platform_client

    async def validate_meeting_access(
        self,
        requester_id: str,
        meeting_id: str,
        stored: list[Summary] | None = None,
    ) -> None:
        """Ensure the requester belongs to the meeting.

        Raises:
            AccessDeniedError: The requester is not a member of the meeting.
            AccessCheckUnavailableError: The roster could not be fetched and
                the stored summaries do not settle the question.
        """
        if any(can_access_summary(requester_id, s) for s in stored or []):
            return

        try:
            participants = await self._platform.get_participants(meeting_id)
        except Exception as exc:
            logger.warning(
                "access.roster_unavailable",
                meeting_id=meeting_id,
                requester_id=requester_id,
                exc_info=True,
            )
            raise AccessCheckUnavailableError(
                f"could not verify membership of meeting {meeting_id}"
            ) from exc

        wanted = requester_id.casefold()
        for participant in participants:
            if participant.id.casefold() == wanted:
                return
            if participant.email and participant.email.casefold() == wanted:
                return

        logger.info("access.denied", meeting_id=meeting_id, requester_id=requester_id)
        raise AccessDeniedError(requester_id, f"meeting {meeting_id}")
