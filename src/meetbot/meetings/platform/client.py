"""Async HTTP client for the meeting/chat platform REST API.

Provides PlatformClient with retry logic (tenacity, 3 attempts, exponential
backoff 1-10s) for meeting metadata, rosters, chat posts, private
notifications and change-notification subscriptions. Transcript reads are
deliberately not retried here: the ingestion strategies own their backoff,
so those calls translate failures into the transcript-source exceptions
instead.

All methods are async and log with structlog for observability.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

import httpx
import structlog
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

from src.meetbot.core.monitoring import platform_requests_total
from src.meetbot.meetings.exceptions import (
    PlatformError,
    RateLimitedError,
    SourceNotAvailableError,
    TransientSourceError,
)
from src.meetbot.meetings.schemas import MeetingDetails, Participant

logger = structlog.get_logger(__name__)


def _is_retryable(exc: BaseException) -> bool:
    """Throttling, server errors and transport failures are worth retrying."""
    if isinstance(exc, httpx.HTTPStatusError):
        code = exc.response.status_code
        return code == 429 or code >= 500
    return isinstance(exc, (httpx.ConnectError, httpx.TimeoutException))


_platform_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    retry=retry_if_exception(_is_retryable),
    reraise=True,
)


def _parse_datetime(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _retry_after_seconds(response: httpx.Response) -> float | None:
    header = response.headers.get("Retry-After")
    if not header:
        return None
    try:
        return float(header)
    except ValueError:
        return None


class PlatformClient:
    """Async client for the meeting/chat platform.

    Uses httpx.AsyncClient with configurable timeouts per operation type.

    Args:
        base_url: API root (e.g. ``https://graph.microsoft.com/v1.0``).
        access_token: Bearer token for the bot identity.
    """

    # Timeouts per operation type
    TIMEOUT_MUTATE = 30.0  # create/post/delete operations
    TIMEOUT_READ = 10.0    # get operations

    def __init__(self, base_url: str, access_token: str) -> None:
        self._base_url = base_url.rstrip("/")
        self._headers = {
            "Authorization": f"Bearer {access_token}",
            "Content-Type": "application/json",
        }

    def _client(self, timeout: float) -> httpx.AsyncClient:
        """Create a new httpx client with specified timeout."""
        return httpx.AsyncClient(
            headers=self._headers,
            timeout=timeout,
        )

    # ── Meetings & Rosters ──────────────────────────────────────────────

    @_platform_retry
    async def get_meeting_details(self, meeting_id: str) -> MeetingDetails:
        """Fetch subject, schedule, organizer and chat thread for a meeting."""
        async with self._client(self.TIMEOUT_READ) as client:
            response = await client.get(
                f"{self._base_url}/communications/onlineMeetings/{meeting_id}",
            )
            platform_requests_total.labels(
                operation="get_meeting_details", status=str(response.status_code)
            ).inc()
            response.raise_for_status()
            data = response.json()

        organizer = (
            data.get("participants", {})
            .get("organizer", {})
            .get("identity", {})
            .get("user", {})
        )
        return MeetingDetails(
            meeting_id=meeting_id,
            subject=data.get("subject") or "",
            start_time=_parse_datetime(data.get("startDateTime")),
            end_time=_parse_datetime(data.get("endDateTime")),
            organizer_id=organizer.get("id"),
            chat_id=(data.get("chatInfo") or {}).get("threadId"),
        )

    @_platform_retry
    async def get_participants(self, meeting_id: str) -> list[Participant]:
        """Fetch the authoritative participant roster of a meeting."""
        async with self._client(self.TIMEOUT_READ) as client:
            response = await client.get(
                f"{self._base_url}/communications/calls/{meeting_id}/participants",
            )
            platform_requests_total.labels(
                operation="get_participants", status=str(response.status_code)
            ).inc()
            response.raise_for_status()
            data = response.json()

        participants: list[Participant] = []
        for item in data.get("value", []):
            user = item.get("info", {}).get("identity", {}).get("user") or {}
            if not user.get("id"):
                continue
            participants.append(
                Participant(
                    id=user["id"],
                    name=user.get("displayName") or "",
                    email=user.get("userPrincipalName") or user.get("email"),
                )
            )
        return participants

    # ── Chat ────────────────────────────────────────────────────────────

    @_platform_retry
    async def post_chat_message(self, chat_id: str, content: str) -> dict:
        """Post a text message into a meeting chat."""
        async with self._client(self.TIMEOUT_MUTATE) as client:
            response = await client.post(
                f"{self._base_url}/chats/{chat_id}/messages",
                json={"body": {"contentType": "text", "content": content}},
            )
            platform_requests_total.labels(
                operation="post_chat_message", status=str(response.status_code)
            ).inc()
            response.raise_for_status()
            data = response.json()
            logger.info("platform.chat_message_posted", chat_id=chat_id, message_id=data.get("id"))
            return data

    @_platform_retry
    async def send_private_notification(
        self,
        user_id: str,
        text: str = "",
        card: dict[str, Any] | None = None,
    ) -> dict:
        """Send a one-on-one message to a user, optionally with an adaptive card.

        Opens (or reuses) the one-on-one chat with the user, then posts the
        message into it.
        """
        async with self._client(self.TIMEOUT_MUTATE) as client:
            chat_response = await client.post(
                f"{self._base_url}/chats",
                json={
                    "chatType": "oneOnOne",
                    "members": [
                        {
                            "@odata.type": "#microsoft.graph.aadUserConversationMember",
                            "roles": ["owner"],
                            "user@odata.bind": f"{self._base_url}/users('{user_id}')",
                        }
                    ],
                },
            )
            chat_response.raise_for_status()
            chat_id = chat_response.json().get("id")
            if not chat_id:
                raise PlatformError(f"no one-on-one chat returned for user {user_id}")

            message: dict[str, Any] = {"body": {"contentType": "html", "content": text}}
            if card is not None:
                message["body"]["content"] = f'{text}<attachment id="catchup"></attachment>'
                message["attachments"] = [
                    {
                        "id": "catchup",
                        "contentType": "application/vnd.microsoft.card.adaptive",
                        "content": card,
                    }
                ]
            response = await client.post(
                f"{self._base_url}/chats/{chat_id}/messages",
                json=message,
            )
            platform_requests_total.labels(
                operation="send_private_notification", status=str(response.status_code)
            ).inc()
            response.raise_for_status()
            logger.info("platform.private_notification_sent", user_id=user_id, chat_id=chat_id)
            return response.json()

    # ── Transcripts ─────────────────────────────────────────────────────

    async def _get_transcript_resource(
        self,
        operation: str,
        url: str,
        params: dict[str, str] | None = None,
    ) -> httpx.Response:
        """GET a transcript resource, mapping failures to source exceptions."""
        try:
            async with self._client(self.TIMEOUT_READ) as client:
                response = await client.get(url, params=params)
        except httpx.TransportError as exc:
            platform_requests_total.labels(operation=operation, status="transport_error").inc()
            raise TransientSourceError(f"{operation} failed: {exc}") from exc

        platform_requests_total.labels(operation=operation, status=str(response.status_code)).inc()
        if response.status_code == 404:
            raise SourceNotAvailableError(f"{operation}: transcript not available")
        if response.status_code == 429:
            raise RateLimitedError(
                f"{operation}: rate limited",
                retry_after=_retry_after_seconds(response),
            )
        if response.is_error:
            raise TransientSourceError(f"{operation} failed with HTTP {response.status_code}")
        return response

    async def list_transcripts(self, meeting_id: str) -> list[str]:
        """Return the ids of the meeting's transcripts, oldest first."""
        response = await self._get_transcript_resource(
            "list_transcripts",
            f"{self._base_url}/communications/onlineMeetings/{meeting_id}/transcripts",
        )
        items = response.json().get("value", [])
        items.sort(key=lambda item: item.get("createdDateTime") or "")
        return [item["id"] for item in items if item.get("id")]

    async def get_transcript_content(self, meeting_id: str, transcript_id: str) -> str:
        """Fetch one transcript's content as WebVTT text."""
        response = await self._get_transcript_resource(
            "get_transcript_content",
            f"{self._base_url}/communications/onlineMeetings/{meeting_id}"
            f"/transcripts/{transcript_id}/content",
            params={"$format": "text/vtt"},
        )
        return response.text

    async def get_available_transcript_content(self, meeting_id: str) -> str:
        """Fetch all completed transcript content for a meeting as WebVTT.

        Raises:
            SourceNotAvailableError: The meeting has no transcript yet.
            RateLimitedError: The platform throttled the request.
            TransientSourceError: Any other transport or HTTP failure.
        """
        transcript_ids = await self.list_transcripts(meeting_id)
        if not transcript_ids:
            raise SourceNotAvailableError(f"no transcript yet for meeting {meeting_id}")

        parts = [
            await self.get_transcript_content(meeting_id, transcript_id)
            for transcript_id in transcript_ids
        ]
        return "\n\n".join(parts)

    # ── Change-Notification Subscriptions ───────────────────────────────

    @_platform_retry
    async def create_subscription(
        self,
        resource: str,
        notification_url: str,
        client_state: str,
        expiration: datetime,
    ) -> dict:
        """Register a change-notification subscription.

        Returns:
            Subscription payload including ``id`` and ``expirationDateTime``.
        """
        async with self._client(self.TIMEOUT_MUTATE) as client:
            response = await client.post(
                f"{self._base_url}/subscriptions",
                json={
                    "changeType": "created,updated",
                    "notificationUrl": notification_url,
                    "resource": resource,
                    "expirationDateTime": expiration.isoformat(),
                    "clientState": client_state,
                },
            )
            platform_requests_total.labels(
                operation="create_subscription", status=str(response.status_code)
            ).inc()
            response.raise_for_status()
            data = response.json()
            logger.info(
                "platform.subscription_created",
                subscription_id=data.get("id"),
                resource=resource,
            )
            return data

    @_platform_retry
    async def renew_subscription(self, subscription_id: str, expiration: datetime) -> dict:
        """Push a subscription's expiry forward."""
        async with self._client(self.TIMEOUT_MUTATE) as client:
            response = await client.patch(
                f"{self._base_url}/subscriptions/{subscription_id}",
                json={"expirationDateTime": expiration.isoformat()},
            )
            platform_requests_total.labels(
                operation="renew_subscription", status=str(response.status_code)
            ).inc()
            response.raise_for_status()
            return response.json()

    @_platform_retry
    async def delete_subscription(self, subscription_id: str) -> None:
        """Remove a subscription. A subscription that is already gone is fine."""
        async with self._client(self.TIMEOUT_MUTATE) as client:
            response = await client.delete(
                f"{self._base_url}/subscriptions/{subscription_id}",
            )
            platform_requests_total.labels(
                operation="delete_subscription", status=str(response.status_code)
            ).inc()
            if response.status_code == 404:
                return
            response.raise_for_status()
            logger.info("platform.subscription_deleted", subscription_id=subscription_id)
