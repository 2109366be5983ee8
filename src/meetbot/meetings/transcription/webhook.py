"""Change-notification (webhook) transcript ingestion.

On ``start`` a subscription for the meeting's transcripts is registered with
the platform for SUBSCRIPTION_LIFETIME, pointing at this service's
notification endpoint. A background task renews it every
RENEWAL_INTERVAL_SECONDS. A failed renewal is logged and the loop keeps
going; once the last confirmed expiry passes without a successful renewal
the subscription is reported as lapsed.

Incoming notifications are authenticated by their shared client state, then
the referenced transcript is fetched out-of-band and its new cues buffered.
"""

from __future__ import annotations

import asyncio
import hmac
import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

import structlog

from src.meetbot.core.monitoring import (
    subscription_renewals_total,
    transcript_source_errors_total,
)
from src.meetbot.meetings.exceptions import PlatformError
from src.meetbot.meetings.platform.client import PlatformClient
from src.meetbot.meetings.schemas import TranscriptMethod
from src.meetbot.meetings.transcription.base import TranscriptionStrategy
from src.meetbot.meetings.transcription.buffer import TranscriptBuffer

logger = structlog.get_logger(__name__)

SUBSCRIPTION_LIFETIME = timedelta(minutes=60)
RENEWAL_INTERVAL_SECONDS = 45 * 60
NOTIFICATION_PATH = "/api/notifications"

# Accepts both "onlineMeetings/{id}/transcripts/{id}" and the
# "onlineMeetings('{id}')/transcripts('{id}')" key form.
_RESOURCE_RE = re.compile(
    r"onlineMeetings(?:/|\(')(?P<meeting_id>[^/')]+)'?\)?"
    r"/transcripts(?:/|\(')(?P<transcript_id>[^/')]+)"
)


def parse_transcript_resource(resource: str) -> tuple[str, str] | None:
    """Extract ``(meeting_id, transcript_id)`` from a notification resource."""
    match = _RESOURCE_RE.search(resource or "")
    if not match:
        return None
    return match.group("meeting_id"), match.group("transcript_id")


def _parse_expiry(value: str | None, fallback: datetime) -> datetime:
    if not value:
        return fallback
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return fallback
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


@dataclass
class _Subscription:
    subscription_id: str
    meeting_id: str
    expires_at: datetime
    renewal_task: asyncio.Task | None = None
    lapsed: bool = False


class WebhookTranscriptionStrategy(TranscriptionStrategy):
    """Ingest transcript content pushed via platform change notifications.

    Args:
        client: Platform client used for subscriptions and transcript reads.
        buffer: Shared transcript buffer.
        notification_base_url: Public base URL of this service.
        client_state: Shared secret echoed back in every notification.
    """

    method = TranscriptMethod.WEBHOOK

    def __init__(
        self,
        client: PlatformClient,
        buffer: TranscriptBuffer,
        notification_base_url: str,
        client_state: str,
    ) -> None:
        super().__init__(buffer)
        self._client = client
        self._notification_url = notification_base_url.rstrip("/") + NOTIFICATION_PATH
        self._client_state = client_state
        self._subscriptions: dict[str, _Subscription] = {}
        self._subscribing: set[str] = set()

    def has_subscription(self, meeting_id: str) -> bool:
        return meeting_id in self._subscriptions

    async def start(self, meeting_id: str) -> None:
        if meeting_id in self._subscriptions or meeting_id in self._subscribing:
            logger.warning("webhook.already_subscribed", meeting_id=meeting_id)
            return

        # Reserved until the subscription is registered; stop() releases it
        self._subscribing.add(meeting_id)
        expiration = datetime.now(timezone.utc) + SUBSCRIPTION_LIFETIME
        try:
            data = await self._client.create_subscription(
                resource=f"/communications/onlineMeetings/{meeting_id}/transcripts",
                notification_url=self._notification_url,
                client_state=self._client_state,
                expiration=expiration,
            )
        except Exception:
            self._subscribing.discard(meeting_id)
            raise

        subscription_id = data.get("id")
        if meeting_id not in self._subscribing:
            logger.info("webhook.stopped_while_subscribing", meeting_id=meeting_id)
            if subscription_id:
                await self._delete_quietly(meeting_id, subscription_id)
            return
        self._subscribing.discard(meeting_id)
        if not subscription_id:
            raise PlatformError(
                f"subscription for meeting {meeting_id} created without an id: {data!r}"
            )

        subscription = _Subscription(
            subscription_id=subscription_id,
            meeting_id=meeting_id,
            expires_at=_parse_expiry(data.get("expirationDateTime"), expiration),
        )
        subscription.renewal_task = asyncio.create_task(
            self._renewal_loop(subscription),
            name=f"subscription-renewal-{meeting_id}",
        )
        self._subscriptions[meeting_id] = subscription
        logger.info(
            "webhook.subscribed",
            meeting_id=meeting_id,
            subscription_id=subscription.subscription_id,
            expires_at=subscription.expires_at.isoformat(),
        )

    async def stop(self, meeting_id: str) -> None:
        self._subscribing.discard(meeting_id)
        subscription = self._subscriptions.pop(meeting_id, None)
        self._forget_meeting(meeting_id)
        if subscription is None:
            return

        task = subscription.renewal_task
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        await self._delete_quietly(meeting_id, subscription.subscription_id)

    async def _delete_quietly(self, meeting_id: str, subscription_id: str) -> None:
        try:
            await self._client.delete_subscription(subscription_id)
        except Exception:
            logger.error(
                "webhook.unsubscribe_failed",
                meeting_id=meeting_id,
                subscription_id=subscription_id,
                exc_info=True,
            )
            return
        logger.info("webhook.unsubscribed", meeting_id=meeting_id, subscription_id=subscription_id)

    async def _renewal_loop(self, subscription: _Subscription) -> None:
        while True:
            await asyncio.sleep(RENEWAL_INTERVAL_SECONDS)
            await self.renew(subscription)

    async def renew(self, subscription: _Subscription) -> bool:
        """Attempt one renewal. Returns True on success."""
        expiration = datetime.now(timezone.utc) + SUBSCRIPTION_LIFETIME
        try:
            data = await self._client.renew_subscription(subscription.subscription_id, expiration)
        except Exception:
            subscription_renewals_total.labels(status="error").inc()
            logger.error(
                "webhook.renewal_failed",
                meeting_id=subscription.meeting_id,
                subscription_id=subscription.subscription_id,
                exc_info=True,
            )
            if not subscription.lapsed and datetime.now(timezone.utc) >= subscription.expires_at:
                subscription.lapsed = True
                subscription_renewals_total.labels(status="lapsed").inc()
                logger.critical(
                    "webhook.subscription_lapsed",
                    meeting_id=subscription.meeting_id,
                    subscription_id=subscription.subscription_id,
                    expired_at=subscription.expires_at.isoformat(),
                )
            return False

        subscription.expires_at = _parse_expiry(data.get("expirationDateTime"), expiration)
        subscription.lapsed = False
        subscription_renewals_total.labels(status="success").inc()
        logger.info(
            "webhook.renewed",
            meeting_id=subscription.meeting_id,
            subscription_id=subscription.subscription_id,
            expires_at=subscription.expires_at.isoformat(),
        )
        return True

    def validate_client_state(self, client_state: str | None) -> bool:
        return bool(client_state) and hmac.compare_digest(client_state, self._client_state)

    async def process_notification(self, notification: dict) -> int:
        """Handle one change-notification item.

        Returns:
            Number of segments appended (0 when the item was rejected or
            ignored).
        """
        if not self.validate_client_state(notification.get("clientState")):
            logger.warning(
                "webhook.invalid_client_state",
                subscription_id=notification.get("subscriptionId"),
            )
            return 0

        parsed = parse_transcript_resource(notification.get("resource", ""))
        if parsed is None:
            logger.warning("webhook.unrecognized_resource", resource=notification.get("resource"))
            return 0
        meeting_id, transcript_id = parsed

        if meeting_id not in self._subscriptions:
            logger.info("webhook.notification_for_inactive_meeting", meeting_id=meeting_id)
            return 0

        try:
            content = await self._client.get_transcript_content(meeting_id, transcript_id)
        except Exception:
            transcript_source_errors_total.labels(method="webhook", kind="error").inc()
            logger.error(
                "webhook.transcript_fetch_failed",
                meeting_id=meeting_id,
                transcript_id=transcript_id,
                exc_info=True,
            )
            return 0

        # Ingestion may have been stopped while the fetch was in flight
        if meeting_id not in self._subscriptions:
            return 0
        return self._ingest(meeting_id, (meeting_id, transcript_id), content)
