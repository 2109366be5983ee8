"""MeetingConfigService -- per-meeting configuration with defaults and caching.

Lookup order for a meeting: in-process cache, persisted row, defaults built
from Settings. Storage failures never block a meeting: reads fall back to
the defaults and a failed write still updates the cache.
"""

from __future__ import annotations

import asyncio

import structlog

from src.meetbot.config import Settings
from src.meetbot.meetings.repository import ConfigurationRepository
from src.meetbot.meetings.schemas import MeetingConfiguration, TranscriptMethod

logger = structlog.get_logger(__name__)


def default_configuration(settings: Settings) -> MeetingConfiguration:
    """Build (and validate) the default configuration from process settings."""
    return MeetingConfiguration(
        summary_interval_minutes=settings.DEFAULT_SUMMARY_INTERVAL_MINUTES,
        auto_post_to_chat=settings.DEFAULT_AUTO_POST_TO_CHAT,
        late_joiner_notifications=settings.DEFAULT_LATE_JOINER_NOTIFICATIONS,
        retention_days=settings.DEFAULT_RETENTION_DAYS,
        transcript_method=TranscriptMethod(settings.DEFAULT_TRANSCRIPT_METHOD),
    )


class MeetingConfigService:
    """Resolves and updates MeetingConfiguration per meeting.

    Args:
        repository: Persistent store, or None to keep configuration in memory only.
        defaults: Configuration used for meetings with nothing stored.
    """

    def __init__(
        self,
        repository: ConfigurationRepository | None,
        defaults: MeetingConfiguration,
    ) -> None:
        self._repository = repository
        self._defaults = defaults
        self._cache: dict[str, MeetingConfiguration] = {}
        self._lock = asyncio.Lock()

    @property
    def defaults(self) -> MeetingConfiguration:
        return self._defaults.model_copy()

    async def get(self, meeting_id: str) -> MeetingConfiguration:
        """Return a copy of the meeting's effective configuration."""
        cached = self._cache.get(meeting_id)
        if cached is not None:
            return cached.model_copy()

        stored: MeetingConfiguration | None = None
        if self._repository is not None:
            try:
                stored = await self._repository.get(meeting_id)
            except Exception:
                logger.warning("config.load_failed", meeting_id=meeting_id, exc_info=True)

        configuration = stored or self.defaults
        self._cache[meeting_id] = configuration
        logger.debug(
            "config.resolved",
            meeting_id=meeting_id,
            source="stored" if stored else "defaults",
        )
        return configuration.model_copy()

    async def update(
        self,
        meeting_id: str,
        configuration: MeetingConfiguration,
    ) -> MeetingConfiguration:
        """Validate and apply a new configuration for a meeting.

        Raises:
            pydantic.ValidationError: A value is out of range. Nothing is
                applied in that case.
        """
        validated = MeetingConfiguration.model_validate(configuration.model_dump())

        async with self._lock:
            if self._repository is not None:
                try:
                    await self._repository.upsert(meeting_id, validated)
                except Exception:
                    logger.error(
                        "config.persist_failed",
                        meeting_id=meeting_id,
                        hint="configuration kept in memory only",
                        exc_info=True,
                    )
            self._cache[meeting_id] = validated

        logger.info(
            "config.updated",
            meeting_id=meeting_id,
            **validated.model_dump(mode="json"),
        )
        return validated.model_copy()

    def evict(self, meeting_id: str) -> None:
        """Drop a meeting's cached configuration."""
        self._cache.pop(meeting_id, None)
