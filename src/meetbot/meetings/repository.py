"""Configuration repository -- async persistence of MeetingConfiguration.

Uses the session_factory callable pattern: the factory is an async generator
yielding AsyncSession instances, so tests can substitute their own.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, Callable

import structlog
from sqlalchemy import func, select
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession

from src.meetbot.meetings.models import MeetingConfigurationModel
from src.meetbot.meetings.schemas import MeetingConfiguration, TranscriptMethod

logger = structlog.get_logger(__name__)


def _model_to_configuration(model: MeetingConfigurationModel) -> MeetingConfiguration:
    """Convert MeetingConfigurationModel to MeetingConfiguration schema."""
    return MeetingConfiguration(
        summary_interval_minutes=model.summary_interval_minutes,
        auto_post_to_chat=model.auto_post_to_chat,
        late_joiner_notifications=model.late_joiner_notifications,
        retention_days=model.retention_days,
        transcript_method=TranscriptMethod(model.transcript_method),
    )


class ConfigurationRepository:
    """Reads and upserts per-meeting configuration rows.

    Args:
        session_factory: Async callable that yields AsyncSession instances.
    """

    def __init__(
        self, session_factory: Callable[..., AsyncGenerator[AsyncSession, None]]
    ) -> None:
        self._session_factory = session_factory

    async def get(self, meeting_id: str) -> MeetingConfiguration | None:
        """Load a meeting's stored configuration, or None if it has none."""
        async for session in self._session_factory():
            stmt = select(MeetingConfigurationModel).where(
                MeetingConfigurationModel.meeting_id == meeting_id
            )
            result = await session.execute(stmt)
            model = result.scalar_one_or_none()
            if model is None:
                return None
            return _model_to_configuration(model)
        return None

    async def upsert(self, meeting_id: str, configuration: MeetingConfiguration) -> None:
        """Insert or replace a meeting's configuration row."""
        values = {
            "summary_interval_minutes": configuration.summary_interval_minutes,
            "auto_post_to_chat": configuration.auto_post_to_chat,
            "late_joiner_notifications": configuration.late_joiner_notifications,
            "retention_days": configuration.retention_days,
            "transcript_method": configuration.transcript_method.value,
        }
        stmt = insert(MeetingConfigurationModel).values(meeting_id=meeting_id, **values)
        stmt = stmt.on_conflict_do_update(
            index_elements=[MeetingConfigurationModel.meeting_id],
            set_={**values, "updated_at": func.now()},
        )
        async for session in self._session_factory():
            await session.execute(stmt)
            await session.commit()
            logger.info("config_repository.upserted", meeting_id=meeting_id)
