"""Persistence model for per-meeting configuration.

One row per meeting that has had its configuration changed from the
defaults. Meetings without a row run with the default configuration.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column

from src.meetbot.core.database import Base


class MeetingConfigurationModel(Base):
    """Stored MeetingConfiguration keyed by meeting id."""

    __tablename__ = "meeting_configurations"

    meeting_id: Mapped[str] = mapped_column(String(512), primary_key=True)
    summary_interval_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    auto_post_to_chat: Mapped[bool] = mapped_column(Boolean, nullable=False)
    late_joiner_notifications: Mapped[bool] = mapped_column(Boolean, nullable=False)
    retention_days: Mapped[int] = mapped_column(Integer, nullable=False)
    transcript_method: Mapped[str] = mapped_column(String(32), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )
