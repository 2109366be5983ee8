"""Per-meeting configuration table.

Revision ID: 001_meeting_configurations
Revises:
Create Date: 2026-10-18

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "001_meeting_configurations"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "meeting_configurations",
        sa.Column("meeting_id", sa.String(512), primary_key=True),
        sa.Column("summary_interval_minutes", sa.Integer(), nullable=False),
        sa.Column("auto_post_to_chat", sa.Boolean(), nullable=False),
        sa.Column("late_joiner_notifications", sa.Boolean(), nullable=False),
        sa.Column("retention_days", sa.Integer(), nullable=False),
        sa.Column("transcript_method", sa.String(32), nullable=False),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.CheckConstraint(
            "summary_interval_minutes BETWEEN 5 AND 30",
            name="ck_meeting_configurations_interval",
        ),
        sa.CheckConstraint(
            "retention_days BETWEEN 30 AND 365",
            name="ck_meeting_configurations_retention",
        ),
    )


def downgrade() -> None:
    op.drop_table("meeting_configurations")
