"""create booking activity and deleted google events

Revision ID: 20261019_03
Revises: 20261019_02
Create Date: 2026-10-19 09:20:00
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "20261019_03"
down_revision: Union[str, None] = "20261019_02"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "booking_activity",
        sa.Column("id", sa.Integer(), sa.Identity(), primary_key=True, nullable=False),
        sa.Column("booking_id", sa.Integer(), nullable=False),
        sa.Column("action", sa.String(length=32), nullable=False),
        sa.Column("actor_user_id", sa.Integer(), nullable=True),
        sa.Column("details", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.ForeignKeyConstraint(["booking_id"], ["bookings.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["actor_user_id"], ["users.id"], ondelete="SET NULL"),
    )
    op.create_index("ix_booking_activity_id", "booking_activity", ["id"], unique=False)
    op.create_index("ix_booking_activity_booking_id", "booking_activity", ["booking_id"], unique=False)

    op.create_table(
        "deleted_google_events",
        sa.Column("id", sa.Integer(), sa.Identity(), primary_key=True, nullable=False),
        sa.Column("google_event_id", sa.String(length=1024), nullable=False),
        sa.Column("google_calendar_id", sa.String(length=255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.UniqueConstraint("google_event_id", name="uq_deleted_google_events_event_id"),
    )
    op.create_index("ix_deleted_google_events_id", "deleted_google_events", ["id"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_deleted_google_events_id", table_name="deleted_google_events")
    op.drop_table("deleted_google_events")
    op.drop_index("ix_booking_activity_booking_id", table_name="booking_activity")
    op.drop_index("ix_booking_activity_id", table_name="booking_activity")
    op.drop_table("booking_activity")
