"""create bookings

Revision ID: 20261019_02
Revises: 20261019_01
Create Date: 2026-10-19 09:10:00
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "20261019_02"
down_revision: Union[str, None] = "20261019_01"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "bookings",
        sa.Column("id", sa.Integer(), sa.Identity(), primary_key=True, nullable=False),
        sa.Column("room_id", sa.Integer(), nullable=False),
        sa.Column("host_user_id", sa.Integer(), nullable=True),
        sa.Column("organizer_email", sa.String(length=255), nullable=True),
        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("start_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="scheduled"),
        sa.Column("source", sa.String(length=20), nullable=False, server_default="web"),
        sa.Column("check_in_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("extended_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_recurring", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("recurring_parent_id", sa.Integer(), nullable=True),
        sa.Column("recurrence_rule", sa.JSON(), nullable=True),
        sa.Column("recurrence_end_date", sa.Date(), nullable=True),
        sa.Column("google_event_id", sa.String(length=1024), nullable=True),
        sa.Column("google_calendar_id", sa.String(length=255), nullable=True),
        sa.Column("last_synced_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("action_token", sa.String(length=128), nullable=True),
        sa.Column("action_token_issued_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("overdue_reminder_sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.ForeignKeyConstraint(["room_id"], ["rooms.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["host_user_id"], ["users.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["recurring_parent_id"], ["bookings.id"], ondelete="CASCADE"),
        sa.CheckConstraint("end_time > start_time", name="ck_bookings_time_range"),
        sa.UniqueConstraint("google_event_id", name="uq_bookings_google_event_id"),
        sa.UniqueConstraint("action_token", name="uq_bookings_action_token"),
    )
    op.create_index("ix_bookings_id", "bookings", ["id"], unique=False)
    op.create_index("ix_bookings_room_id", "bookings", ["room_id"], unique=False)
    op.create_index("ix_bookings_host_user_id", "bookings", ["host_user_id"], unique=False)
    op.create_index("ix_bookings_recurring_parent_id", "bookings", ["recurring_parent_id"], unique=False)
    op.create_index("ix_bookings_status", "bookings", ["status"], unique=False)
    op.create_index("ix_bookings_start_time", "bookings", ["start_time"], unique=False)
    op.create_index("ix_bookings_end_time", "bookings", ["end_time"], unique=False)
    op.create_index("ix_bookings_room_window", "bookings", ["room_id", "start_time", "end_time"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_bookings_room_window", table_name="bookings")
    op.drop_index("ix_bookings_end_time", table_name="bookings")
    op.drop_index("ix_bookings_start_time", table_name="bookings")
    op.drop_index("ix_bookings_status", table_name="bookings")
    op.drop_index("ix_bookings_recurring_parent_id", table_name="bookings")
    op.drop_index("ix_bookings_host_user_id", table_name="bookings")
    op.drop_index("ix_bookings_room_id", table_name="bookings")
    op.drop_index("ix_bookings_id", table_name="bookings")
    op.drop_table("bookings")
