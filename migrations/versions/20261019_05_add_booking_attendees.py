"""add attendee emails and response statuses to bookings

Revision ID: 20261019_05
Revises: 20261019_04
Create Date: 2026-10-19 09:40:00
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "20261019_05"
down_revision: Union[str, None] = "20261019_04"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.add_column(
        "bookings",
        sa.Column("attendee_emails", sa.JSON(), nullable=False, server_default=sa.text("'[]'")),
    )
    op.add_column(
        "bookings",
        sa.Column("attendee_response_statuses", sa.JSON(), nullable=False, server_default=sa.text("'{}'")),
    )


def downgrade() -> None:
    op.drop_column("bookings", "attendee_response_statuses")
    op.drop_column("bookings", "attendee_emails")
