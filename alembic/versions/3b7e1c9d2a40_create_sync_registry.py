"""create organizations, staff and bookings

Revision ID: 3b7e1c9d2a40
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""

from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "3b7e1c9d2a40"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "organizations",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("slug", sa.String(length=255), nullable=False, unique=True),
        sa.Column("external_team_id", sa.BigInteger(), nullable=True),
        sa.Column("tenant_id", sa.String(length=255), nullable=True),
        sa.Column(
            "status", sa.String(length=32), nullable=False, server_default="pending"
        ),
    )
    op.create_table(
        "staff",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "org_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("organizations.id"),
            nullable=False,
        ),
        sa.Column("email", sa.String(length=320), nullable=False),
        sa.Column(
            "display_name", sa.String(length=255), nullable=False, server_default=""
        ),
        sa.Column("role", sa.String(length=32), nullable=False, server_default="member"),
        sa.Column("external_user_id", sa.BigInteger(), nullable=True),
        sa.Column("external_event_type_id", sa.BigInteger(), nullable=True),
        sa.UniqueConstraint("org_id", "email"),
    )
    op.create_table(
        "bookings",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "expert_staff_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("staff.id"),
            nullable=False,
        ),
        sa.Column("start", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end", sa.DateTime(timezone=True), nullable=False),
        sa.Column("attendee_email", sa.String(length=320), nullable=False),
        sa.Column(
            "attendee_name", sa.String(length=255), nullable=False, server_default=""
        ),
        sa.Column(
            "status", sa.String(length=32), nullable=False, server_default="pending"
        ),
        sa.Column("external_booking_id", sa.BigInteger(), nullable=True, unique=True),
        sa.Column("idempotency_key", sa.String(length=255), nullable=True, unique=True),
        sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_bookings_expert_staff_id", "bookings", ["expert_staff_id"])


def downgrade() -> None:
    op.drop_index("ix_bookings_expert_staff_id", table_name="bookings")
    op.drop_table("bookings")
    op.drop_table("staff")
    op.drop_table("organizations")
