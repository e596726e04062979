"""Initial schema with ai_queue table

Revision ID: 001
Revises:
Create Date: 2025-01-01 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JOB_STATUSES = ("pending", "processing", "completed", "failed", "cancelled", "dead_letter")
REQUEST_TYPES = ("post_generation", "newsletter_intro", "content_summary")


def upgrade() -> None:
    # Create enums using raw SQL with IF NOT EXISTS
    op.execute(f"""
        DO $$ BEGIN
            CREATE TYPE ai_queue_status AS ENUM {JOB_STATUSES!r};
        EXCEPTION
            WHEN duplicate_object THEN null;
        END $$;
    """)

    op.execute(f"""
        DO $$ BEGIN
            CREATE TYPE ai_request_type AS ENUM {REQUEST_TYPES!r};
        EXCEPTION
            WHEN duplicate_object THEN null;
        END $$;
    """)

    op.create_table(
        "ai_queue",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("user_id", sa.String(255), nullable=True),
        sa.Column(
            "request_type",
            postgresql.ENUM(*REQUEST_TYPES, name="ai_request_type", create_type=False),
            nullable=False,
        ),
        sa.Column("input_data", postgresql.JSONB, nullable=False, server_default="{}"),
        sa.Column(
            "status",
            postgresql.ENUM(*JOB_STATUSES, name="ai_queue_status", create_type=False),
            nullable=False,
            server_default="pending",
        ),
        sa.Column("result", postgresql.JSONB, nullable=True),
        sa.Column("error_message", sa.Text, nullable=True),
        sa.Column("attempts", sa.Integer, nullable=False, server_default="0"),
        sa.Column("max_attempts", sa.Integer, nullable=False, server_default="3"),
        sa.Column("locked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("locked_by", sa.String(255), nullable=True),
        sa.Column("lease_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("clock_timestamp()"),
        ),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )

    # Claim query: eligible rows in FIFO order
    op.create_index("ix_ai_queue_status_created_at", "ai_queue", ["status", "created_at"])
    # Idempotency lookup
    op.create_index("ix_ai_queue_user_request_type", "ai_queue", ["user_id", "request_type"])


def downgrade() -> None:
    op.drop_index("ix_ai_queue_user_request_type")
    op.drop_index("ix_ai_queue_status_created_at")

    op.drop_table("ai_queue")

    op.execute("DROP TYPE IF EXISTS ai_request_type")
    op.execute("DROP TYPE IF EXISTS ai_queue_status")
