"""
SQLAlchemy database models.
Defines the AI queue job table.
"""

from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import (
    DateTime,
    Enum,
    Index,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from ai_queue.constants import (
    DEFAULT_MAX_ATTEMPTS,
    JobStatus,
    RequestType,
)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


def _enum_values(enum_cls) -> list[str]:
    return [e.value for e in enum_cls]


class AiQueueJob(Base):
    """
    A unit of AI generation work in the queue.

    This row is the single source of truth for the job's state; every
    transition is a conditional update against it.

    Key constraints:
    - attempts only grows, and only inside the atomic claim
    - locked_by / locked_at / lease_expires_at are set only while processing
    - processed_at is set once the job is resolved
    """

    __tablename__ = "ai_queue"

    # Primary key
    id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True),
        primary_key=True,
        default=uuid4,
        nullable=False,
    )

    # Attribution
    user_id: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
    )

    # Work description
    request_type: Mapped[RequestType] = mapped_column(
        Enum(
            RequestType,
            name="ai_request_type",
            create_constraint=True,
            values_callable=_enum_values,
        ),
        nullable=False,
    )
    input_data: Mapped[dict] = mapped_column(
        JSONB,
        nullable=False,
        default=dict,
    )

    # Status
    status: Mapped[JobStatus] = mapped_column(
        Enum(
            JobStatus,
            name="ai_queue_status",
            create_constraint=True,
            values_callable=_enum_values,
        ),
        nullable=False,
        default=JobStatus.PENDING,
    )

    # Outcome
    result: Mapped[dict | None] = mapped_column(
        JSONB,
        nullable=True,
    )
    error_message: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )

    # Retry tracking
    attempts: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )
    max_attempts: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=DEFAULT_MAX_ATTEMPTS,
    )

    # Ownership
    locked_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    locked_by: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
    )
    lease_expires_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.clock_timestamp(),
    )
    processed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    __table_args__ = (
        # Claim query: eligible rows in FIFO order
        Index("ix_ai_queue_status_created_at", "status", "created_at"),
        # Idempotency lookup
        Index("ix_ai_queue_user_request_type", "user_id", "request_type"),
    )

    def __repr__(self) -> str:
        return (
            f"AiQueueJob(id={self.id}, type={self.request_type}, "
            f"status={self.status}, attempts={self.attempts}/{self.max_attempts})"
        )
