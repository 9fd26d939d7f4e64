"""
Revision requests, client feedback and writer ratings.

Client feedback shares the revision_requests table: revision_number 0,
status completed. Real revision requests are numbered from 1.
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, Index, SmallInteger, Text, Uuid, text
from sqlalchemy import Enum as SAEnum
from sqlalchemy.orm import Mapped, mapped_column

from orderflow.kernel.models.base import Base, TimestampMixin, generate_uuid, utcnow


class RevisionStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"


FEEDBACK_REVISION_NUMBER = 0

_NUMBERED_PREDICATE = text("revision_number > 0")


class RevisionRequest(Base):
    """A tracked rework ask with deadline and per-order sequence number."""

    __tablename__ = "revision_requests"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(),
        primary_key=True,
        default=generate_uuid,
    )
    order_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(),
        ForeignKey("orders.id"),
        nullable=False,
        index=True,
    )
    requested_by: Mapped[uuid.UUID] = mapped_column(
        Uuid(),
        ForeignKey("users.id"),
        nullable=False,
    )
    revision_number: Mapped[int] = mapped_column(
        nullable=False,
    )
    reason: Mapped[str] = mapped_column(
        Text,
        nullable=False,
    )
    status: Mapped[RevisionStatus] = mapped_column(
        SAEnum(
            RevisionStatus,
            native_enum=False,
            length=20,
            values_callable=lambda e: [m.value for m in e],
        ),
        default=RevisionStatus.PENDING,
        nullable=False,
    )
    deadline: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
    )

    __table_args__ = (
        Index(
            "uq_revision_requests_order_number",
            "order_id",
            "revision_number",
            unique=True,
            sqlite_where=_NUMBERED_PREDICATE,
            postgresql_where=_NUMBERED_PREDICATE,
        ),
    )

    @property
    def is_feedback(self) -> bool:
        return self.revision_number == FEEDBACK_REVISION_NUMBER

    def __repr__(self) -> str:
        return f"<RevisionRequest order={self.order_id} #{self.revision_number}>"


class WriterRating(Base, TimestampMixin):
    """Client rating of a writer for one order; upserted on feedback."""

    __tablename__ = "writer_ratings"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(),
        primary_key=True,
        default=generate_uuid,
    )
    writer_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(),
        ForeignKey("users.id"),
        nullable=False,
    )
    order_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(),
        ForeignKey("orders.id"),
        nullable=False,
    )
    client_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(),
        ForeignKey("users.id"),
        nullable=False,
    )
    rating: Mapped[int] = mapped_column(
        SmallInteger,
        nullable=False,
    )
    review: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
    )

    __table_args__ = (
        Index("uq_writer_ratings_writer_order_client", "writer_id", "order_id", "client_id", unique=True),
    )
