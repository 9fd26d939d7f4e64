"""
Writer work product: immutable file versions and QC submissions.
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import BigInteger, DateTime, Float, ForeignKey, Index, String, Text, Uuid, text
from sqlalchemy import Enum as SAEnum
from sqlalchemy.orm import Mapped, mapped_column

from orderflow.kernel.models.base import Base, TimestampMixin, generate_uuid, utcnow


class SubmissionStatus(str, Enum):
    """QC lifecycle of a single submission."""

    PENDING_QC = "pending_qc"
    APPROVED = "approved"
    REVISION_REQUIRED = "revision_required"
    COMPLETED = "completed"
    # Order closed or cancelled while this was still open
    WITHDRAWN = "withdrawn"


# At most one submission per order may hold one of these at a time
ACTIVE_SUBMISSION_STATUSES = (SubmissionStatus.PENDING_QC, SubmissionStatus.APPROVED)

_ACTIVE_PREDICATE = text("status IN ('pending_qc', 'approved')")


class FileVersion(Base):
    """
    An uploaded file for an order.

    Immutable once created. version_number is allocated as per-order max + 1
    at insert time; blob storage itself is handled elsewhere.
    """

    __tablename__ = "file_versions"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(),
        primary_key=True,
        default=generate_uuid,
    )
    order_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(),
        ForeignKey("orders.id"),
        nullable=False,
    )
    version_number: Mapped[int] = mapped_column(
        nullable=False,
    )
    uploaded_by: Mapped[uuid.UUID] = mapped_column(
        Uuid(),
        ForeignKey("users.id"),
        nullable=False,
    )
    file_url: Mapped[str] = mapped_column(
        String(1000),
        nullable=False,
    )
    file_name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )
    file_size: Mapped[Optional[int]] = mapped_column(
        BigInteger,
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
    )

    __table_args__ = (
        Index("uq_file_versions_order_version", "order_id", "version_number", unique=True),
    )

    def __repr__(self) -> str:
        return f"<FileVersion order={self.order_id} v{self.version_number}>"


class Submission(Base, TimestampMixin):
    """A writer's delivered work awaiting (or past) quality review."""

    __tablename__ = "submissions"

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
    writer_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(),
        ForeignKey("users.id"),
        nullable=False,
    )
    file_version_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(),
        ForeignKey("file_versions.id"),
        nullable=False,
    )
    status: Mapped[SubmissionStatus] = mapped_column(
        SAEnum(
            SubmissionStatus,
            native_enum=False,
            length=30,
            values_callable=lambda e: [m.value for m in e],
        ),
        default=SubmissionStatus.PENDING_QC,
        nullable=False,
    )

    # QC metrics, filled in by the reviewing admin
    grammar_score: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    ai_score: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    plagiarism_score: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    feedback: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
    )
    reviewed_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(),
        nullable=True,
    )
    reviewed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    __table_args__ = (
        Index("ix_submissions_status_created", "status", "created_at"),
        Index(
            "uq_submissions_one_active_per_order",
            "order_id",
            unique=True,
            sqlite_where=_ACTIVE_PREDICATE,
            postgresql_where=_ACTIVE_PREDICATE,
        ),
    )

    def __repr__(self) -> str:
        return f"<Submission {self.id} {self.status.value}>"
