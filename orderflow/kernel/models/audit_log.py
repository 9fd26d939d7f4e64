"""
Immutable audit log.

Entries are appended after the triggering transition commits. This table is
append-only - no updates or deletes.
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import DateTime, Index, JSON, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from orderflow.kernel.models.base import Base, generate_uuid, utcnow


class AuditEventType(str, Enum):
    """All event types for the audit log."""

    # Order lifecycle
    ORDER_CREATED = "ORDER_CREATED"
    STATUS_CHANGED = "STATUS_CHANGED"
    WRITER_ASSIGNED = "WRITER_ASSIGNED"
    ORDER_DELIVERED = "ORDER_DELIVERED"
    ORDER_CLOSED = "ORDER_CLOSED"

    # Writer work
    TASK_ACCEPTED = "TASK_ACCEPTED"
    TASK_REJECTED = "TASK_REJECTED"
    FILE_UPLOADED = "FILE_UPLOADED"
    SUBMISSION_FOR_QC = "SUBMISSION_FOR_QC"

    # QC
    SUBMISSION_APPROVED = "SUBMISSION_APPROVED"
    SUBMISSION_REJECTED = "SUBMISSION_REJECTED"

    # Client
    FEEDBACK_SUBMITTED = "FEEDBACK_SUBMITTED"
    REVISION_REQUESTED = "REVISION_REQUESTED"

    # Scheduled
    DEADLINE_REMINDER_SENT = "DEADLINE_REMINDER_SENT"

    # Real-time
    SOCKET_UNAUTHORIZED_SUBSCRIBE = "SOCKET_UNAUTHORIZED_SUBSCRIBE"


class AuditLog(Base):
    """One state-changing action: who, in which role, did what to which resource."""

    __tablename__ = "audit_logs"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(),
        primary_key=True,
        default=generate_uuid,
    )
    event_type: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        index=True,
    )

    # Actor
    actor_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(),
        nullable=True,  # System events may not have an actor
    )
    actor_role: Mapped[Optional[str]] = mapped_column(
        String(20),
        nullable=True,
    )

    # Resource reference
    resource_type: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
    )
    resource_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
    )

    details: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        default="",
    )
    event_data: Mapped[dict] = mapped_column(
        JSON,
        nullable=False,
        default=dict,
    )
    context_code: Mapped[Optional[str]] = mapped_column(
        String(64),
        nullable=True,
    )

    ip_address: Mapped[Optional[str]] = mapped_column(
        String(45),  # IPv6 max length
        nullable=True,
    )
    user_agent: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
        index=True,
    )

    __table_args__ = (
        Index("ix_audit_logs_resource", "resource_type", "resource_id"),
        Index("ix_audit_logs_actor_time", "actor_id", "created_at"),
        Index("ix_audit_logs_type_time", "event_type", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<AuditLog {self.event_type} {self.resource_type}:{self.resource_id}>"
