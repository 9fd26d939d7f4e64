"""
Order model and its change history.

Order.status is the single authoritative status of an order. It is only ever
written by the lifecycle state machine, through a conditional update.
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, Index, JSON, String, Text, Uuid
from sqlalchemy import Enum as SAEnum
from sqlalchemy.orm import Mapped, mapped_column

from orderflow.kernel.models.base import Base, TimestampMixin, generate_uuid, utcnow
from orderflow.kernel.models.user import UserRole


class OrderStatus(str, Enum):
    """Every status an order can hold. Phases live in orchestration.transitions."""

    # Query
    PENDING_QUERY = "pending_query"
    QUOTATION_SENT = "quotation_sent"
    ACCEPTED = "accepted"
    # Payment
    AWAITING_PAYMENT = "awaiting_payment"
    PAYMENT_REJECTED = "payment_rejected"
    PAYMENT_VERIFIED = "payment_verified"
    # Execution
    WRITER_ASSIGNED = "writer_assigned"
    IN_PROGRESS = "in_progress"
    # QC
    PENDING_QC = "pending_qc"
    REVISION_REQUIRED = "revision_required"
    APPROVED = "approved"
    # Delivery
    DELIVERED = "delivered"
    # Terminal
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    QUERY_REJECTED = "query_rejected"


def _enum_values(enum_cls):
    return [m.value for m in enum_cls]


class Order(Base, TimestampMixin):
    """A unit of commissioned work tracked from query to delivery."""

    __tablename__ = "orders"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(),
        primary_key=True,
        default=generate_uuid,
    )
    # Stable external code, never changes after creation
    external_code: Mapped[str] = mapped_column(
        String(32),
        unique=True,
        nullable=False,
    )
    client_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(),
        ForeignKey("users.id"),
        nullable=False,
        index=True,
    )
    writer_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(),
        ForeignKey("users.id"),
        nullable=True,
        index=True,
    )
    status: Mapped[OrderStatus] = mapped_column(
        SAEnum(OrderStatus, native_enum=False, length=40, values_callable=_enum_values),
        default=OrderStatus.PENDING_QUERY,
        nullable=False,
    )
    topic: Mapped[str] = mapped_column(
        String(500),
        nullable=False,
    )
    deadline: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    # Versioned real-time context identifier (see realtime.context.ContextCode)
    context_code: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        index=True,
    )
    details: Mapped[dict] = mapped_column(
        "metadata",
        JSON,
        nullable=False,
        default=dict,
    )

    __table_args__ = (
        Index("ix_orders_status_updated", "status", "updated_at"),
    )

    def __repr__(self) -> str:
        return f"<Order {self.external_code} {self.status.value}>"


class OrderHistory(Base):
    """Human-readable per-order change log, written inside the transition."""

    __tablename__ = "order_history"

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
    actor_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(),
        nullable=False,
    )
    actor_role: Mapped[UserRole] = mapped_column(
        SAEnum(UserRole, native_enum=False, length=20, values_callable=_enum_values),
        nullable=False,
    )
    action: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
    )
    from_status: Mapped[Optional[str]] = mapped_column(
        String(40),
        nullable=True,
    )
    to_status: Mapped[Optional[str]] = mapped_column(
        String(40),
        nullable=True,
    )
    description: Mapped[str] = mapped_column(
        Text,
        nullable=False,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<OrderHistory {self.order_id} {self.action}>"
