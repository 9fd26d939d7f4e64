"""
Deadline reminders already sent to a writer.
"""

import uuid
from datetime import datetime
from enum import Enum

from sqlalchemy import DateTime, ForeignKey, UniqueConstraint, Uuid
from sqlalchemy import Enum as SAEnum
from sqlalchemy.orm import Mapped, mapped_column

from orderflow.kernel.models.base import Base, generate_uuid, utcnow


class ReminderTier(str, Enum):
    """Hours before the deadline at which a reminder goes out."""

    HOURS_24 = "24h"
    HOURS_12 = "12h"
    HOURS_6 = "6h"
    HOURS_1 = "1h"


class DeadlineReminder(Base):
    """Sent at most once per (order, writer, tier)."""

    __tablename__ = "deadline_reminders"

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
    tier: Mapped[ReminderTier] = mapped_column(
        SAEnum(
            ReminderTier,
            native_enum=False,
            length=8,
            values_callable=lambda e: [m.value for m in e],
        ),
        nullable=False,
    )
    sent_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
    )

    __table_args__ = (
        UniqueConstraint("order_id", "writer_id", "tier", name="uq_deadline_reminders_order_writer_tier"),
    )
