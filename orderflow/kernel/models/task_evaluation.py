"""
Writer's doable / not-doable verdict on an assigned order.
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, Text, UniqueConstraint, Uuid
from sqlalchemy import Enum as SAEnum
from sqlalchemy.orm import Mapped, mapped_column

from orderflow.kernel.models.base import Base, generate_uuid, utcnow


class EvaluationStatus(str, Enum):
    DOABLE = "doable"
    NOT_DOABLE = "not_doable"


class TaskEvaluation(Base):
    """Created at most once per (order, writer)."""

    __tablename__ = "task_evaluations"

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
    writer_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(),
        ForeignKey("users.id"),
        nullable=False,
    )
    status: Mapped[EvaluationStatus] = mapped_column(
        SAEnum(
            EvaluationStatus,
            native_enum=False,
            length=20,
            values_callable=lambda e: [m.value for m in e],
        ),
        nullable=False,
    )
    comment: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
    )

    __table_args__ = (
        UniqueConstraint("order_id", "writer_id", name="uq_task_evaluations_order_writer"),
    )
