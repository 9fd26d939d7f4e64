"""
Kernel Data Models

Core SQLAlchemy models for orders and everything an order owns, plus the
independently owned notification and audit facts.
"""

from orderflow.kernel.models.base import Base, TimestampMixin, ensure_aware, generate_uuid, utcnow
from orderflow.kernel.models.user import User, UserRole
from orderflow.kernel.models.order import Order, OrderHistory, OrderStatus
from orderflow.kernel.models.submission import (
    ACTIVE_SUBMISSION_STATUSES,
    FileVersion,
    Submission,
    SubmissionStatus,
)
from orderflow.kernel.models.revision import (
    FEEDBACK_REVISION_NUMBER,
    RevisionRequest,
    RevisionStatus,
    WriterRating,
)
from orderflow.kernel.models.task_evaluation import EvaluationStatus, TaskEvaluation
from orderflow.kernel.models.deadline_reminder import DeadlineReminder, ReminderTier
from orderflow.kernel.models.notification import Notification, NotificationType
from orderflow.kernel.models.audit_log import AuditEventType, AuditLog

__all__ = [
    # Base
    "Base",
    "TimestampMixin",
    "ensure_aware",
    "generate_uuid",
    "utcnow",
    # User
    "User",
    "UserRole",
    # Order
    "Order",
    "OrderHistory",
    "OrderStatus",
    # Work product
    "ACTIVE_SUBMISSION_STATUSES",
    "FileVersion",
    "Submission",
    "SubmissionStatus",
    "FEEDBACK_REVISION_NUMBER",
    "RevisionRequest",
    "RevisionStatus",
    "WriterRating",
    "EvaluationStatus",
    "TaskEvaluation",
    "DeadlineReminder",
    "ReminderTier",
    # Fan-out facts
    "Notification",
    "NotificationType",
    "AuditEventType",
    "AuditLog",
]
