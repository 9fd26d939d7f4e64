"""
Pydantic schemas for API request/response validation.
"""

from orderflow.schemas.common import ErrorResponse, HealthResponse, PaginatedResponse
from orderflow.schemas.order import (
    AllowedActionsResponse,
    AssignWriterRequest,
    CloseOrderRequest,
    OrderActionRequest,
    OrderCreate,
    OrderHistoryResponse,
    OrderResponse,
)
from orderflow.schemas.submission import (
    FeedbackCreate,
    FileVersionCreate,
    FileVersionResponse,
    RevisionRequestCreate,
    RevisionRequestResponse,
    SubmissionApprove,
    SubmissionCreate,
    SubmissionReject,
    SubmissionResponse,
    TaskEvaluationCreate,
    TaskEvaluationResponse,
)
from orderflow.schemas.notification import (
    AuditLogResponse,
    MarkAllReadResponse,
    NotificationResponse,
    UnreadCountResponse,
)

__all__ = [
    # Common
    "ErrorResponse",
    "HealthResponse",
    "PaginatedResponse",
    # Orders
    "AllowedActionsResponse",
    "AssignWriterRequest",
    "CloseOrderRequest",
    "OrderActionRequest",
    "OrderCreate",
    "OrderHistoryResponse",
    "OrderResponse",
    # Work product
    "FeedbackCreate",
    "FileVersionCreate",
    "FileVersionResponse",
    "RevisionRequestCreate",
    "RevisionRequestResponse",
    "SubmissionApprove",
    "SubmissionCreate",
    "SubmissionReject",
    "SubmissionResponse",
    "TaskEvaluationCreate",
    "TaskEvaluationResponse",
    # Notifications & audit
    "AuditLogResponse",
    "MarkAllReadResponse",
    "NotificationResponse",
    "UnreadCountResponse",
]
