"""
Descriptions of post-commit side effects.

A transition builds these while its transaction is open and hands them to the
fan-out once the transaction has committed. Nothing here touches the database.
"""

import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from orderflow.kernel.models.audit_log import AuditEventType
from orderflow.kernel.models.base import utcnow
from orderflow.kernel.models.notification import NotificationType
from orderflow.kernel.models.user import UserRole


class SideEffect(BaseModel):
    """One audit entry to append."""

    actor_id: Optional[uuid.UUID] = None
    actor_role: Optional[UserRole] = None
    event_type: AuditEventType
    resource_type: str
    resource_id: str
    detail: str = ""
    event_data: Dict[str, Any] = Field(default_factory=dict)
    context_code: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None


class NotificationIntent(BaseModel):
    """
    A notification to fan out.

    Recipients are either named directly or resolved from roles through the
    directory at dispatch time; an empty recipient set is a no-op.
    """

    user_ids: List[uuid.UUID] = Field(default_factory=list)
    roles: List[UserRole] = Field(default_factory=list)
    type: NotificationType = NotificationType.INFO
    title: str
    message: str
    link_url: Optional[str] = None
    context_code: Optional[str] = None


class StatusChange(BaseModel):
    """Pushed to an order's live subscribers as `order:status_changed`."""

    order_id: uuid.UUID
    external_code: str
    context_code: str
    # Set when this change moved the order to a new context
    previous_context_code: Optional[str] = None
    from_status: Optional[str] = None
    to_status: str
    actor_role: UserRole
    changed_at: datetime = Field(default_factory=utcnow)

    def to_event(self) -> Dict[str, Any]:
        payload = self.model_dump(mode="json")
        payload["event"] = "order:status_changed"
        return payload


class PostCommitEffects(BaseModel):
    """Everything a committed transition wants to happen next."""

    audit: List[SideEffect] = Field(default_factory=list)
    notifications: List[NotificationIntent] = Field(default_factory=list)
    status_change: Optional[StatusChange] = None
