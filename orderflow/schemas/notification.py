"""Notification and audit schemas."""

import uuid
from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel

from orderflow.kernel.models.notification import NotificationType


class NotificationResponse(BaseModel):
    id: uuid.UUID
    user_id: uuid.UUID
    type: NotificationType
    title: str
    message: str
    link_url: Optional[str] = None
    context_code: Optional[str] = None
    is_read: bool
    created_at: datetime

    class Config:
        from_attributes = True


class UnreadCountResponse(BaseModel):
    unread: int


class MarkAllReadResponse(BaseModel):
    updated: int


class AuditLogResponse(BaseModel):
    id: uuid.UUID
    event_type: str
    actor_id: Optional[uuid.UUID] = None
    actor_role: Optional[str] = None
    resource_type: str
    resource_id: str
    details: str
    event_data: Dict[str, Any]
    context_code: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True
