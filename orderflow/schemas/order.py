"""
Order schemas.
"""

import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from orderflow.kernel.models.order import OrderStatus
from orderflow.kernel.models.user import UserRole


class OrderCreate(BaseModel):
    """Client order request."""

    topic: str = Field(..., min_length=1, max_length=500)
    deadline: Optional[datetime] = None
    details: Dict[str, Any] = Field(default_factory=dict)


class OrderActionRequest(BaseModel):
    """Apply a table-driven action (send_quotation, verify_payment, ...)."""

    action: str
    note: Optional[str] = Field(None, max_length=2000)


class AssignWriterRequest(BaseModel):
    writer_id: uuid.UUID
    note: Optional[str] = Field(None, max_length=2000)


class CloseOrderRequest(BaseModel):
    closure_reason: Optional[str] = Field(None, max_length=2000)


class OrderResponse(BaseModel):
    """Order response."""

    id: uuid.UUID
    external_code: str
    client_id: uuid.UUID
    writer_id: Optional[uuid.UUID] = None
    status: OrderStatus
    topic: str
    deadline: Optional[datetime] = None
    context_code: str
    details: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class OrderHistoryResponse(BaseModel):
    id: uuid.UUID
    order_id: uuid.UUID
    actor_id: uuid.UUID
    actor_role: UserRole
    action: str
    from_status: Optional[str] = None
    to_status: Optional[str] = None
    description: str
    created_at: datetime

    class Config:
        from_attributes = True


class AllowedActionsResponse(BaseModel):
    """Which actions the caller's role may take from the order's status."""

    status: OrderStatus
    phase: str
    actions: List[str]
