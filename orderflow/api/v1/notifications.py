"""Notification inbox endpoints. Every route is scoped to the caller."""

import uuid
from typing import Optional

from fastapi import APIRouter, Query, status

from orderflow.api.deps import CurrentActor, DbSession
from orderflow.config import get_settings
from orderflow.engines.notifications.inbox import NotificationInbox
from orderflow.kernel.models.notification import NotificationType
from orderflow.schemas.common import PaginatedResponse
from orderflow.schemas.notification import (
    MarkAllReadResponse,
    NotificationResponse,
    UnreadCountResponse,
)

router = APIRouter()
settings = get_settings()


@router.get("", response_model=PaginatedResponse[NotificationResponse])
async def list_notifications(
    actor: CurrentActor,
    db: DbSession,
    page: int = Query(1, ge=1),
    page_size: int = Query(settings.default_page_size, ge=1, le=settings.max_page_size),
    unread_only: bool = False,
    type_filter: Optional[NotificationType] = Query(None, alias="type"),
):
    items, total = await NotificationInbox(db).list_notifications(
        actor.user_id,
        page=page,
        page_size=page_size,
        unread_only=unread_only,
        type_filter=type_filter,
    )
    return PaginatedResponse.create(
        items=[NotificationResponse.model_validate(n) for n in items],
        total=total,
        page=page,
        page_size=page_size,
    )


@router.get("/unread-count", response_model=UnreadCountResponse)
async def unread_count(actor: CurrentActor, db: DbSession):
    return UnreadCountResponse(unread=await NotificationInbox(db).unread_count(actor.user_id))


@router.post("/read-all", response_model=MarkAllReadResponse)
async def mark_all_read(actor: CurrentActor, db: DbSession):
    updated = await NotificationInbox(db).mark_all_read(actor.user_id)
    return MarkAllReadResponse(updated=updated)


@router.post("/{notification_id}/read", response_model=NotificationResponse)
async def mark_read(notification_id: uuid.UUID, actor: CurrentActor, db: DbSession):
    notification = await NotificationInbox(db).mark_read(actor.user_id, notification_id)
    return NotificationResponse.model_validate(notification)


@router.delete("/{notification_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_notification(notification_id: uuid.UUID, actor: CurrentActor, db: DbSession):
    await NotificationInbox(db).delete(actor.user_id, notification_id)
