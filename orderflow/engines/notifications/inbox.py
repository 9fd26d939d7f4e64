"""
Notification inbox: the durable fallback for clients that were offline.

Every operation is scoped to the recipient; another user's notification is
reported as not found.
"""

import uuid
from typing import List, Optional, Tuple

from sqlalchemy import delete, desc, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from orderflow.errors import NotFoundError
from orderflow.kernel.models.notification import Notification, NotificationType


class NotificationInbox:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def list_notifications(
        self,
        user_id: uuid.UUID,
        *,
        page: int = 1,
        page_size: int = 20,
        unread_only: bool = False,
        type_filter: Optional[NotificationType] = None,
    ) -> Tuple[List[Notification], int]:
        """Newest first. Returns (items, total matching)."""
        conditions = [Notification.user_id == user_id]
        if unread_only:
            conditions.append(Notification.is_read.is_(False))
        if type_filter is not None:
            conditions.append(Notification.type == type_filter)

        total = (
            await self.session.execute(select(func.count(Notification.id)).where(*conditions))
        ).scalar() or 0

        result = await self.session.execute(
            select(Notification)
            .where(*conditions)
            .order_by(desc(Notification.created_at))
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        return list(result.scalars().all()), total

    async def unread_count(self, user_id: uuid.UUID) -> int:
        result = await self.session.execute(
            select(func.count(Notification.id)).where(
                Notification.user_id == user_id,
                Notification.is_read.is_(False),
            )
        )
        return result.scalar() or 0

    async def mark_read(self, user_id: uuid.UUID, notification_id: uuid.UUID) -> Notification:
        notification = await self._get_owned(user_id, notification_id)
        notification.is_read = True
        await self.session.flush()
        return notification

    async def mark_all_read(self, user_id: uuid.UUID) -> int:
        result = await self.session.execute(
            update(Notification)
            .where(Notification.user_id == user_id, Notification.is_read.is_(False))
            .values(is_read=True)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    async def delete(self, user_id: uuid.UUID, notification_id: uuid.UUID) -> None:
        await self._get_owned(user_id, notification_id)
        await self.session.execute(
            delete(Notification).where(
                Notification.id == notification_id,
                Notification.user_id == user_id,
            )
        )

    async def _get_owned(self, user_id: uuid.UUID, notification_id: uuid.UUID) -> Notification:
        result = await self.session.execute(
            select(Notification).where(
                Notification.id == notification_id,
                Notification.user_id == user_id,
            )
        )
        notification = result.scalar_one_or_none()
        if notification is None:
            raise NotFoundError("Notification not found", context={"id": str(notification_id)})
        return notification
