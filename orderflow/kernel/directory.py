"""
Role directory: answers "who are the active users holding this role".
"""

import uuid
from typing import List

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from orderflow.kernel.models.user import User, UserRole


class Directory:
    """Lookup of active users by role. An empty result is a valid answer."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def find_active_users_by_role(self, role: UserRole) -> List[User]:
        result = await self.session.execute(
            select(User)
            .where(User.role == role, User.is_active.is_(True))
            .order_by(User.created_at)
        )
        return list(result.scalars().all())

    async def find_active_user_ids_by_role(self, role: UserRole) -> List[uuid.UUID]:
        return [user.id for user in await self.find_active_users_by_role(role)]
