"""
Notification dispatcher.

Persists one notification row per recipient, then pushes `notification:new`
to each recipient's live sessions and to the order's context channel.
Role-targeted intents are also broadcast to the role's sessions. The row is
the durable copy; the push is best effort.
"""

import uuid
from typing import Any, Dict, List

from orderflow.kernel.directory import Directory
from orderflow.kernel.events.side_effects import NotificationIntent
from orderflow.kernel.models.base import utcnow
from orderflow.kernel.models.notification import Notification
from orderflow.kernel.models.user import UserRole
from orderflow.kernel.persistence import PersistenceGateway
from orderflow.logging_config import get_logger
from orderflow.realtime.broker import SessionBroker
from orderflow.schemas.notification import NotificationResponse

logger = get_logger(__name__)


def notification_event(notification: Notification) -> Dict[str, Any]:
    payload = NotificationResponse.model_validate(notification).model_dump(mode="json")
    payload["event"] = "notification:new"
    return payload


class NotificationDispatcher:
    """Runs after the triggering transition has committed."""

    def __init__(self, gateway: PersistenceGateway, broker: SessionBroker):
        self.gateway = gateway
        self.broker = broker

    async def dispatch(self, intent: NotificationIntent) -> List[Notification]:
        """
        Deliver one intent. Never raises.

        Returns the persisted rows; empty if there were no recipients or the
        write failed.
        """
        try:
            async with self.gateway.unit_of_work() as session:
                recipients = list(intent.user_ids)
                directory = Directory(session)
                for role in intent.roles:
                    recipients.extend(await directory.find_active_user_ids_by_role(role))
                recipients = _unique(recipients)
                if not recipients:
                    logger.debug("Notification has no recipients", extra={"title": intent.title})
                    return []

                rows = [
                    Notification(
                        user_id=user_id,
                        type=intent.type,
                        title=intent.title,
                        message=intent.message,
                        link_url=intent.link_url,
                        context_code=intent.context_code,
                    )
                    for user_id in recipients
                ]
                session.add_all(rows)
                await session.flush()
        except Exception:
            logger.error(
                "Notification persist failed",
                exc_info=True,
                extra={"title": intent.title, "context_code": intent.context_code},
            )
            return []

        for row in rows:
            self._push(row)
        for role in intent.roles:
            self._broadcast(role, intent)
        return rows

    async def dispatch_many(self, intents: List[NotificationIntent]) -> List[Notification]:
        delivered: List[Notification] = []
        for intent in intents:
            delivered.extend(await self.dispatch(intent))
        return delivered

    def _push(self, row: Notification) -> None:
        try:
            payload = notification_event(row)
            self.broker.send_to_user(row.user_id, payload)
            if row.context_code:
                self.broker.publish(row.context_code, payload)
        except Exception:
            logger.error(
                "Real-time push failed",
                exc_info=True,
                extra={"notification_id": str(row.id)},
            )

    def _broadcast(self, role: UserRole, intent: NotificationIntent) -> None:
        """`notification:broadcast` to every live session of the role, for dashboards."""
        try:
            self.broker.send_to_role(
                role,
                {
                    "event": "notification:broadcast",
                    "role": role.value,
                    "type": intent.type.value,
                    "title": intent.title,
                    "message": intent.message,
                    "link_url": intent.link_url,
                    "context_code": intent.context_code,
                    "created_at": utcnow().isoformat(),
                },
            )
        except Exception:
            logger.error(
                "Role broadcast failed",
                exc_info=True,
                extra={"role": role.value, "title": intent.title},
            )


def _unique(ids: List[uuid.UUID]) -> List[uuid.UUID]:
    seen = set()
    ordered = []
    for user_id in ids:
        if user_id not in seen:
            seen.add(user_id)
            ordered.append(user_id)
    return ordered
