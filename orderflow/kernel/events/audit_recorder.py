"""
Append-only audit trail.

AuditStore works inside a caller's session. AuditRecorder is what
transitions use: it appends in its own unit of work after the transition has
committed, and a failure there is logged and never reaches the caller.
"""

import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import and_, desc, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from orderflow.kernel.events.side_effects import SideEffect
from orderflow.kernel.models.audit_log import AuditEventType, AuditLog
from orderflow.kernel.persistence import PersistenceGateway
from orderflow.logging_config import get_logger

logger = get_logger(__name__)


class AuditStore:
    """
    Reads and appends audit entries in an existing session.

    Usage:
        store = AuditStore(session)
        store.log(SideEffect(event_type=AuditEventType.ORDER_CLOSED, ...))
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    def log(self, effect: SideEffect) -> AuditLog:
        """Stage an audit entry; the caller's transaction commits it."""
        entry = AuditLog(
            event_type=effect.event_type.value,
            actor_id=effect.actor_id,
            actor_role=effect.actor_role.value if effect.actor_role else None,
            resource_type=effect.resource_type,
            resource_id=effect.resource_id,
            details=effect.detail,
            event_data=self._serialize_payload(effect.event_data),
            context_code=effect.context_code,
            ip_address=effect.ip_address,
            user_agent=effect.user_agent,
        )
        self.session.add(entry)
        return entry

    async def get_resource_history(
        self,
        resource_type: str,
        resource_id: str,
        event_types: Optional[List[AuditEventType]] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[AuditLog]:
        """
        Get the audit history of one resource.

        Returns:
            List of AuditLog records, newest first
        """
        query = select(AuditLog).where(
            and_(
                AuditLog.resource_type == resource_type,
                AuditLog.resource_id == resource_id,
            )
        )
        if event_types:
            query = query.where(AuditLog.event_type.in_([t.value for t in event_types]))

        query = query.order_by(desc(AuditLog.created_at)).offset(offset).limit(limit)

        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def get_actor_activity(
        self,
        actor_id: uuid.UUID,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
        limit: int = 100,
    ) -> List[AuditLog]:
        """Everything one actor did, newest first."""
        query = select(AuditLog).where(AuditLog.actor_id == actor_id)

        if since:
            query = query.where(AuditLog.created_at >= since)
        if until:
            query = query.where(AuditLog.created_at <= until)

        query = query.order_by(desc(AuditLog.created_at)).limit(limit)

        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def count_events(
        self,
        event_type: Optional[AuditEventType] = None,
        resource_type: Optional[str] = None,
        resource_id: Optional[str] = None,
        actor_id: Optional[uuid.UUID] = None,
        since: Optional[datetime] = None,
    ) -> int:
        query = select(func.count(AuditLog.id))

        if event_type:
            query = query.where(AuditLog.event_type == event_type.value)
        if resource_type:
            query = query.where(AuditLog.resource_type == resource_type)
        if resource_id:
            query = query.where(AuditLog.resource_id == resource_id)
        if actor_id:
            query = query.where(AuditLog.actor_id == actor_id)
        if since:
            query = query.where(AuditLog.created_at >= since)

        result = await self.session.execute(query)
        return result.scalar() or 0

    def _serialize_payload(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Convert payload values to JSON-serializable types."""
        result = {}
        for key, value in payload.items():
            if isinstance(value, uuid.UUID):
                result[key] = str(value)
            elif isinstance(value, datetime):
                result[key] = value.isoformat()
            elif isinstance(value, dict):
                result[key] = self._serialize_payload(value)
            elif isinstance(value, list):
                result[key] = [
                    self._serialize_payload(v) if isinstance(v, dict)
                    else str(v) if isinstance(v, uuid.UUID)
                    else v.isoformat() if isinstance(v, datetime)
                    else v
                    for v in value
                ]
            elif hasattr(value, "value") and isinstance(getattr(value, "value"), str):
                result[key] = value.value
            else:
                result[key] = value
        return result


class AuditRecorder:
    """Post-commit audit appends, each in its own unit of work."""

    def __init__(self, gateway: PersistenceGateway):
        self.gateway = gateway

    async def record(self, effect: SideEffect) -> Optional[uuid.UUID]:
        """
        Append one entry.

        Returns the new entry id, or None if the append failed. The triggering
        transition has already committed, so failure is only logged.
        """
        try:
            async with self.gateway.unit_of_work() as session:
                entry = AuditStore(session).log(effect)
                await session.flush()
                return entry.id
        except Exception:
            logger.error(
                "Audit append failed",
                exc_info=True,
                extra={
                    "event_type": effect.event_type.value,
                    "resource_type": effect.resource_type,
                    "resource_id": effect.resource_id,
                },
            )
            return None

    async def record_many(self, effects: List[SideEffect]) -> None:
        for effect in effects:
            await self.record(effect)
