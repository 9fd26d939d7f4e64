"""Audit trail queries (admin only)."""

import uuid
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Query

from orderflow.api.deps import AdminActor, DbSession
from orderflow.kernel.events.audit_recorder import AuditStore
from orderflow.kernel.models.audit_log import AuditEventType
from orderflow.schemas.notification import AuditLogResponse

router = APIRouter()


@router.get("/resources/{resource_type}/{resource_id}", response_model=List[AuditLogResponse])
async def resource_history(
    resource_type: str,
    resource_id: str,
    _: AdminActor,
    db: DbSession,
    event_type: Optional[List[AuditEventType]] = Query(None),
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
):
    entries = await AuditStore(db).get_resource_history(
        resource_type, resource_id, event_types=event_type, limit=limit, offset=offset
    )
    return [AuditLogResponse.model_validate(e) for e in entries]


@router.get("/actors/{actor_id}", response_model=List[AuditLogResponse])
async def actor_activity(
    actor_id: uuid.UUID,
    _: AdminActor,
    db: DbSession,
    since: Optional[datetime] = None,
    until: Optional[datetime] = None,
    limit: int = Query(100, ge=1, le=500),
):
    entries = await AuditStore(db).get_actor_activity(
        actor_id, since=since, until=until, limit=limit
    )
    return [AuditLogResponse.model_validate(e) for e in entries]


@router.get("/counts/{event_type}")
async def count_events(
    event_type: AuditEventType,
    _: AdminActor,
    db: DbSession,
    since: Optional[datetime] = None,
):
    count = await AuditStore(db).count_events(event_type=event_type, since=since)
    return {"event_type": event_type.value, "count": count}
