"""Client revision requests and feedback."""

import uuid
from typing import List

from fastapi import APIRouter, status

from orderflow.api.deps import CurrentActor, Machine
from orderflow.schemas.submission import (
    FeedbackCreate,
    RevisionRequestCreate,
    RevisionRequestResponse,
)

router = APIRouter()


@router.post(
    "/orders/{order_id}/revisions",
    response_model=RevisionRequestResponse,
    status_code=status.HTTP_201_CREATED,
)
async def request_revision(
    order_id: uuid.UUID,
    data: RevisionRequestCreate,
    actor: CurrentActor,
    machine: Machine,
):
    revision = await machine.request_revision(order_id, actor, data.reason, data.deadline)
    return RevisionRequestResponse.model_validate(revision)


@router.get("/orders/{order_id}/revisions", response_model=List[RevisionRequestResponse])
async def revision_history(order_id: uuid.UUID, actor: CurrentActor, machine: Machine):
    """Numbered revision requests, newest first."""
    revisions = await machine.revision_history(order_id, actor)
    return [RevisionRequestResponse.model_validate(r) for r in revisions]


@router.post(
    "/orders/{order_id}/feedback",
    response_model=RevisionRequestResponse,
    status_code=status.HTTP_201_CREATED,
)
async def submit_feedback(
    order_id: uuid.UUID,
    data: FeedbackCreate,
    actor: CurrentActor,
    machine: Machine,
):
    entry = await machine.submit_feedback(order_id, actor, data.feedback, data.rating)
    return RevisionRequestResponse.model_validate(entry)
