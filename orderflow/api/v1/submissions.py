"""File version, task evaluation, submission and QC endpoints."""

import uuid
from typing import List, Optional

from fastapi import APIRouter, Query, status

from orderflow.api.deps import CurrentActor, Machine
from orderflow.config import get_settings
from orderflow.kernel.models.submission import SubmissionStatus
from orderflow.schemas.common import PaginatedResponse
from orderflow.schemas.submission import (
    FileVersionCreate,
    FileVersionResponse,
    SubmissionApprove,
    SubmissionCreate,
    SubmissionReject,
    SubmissionResponse,
    TaskEvaluationCreate,
    TaskEvaluationResponse,
)

router = APIRouter()
settings = get_settings()


@router.post(
    "/orders/{order_id}/files",
    response_model=FileVersionResponse,
    status_code=status.HTTP_201_CREATED,
)
async def record_file_version(
    order_id: uuid.UUID,
    data: FileVersionCreate,
    actor: CurrentActor,
    machine: Machine,
):
    """Register an uploaded file as the order's next version (assigned writer)."""
    version = await machine.record_file_version(
        order_id, actor, data.file_url, data.file_name, data.file_size
    )
    return FileVersionResponse.model_validate(version)


@router.get("/orders/{order_id}/files", response_model=List[FileVersionResponse])
async def list_file_versions(order_id: uuid.UUID, actor: CurrentActor, machine: Machine):
    versions = await machine.file_history(order_id, actor)
    return [FileVersionResponse.model_validate(v) for v in versions]


@router.post(
    "/orders/{order_id}/evaluation",
    response_model=TaskEvaluationResponse,
    status_code=status.HTTP_201_CREATED,
)
async def evaluate_task(
    order_id: uuid.UUID,
    data: TaskEvaluationCreate,
    actor: CurrentActor,
    machine: Machine,
):
    evaluation = await machine.evaluate_task(order_id, actor, data.status, data.comment)
    return TaskEvaluationResponse.model_validate(evaluation)


@router.post(
    "/orders/{order_id}/submissions",
    response_model=SubmissionResponse,
    status_code=status.HTTP_201_CREATED,
)
async def submit_work(
    order_id: uuid.UUID,
    data: SubmissionCreate,
    actor: CurrentActor,
    machine: Machine,
):
    submission = await machine.submit_work(order_id, actor, data.file_version_id)
    return SubmissionResponse.model_validate(submission)


@router.get("/orders/{order_id}/qc-feedback", response_model=Optional[SubmissionResponse])
async def latest_qc_feedback(order_id: uuid.UUID, actor: CurrentActor, machine: Machine):
    """Most recent reviewed submission with QC feedback, or null."""
    submission = await machine.latest_feedback(order_id, actor)
    return SubmissionResponse.model_validate(submission) if submission else None


@router.get("/submissions/qc-queue", response_model=PaginatedResponse[SubmissionResponse])
async def qc_queue(
    actor: CurrentActor,
    machine: Machine,
    status_filter: SubmissionStatus = Query(SubmissionStatus.PENDING_QC, alias="status"),
    page: int = Query(1, ge=1),
    page_size: int = Query(settings.default_page_size, ge=1, le=settings.max_page_size),
):
    submissions, total = await machine.qc_queue(
        actor, status_filter, page=page, page_size=page_size
    )
    return PaginatedResponse.create(
        items=[SubmissionResponse.model_validate(s) for s in submissions],
        total=total,
        page=page,
        page_size=page_size,
    )


@router.post("/submissions/{submission_id}/approve", response_model=SubmissionResponse)
async def approve_submission(
    submission_id: uuid.UUID,
    data: SubmissionApprove,
    actor: CurrentActor,
    machine: Machine,
):
    submission = await machine.approve_submission(
        submission_id,
        actor,
        grammar_score=data.grammar_score,
        ai_score=data.ai_score,
        plagiarism_score=data.plagiarism_score,
        feedback=data.feedback,
    )
    return SubmissionResponse.model_validate(submission)


@router.post("/submissions/{submission_id}/reject", response_model=SubmissionResponse)
async def reject_submission(
    submission_id: uuid.UUID,
    data: SubmissionReject,
    actor: CurrentActor,
    machine: Machine,
):
    """Send work back; opens the next numbered revision request."""
    submission, _ = await machine.reject_submission(
        submission_id,
        actor,
        data.feedback,
        deadline=data.deadline,
        grammar_score=data.grammar_score,
        ai_score=data.ai_score,
        plagiarism_score=data.plagiarism_score,
    )
    return SubmissionResponse.model_validate(submission)
