"""Submission, file version, revision and feedback schemas."""

import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from orderflow.kernel.models.revision import RevisionStatus
from orderflow.kernel.models.submission import SubmissionStatus
from orderflow.kernel.models.task_evaluation import EvaluationStatus


class FileVersionCreate(BaseModel):
    """Metadata of a file already stored by the upload service."""

    file_url: str = Field(..., min_length=1, max_length=1000)
    file_name: str = Field(..., min_length=1, max_length=255)
    file_size: Optional[int] = Field(None, ge=0)


class FileVersionResponse(BaseModel):
    id: uuid.UUID
    order_id: uuid.UUID
    version_number: int
    uploaded_by: uuid.UUID
    file_url: str
    file_name: str
    file_size: Optional[int] = None
    created_at: datetime

    class Config:
        from_attributes = True


class TaskEvaluationCreate(BaseModel):
    status: EvaluationStatus
    comment: Optional[str] = Field(None, max_length=2000)


class TaskEvaluationResponse(BaseModel):
    id: uuid.UUID
    order_id: uuid.UUID
    writer_id: uuid.UUID
    status: EvaluationStatus
    comment: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


class SubmissionCreate(BaseModel):
    """Submit an uploaded file version for QC."""

    file_version_id: uuid.UUID


class SubmissionApprove(BaseModel):
    """QC approval with optional metrics."""

    grammar_score: Optional[float] = Field(None, ge=0, le=100)
    ai_score: Optional[float] = Field(None, ge=0, le=100)
    plagiarism_score: Optional[float] = Field(None, ge=0, le=100)
    feedback: Optional[str] = Field(None, max_length=5000)


class SubmissionReject(BaseModel):
    """QC rejection. Feedback is checked by the engine, not here."""

    feedback: str = ""
    deadline: Optional[datetime] = None
    grammar_score: Optional[float] = Field(None, ge=0, le=100)
    ai_score: Optional[float] = Field(None, ge=0, le=100)
    plagiarism_score: Optional[float] = Field(None, ge=0, le=100)


class SubmissionResponse(BaseModel):
    id: uuid.UUID
    order_id: uuid.UUID
    writer_id: uuid.UUID
    file_version_id: uuid.UUID
    status: SubmissionStatus
    grammar_score: Optional[float] = None
    ai_score: Optional[float] = None
    plagiarism_score: Optional[float] = None
    feedback: Optional[str] = None
    reviewed_by: Optional[uuid.UUID] = None
    reviewed_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class RevisionRequestCreate(BaseModel):
    """Client asks for rework."""

    reason: str = Field(..., min_length=1, max_length=5000)
    deadline: datetime


class FeedbackCreate(BaseModel):
    """Client feedback, optionally with a 1-5 writer rating."""

    feedback: str = Field(..., min_length=1, max_length=5000)
    rating: Optional[int] = None


class RevisionRequestResponse(BaseModel):
    id: uuid.UUID
    order_id: uuid.UUID
    requested_by: uuid.UUID
    revision_number: int
    reason: str
    status: RevisionStatus
    deadline: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: datetime

    class Config:
        from_attributes = True
