"""
Submission / Revision Tracker.

Owns the work-product invariants of an order:
- file version numbers and revision numbers are per-order max + 1, allocated
  inside the INSERT and backed by unique indexes
- at most one submission per order is pending_qc or approved
- submission status moves only through conditional updates

All methods run inside the caller's unit of work and never commit.
"""

import uuid
from datetime import datetime
from typing import List, Optional, Tuple

from sqlalchemy import desc, func, insert, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from orderflow.errors import ConflictError, ValidationFailedError
from orderflow.kernel.models.base import generate_uuid, utcnow
from orderflow.kernel.models.revision import (
    FEEDBACK_REVISION_NUMBER,
    RevisionRequest,
    RevisionStatus,
    WriterRating,
)
from orderflow.kernel.models.submission import (
    ACTIVE_SUBMISSION_STATUSES,
    FileVersion,
    Submission,
    SubmissionStatus,
)
from orderflow.kernel.persistence import PersistenceGateway
from orderflow.logging_config import get_logger

logger = get_logger(__name__)

MIN_RATING = 1
MAX_RATING = 5


class SubmissionTracker:
    """
    Work-product bookkeeping for one unit of work.

    Usage:
        async with gateway.unit_of_work() as session:
            tracker = SubmissionTracker(gateway, session)
            fv = await tracker.record_file_version(order.id, writer_id, url, name)
            submission = await tracker.create_submission(order.id, writer_id, fv.id)
    """

    def __init__(self, gateway: PersistenceGateway, session: AsyncSession):
        self.gateway = gateway
        self.session = session

    # File versions

    async def record_file_version(
        self,
        order_id: uuid.UUID,
        uploaded_by: uuid.UUID,
        file_url: str,
        file_name: str,
        file_size: Optional[int] = None,
    ) -> FileVersion:
        return await self.gateway.insert_with_next_number(
            self.session,
            FileVersion,
            scope_column="order_id",
            scope_value=order_id,
            number_column="version_number",
            values={
                "uploaded_by": uploaded_by,
                "file_url": file_url,
                "file_name": file_name,
                "file_size": file_size,
            },
        )

    async def get_file_version(self, file_version_id: uuid.UUID) -> FileVersion:
        return await self.gateway.get_by_id(
            self.session, FileVersion, file_version_id, label="File version"
        )

    async def file_history(self, order_id: uuid.UUID) -> List[FileVersion]:
        result = await self.session.execute(
            select(FileVersion)
            .where(FileVersion.order_id == order_id)
            .order_by(FileVersion.version_number)
        )
        return list(result.scalars().all())

    # Submissions

    async def get_submission(self, submission_id: uuid.UUID) -> Submission:
        return await self.gateway.get_by_id(
            self.session, Submission, submission_id, label="Submission"
        )

    async def active_submission(self, order_id: uuid.UUID) -> Optional[Submission]:
        """The submission currently pending QC or approved, if any."""
        result = await self.session.execute(
            select(Submission).where(
                Submission.order_id == order_id,
                Submission.status.in_(ACTIVE_SUBMISSION_STATUSES),
            )
        )
        return result.scalar_one_or_none()

    async def approved_submission(self, order_id: uuid.UUID) -> Optional[Submission]:
        result = await self.session.execute(
            select(Submission).where(
                Submission.order_id == order_id,
                Submission.status == SubmissionStatus.APPROVED,
            )
        )
        return result.scalar_one_or_none()

    async def create_submission(
        self,
        order_id: uuid.UUID,
        writer_id: uuid.UUID,
        file_version_id: uuid.UUID,
    ) -> Submission:
        """
        Open a new pending_qc submission.

        Raises:
            ConflictError: another submission is already pending QC or approved
        """
        if await self.active_submission(order_id) is not None:
            raise ConflictError(
                "A submission is already awaiting QC or approved for this order",
                context={"order_id": str(order_id)},
            )

        submission_id = generate_uuid()
        try:
            async with self.session.begin_nested():
                await self.session.execute(
                    insert(Submission.__table__).values(
                        id=submission_id,
                        order_id=order_id,
                        writer_id=writer_id,
                        file_version_id=file_version_id,
                        status=SubmissionStatus.PENDING_QC,
                    )
                )
        except IntegrityError:
            # Lost a race against a concurrent submit; the partial unique index held
            raise ConflictError(
                "A submission is already awaiting QC or approved for this order",
                context={"order_id": str(order_id)},
            ) from None
        return await self.get_submission(submission_id)

    async def approve(
        self,
        submission: Submission,
        reviewer_id: uuid.UUID,
        *,
        grammar_score: Optional[float] = None,
        ai_score: Optional[float] = None,
        plagiarism_score: Optional[float] = None,
        feedback: Optional[str] = None,
    ) -> Submission:
        return await self._review(
            submission,
            SubmissionStatus.APPROVED,
            reviewer_id,
            grammar_score=grammar_score,
            ai_score=ai_score,
            plagiarism_score=plagiarism_score,
            feedback=feedback,
        )

    async def reject(
        self,
        submission: Submission,
        reviewer_id: uuid.UUID,
        feedback: str,
        *,
        grammar_score: Optional[float] = None,
        ai_score: Optional[float] = None,
        plagiarism_score: Optional[float] = None,
    ) -> Submission:
        return await self._review(
            submission,
            SubmissionStatus.REVISION_REQUIRED,
            reviewer_id,
            grammar_score=grammar_score,
            ai_score=ai_score,
            plagiarism_score=plagiarism_score,
            feedback=feedback,
        )

    async def complete(self, submission: Submission) -> Submission:
        """approved -> completed, as part of delivery."""
        await self._move(submission, SubmissionStatus.APPROVED, {"status": SubmissionStatus.COMPLETED})
        return submission

    async def withdraw_active(self, order_id: uuid.UUID) -> int:
        """Retire the pending_qc / approved submission of an order that has ended."""
        result = await self.session.execute(
            update(Submission)
            .where(
                Submission.order_id == order_id,
                Submission.status.in_(ACTIVE_SUBMISSION_STATUSES),
            )
            .values(status=SubmissionStatus.WITHDRAWN)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    async def _review(
        self,
        submission: Submission,
        new_status: SubmissionStatus,
        reviewer_id: uuid.UUID,
        **fields,
    ) -> Submission:
        values = {
            "status": new_status,
            "reviewed_by": reviewer_id,
            "reviewed_at": utcnow(),
        }
        values.update({k: v for k, v in fields.items() if v is not None})
        await self._move(submission, SubmissionStatus.PENDING_QC, values)
        return submission

    async def _move(self, submission: Submission, expected: SubmissionStatus, values: dict) -> None:
        moved = await self.gateway.conditional_update(
            self.session,
            Submission,
            submission.id,
            expected={"status": expected},
            values=values,
        )
        if not moved:
            raise ConflictError(
                f"Submission is no longer {expected.value}",
                context={"submission_id": str(submission.id)},
            )
        await self.session.refresh(submission)

    async def qc_queue(
        self,
        status: SubmissionStatus = SubmissionStatus.PENDING_QC,
        *,
        page: int = 1,
        page_size: int = 20,
    ) -> Tuple[List[Submission], int]:
        """Submissions in a QC status, oldest first."""
        total = (
            await self.session.execute(
                select(func.count(Submission.id)).where(Submission.status == status)
            )
        ).scalar() or 0
        result = await self.session.execute(
            select(Submission)
            .where(Submission.status == status)
            .order_by(Submission.created_at)
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        return list(result.scalars().all()), total

    async def latest_feedback(self, order_id: uuid.UUID) -> Optional[Submission]:
        """Most recently reviewed submission that carries QC feedback."""
        result = await self.session.execute(
            select(Submission)
            .where(
                Submission.order_id == order_id,
                Submission.feedback.is_not(None),
                Submission.reviewed_at.is_not(None),
            )
            .order_by(desc(Submission.reviewed_at))
            .limit(1)
        )
        return result.scalar_one_or_none()

    # Revisions and feedback

    async def create_revision(
        self,
        order_id: uuid.UUID,
        requested_by: uuid.UUID,
        reason: str,
        deadline: Optional[datetime],
    ) -> RevisionRequest:
        return await self.gateway.insert_with_next_number(
            self.session,
            RevisionRequest,
            scope_column="order_id",
            scope_value=order_id,
            number_column="revision_number",
            values={
                "requested_by": requested_by,
                "reason": reason,
                "deadline": deadline,
                "status": RevisionStatus.PENDING,
            },
        )

    async def complete_pending_revisions(self, order_id: uuid.UUID) -> int:
        """Close out open revision requests: reworked files were submitted or the order ended."""
        result = await self.session.execute(
            update(RevisionRequest)
            .where(
                RevisionRequest.order_id == order_id,
                RevisionRequest.status == RevisionStatus.PENDING,
                RevisionRequest.revision_number > FEEDBACK_REVISION_NUMBER,
            )
            .values(status=RevisionStatus.COMPLETED, completed_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    async def revision_history(self, order_id: uuid.UUID) -> List[RevisionRequest]:
        """Numbered revisions only, newest first."""
        result = await self.session.execute(
            select(RevisionRequest)
            .where(
                RevisionRequest.order_id == order_id,
                RevisionRequest.revision_number > FEEDBACK_REVISION_NUMBER,
            )
            .order_by(desc(RevisionRequest.revision_number))
        )
        return list(result.scalars().all())

    async def record_feedback(
        self,
        order_id: uuid.UUID,
        client_id: uuid.UUID,
        feedback: str,
    ) -> RevisionRequest:
        """Client feedback rides the revision table as number 0, already completed."""
        now = utcnow()
        entry = RevisionRequest(
            order_id=order_id,
            requested_by=client_id,
            revision_number=FEEDBACK_REVISION_NUMBER,
            reason=feedback,
            status=RevisionStatus.COMPLETED,
            completed_at=now,
            created_at=now,
        )
        self.session.add(entry)
        await self.session.flush()
        return entry

    async def upsert_rating(
        self,
        writer_id: uuid.UUID,
        order_id: uuid.UUID,
        client_id: uuid.UUID,
        rating: int,
        review: Optional[str] = None,
    ) -> WriterRating:
        if not MIN_RATING <= rating <= MAX_RATING:
            raise ValidationFailedError(
                f"Rating must be between {MIN_RATING} and {MAX_RATING}",
                context={"rating": rating},
            )

        existing = await self._find_rating(writer_id, order_id, client_id)
        if existing is None:
            try:
                async with self.session.begin_nested():
                    existing = WriterRating(
                        writer_id=writer_id,
                        order_id=order_id,
                        client_id=client_id,
                        rating=rating,
                        review=review,
                    )
                    self.session.add(existing)
                    await self.session.flush()
                return existing
            except IntegrityError:
                logger.info(
                    "Concurrent rating insert, updating instead",
                    extra={"order_id": str(order_id)},
                )
                existing = await self._find_rating(writer_id, order_id, client_id)
                if existing is None:
                    raise

        existing.rating = rating
        existing.review = review
        await self.session.flush()
        return existing

    async def _find_rating(
        self,
        writer_id: uuid.UUID,
        order_id: uuid.UUID,
        client_id: uuid.UUID,
    ) -> Optional[WriterRating]:
        result = await self.session.execute(
            select(WriterRating).where(
                WriterRating.writer_id == writer_id,
                WriterRating.order_id == order_id,
                WriterRating.client_id == client_id,
            )
        )
        return result.scalar_one_or_none()

