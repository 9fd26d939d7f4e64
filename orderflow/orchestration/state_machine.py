"""
Order lifecycle state machine.

The only writer of Order.status. Every operation follows the same shape:

    1. open one unit of work
    2. load the order and check the actor against it
    3. resolve the move in the transition table and apply it with a
       conditional update (UPDATE ... WHERE status = <what we read>)
    4. write the related records (submission, revision, history, ...)
    5. commit
    6. hand audit, status push and notifications to the post-commit fan-out

A failure in 1-5 rolls everything back and raises exactly one OrderFlowError.
Nothing in 6 can fail the call.
"""

import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import desc, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from orderflow.engines.submissions.tracker import SubmissionTracker
from orderflow.errors import AccessDeniedError, ConflictError, NotFoundError, ValidationFailedError
from orderflow.kernel.events.side_effects import (
    NotificationIntent,
    PostCommitEffects,
    SideEffect,
    StatusChange,
)
from orderflow.kernel.identity.tokens import Actor
from orderflow.kernel.models.audit_log import AuditEventType
from orderflow.kernel.models.base import ensure_aware, generate_uuid, utcnow
from orderflow.kernel.models.notification import NotificationType
from orderflow.kernel.models.order import Order, OrderHistory, OrderStatus
from orderflow.kernel.models.revision import RevisionRequest
from orderflow.kernel.models.submission import FileVersion, Submission, SubmissionStatus
from orderflow.kernel.models.task_evaluation import EvaluationStatus, TaskEvaluation
from orderflow.kernel.models.user import User, UserRole
from orderflow.kernel.persistence import PersistenceGateway
from orderflow.logging_config import get_logger
from orderflow.orchestration import transitions
from orderflow.orchestration.fanout import PostCommitFanout
from orderflow.orchestration.transitions import NOTIFICATION_TRIGGERS, OrderAction
from orderflow.realtime.context import ContextCode, generate_external_code

logger = get_logger(__name__)


class OrderStateMachine:
    """
    Authorizes and applies every order transition.

    Usage:
        machine = OrderStateMachine(gateway, fanout)
        order = await machine.create_order(client, topic="Market analysis")
        order = await machine.apply_action(order.id, OrderAction.SEND_QUOTATION, admin)
    """

    def __init__(self, gateway: PersistenceGateway, fanout: PostCommitFanout):
        self.gateway = gateway
        self.fanout = fanout

    # ------------------------------------------------------------------
    # Creation and table-driven actions
    # ------------------------------------------------------------------

    async def create_order(
        self,
        actor: Actor,
        topic: str,
        deadline: Optional[datetime] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> Order:
        if actor.role is not UserRole.CLIENT:
            raise AccessDeniedError("Only clients can place orders")
        topic = (topic or "").strip()
        if not topic:
            raise ValidationFailedError("Topic is required")
        if deadline is not None:
            deadline = _require_future(deadline, "deadline")

        async with self.gateway.unit_of_work() as session:
            order = await self._insert_order(session, actor, topic, deadline, details or {})
            self._history(session, order, actor, "created", None, order.status, "Order created")
            effects = PostCommitEffects(
                audit=[
                    self._audit(
                        actor,
                        AuditEventType.ORDER_CREATED,
                        order,
                        f"Order {order.external_code} created",
                        {"topic": topic},
                    )
                ],
                notifications=[
                    NotificationIntent(
                        roles=[UserRole.ADMIN],
                        type=NotificationType.INFO,
                        title="New Query",
                        message=f"New order {order.external_code}: {topic}",
                        link_url=_order_link(order),
                        context_code=order.context_code,
                    )
                ],
            )

        logger.info("Order created", extra={"order_id": str(order.id), "code": order.external_code})
        await self.fanout.run(effects)
        return order

    async def apply_action(
        self,
        order_id: uuid.UUID,
        action: OrderAction,
        actor: Actor,
        note: Optional[str] = None,
    ) -> Order:
        """Apply an action whose only effect is the status change."""
        if action not in transitions.SIMPLE_ACTIONS:
            raise ValidationFailedError(
                f"{action.value} cannot be applied directly",
                context={"action": action.value},
            )

        async with self.gateway.unit_of_work() as session:
            order = await self._load(session, order_id, for_update=True)
            self._check_participant(actor, order)
            from_status = await self._move(session, order, action, actor, note or _describe(action))
            retired = None
            if transitions.is_terminal(order.status):
                retired = await self._retire_work(session, order)
            effects = self._transition_effects(
                order, action, actor, from_status, note or _describe(action), event_data=retired
            )

        await self.fanout.run(effects)
        return order

    async def assign_writer(
        self,
        order_id: uuid.UUID,
        actor: Actor,
        writer_id: uuid.UUID,
        note: Optional[str] = None,
    ) -> Order:
        """Put a writer on a paid order and move it into its work context."""
        async with self.gateway.unit_of_work() as session:
            order = await self._load(session, order_id, for_update=True)
            transitions.resolve(order.status, OrderAction.ASSIGN_WRITER, actor.role)

            writer = await session.get(User, writer_id)
            if writer is None:
                raise NotFoundError("Writer not found", context={"id": str(writer_id)})
            if writer.role is not UserRole.WRITER or not writer.is_active:
                raise ValidationFailedError(
                    "User is not an active writer", context={"id": str(writer_id)}
                )

            previous_context = order.context_code
            work_context = str(ContextCode.parse(previous_context).to_work())
            from_status = await self._move(
                session,
                order,
                OrderAction.ASSIGN_WRITER,
                actor,
                note or f"Writer {writer.full_name} assigned",
                writer_id=writer_id,
                context_code=work_context,
            )
            effects = self._transition_effects(
                order,
                OrderAction.ASSIGN_WRITER,
                actor,
                from_status,
                f"Writer {writer_id} assigned",
                event_type=AuditEventType.WRITER_ASSIGNED,
                event_data={"writer_id": writer_id, "context_code": work_context},
                previous_context_code=previous_context,
            )

        await self.fanout.run(effects)
        return order

    # ------------------------------------------------------------------
    # Writer operations
    # ------------------------------------------------------------------

    async def record_file_version(
        self,
        order_id: uuid.UUID,
        actor: Actor,
        file_url: str,
        file_name: str,
        file_size: Optional[int] = None,
    ) -> FileVersion:
        async with self.gateway.unit_of_work() as session:
            order = await self._load(session, order_id)
            self._require_assigned_writer(actor, order)
            if transitions.is_terminal(order.status):
                raise ConflictError(
                    f"Order is {order.status.value}; no more files can be added",
                    context={"order_id": str(order.id)},
                )
            tracker = SubmissionTracker(self.gateway, session)
            version = await tracker.record_file_version(
                order.id, actor.user_id, file_url, file_name, file_size
            )
            self._history(
                session, order, actor, "file_uploaded", None, None,
                f"File {file_name} uploaded as version {version.version_number}",
            )
            effects = PostCommitEffects(
                audit=[
                    self._audit(
                        actor,
                        AuditEventType.FILE_UPLOADED,
                        order,
                        f"Version {version.version_number} uploaded",
                        {"file_version_id": version.id, "version_number": version.version_number},
                        resource_type="file_version",
                        resource_id=str(version.id),
                    )
                ]
            )

        await self.fanout.run(effects)
        return version

    async def evaluate_task(
        self,
        order_id: uuid.UUID,
        actor: Actor,
        status: EvaluationStatus,
        comment: Optional[str] = None,
    ) -> TaskEvaluation:
        """Writer's doable / not-doable verdict. Once per (order, writer); no status change."""
        async with self.gateway.unit_of_work() as session:
            order = await self._load(session, order_id)
            self._require_assigned_writer(actor, order)

            # uq (order_id, writer_id) decides; a duplicate fails the flush
            evaluation = TaskEvaluation(
                order_id=order.id,
                writer_id=actor.user_id,
                status=status,
                comment=comment,
            )
            try:
                async with session.begin_nested():
                    session.add(evaluation)
                    await session.flush()
            except IntegrityError:
                raise ConflictError(
                    "Task already evaluated", context={"order_id": str(order.id)}
                ) from None

            doable = status is EvaluationStatus.DOABLE
            self._history(
                session, order, actor, "task_evaluated", None, None,
                "Writer accepted the task" if doable else "Writer declined the task",
            )
            effects = PostCommitEffects(
                audit=[
                    self._audit(
                        actor,
                        AuditEventType.TASK_ACCEPTED if doable else AuditEventType.TASK_REJECTED,
                        order,
                        comment or status.value,
                        {"evaluation": status.value},
                    )
                ],
                notifications=[
                    NotificationIntent(
                        roles=[UserRole.ADMIN],
                        type=NotificationType.SUCCESS if doable else NotificationType.WARNING,
                        title="Task Accepted" if doable else "Task Declined",
                        message=(
                            f"The writer marked order {order.external_code} as "
                            f"{'doable' if doable else 'not doable'}."
                        ),
                        link_url=_order_link(order),
                        context_code=order.context_code,
                    )
                ],
            )

        await self.fanout.run(effects)
        return evaluation

    async def submit_work(
        self,
        order_id: uuid.UUID,
        actor: Actor,
        file_version_id: uuid.UUID,
    ) -> Submission:
        """Open a pending_qc submission for an uploaded file and move the order to QC."""
        async with self.gateway.unit_of_work() as session:
            order = await self._load(session, order_id, for_update=True)
            self._require_assigned_writer(actor, order)

            tracker = SubmissionTracker(self.gateway, session)
            version = await tracker.get_file_version(file_version_id)
            if version.order_id != order.id:
                raise NotFoundError(
                    "File version not found for this order",
                    context={"file_version_id": str(file_version_id)},
                )
            if version.uploaded_by != actor.user_id:
                raise AccessDeniedError("File version was uploaded by someone else")

            from_status = await self._move(
                session, order, OrderAction.SUBMIT_WORK, actor,
                f"Version {version.version_number} submitted for QC",
            )
            submission = await tracker.create_submission(order.id, actor.user_id, version.id)
            closed = await tracker.complete_pending_revisions(order.id)
            effects = self._transition_effects(
                order,
                OrderAction.SUBMIT_WORK,
                actor,
                from_status,
                f"Version {version.version_number} submitted for QC",
                event_type=AuditEventType.SUBMISSION_FOR_QC,
                event_data={
                    "submission_id": submission.id,
                    "file_version_id": version.id,
                    "revisions_closed": closed,
                },
            )

        await self.fanout.run(effects)
        return submission

    # ------------------------------------------------------------------
    # QC and delivery (admin)
    # ------------------------------------------------------------------

    async def approve_submission(
        self,
        submission_id: uuid.UUID,
        actor: Actor,
        *,
        grammar_score: Optional[float] = None,
        ai_score: Optional[float] = None,
        plagiarism_score: Optional[float] = None,
        feedback: Optional[str] = None,
    ) -> Submission:
        self._require_admin(actor, OrderAction.APPROVE_SUBMISSION)

        async with self.gateway.unit_of_work() as session:
            tracker = SubmissionTracker(self.gateway, session)
            submission = await tracker.get_submission(submission_id)
            order = await self._load(session, submission.order_id, for_update=True)

            from_status = await self._move(
                session, order, OrderAction.APPROVE_SUBMISSION, actor, "Submission passed QC"
            )
            await tracker.approve(
                submission,
                actor.user_id,
                grammar_score=grammar_score,
                ai_score=ai_score,
                plagiarism_score=plagiarism_score,
                feedback=feedback,
            )
            effects = self._transition_effects(
                order,
                OrderAction.APPROVE_SUBMISSION,
                actor,
                from_status,
                "Submission approved",
                event_type=AuditEventType.SUBMISSION_APPROVED,
                event_data={
                    "submission_id": submission.id,
                    "grammar_score": grammar_score,
                    "ai_score": ai_score,
                    "plagiarism_score": plagiarism_score,
                },
            )

        await self.fanout.run(effects)
        return submission

    async def reject_submission(
        self,
        submission_id: uuid.UUID,
        actor: Actor,
        feedback: str,
        *,
        deadline: Optional[datetime] = None,
        grammar_score: Optional[float] = None,
        ai_score: Optional[float] = None,
        plagiarism_score: Optional[float] = None,
    ) -> Tuple[Submission, RevisionRequest]:
        """Send work back for revision; opens the next numbered revision request."""
        self._require_admin(actor, OrderAction.REJECT_SUBMISSION)
        feedback = (feedback or "").strip()
        if not feedback:
            raise ValidationFailedError("Feedback is required when rejecting a submission")
        if deadline is not None:
            deadline = _require_future(deadline, "deadline")

        async with self.gateway.unit_of_work() as session:
            tracker = SubmissionTracker(self.gateway, session)
            submission = await tracker.get_submission(submission_id)
            order = await self._load(session, submission.order_id, for_update=True)

            from_status = await self._move(
                session, order, OrderAction.REJECT_SUBMISSION, actor,
                f"Revision required: {feedback}",
            )
            await tracker.reject(
                submission,
                actor.user_id,
                feedback,
                grammar_score=grammar_score,
                ai_score=ai_score,
                plagiarism_score=plagiarism_score,
            )
            revision = await tracker.create_revision(
                order.id, actor.user_id, feedback, deadline or order.deadline
            )
            effects = self._transition_effects(
                order,
                OrderAction.REJECT_SUBMISSION,
                actor,
                from_status,
                feedback,
                event_type=AuditEventType.SUBMISSION_REJECTED,
                event_data={
                    "submission_id": submission.id,
                    "revision_id": revision.id,
                    "revision_number": revision.revision_number,
                },
            )

        await self.fanout.run(effects)
        return submission, revision

    async def deliver_order(
        self,
        order_id: uuid.UUID,
        actor: Actor,
        note: Optional[str] = None,
    ) -> Order:
        """
        Hand approved work to the client in one transaction.

        The approved submission becomes completed and the order completed.
        Without an approved submission nothing changes.
        """
        self._require_admin(actor, OrderAction.DELIVER)

        async with self.gateway.unit_of_work() as session:
            order = await self._load(session, order_id, for_update=True)
            tracker = SubmissionTracker(self.gateway, session)
            approved = await tracker.approved_submission(order.id)
            if approved is None:
                raise ConflictError(
                    "Order has no approved submission to deliver",
                    context={"order_id": str(order.id), "status": order.status.value},
                )

            from_status = await self._move(
                session, order, OrderAction.DELIVER, actor, note or "Order delivered to client"
            )
            await tracker.complete(approved)
            effects = self._transition_effects(
                order,
                OrderAction.DELIVER,
                actor,
                from_status,
                note or "Order delivered",
                event_type=AuditEventType.ORDER_DELIVERED,
                event_data={"submission_id": approved.id},
            )

        logger.info("Order delivered", extra={"order_id": str(order.id)})
        await self.fanout.run(effects)
        return order

    async def close_order(
        self,
        order_id: uuid.UUID,
        actor: Actor,
        closure_reason: Optional[str] = None,
    ) -> Order:
        """Mark an order completed without a delivered submission."""
        self._require_admin(actor, OrderAction.CLOSE)

        async with self.gateway.unit_of_work() as session:
            order = await self._load(session, order_id, for_update=True)
            extra: Dict[str, Any] = {}
            if closure_reason:
                extra["details"] = {**(order.details or {}), "closure_reason": closure_reason}
            from_status = await self._move(
                session, order, OrderAction.CLOSE, actor,
                closure_reason or "Order closed", **extra,
            )
            retired = await self._retire_work(session, order)
            effects = self._transition_effects(
                order,
                OrderAction.CLOSE,
                actor,
                from_status,
                closure_reason or "Order closed",
                event_type=AuditEventType.ORDER_CLOSED,
                event_data={"closure_reason": closure_reason, **retired},
            )

        await self.fanout.run(effects)
        return order

    # ------------------------------------------------------------------
    # Client operations
    # ------------------------------------------------------------------

    async def submit_feedback(
        self,
        order_id: uuid.UUID,
        actor: Actor,
        feedback: str,
        rating: Optional[int] = None,
    ) -> RevisionRequest:
        feedback = (feedback or "").strip()
        if not feedback:
            raise ValidationFailedError("Feedback text is required")

        async with self.gateway.unit_of_work() as session:
            order = await self._load(session, order_id)
            self._require_owner(actor, order)
            if order.writer_id is None:
                raise ConflictError(
                    "Feedback needs a writer on the order", context={"order_id": str(order.id)}
                )

            tracker = SubmissionTracker(self.gateway, session)
            entry = await tracker.record_feedback(order.id, actor.user_id, feedback)
            if rating is not None:
                await tracker.upsert_rating(
                    order.writer_id, order.id, actor.user_id, rating, review=feedback
                )
            self._history(session, order, actor, "feedback_submitted", None, None, feedback)
            effects = PostCommitEffects(
                audit=[
                    self._audit(
                        actor,
                        AuditEventType.FEEDBACK_SUBMITTED,
                        order,
                        feedback,
                        {"rating": rating, "feedback_id": entry.id},
                    )
                ],
                notifications=[
                    NotificationIntent(
                        roles=[UserRole.ADMIN],
                        type=NotificationType.INFO,
                        title="Client Feedback",
                        message=f"Feedback received on order {order.external_code}.",
                        link_url=_order_link(order),
                        context_code=order.context_code,
                    )
                ],
            )

        await self.fanout.run(effects)
        return entry

    async def request_revision(
        self,
        order_id: uuid.UUID,
        actor: Actor,
        reason: str,
        deadline: datetime,
    ) -> RevisionRequest:
        reason = (reason or "").strip()
        if not reason:
            raise ValidationFailedError("A reason is required")
        deadline = _require_future(deadline, "deadline")

        async with self.gateway.unit_of_work() as session:
            order = await self._load(session, order_id)
            self._require_owner(actor, order)
            if order.writer_id is None:
                raise ConflictError(
                    "Revisions need a writer on the order", context={"order_id": str(order.id)}
                )

            tracker = SubmissionTracker(self.gateway, session)
            revision = await tracker.create_revision(order.id, actor.user_id, reason, deadline)
            self._history(
                session, order, actor, "revision_requested", None, None,
                f"Revision #{revision.revision_number} requested: {reason}",
            )
            effects = PostCommitEffects(
                audit=[
                    self._audit(
                        actor,
                        AuditEventType.REVISION_REQUESTED,
                        order,
                        reason,
                        {
                            "revision_id": revision.id,
                            "revision_number": revision.revision_number,
                            "deadline": deadline,
                        },
                    )
                ],
                notifications=[
                    NotificationIntent(
                        user_ids=[order.client_id],
                        type=NotificationType.INFO,
                        title="Revision Requested",
                        message=(
                            f"Your revision #{revision.revision_number} for order "
                            f"{order.external_code} was received."
                        ),
                        link_url=_order_link(order),
                        context_code=order.context_code,
                    ),
                    NotificationIntent(
                        roles=[UserRole.ADMIN],
                        type=NotificationType.CRITICAL,
                        title="Client Revision Request",
                        message=(
                            f"Revision #{revision.revision_number} requested on order "
                            f"{order.external_code}."
                        ),
                        link_url=_order_link(order),
                        context_code=order.context_code,
                    ),
                ],
            )

        await self.fanout.run(effects)
        return revision

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_order(self, order_id: uuid.UUID, actor: Actor) -> Order:
        async with self.gateway.unit_of_work() as session:
            order = await self._load(session, order_id)
            self._require_visible(actor, order)
            return order

    async def list_orders(
        self,
        actor: Actor,
        *,
        status: Optional[OrderStatus] = None,
        page: int = 1,
        page_size: int = 20,
    ) -> Tuple[List[Order], int]:
        """Orders the actor can see, most recently updated first."""
        conditions = []
        if actor.role is UserRole.CLIENT:
            conditions.append(Order.client_id == actor.user_id)
        elif actor.role is UserRole.WRITER:
            conditions.append(Order.writer_id == actor.user_id)
        if status is not None:
            conditions.append(Order.status == status)

        async with self.gateway.unit_of_work() as session:
            total = (
                await session.execute(select(func.count(Order.id)).where(*conditions))
            ).scalar() or 0
            result = await session.execute(
                select(Order)
                .where(*conditions)
                .order_by(desc(Order.updated_at))
                .offset((page - 1) * page_size)
                .limit(page_size)
            )
            return list(result.scalars().all()), total

    async def order_history(self, order_id: uuid.UUID, actor: Actor) -> List[OrderHistory]:
        async with self.gateway.unit_of_work() as session:
            order = await self._load(session, order_id)
            self._require_visible(actor, order)
            result = await session.execute(
                select(OrderHistory)
                .where(OrderHistory.order_id == order.id)
                .order_by(OrderHistory.created_at)
            )
            return list(result.scalars().all())

    async def file_history(self, order_id: uuid.UUID, actor: Actor) -> List[FileVersion]:
        async with self.gateway.unit_of_work() as session:
            order = await self._load(session, order_id)
            self._require_visible(actor, order)
            return await SubmissionTracker(self.gateway, session).file_history(order.id)

    async def revision_history(self, order_id: uuid.UUID, actor: Actor) -> List[RevisionRequest]:
        async with self.gateway.unit_of_work() as session:
            order = await self._load(session, order_id)
            self._require_visible(actor, order)
            return await SubmissionTracker(self.gateway, session).revision_history(order.id)

    async def latest_feedback(self, order_id: uuid.UUID, actor: Actor) -> Optional[Submission]:
        async with self.gateway.unit_of_work() as session:
            order = await self._load(session, order_id)
            self._require_visible(actor, order)
            return await SubmissionTracker(self.gateway, session).latest_feedback(order.id)

    async def qc_queue(
        self,
        actor: Actor,
        status: SubmissionStatus = SubmissionStatus.PENDING_QC,
        *,
        page: int = 1,
        page_size: int = 20,
    ) -> Tuple[List[Submission], int]:
        if actor.role is not UserRole.ADMIN:
            raise AccessDeniedError("QC queue is admin only")
        async with self.gateway.unit_of_work() as session:
            return await SubmissionTracker(self.gateway, session).qc_queue(
                status, page=page, page_size=page_size
            )

    async def allowed_actions(
        self, order_id: uuid.UUID, actor: Actor
    ) -> Tuple[Order, List[OrderAction]]:
        order = await self.get_order(order_id, actor)
        return order, transitions.allowed_actions(order.status, actor.role)

    async def authorize_subscription(self, actor: Actor, context_code: str) -> Order:
        """
        Resolve the order behind a context code for a live subscription.

        Raises:
            ValidationFailedError: malformed context code
            NotFoundError: no such order
            AccessDeniedError: the actor does not take part in the order
        """
        context = ContextCode.parse(context_code)
        async with self.gateway.unit_of_work() as session:
            result = await session.execute(
                select(Order).where(Order.external_code == context.external_code)
            )
            order = result.scalar_one_or_none()
            if order is None:
                raise NotFoundError("Order not found", context={"context_code": context_code})
            self._require_visible(actor, order)
            return order

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _insert_order(
        self,
        session: AsyncSession,
        actor: Actor,
        topic: str,
        deadline: Optional[datetime],
        details: Dict[str, Any],
    ) -> Order:
        for _ in range(self.gateway.number_allocation_retries):
            code = generate_external_code()
            order = Order(
                id=generate_uuid(),
                external_code=code,
                client_id=actor.user_id,
                status=OrderStatus.PENDING_QUERY,
                topic=topic,
                deadline=deadline,
                context_code=str(ContextCode.for_query(code)),
                details=details,
            )
            try:
                async with session.begin_nested():
                    session.add(order)
                    await session.flush()
                return order
            except IntegrityError:
                logger.warning("Order code collision, regenerating", extra={"code": code})
        raise ConflictError("Could not allocate an order code, please retry")

    async def _load(
        self, session: AsyncSession, order_id: uuid.UUID, *, for_update: bool = False
    ) -> Order:
        return await self.gateway.get_by_id(
            session, Order, order_id, for_update=for_update, label="Order"
        )

    async def _move(
        self,
        session: AsyncSession,
        order: Order,
        action: OrderAction,
        actor: Actor,
        description: str,
        **extra_values: Any,
    ) -> OrderStatus:
        """Apply the table's move with a conditional update; returns the old status."""
        from_status = order.status
        target = transitions.resolve(from_status, action, actor.role)

        writer_id = extra_values.get("writer_id", order.writer_id)
        if transitions.requires_writer(target) and writer_id is None:
            raise ConflictError(
                f"Order needs a writer before it can be {target.value}",
                context={"order_id": str(order.id)},
            )

        moved = await self.gateway.conditional_update(
            session,
            Order,
            order.id,
            expected={"status": from_status},
            values={"status": target, **extra_values},
        )
        if not moved:
            raise ConflictError(
                "Order status changed concurrently, reload and retry",
                context={"order_id": str(order.id), "expected": from_status.value},
            )
        await session.refresh(order)
        self._history(session, order, actor, action.value, from_status, target, description)
        logger.info(
            "Order transitioned",
            extra={
                "order_id": str(order.id),
                "action": action.value,
                "from_status": from_status.value,
                "to_status": target.value,
            },
        )
        return from_status

    async def _retire_work(self, session: AsyncSession, order: Order) -> Dict[str, int]:
        """An ended order keeps nothing open: no QC work, no pending revisions."""
        tracker = SubmissionTracker(self.gateway, session)
        withdrawn = await tracker.withdraw_active(order.id)
        revisions = await tracker.complete_pending_revisions(order.id)
        if withdrawn or revisions:
            logger.info(
                "Retired open work of ended order",
                extra={
                    "order_id": str(order.id),
                    "withdrawn_submissions": withdrawn,
                    "completed_revisions": revisions,
                },
            )
        return {"withdrawn_submissions": withdrawn, "completed_revisions": revisions}

    def _history(
        self,
        session: AsyncSession,
        order: Order,
        actor: Actor,
        action: str,
        from_status: Optional[OrderStatus],
        to_status: Optional[OrderStatus],
        description: str,
    ) -> None:
        session.add(
            OrderHistory(
                order_id=order.id,
                actor_id=actor.user_id,
                actor_role=actor.role,
                action=action,
                from_status=from_status.value if from_status else None,
                to_status=to_status.value if to_status else None,
                description=description,
            )
        )

    def _audit(
        self,
        actor: Actor,
        event_type: AuditEventType,
        order: Order,
        detail: str,
        event_data: Optional[Dict[str, Any]] = None,
        *,
        resource_type: str = "order",
        resource_id: Optional[str] = None,
    ) -> SideEffect:
        data = {"order_id": order.id, "external_code": order.external_code}
        data.update(event_data or {})
        return SideEffect(
            actor_id=actor.user_id,
            actor_role=actor.role,
            event_type=event_type,
            resource_type=resource_type,
            resource_id=resource_id or str(order.id),
            detail=detail,
            event_data=data,
            context_code=order.context_code,
            ip_address=actor.ip_address,
            user_agent=actor.user_agent,
        )

    def _transition_effects(
        self,
        order: Order,
        action: OrderAction,
        actor: Actor,
        from_status: OrderStatus,
        detail: str,
        *,
        event_type: AuditEventType = AuditEventType.STATUS_CHANGED,
        event_data: Optional[Dict[str, Any]] = None,
        previous_context_code: Optional[str] = None,
    ) -> PostCommitEffects:
        data = {"action": action.value, "from_status": from_status.value, "to_status": order.status.value}
        data.update(event_data or {})
        return PostCommitEffects(
            audit=[self._audit(actor, event_type, order, detail, data)],
            notifications=self._notifications_for(action, order),
            status_change=StatusChange(
                order_id=order.id,
                external_code=order.external_code,
                context_code=order.context_code,
                previous_context_code=previous_context_code,
                from_status=from_status.value,
                to_status=order.status.value,
                actor_role=actor.role,
            ),
        )

    def _notifications_for(self, action: OrderAction, order: Order) -> List[NotificationIntent]:
        intents = []
        for trigger in NOTIFICATION_TRIGGERS.get(action, ()):
            if trigger.recipient is UserRole.ADMIN:
                recipients: Dict[str, Sequence[Any]] = {"roles": [UserRole.ADMIN]}
            elif trigger.recipient is UserRole.CLIENT:
                recipients = {"user_ids": [order.client_id]}
            elif order.writer_id is not None:
                recipients = {"user_ids": [order.writer_id]}
            else:
                continue
            intents.append(
                NotificationIntent(
                    type=trigger.type,
                    title=trigger.title,
                    message=trigger.message.format(code=order.external_code),
                    link_url=_order_link(order),
                    context_code=order.context_code,
                    **recipients,
                )
            )
        return intents

    # Access checks

    def _require_admin(self, actor: Actor, action: OrderAction) -> None:
        if actor.role is not UserRole.ADMIN:
            raise AccessDeniedError(
                f"{actor.role.value} may not {action.value}",
                context={"action": action.value},
            )

    def _require_owner(self, actor: Actor, order: Order) -> None:
        if actor.role is not UserRole.CLIENT or order.client_id != actor.user_id:
            raise AccessDeniedError("Order belongs to another client")

    def _require_assigned_writer(self, actor: Actor, order: Order) -> None:
        if actor.role is not UserRole.WRITER or order.writer_id != actor.user_id:
            raise AccessDeniedError("Order is not assigned to this writer")

    def _require_visible(self, actor: Actor, order: Order) -> None:
        if actor.role is UserRole.ADMIN:
            return
        if actor.role is UserRole.CLIENT and order.client_id == actor.user_id:
            return
        if actor.role is UserRole.WRITER and order.writer_id == actor.user_id:
            return
        raise AccessDeniedError("Not a participant of this order")

    def _check_participant(self, actor: Actor, order: Order) -> None:
        """Clients and writers act only on their own orders; admins on any."""
        if actor.role is UserRole.CLIENT:
            self._require_owner(actor, order)
        elif actor.role is UserRole.WRITER:
            self._require_assigned_writer(actor, order)


def _require_future(value: datetime, field: str) -> datetime:
    value = ensure_aware(value)
    if value <= utcnow():
        raise ValidationFailedError(f"{field} must be in the future", context={field: value.isoformat()})
    return value


def _order_link(order: Order) -> str:
    return f"/orders/{order.id}"


def _describe(action: OrderAction) -> str:
    return action.value.replace("_", " ").capitalize()
