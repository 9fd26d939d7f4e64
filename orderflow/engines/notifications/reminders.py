"""
Deadline reminders.

A periodic pass looks at orders a writer still owes work on and whose
deadline falls within the next 24 hours. Each order gets the tightest tier it
has reached (24h warning, then 12h, 6h and 1h critical), at most once per
(order, writer, tier). The reminder row is committed first; the notification
and audit entry follow it and are best effort, like any post-commit effect.
"""

import asyncio
import uuid
from datetime import datetime, timedelta
from typing import List, NamedTuple, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from orderflow.engines.notifications.dispatcher import NotificationDispatcher
from orderflow.kernel.events.audit_recorder import AuditRecorder
from orderflow.kernel.events.side_effects import NotificationIntent, SideEffect
from orderflow.kernel.models.audit_log import AuditEventType
from orderflow.kernel.models.base import ensure_aware, utcnow
from orderflow.kernel.models.deadline_reminder import DeadlineReminder, ReminderTier
from orderflow.kernel.models.notification import NotificationType
from orderflow.kernel.models.order import Order, OrderStatus
from orderflow.kernel.persistence import PersistenceGateway
from orderflow.logging_config import get_logger

logger = get_logger(__name__)

REMINDER_WINDOW = timedelta(hours=24)

# Statuses in which the assigned writer still owes work
AWAITING_WRITER = (
    OrderStatus.WRITER_ASSIGNED,
    OrderStatus.IN_PROGRESS,
    OrderStatus.REVISION_REQUIRED,
)


class ReminderRule(NamedTuple):
    tier: ReminderTier
    within: timedelta
    type: NotificationType


# Tightest first
REMINDER_RULES: Tuple[ReminderRule, ...] = (
    ReminderRule(ReminderTier.HOURS_1, timedelta(hours=1), NotificationType.CRITICAL),
    ReminderRule(ReminderTier.HOURS_6, timedelta(hours=6), NotificationType.CRITICAL),
    ReminderRule(ReminderTier.HOURS_12, timedelta(hours=12), NotificationType.CRITICAL),
    ReminderRule(ReminderTier.HOURS_24, REMINDER_WINDOW, NotificationType.WARNING),
)


def rule_for(remaining: timedelta) -> Optional[ReminderRule]:
    """The tier a deadline `remaining` away has reached; None outside the window."""
    if remaining <= timedelta(0):
        return None
    for rule in REMINDER_RULES:
        if remaining <= rule.within:
            return rule
    return None


def describe_remaining(remaining: timedelta) -> str:
    hours = int(remaining.total_seconds() // 3600)
    if hours < 1:
        return "less than an hour"
    return "1 hour" if hours == 1 else f"{hours} hours"


class SentReminder(NamedTuple):
    order_id: uuid.UUID
    writer_id: uuid.UUID
    tier: ReminderTier


class DeadlineReminders:
    """
    One reminder pass.

    Usage:
        reminders = DeadlineReminders(gateway, dispatcher, AuditRecorder(gateway))
        sent = await reminders.run_once()
    """

    def __init__(
        self,
        gateway: PersistenceGateway,
        dispatcher: NotificationDispatcher,
        audit: AuditRecorder,
    ):
        self.gateway = gateway
        self.dispatcher = dispatcher
        self.audit = audit

    async def run_once(self, now: Optional[datetime] = None) -> List[SentReminder]:
        now = now or utcnow()
        sent: List[SentReminder] = []
        for order, rule, remaining in await self._due(now):
            if not await self._claim(order, rule.tier):
                continue
            await self._announce(order, rule, remaining)
            sent.append(SentReminder(order.id, order.writer_id, rule.tier))

        if sent:
            logger.info("Deadline reminders sent", extra={"count": len(sent)})
        return sent

    async def _due(self, now: datetime) -> List[Tuple[Order, ReminderRule, timedelta]]:
        async with self.gateway.unit_of_work() as session:
            result = await session.execute(
                select(Order).where(
                    Order.status.in_(AWAITING_WRITER),
                    Order.writer_id.is_not(None),
                    Order.deadline.is_not(None),
                )
            )
            orders = list(result.scalars().all())
            if not orders:
                return []
            recorded = await session.execute(
                select(
                    DeadlineReminder.order_id,
                    DeadlineReminder.writer_id,
                    DeadlineReminder.tier,
                ).where(DeadlineReminder.order_id.in_([o.id for o in orders]))
            )
            already_sent = {tuple(row) for row in recorded}

        due = []
        for order in orders:
            remaining = ensure_aware(order.deadline) - now
            rule = rule_for(remaining)
            if rule is None or (order.id, order.writer_id, rule.tier) in already_sent:
                continue
            due.append((order, rule, remaining))
        return due

    async def _claim(self, order: Order, tier: ReminderTier) -> bool:
        """Record the reminder; False when another pass already has."""
        async with self.gateway.unit_of_work() as session:
            try:
                async with session.begin_nested():
                    session.add(
                        DeadlineReminder(order_id=order.id, writer_id=order.writer_id, tier=tier)
                    )
                    await session.flush()
            except IntegrityError:
                logger.debug(
                    "Deadline reminder already recorded",
                    extra={"order_id": str(order.id), "tier": tier.value},
                )
                return False
        return True

    async def _announce(self, order: Order, rule: ReminderRule, remaining: timedelta) -> None:
        deadline = ensure_aware(order.deadline)
        due_in = describe_remaining(remaining)
        await self.dispatcher.dispatch(
            NotificationIntent(
                user_ids=[order.writer_id],
                type=rule.type,
                title=f"Deadline Reminder ({rule.tier.value})",
                message=(
                    f"Your assignment for order {order.external_code} is due in {due_in}. "
                    f"Deadline: {deadline:%Y-%m-%d %H:%M} UTC."
                ),
                link_url=f"/orders/{order.id}",
                context_code=order.context_code,
            )
        )
        await self.audit.record(
            SideEffect(
                event_type=AuditEventType.DEADLINE_REMINDER_SENT,
                resource_type="order",
                resource_id=str(order.id),
                detail=f"{rule.tier.value} deadline reminder sent to the writer",
                event_data={
                    "order_id": order.id,
                    "external_code": order.external_code,
                    "writer_id": order.writer_id,
                    "tier": rule.tier,
                    "hours_remaining": int(remaining.total_seconds() // 3600),
                },
                context_code=order.context_code,
            )
        )


class DeadlineReminderScheduler:
    """Runs a reminder pass every `interval_seconds` until stopped."""

    def __init__(self, reminders: DeadlineReminders, interval_seconds: float):
        self.reminders = reminders
        self.interval_seconds = interval_seconds
        self._running = False
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        if self._running:
            logger.warning("Deadline reminder scheduler is already running")
            return
        self._running = True
        self._task = asyncio.create_task(self._run_loop())
        logger.info(
            "Deadline reminder scheduler started",
            extra={"interval_seconds": self.interval_seconds},
        )

    async def stop(self) -> None:
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Deadline reminder scheduler stopped")

    async def _run_loop(self) -> None:
        while self._running:
            try:
                await asyncio.sleep(self.interval_seconds)
                await self.reminders.run_once()
            except asyncio.CancelledError:
                break
            except Exception:
                logger.error("Deadline reminder pass failed", exc_info=True)
