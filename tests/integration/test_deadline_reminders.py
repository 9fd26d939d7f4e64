"""
Deadline reminder passes: tier selection, one reminder per tier, and the
periodic scheduler.
"""

import asyncio
from datetime import timedelta
from types import SimpleNamespace

import pytest
from sqlalchemy import select

from orderflow.api.deps import build_deadline_reminders
from orderflow.engines.notifications.inbox import NotificationInbox
from orderflow.engines.notifications.reminders import (
    DeadlineReminderScheduler,
    describe_remaining,
    rule_for,
)
from orderflow.kernel.events.audit_recorder import AuditStore
from orderflow.kernel.models.audit_log import AuditEventType
from orderflow.kernel.models.base import ensure_aware
from orderflow.kernel.models.deadline_reminder import DeadlineReminder, ReminderTier
from orderflow.kernel.models.notification import NotificationType
from orderflow.orchestration.transitions import OrderAction


@pytest.fixture
def reminders(gateway, broker):
    return build_deadline_reminders(gateway, broker)


def _hours_before(order, hours: float):
    return ensure_aware(order.deadline) - timedelta(hours=hours)


async def _writer_inbox(session_maker, writer):
    async with session_maker() as session:
        items, _ = await NotificationInbox(session).list_notifications(writer.user_id)
    return [n for n in items if n.title.startswith("Deadline Reminder")]


class TestTiers:
    @pytest.mark.parametrize(
        "hours, tier, kind",
        [
            (23, ReminderTier.HOURS_24, NotificationType.WARNING),
            (11, ReminderTier.HOURS_12, NotificationType.CRITICAL),
            (5, ReminderTier.HOURS_6, NotificationType.CRITICAL),
            (0.5, ReminderTier.HOURS_1, NotificationType.CRITICAL),
        ],
    )
    @pytest.mark.asyncio
    async def test_tightest_tier_reached_is_sent(
        self, reminders, assigned_order, writer, session_maker, hours, tier, kind
    ):
        sent = await reminders.run_once(now=_hours_before(assigned_order, hours))

        assert [(s.order_id, s.writer_id, s.tier) for s in sent] == [
            (assigned_order.id, writer.user_id, tier)
        ]
        (notification,) = await _writer_inbox(session_maker, writer)
        assert notification.title == f"Deadline Reminder ({tier.value})"
        assert notification.type is kind
        assert notification.context_code == assigned_order.context_code
        assert assigned_order.external_code in notification.message

    def test_rule_boundaries(self):
        assert rule_for(timedelta(hours=24)).tier is ReminderTier.HOURS_24
        assert rule_for(timedelta(hours=12)).tier is ReminderTier.HOURS_12
        assert rule_for(timedelta(hours=6)).tier is ReminderTier.HOURS_6
        assert rule_for(timedelta(hours=1)).tier is ReminderTier.HOURS_1
        assert rule_for(timedelta(hours=24, seconds=1)) is None
        assert rule_for(timedelta(0)) is None

    def test_remaining_wording(self):
        assert describe_remaining(timedelta(minutes=40)) == "less than an hour"
        assert describe_remaining(timedelta(minutes=70)) == "1 hour"
        assert describe_remaining(timedelta(hours=11, minutes=59)) == "11 hours"


class TestOncePerTier:
    @pytest.mark.asyncio
    async def test_repeated_pass_sends_nothing_new(
        self, reminders, assigned_order, writer, session_maker
    ):
        now = _hours_before(assigned_order, 20)
        assert len(await reminders.run_once(now=now)) == 1
        assert await reminders.run_once(now=now) == []
        assert await reminders.run_once(now=now + timedelta(hours=2)) == []

        assert len(await _writer_inbox(session_maker, writer)) == 1
        async with session_maker() as session:
            rows = (await session.execute(select(DeadlineReminder))).scalars().all()
            audited = await AuditStore(session).count_events(
                event_type=AuditEventType.DEADLINE_REMINDER_SENT
            )
        assert [r.tier for r in rows] == [ReminderTier.HOURS_24]
        assert audited == 1

    @pytest.mark.asyncio
    async def test_escalation_sends_each_tier_once(self, reminders, assigned_order, writer, session_maker):
        tiers = []
        for hours in (23, 11, 10, 5, 4, 0.5, 0.25):
            sent = await reminders.run_once(now=_hours_before(assigned_order, hours))
            tiers.extend(s.tier for s in sent)

        assert tiers == [
            ReminderTier.HOURS_24,
            ReminderTier.HOURS_12,
            ReminderTier.HOURS_6,
            ReminderTier.HOURS_1,
        ]
        assert len(await _writer_inbox(session_maker, writer)) == 4

    @pytest.mark.asyncio
    async def test_late_first_pass_skips_looser_tiers(self, reminders, assigned_order):
        sent = await reminders.run_once(now=_hours_before(assigned_order, 5))
        assert [s.tier for s in sent] == [ReminderTier.HOURS_6]

        sent = await reminders.run_once(now=_hours_before(assigned_order, 3))
        assert sent == []

    @pytest.mark.asyncio
    async def test_claim_refuses_a_recorded_tier(self, reminders, assigned_order):
        assert await reminders._claim(assigned_order, ReminderTier.HOURS_12) is True
        assert await reminders._claim(assigned_order, ReminderTier.HOURS_12) is False
        assert await reminders._claim(assigned_order, ReminderTier.HOURS_6) is True


class TestEligibility:
    @pytest.mark.asyncio
    async def test_outside_the_window(self, reminders, assigned_order):
        assert await reminders.run_once(now=_hours_before(assigned_order, 25)) == []
        assert await reminders.run_once(now=_hours_before(assigned_order, -1)) == []

    @pytest.mark.asyncio
    async def test_order_without_writer(self, reminders, paid_order):
        assert await reminders.run_once(now=_hours_before(paid_order, 2)) == []

    @pytest.mark.asyncio
    async def test_ended_order(self, reminders, machine, assigned_order, admin):
        await machine.apply_action(assigned_order.id, OrderAction.CANCEL, admin)
        assert await reminders.run_once(now=_hours_before(assigned_order, 2)) == []

    @pytest.mark.asyncio
    async def test_revision_required_orders_are_reminded(
        self, reminders, machine, assigned_order, writer, admin
    ):
        version = await machine.record_file_version(assigned_order.id, writer, "s3://f/1", "v1.docx")
        submission = await machine.submit_work(assigned_order.id, writer, version.id)
        await machine.reject_submission(submission.id, admin, "Fix citations")

        sent = await reminders.run_once(now=_hours_before(assigned_order, 11))
        assert [s.tier for s in sent] == [ReminderTier.HOURS_12]


class TestLivePush:
    @pytest.mark.asyncio
    async def test_writer_and_context_hear_the_reminder(
        self, reminders, broker, assigned_order, writer, client
    ):
        writer_session = broker.connect(writer.user_id, writer.role)
        watcher = broker.connect(client.user_id, client.role)
        broker.subscribe(watcher, assigned_order.context_code)

        await reminders.run_once(now=_hours_before(assigned_order, 5))

        for session in (writer_session, watcher):
            events = []
            while not session.queue.empty():
                events.append(session.queue.get_nowait())
            reminders_seen = [e for e in events if e["event"] == "notification:new"]
            assert [e["title"] for e in reminders_seen] == ["Deadline Reminder (6h)"]
            assert reminders_seen[0]["user_id"] == str(writer.user_id)


class TestScheduler:
    @pytest.mark.asyncio
    async def test_loop_survives_a_failed_pass(self):
        calls = []
        second_pass = asyncio.Event()

        async def run_once():
            calls.append(len(calls))
            if len(calls) == 1:
                raise RuntimeError("database unavailable")
            second_pass.set()
            return []

        scheduler = DeadlineReminderScheduler(SimpleNamespace(run_once=run_once), interval_seconds=0.01)
        await scheduler.start()
        assert scheduler.running
        await asyncio.wait_for(second_pass.wait(), timeout=5)
        await scheduler.stop()

        assert not scheduler.running
        assert len(calls) >= 2

    @pytest.mark.asyncio
    async def test_stop_before_first_pass(self):
        calls = []

        async def run_once():
            calls.append(1)
            return []

        scheduler = DeadlineReminderScheduler(SimpleNamespace(run_once=run_once), interval_seconds=60)
        await scheduler.start()
        await scheduler.start()
        await scheduler.stop()
        assert calls == []
