"""
Post-commit fan-out: audit, status push and notifications.

A failure in any of them is logged and never undoes or fails the transition.
"""

import logging
from unittest.mock import AsyncMock, patch

import pytest

from orderflow.engines.notifications.dispatcher import NotificationDispatcher
from orderflow.engines.notifications.inbox import NotificationInbox
from orderflow.errors import NotFoundError
from orderflow.kernel.directory import Directory
from orderflow.kernel.events.audit_recorder import AuditRecorder, AuditStore
from orderflow.kernel.events.side_effects import NotificationIntent, SideEffect
from orderflow.kernel.models.audit_log import AuditEventType
from orderflow.kernel.models.notification import NotificationType
from orderflow.kernel.models.order import OrderStatus
from orderflow.kernel.models.task_evaluation import EvaluationStatus
from orderflow.kernel.models.user import User, UserRole
from orderflow.orchestration.transitions import OrderAction


def _drain(session):
    events = []
    while not session.queue.empty():
        events.append(session.queue.get_nowait())
    return events


class TestAudit:
    @pytest.mark.asyncio
    async def test_transitions_are_audited(self, machine, paid_order, admin, session_maker):
        async with session_maker() as session:
            store = AuditStore(session)
            entries = await store.get_resource_history("order", str(paid_order.id))
            status_changes = await store.count_events(event_type=AuditEventType.STATUS_CHANGED)

        assert entries[-1].event_type == AuditEventType.ORDER_CREATED.value
        assert status_changes == 4
        latest = entries[0]
        assert latest.event_data["action"] == "verify_payment"
        assert latest.event_data["to_status"] == "payment_verified"
        assert latest.actor_role == "admin"
        assert latest.ip_address == "10.0.0.1"

    @pytest.mark.asyncio
    async def test_actor_activity(self, machine, paid_order, admin, client, session_maker):
        async with session_maker() as session:
            activity = await AuditStore(session).get_actor_activity(client.user_id)
        assert {e.event_type for e in activity} == {
            AuditEventType.ORDER_CREATED.value,
            AuditEventType.STATUS_CHANGED.value,
        }

    @pytest.mark.asyncio
    async def test_audit_failure_does_not_undo_transition(
        self, machine, new_order, admin, session_maker, caplog
    ):
        with patch.object(AuditStore, "log", side_effect=RuntimeError("audit store down")):
            with caplog.at_level(logging.ERROR, logger="orderflow.kernel.events.audit_recorder"):
                order = await machine.apply_action(new_order.id, OrderAction.SEND_QUOTATION, admin)

        assert order.status is OrderStatus.QUOTATION_SENT
        assert (await machine.get_order(new_order.id, admin)).status is OrderStatus.QUOTATION_SENT
        assert any("Audit append failed" in r.getMessage() for r in caplog.records)

    @pytest.mark.asyncio
    async def test_recorder_returns_none_on_failure(self, gateway):
        recorder = AuditRecorder(gateway)
        with patch.object(AuditStore, "log", side_effect=RuntimeError("boom")):
            effect = SideEffect(
                event_type=AuditEventType.ORDER_CLOSED, resource_type="order", resource_id="x"
            )
            assert await recorder.record(effect) is None


class TestStatusPush:
    @pytest.mark.asyncio
    async def test_subscribers_see_status_changes(self, machine, broker, new_order, admin, client):
        session = broker.connect(client.user_id, client.role)
        broker.subscribe(session, new_order.context_code)

        await machine.apply_action(new_order.id, OrderAction.SEND_QUOTATION, admin)

        events = _drain(session)
        status_events = [e for e in events if e["event"] == "order:status_changed"]
        assert len(status_events) == 1
        assert status_events[0]["from_status"] == "pending_query"
        assert status_events[0]["to_status"] == "quotation_sent"
        assert status_events[0]["external_code"] == new_order.external_code
        assert any(
            e["event"] == "notification:new" and e["title"] == "Quotation Ready" for e in events
        )

    @pytest.mark.asyncio
    async def test_assignment_pushes_to_old_and_new_context(
        self, machine, broker, paid_order, admin, writer_user
    ):
        query_context = paid_order.context_code
        work_context = query_context.replace(":query:", ":work:")
        on_query = broker.connect(admin.user_id, admin.role)
        on_work = broker.connect(writer_user.id, UserRole.WRITER)
        broker.subscribe(on_query, query_context)
        broker.subscribe(on_work, work_context)

        order = await machine.assign_writer(paid_order.id, admin, writer_user.id)

        assert order.context_code == work_context
        for session in (on_query, on_work):
            changes = [e for e in _drain(session) if e["event"] == "order:status_changed"]
            assert len(changes) == 1
            assert changes[0]["context_code"] == work_context
            assert changes[0]["previous_context_code"] == query_context

    @pytest.mark.asyncio
    async def test_broker_failure_does_not_fail_transition(self, machine, broker, new_order, admin):
        with patch.object(broker, "publish", side_effect=RuntimeError("socket layer down")):
            order = await machine.apply_action(new_order.id, OrderAction.SEND_QUOTATION, admin)
        assert order.status is OrderStatus.QUOTATION_SENT


class TestNotifications:
    @pytest.mark.asyncio
    async def test_role_fanout_skips_inactive_and_duplicates(
        self, gateway, broker, admin_user, session_maker
    ):
        async with session_maker() as session:
            session.add(
                User(
                    email="retired@example.com",
                    full_name="Retired Admin",
                    role=UserRole.ADMIN,
                    is_active=False,
                )
            )
            await session.commit()

        dispatcher = NotificationDispatcher(gateway, broker)
        rows = await dispatcher.dispatch(
            NotificationIntent(
                user_ids=[admin_user.id],
                roles=[UserRole.ADMIN],
                type=NotificationType.CRITICAL,
                title="Submission Pending QC Review",
                message="New work was submitted.",
            )
        )
        assert [r.user_id for r in rows] == [admin_user.id]

    @pytest.mark.asyncio
    async def test_no_recipients_is_a_no_op(self, gateway, broker):
        rows = await NotificationDispatcher(gateway, broker).dispatch(
            NotificationIntent(roles=[UserRole.WRITER], title="Nobody", message="home")
        )
        assert rows == []

    @pytest.mark.asyncio
    async def test_directory_failure_is_contained(
        self, machine, new_order, admin, client, admin_user, session_maker
    ):
        await machine.apply_action(new_order.id, OrderAction.SEND_QUOTATION, admin)
        with patch.object(
            Directory,
            "find_active_user_ids_by_role",
            AsyncMock(side_effect=RuntimeError("directory down")),
        ):
            order = await machine.apply_action(new_order.id, OrderAction.ACCEPT_QUOTATION, client)
        assert order.status is OrderStatus.ACCEPTED

        async with session_maker() as session:
            items, _ = await NotificationInbox(session).list_notifications(admin_user.id)
        assert "Quotation Accepted" not in [n.title for n in items]

    @pytest.mark.asyncio
    async def test_live_push_reaches_user_sessions(self, machine, broker, new_order, admin, client):
        session = broker.connect(client.user_id, client.role)

        await machine.apply_action(new_order.id, OrderAction.SEND_QUOTATION, admin)

        (event,) = _drain(session)
        assert event["event"] == "notification:new"
        assert event["type"] == "success"
        assert event["user_id"] == str(client.user_id)
        assert event["link_url"] == f"/orders/{new_order.id}"

    @pytest.mark.asyncio
    async def test_role_intents_are_broadcast_to_role_sessions(
        self, machine, broker, assigned_order, writer, admin_user, client
    ):
        admin_session = broker.connect(admin_user.id, UserRole.ADMIN)
        client_session = broker.connect(client.user_id, client.role)

        await machine.evaluate_task(assigned_order.id, writer, EvaluationStatus.DOABLE)

        broadcasts = [e for e in _drain(admin_session) if e["event"] == "notification:broadcast"]
        assert [(e["role"], e["context_code"]) for e in broadcasts] == [("admin", assigned_order.context_code)]
        assert all(e["event"] != "notification:broadcast" for e in _drain(client_session))


class TestInbox:
    @pytest.mark.asyncio
    async def test_inbox_lifecycle(self, machine, paid_order, client, admin, session_maker):
        # send_quotation, request_payment and verify_payment each notified the client
        async with session_maker() as session:
            inbox = NotificationInbox(session)
            items, total = await inbox.list_notifications(client.user_id)
            assert total == 3
            assert items[0].title == "Payment Verified"
            assert await inbox.unread_count(client.user_id) == 3

            warnings, total = await inbox.list_notifications(
                client.user_id, type_filter=NotificationType.WARNING
            )
            assert [n.title for n in warnings] == ["Payment Required"]

            read = await inbox.mark_read(client.user_id, items[0].id)
            assert read.is_read
            await session.commit()

        async with session_maker() as session:
            inbox = NotificationInbox(session)
            unread, total = await inbox.list_notifications(client.user_id, unread_only=True)
            assert total == 2
            assert await inbox.mark_all_read(client.user_id) == 2
            assert await inbox.unread_count(client.user_id) == 0
            await session.commit()

    @pytest.mark.asyncio
    async def test_inbox_is_scoped_to_recipient(self, machine, paid_order, client, other_client, session_maker):
        async with session_maker() as session:
            inbox = NotificationInbox(session)
            items, _ = await inbox.list_notifications(client.user_id)
            with pytest.raises(NotFoundError):
                await inbox.mark_read(other_client.user_id, items[0].id)
            with pytest.raises(NotFoundError):
                await inbox.delete(other_client.user_id, items[0].id)

            await inbox.delete(client.user_id, items[0].id)
            _, total = await inbox.list_notifications(client.user_id)
            assert total == 2
