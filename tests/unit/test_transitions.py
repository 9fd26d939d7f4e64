"""
Unit tests for the order transition table.
"""

import pytest

from orderflow.errors import AccessDeniedError, ConflictError
from orderflow.kernel.models.order import OrderStatus
from orderflow.kernel.models.user import UserRole
from orderflow.orchestration import transitions
from orderflow.orchestration.transitions import (
    NOTIFICATION_TRIGGERS,
    PHASE_OF,
    TRANSITIONS,
    LifecyclePhase,
    OrderAction,
)


class TestPhases:
    """Every status belongs to exactly one phase."""

    def test_every_status_has_a_phase(self):
        assert set(PHASE_OF) == set(OrderStatus)

    def test_terminal_statuses(self):
        terminal = {s for s in OrderStatus if transitions.is_terminal(s)}
        assert terminal == {
            OrderStatus.COMPLETED,
            OrderStatus.CANCELLED,
            OrderStatus.QUERY_REJECTED,
        }

    def test_execution_and_qc_need_a_writer(self):
        assert transitions.requires_writer(OrderStatus.WRITER_ASSIGNED)
        assert transitions.requires_writer(OrderStatus.PENDING_QC)
        assert transitions.requires_writer(OrderStatus.APPROVED)
        assert not transitions.requires_writer(OrderStatus.PAYMENT_VERIFIED)
        assert not transitions.requires_writer(OrderStatus.COMPLETED)

    def test_phase_of(self):
        assert transitions.phase_of(OrderStatus.QUOTATION_SENT) is LifecyclePhase.QUERY
        assert transitions.phase_of(OrderStatus.REVISION_REQUIRED) is LifecyclePhase.QC
        assert transitions.phase_of(OrderStatus.DELIVERED) is LifecyclePhase.DELIVERY


class TestResolve:
    """Tests for transitions.resolve()."""

    def test_happy_path_sequence(self):
        steps = [
            (OrderStatus.PENDING_QUERY, OrderAction.SEND_QUOTATION, UserRole.ADMIN),
            (OrderStatus.QUOTATION_SENT, OrderAction.ACCEPT_QUOTATION, UserRole.CLIENT),
            (OrderStatus.ACCEPTED, OrderAction.REQUEST_PAYMENT, UserRole.ADMIN),
            (OrderStatus.AWAITING_PAYMENT, OrderAction.VERIFY_PAYMENT, UserRole.ADMIN),
            (OrderStatus.PAYMENT_VERIFIED, OrderAction.ASSIGN_WRITER, UserRole.ADMIN),
            (OrderStatus.WRITER_ASSIGNED, OrderAction.START_WORK, UserRole.WRITER),
            (OrderStatus.IN_PROGRESS, OrderAction.SUBMIT_WORK, UserRole.WRITER),
            (OrderStatus.PENDING_QC, OrderAction.APPROVE_SUBMISSION, UserRole.ADMIN),
            (OrderStatus.APPROVED, OrderAction.DELIVER, UserRole.ADMIN),
        ]
        status = OrderStatus.PENDING_QUERY
        for expected_from, action, role in steps:
            assert status is expected_from
            status = transitions.resolve(status, action, role)
        assert status is OrderStatus.COMPLETED

    def test_rejected_payment_can_be_requested_again(self):
        status = transitions.resolve(
            OrderStatus.AWAITING_PAYMENT, OrderAction.REJECT_PAYMENT, UserRole.ADMIN
        )
        assert status is OrderStatus.PAYMENT_REJECTED
        assert (
            transitions.resolve(status, OrderAction.REQUEST_PAYMENT, UserRole.ADMIN)
            is OrderStatus.AWAITING_PAYMENT
        )

    def test_qc_rejection_loops_back_to_submission(self):
        status = transitions.resolve(
            OrderStatus.PENDING_QC, OrderAction.REJECT_SUBMISSION, UserRole.ADMIN
        )
        assert status is OrderStatus.REVISION_REQUIRED
        assert (
            transitions.resolve(status, OrderAction.SUBMIT_WORK, UserRole.WRITER)
            is OrderStatus.PENDING_QC
        )

    def test_role_that_never_performs_action_is_denied(self):
        with pytest.raises(AccessDeniedError):
            transitions.resolve(OrderStatus.PENDING_QUERY, OrderAction.SEND_QUOTATION, UserRole.CLIENT)
        with pytest.raises(AccessDeniedError):
            transitions.resolve(OrderStatus.QUOTATION_SENT, OrderAction.ACCEPT_QUOTATION, UserRole.ADMIN)
        with pytest.raises(AccessDeniedError):
            transitions.resolve(OrderStatus.APPROVED, OrderAction.DELIVER, UserRole.WRITER)

    def test_right_role_wrong_status_conflicts(self):
        with pytest.raises(ConflictError) as exc_info:
            transitions.resolve(OrderStatus.PENDING_QC, OrderAction.DELIVER, UserRole.ADMIN)
        assert exc_info.value.context == {"action": "deliver", "status": "pending_qc"}

    def test_terminal_statuses_accept_nothing(self):
        for status in (OrderStatus.COMPLETED, OrderStatus.CANCELLED, OrderStatus.QUERY_REJECTED):
            with pytest.raises(ConflictError):
                transitions.resolve(status, OrderAction.CANCEL, UserRole.ADMIN)
            with pytest.raises(ConflictError):
                transitions.resolve(status, OrderAction.CLOSE, UserRole.ADMIN)

    def test_query_rejection_only_during_query_phase(self):
        assert (
            transitions.resolve(OrderStatus.ACCEPTED, OrderAction.REJECT_QUERY, UserRole.ADMIN)
            is OrderStatus.QUERY_REJECTED
        )
        with pytest.raises(ConflictError):
            transitions.resolve(OrderStatus.AWAITING_PAYMENT, OrderAction.REJECT_QUERY, UserRole.ADMIN)


class TestAllowedActions:
    def test_admin_on_new_query(self):
        actions = transitions.allowed_actions(OrderStatus.PENDING_QUERY, UserRole.ADMIN)
        assert actions == [
            OrderAction.SEND_QUOTATION,
            OrderAction.REJECT_QUERY,
            OrderAction.CANCEL,
            OrderAction.CLOSE,
        ]

    def test_client_waiting_on_quotation(self):
        assert transitions.allowed_actions(OrderStatus.QUOTATION_SENT, UserRole.CLIENT) == [
            OrderAction.ACCEPT_QUOTATION
        ]

    def test_writer_after_assignment(self):
        assert transitions.allowed_actions(OrderStatus.WRITER_ASSIGNED, UserRole.WRITER) == [
            OrderAction.START_WORK,
            OrderAction.SUBMIT_WORK,
        ]

    def test_nothing_after_terminal(self):
        for role in UserRole:
            assert transitions.allowed_actions(OrderStatus.COMPLETED, role) == []

    def test_every_non_terminal_status_can_be_cancelled(self):
        for status in OrderStatus:
            if transitions.is_terminal(status):
                continue
            assert transitions.can_transition(status, OrderAction.CANCEL, UserRole.ADMIN)
            assert not transitions.can_transition(status, OrderAction.CANCEL, UserRole.CLIENT)


class TestTableShape:
    def test_simple_actions_never_need_related_records(self):
        assert OrderAction.DELIVER not in transitions.SIMPLE_ACTIONS
        assert OrderAction.SUBMIT_WORK not in transitions.SIMPLE_ACTIONS
        assert OrderAction.ASSIGN_WRITER not in transitions.SIMPLE_ACTIONS

    def test_targets_needing_writer_are_reached_only_with_assignment_or_from_writer_phase(self):
        for (status, action, _), target in TRANSITIONS.items():
            if transitions.requires_writer(target) and not transitions.requires_writer(status):
                assert action is OrderAction.ASSIGN_WRITER

    def test_notification_messages_format_with_the_order_code(self):
        for triggers in NOTIFICATION_TRIGGERS.values():
            for trigger in triggers:
                assert "ORD-TEST0000" in trigger.message.format(code="ORD-TEST0000")
