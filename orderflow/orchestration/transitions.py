"""
Order transition table.

Every status change an order can make is one entry here:
(current status, action, actor role) -> new status. A lookup miss is a
rejection; nothing outside this table decides whether a move is legal.
"""

from enum import Enum
from typing import Dict, FrozenSet, List, NamedTuple, Set, Tuple

from orderflow.errors import AccessDeniedError, ConflictError
from orderflow.kernel.models.notification import NotificationType
from orderflow.kernel.models.order import OrderStatus
from orderflow.kernel.models.user import UserRole


class LifecyclePhase(str, Enum):
    QUERY = "query"
    PAYMENT = "payment"
    EXECUTION = "execution"
    QC = "qc"
    DELIVERY = "delivery"
    TERMINAL = "terminal"


PHASE_OF: Dict[OrderStatus, LifecyclePhase] = {
    OrderStatus.PENDING_QUERY: LifecyclePhase.QUERY,
    OrderStatus.QUOTATION_SENT: LifecyclePhase.QUERY,
    OrderStatus.ACCEPTED: LifecyclePhase.QUERY,
    OrderStatus.AWAITING_PAYMENT: LifecyclePhase.PAYMENT,
    OrderStatus.PAYMENT_REJECTED: LifecyclePhase.PAYMENT,
    OrderStatus.PAYMENT_VERIFIED: LifecyclePhase.PAYMENT,
    OrderStatus.WRITER_ASSIGNED: LifecyclePhase.EXECUTION,
    OrderStatus.IN_PROGRESS: LifecyclePhase.EXECUTION,
    OrderStatus.PENDING_QC: LifecyclePhase.QC,
    OrderStatus.REVISION_REQUIRED: LifecyclePhase.QC,
    OrderStatus.APPROVED: LifecyclePhase.QC,
    OrderStatus.DELIVERED: LifecyclePhase.DELIVERY,
    OrderStatus.COMPLETED: LifecyclePhase.TERMINAL,
    OrderStatus.CANCELLED: LifecyclePhase.TERMINAL,
    OrderStatus.QUERY_REJECTED: LifecyclePhase.TERMINAL,
}

# Statuses in these phases are only valid with a writer on the order
WRITER_REQUIRED_PHASES: FrozenSet[LifecyclePhase] = frozenset(
    (LifecyclePhase.EXECUTION, LifecyclePhase.QC)
)


def phase_of(status: OrderStatus) -> LifecyclePhase:
    return PHASE_OF[status]


def is_terminal(status: OrderStatus) -> bool:
    return PHASE_OF[status] is LifecyclePhase.TERMINAL


def requires_writer(status: OrderStatus) -> bool:
    return PHASE_OF[status] in WRITER_REQUIRED_PHASES


class OrderAction(str, Enum):
    # Table-driven: status change only
    SEND_QUOTATION = "send_quotation"
    ACCEPT_QUOTATION = "accept_quotation"
    REJECT_QUERY = "reject_query"
    REQUEST_PAYMENT = "request_payment"
    VERIFY_PAYMENT = "verify_payment"
    REJECT_PAYMENT = "reject_payment"
    START_WORK = "start_work"
    CANCEL = "cancel"
    # Status change plus related records, each behind its own operation
    ASSIGN_WRITER = "assign_writer"
    SUBMIT_WORK = "submit_work"
    APPROVE_SUBMISSION = "approve_submission"
    REJECT_SUBMISSION = "reject_submission"
    DELIVER = "deliver"
    CLOSE = "close"


# Actions that may be applied through the generic action endpoint
SIMPLE_ACTIONS: FrozenSet[OrderAction] = frozenset((
    OrderAction.SEND_QUOTATION,
    OrderAction.ACCEPT_QUOTATION,
    OrderAction.REJECT_QUERY,
    OrderAction.REQUEST_PAYMENT,
    OrderAction.VERIFY_PAYMENT,
    OrderAction.REJECT_PAYMENT,
    OrderAction.START_WORK,
    OrderAction.CANCEL,
))

_NON_TERMINAL = [s for s, p in PHASE_OF.items() if p is not LifecyclePhase.TERMINAL]
_QUERY_STATUSES = [s for s, p in PHASE_OF.items() if p is LifecyclePhase.QUERY]


def _build_table() -> Dict[Tuple[OrderStatus, OrderAction, UserRole], OrderStatus]:
    admin, client, writer = UserRole.ADMIN, UserRole.CLIENT, UserRole.WRITER
    table = {
        (OrderStatus.PENDING_QUERY, OrderAction.SEND_QUOTATION, admin): OrderStatus.QUOTATION_SENT,
        (OrderStatus.QUOTATION_SENT, OrderAction.ACCEPT_QUOTATION, client): OrderStatus.ACCEPTED,
        (OrderStatus.ACCEPTED, OrderAction.REQUEST_PAYMENT, admin): OrderStatus.AWAITING_PAYMENT,
        (OrderStatus.PAYMENT_REJECTED, OrderAction.REQUEST_PAYMENT, admin): OrderStatus.AWAITING_PAYMENT,
        (OrderStatus.AWAITING_PAYMENT, OrderAction.VERIFY_PAYMENT, admin): OrderStatus.PAYMENT_VERIFIED,
        (OrderStatus.AWAITING_PAYMENT, OrderAction.REJECT_PAYMENT, admin): OrderStatus.PAYMENT_REJECTED,
        (OrderStatus.PAYMENT_VERIFIED, OrderAction.ASSIGN_WRITER, admin): OrderStatus.WRITER_ASSIGNED,
        (OrderStatus.WRITER_ASSIGNED, OrderAction.START_WORK, writer): OrderStatus.IN_PROGRESS,
        (OrderStatus.WRITER_ASSIGNED, OrderAction.SUBMIT_WORK, writer): OrderStatus.PENDING_QC,
        (OrderStatus.IN_PROGRESS, OrderAction.SUBMIT_WORK, writer): OrderStatus.PENDING_QC,
        (OrderStatus.REVISION_REQUIRED, OrderAction.SUBMIT_WORK, writer): OrderStatus.PENDING_QC,
        (OrderStatus.PENDING_QC, OrderAction.APPROVE_SUBMISSION, admin): OrderStatus.APPROVED,
        (OrderStatus.PENDING_QC, OrderAction.REJECT_SUBMISSION, admin): OrderStatus.REVISION_REQUIRED,
        (OrderStatus.APPROVED, OrderAction.DELIVER, admin): OrderStatus.COMPLETED,
    }
    for status in _QUERY_STATUSES:
        table[(status, OrderAction.REJECT_QUERY, admin)] = OrderStatus.QUERY_REJECTED
    for status in _NON_TERMINAL:
        table[(status, OrderAction.CANCEL, admin)] = OrderStatus.CANCELLED
        table[(status, OrderAction.CLOSE, admin)] = OrderStatus.COMPLETED
    return table


TRANSITIONS: Dict[Tuple[OrderStatus, OrderAction, UserRole], OrderStatus] = _build_table()

def _roles_by_action() -> Dict[OrderAction, Set[UserRole]]:
    roles: Dict[OrderAction, Set[UserRole]] = {}
    for _, action, role in TRANSITIONS:
        roles.setdefault(action, set()).add(role)
    return roles


_ROLES_FOR_ACTION = _roles_by_action()


def resolve(status: OrderStatus, action: OrderAction, role: UserRole) -> OrderStatus:
    """
    Look up the target status.

    Raises:
        AccessDeniedError: the role may never perform this action
        ConflictError: the action is not valid from the current status
    """
    target = TRANSITIONS.get((status, action, role))
    if target is not None:
        return target
    if role not in _ROLES_FOR_ACTION.get(action, set()):
        raise AccessDeniedError(
            f"{role.value} may not {action.value}",
            context={"action": action.value, "role": role.value},
        )
    raise ConflictError(
        f"Cannot {action.value} an order that is {status.value}",
        context={"action": action.value, "status": status.value},
    )


def can_transition(status: OrderStatus, action: OrderAction, role: UserRole) -> bool:
    return (status, action, role) in TRANSITIONS


def allowed_actions(status: OrderStatus, role: UserRole) -> List[OrderAction]:
    """Actions the role may take from this status, in declaration order."""
    return [a for a in OrderAction if can_transition(status, a, role)]


class NotificationTrigger(NamedTuple):
    """Who hears about an action, and how. `{code}` is the order's external code."""

    recipient: UserRole
    type: NotificationType
    title: str
    message: str


NOTIFICATION_TRIGGERS: Dict[OrderAction, Tuple[NotificationTrigger, ...]] = {
    OrderAction.SEND_QUOTATION: (
        NotificationTrigger(UserRole.CLIENT, NotificationType.SUCCESS, "Quotation Ready",
                            "A quotation is ready for order {code}."),
    ),
    OrderAction.ACCEPT_QUOTATION: (
        NotificationTrigger(UserRole.ADMIN, NotificationType.SUCCESS, "Quotation Accepted",
                            "The client accepted the quotation for order {code}."),
    ),
    OrderAction.REJECT_QUERY: (
        NotificationTrigger(UserRole.CLIENT, NotificationType.WARNING, "Query Rejected",
                            "Your query {code} could not be taken on."),
    ),
    OrderAction.REQUEST_PAYMENT: (
        NotificationTrigger(UserRole.CLIENT, NotificationType.WARNING, "Payment Required",
                            "Payment is required to proceed with order {code}."),
    ),
    OrderAction.VERIFY_PAYMENT: (
        NotificationTrigger(UserRole.CLIENT, NotificationType.SUCCESS, "Payment Verified",
                            "Payment for order {code} has been verified."),
        NotificationTrigger(UserRole.ADMIN, NotificationType.SUCCESS, "Payment Verified",
                            "Order {code} is ready for writer assignment."),
    ),
    OrderAction.REJECT_PAYMENT: (
        NotificationTrigger(UserRole.CLIENT, NotificationType.CRITICAL, "Payment Verification Failed",
                            "Payment for order {code} could not be verified."),
    ),
    OrderAction.ASSIGN_WRITER: (
        NotificationTrigger(UserRole.WRITER, NotificationType.WARNING, "Task Assigned",
                            "You have been assigned order {code}."),
    ),
    OrderAction.START_WORK: (
        NotificationTrigger(UserRole.CLIENT, NotificationType.INFO, "Work Started",
                            "A writer has started on order {code}."),
    ),
    OrderAction.CANCEL: (
        NotificationTrigger(UserRole.CLIENT, NotificationType.WARNING, "Order Cancelled",
                            "Order {code} has been cancelled."),
        NotificationTrigger(UserRole.WRITER, NotificationType.WARNING, "Order Cancelled",
                            "Order {code} has been cancelled."),
    ),
    OrderAction.SUBMIT_WORK: (
        NotificationTrigger(UserRole.ADMIN, NotificationType.CRITICAL, "Submission Pending QC Review",
                            "New work was submitted for order {code}."),
    ),
    OrderAction.APPROVE_SUBMISSION: (
        NotificationTrigger(UserRole.WRITER, NotificationType.SUCCESS, "QC Approved",
                            "Your submission for order {code} passed QC."),
        NotificationTrigger(UserRole.CLIENT, NotificationType.SUCCESS, "QC Approved",
                            "Work on order {code} passed quality review."),
    ),
    OrderAction.REJECT_SUBMISSION: (
        NotificationTrigger(UserRole.WRITER, NotificationType.CRITICAL, "Revision Required",
                            "QC requested a revision on order {code}."),
        NotificationTrigger(UserRole.CLIENT, NotificationType.WARNING, "Revision In Progress",
                            "Order {code} is being revised after quality review."),
    ),
    OrderAction.DELIVER: (
        NotificationTrigger(UserRole.CLIENT, NotificationType.SUCCESS, "Order Delivered",
                            "Order {code} has been delivered."),
        NotificationTrigger(UserRole.WRITER, NotificationType.SUCCESS, "Order Completed",
                            "Order {code} was delivered to the client."),
    ),
    OrderAction.CLOSE: (
        NotificationTrigger(UserRole.CLIENT, NotificationType.INFO, "Order Closed",
                            "Order {code} has been closed."),
    ),
}
