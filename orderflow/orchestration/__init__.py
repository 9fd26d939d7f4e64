"""Orchestration layer - order transition table, state machine, post-commit fan-out."""

from orderflow.kernel.models.order import OrderStatus
from orderflow.orchestration.fanout import PostCommitFanout
from orderflow.orchestration.state_machine import OrderStateMachine
from orderflow.orchestration.transitions import LifecyclePhase, OrderAction

__all__ = [
    "LifecyclePhase",
    "OrderAction",
    "OrderStateMachine",
    "OrderStatus",
    "PostCommitFanout",
]
