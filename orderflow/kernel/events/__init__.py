"""
Audit trail and post-commit side-effect descriptions.
"""

from orderflow.kernel.events.audit_recorder import AuditRecorder, AuditStore
from orderflow.kernel.events.side_effects import (
    NotificationIntent,
    PostCommitEffects,
    SideEffect,
    StatusChange,
)

__all__ = [
    "AuditRecorder",
    "AuditStore",
    "NotificationIntent",
    "PostCommitEffects",
    "SideEffect",
    "StatusChange",
]
