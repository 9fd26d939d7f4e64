"""
Post-commit fan-out.

Runs strictly after a transition's transaction has committed: audit entries
first, then the status push, then notifications. Each step is isolated; a
failure is logged and the rest still run. Nothing here can undo the
transition.
"""

from orderflow.engines.notifications.dispatcher import NotificationDispatcher
from orderflow.kernel.events.audit_recorder import AuditRecorder
from orderflow.kernel.events.side_effects import PostCommitEffects, StatusChange
from orderflow.logging_config import get_logger
from orderflow.realtime.broker import SessionBroker

logger = get_logger(__name__)


class PostCommitFanout:
    def __init__(
        self,
        audit: AuditRecorder,
        dispatcher: NotificationDispatcher,
        broker: SessionBroker,
    ):
        self.audit = audit
        self.dispatcher = dispatcher
        self.broker = broker

    async def run(self, effects: PostCommitEffects) -> None:
        await self.audit.record_many(effects.audit)
        if effects.status_change is not None:
            self._push_status(effects.status_change)
        await self.dispatcher.dispatch_many(effects.notifications)

    def _push_status(self, change: StatusChange) -> None:
        try:
            payload = change.to_event()
            self.broker.publish(change.context_code, payload)
            if change.previous_context_code and change.previous_context_code != change.context_code:
                self.broker.publish(change.previous_context_code, payload)
        except Exception:
            logger.error(
                "Status push failed",
                exc_info=True,
                extra={"order_id": str(change.order_id), "to_status": change.to_status},
            )
