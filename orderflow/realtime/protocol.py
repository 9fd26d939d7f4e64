"""
Client -> server messages on a live session.

Each inbound message is a JSON object with an "event" key:

    {"event": "subscribe", "context_code": "v1:work:ORD-7K2M9QXA"}
    {"event": "unsubscribe", "context_code": "..."}
    {"event": "chat:send", "context_code": "...", "message": "hello"}
    {"event": "chat:typing", "context_code": "..."}
    {"event": "chat:stop_typing", "context_code": "..."}
    {"event": "ping"}

handle() returns the direct reply for the sender (or None); fan-out to other
sessions goes through the broker.
"""

from typing import Any, Dict, Optional

from orderflow.errors import AccessDeniedError, OrderFlowError
from orderflow.kernel.events.audit_recorder import AuditRecorder
from orderflow.kernel.events.side_effects import SideEffect
from orderflow.kernel.identity.tokens import Actor
from orderflow.kernel.models.audit_log import AuditEventType
from orderflow.kernel.models.base import utcnow
from orderflow.logging_config import get_logger
from orderflow.orchestration.state_machine import OrderStateMachine
from orderflow.realtime.broker import LiveSession, SessionBroker

logger = get_logger(__name__)

MAX_CHAT_LENGTH = 4000


def error_event(message: str, code: str = "VALIDATION", **extra: Any) -> Dict[str, Any]:
    return {"event": "error", "code": code, "message": message, **extra}


class LiveProtocol:
    def __init__(self, machine: OrderStateMachine, broker: SessionBroker, audit: AuditRecorder):
        self.machine = machine
        self.broker = broker
        self.audit = audit

    async def handle(
        self, session: LiveSession, actor: Actor, message: Dict[str, Any]
    ) -> Optional[Dict[str, Any]]:
        event = message.get("event")
        context_code = message.get("context_code")

        if event == "ping":
            return {"event": "pong"}
        if event == "subscribe":
            return await self._subscribe(session, actor, context_code)
        if event == "unsubscribe":
            if not isinstance(context_code, str):
                return error_event("context_code is required")
            self.broker.unsubscribe(session, context_code)
            return {"event": "unsubscribed", "context_code": context_code}
        if event == "chat:send":
            return self._chat_send(session, context_code, message.get("message"))
        if event in ("chat:typing", "chat:stop_typing"):
            if not isinstance(context_code, str) or context_code not in session.contexts:
                return error_event("Not subscribed to this context", code="ACCESS_DENIED")
            self.broker.relay_chat(session, context_code, event)
            return None
        return error_event(f"Unknown event: {event}")

    async def _subscribe(
        self, session: LiveSession, actor: Actor, context_code: Any
    ) -> Dict[str, Any]:
        if not isinstance(context_code, str):
            return error_event("context_code is required")
        try:
            order = await self.machine.authorize_subscription(actor, context_code)
        except AccessDeniedError as exc:
            logger.warning(
                "Unauthorized subscribe attempt",
                extra={"context_code": context_code, "session_id": session.id},
            )
            await self.audit.record(
                SideEffect(
                    actor_id=actor.user_id,
                    actor_role=actor.role,
                    event_type=AuditEventType.SOCKET_UNAUTHORIZED_SUBSCRIBE,
                    resource_type="context",
                    resource_id=context_code,
                    detail=f"Denied subscription to {context_code}",
                    context_code=context_code,
                    ip_address=actor.ip_address,
                    user_agent=actor.user_agent,
                )
            )
            return error_event(exc.message, code=exc.code, context_code=context_code)
        except OrderFlowError as exc:
            return error_event(exc.message, code=exc.code, context_code=context_code)

        self.broker.subscribe(session, context_code)
        return {
            "event": "subscribed",
            "context_code": context_code,
            "order_id": str(order.id),
            "status": order.status.value,
        }

    def _chat_send(
        self, session: LiveSession, context_code: Any, text: Any
    ) -> Dict[str, Any]:
        if not isinstance(context_code, str) or context_code not in session.contexts:
            return error_event("Not subscribed to this context", code="ACCESS_DENIED")
        if not isinstance(text, str) or not text.strip():
            return error_event("Message cannot be empty")
        if len(text) > MAX_CHAT_LENGTH:
            return error_event("Message too long")

        sent_at = utcnow().isoformat()
        self.broker.relay_chat(
            session, context_code, "chat:message", {"message": text.strip(), "sent_at": sent_at}
        )
        return {"event": "chat:sent", "context_code": context_code, "sent_at": sent_at}
