"""
In-process real-time session broker.

Live sessions (one per open WebSocket) get a bounded outbound queue. Events
are routed to a session when it is subscribed to the event's context, or when
the event targets the session's user or role. Delivery is at most once: a
full queue drops the event and logs it, and a disconnected session simply
stops receiving. Durable copies live in the notifications table.
"""

import asyncio
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Optional, Set

from orderflow.config import get_settings
from orderflow.kernel.models.user import UserRole
from orderflow.logging_config import get_logger

logger = get_logger(__name__)

CHAT_EVENTS = frozenset(("chat:message", "chat:typing", "chat:stop_typing"))


@dataclass(eq=False)
class LiveSession:
    """A connected client: who it is and what it is following."""

    user_id: uuid.UUID
    role: UserRole
    queue: asyncio.Queue
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    contexts: Set[str] = field(default_factory=set)
    dropped: int = 0
    closed: bool = False


class SessionBroker:
    """
    Maps context codes and users to live sessions.

    All methods are synchronous and never await, so a publish is atomic with
    respect to subscribe/disconnect on the same event loop.
    """

    def __init__(self, queue_size: Optional[int] = None):
        self.queue_size = queue_size or get_settings().realtime_queue_size
        self._sessions: Dict[str, LiveSession] = {}
        self._by_context: Dict[str, Set[str]] = {}
        self._by_user: Dict[uuid.UUID, Set[str]] = {}

    # Session lifecycle

    def connect(self, user_id: uuid.UUID, role: UserRole) -> LiveSession:
        session = LiveSession(
            user_id=user_id,
            role=role,
            queue=asyncio.Queue(maxsize=self.queue_size),
        )
        self._sessions[session.id] = session
        self._by_user.setdefault(user_id, set()).add(session.id)
        logger.info(
            "Live session connected",
            extra={"session_id": session.id, "user_id": str(user_id), "role": role.value},
        )
        return session

    def disconnect(self, session: LiveSession) -> None:
        if self._sessions.pop(session.id, None) is None:
            return
        session.closed = True
        for context_code in session.contexts:
            self._discard(self._by_context, context_code, session.id)
        session.contexts.clear()
        self._discard(self._by_user, session.user_id, session.id)
        logger.info(
            "Live session disconnected",
            extra={"session_id": session.id, "dropped_events": session.dropped},
        )

    def subscribe(self, session: LiveSession, context_code: str) -> None:
        """Caller must have checked access to the context."""
        if session.closed:
            return
        session.contexts.add(context_code)
        self._by_context.setdefault(context_code, set()).add(session.id)

    def unsubscribe(self, session: LiveSession, context_code: str) -> None:
        session.contexts.discard(context_code)
        self._discard(self._by_context, context_code, session.id)

    # Delivery

    def publish(self, context_code: str, payload: Dict[str, Any]) -> int:
        """Push to every session following the context. Returns deliveries."""
        return self._deliver(self._by_context.get(context_code, ()), payload)

    def send_to_user(self, user_id: uuid.UUID, payload: Dict[str, Any]) -> int:
        return self._deliver(self._by_user.get(user_id, ()), payload)

    def send_to_role(self, role: UserRole, payload: Dict[str, Any]) -> int:
        targets = [s.id for s in self._sessions.values() if s.role == role]
        return self._deliver(targets, payload)

    def relay_chat(
        self,
        sender: LiveSession,
        context_code: str,
        event: str,
        data: Optional[Dict[str, Any]] = None,
    ) -> int:
        """
        Fan an ephemeral chat event out to a context. Nothing is persisted.

        The sender must already be subscribed to the context.
        """
        if event not in CHAT_EVENTS:
            raise ValueError(f"Not a chat event: {event}")
        if context_code not in sender.contexts:
            return 0
        payload = dict(data or {})
        payload.update(
            event=event,
            context_code=context_code,
            user_id=str(sender.user_id),
            role=sender.role.value,
        )
        return self.publish(context_code, payload)

    # Introspection

    def subscribers(self, context_code: str) -> int:
        return len(self._by_context.get(context_code, ()))

    @property
    def session_count(self) -> int:
        return len(self._sessions)

    def _deliver(self, session_ids: Iterable[str], payload: Dict[str, Any]) -> int:
        delivered = 0
        for session_id in list(session_ids):
            session = self._sessions.get(session_id)
            if session is None:
                continue
            try:
                session.queue.put_nowait(payload)
                delivered += 1
            except asyncio.QueueFull:
                session.dropped += 1
                logger.warning(
                    "Live session queue full, event dropped",
                    extra={
                        "session_id": session.id,
                        "event": payload.get("event"),
                        "dropped_events": session.dropped,
                    },
                )
        return delivered

    @staticmethod
    def _discard(index: Dict[Any, Set[str]], key: Any, session_id: str) -> None:
        members = index.get(key)
        if members is None:
            return
        members.discard(session_id)
        if not members:
            del index[key]


_broker: Optional[SessionBroker] = None


def get_broker() -> SessionBroker:
    """Get or create the process-wide broker."""
    global _broker
    if _broker is None:
        _broker = SessionBroker()
    return _broker
