"""
FastAPI dependencies for actor resolution, database sessions and the engine.
"""

from typing import Annotated, AsyncGenerator, Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from orderflow.database import async_session_maker
from orderflow.engines.notifications.dispatcher import NotificationDispatcher
from orderflow.engines.notifications.reminders import DeadlineReminders
from orderflow.kernel.events.audit_recorder import AuditRecorder
from orderflow.kernel.identity.tokens import Actor, get_token_verifier
from orderflow.kernel.models.user import UserRole
from orderflow.kernel.persistence import PersistenceGateway
from orderflow.logging_config import actor_var
from orderflow.orchestration.fanout import PostCommitFanout
from orderflow.orchestration.state_machine import OrderStateMachine
from orderflow.realtime.broker import SessionBroker, get_broker


# Security scheme
security = HTTPBearer(auto_error=False)


def get_gateway() -> PersistenceGateway:
    """Dependency for the persistence gateway (overridden in tests)."""
    return PersistenceGateway(async_session_maker)


def get_session_broker() -> SessionBroker:
    return get_broker()


Gateway = Annotated[PersistenceGateway, Depends(get_gateway)]
Broker = Annotated[SessionBroker, Depends(get_session_broker)]


async def get_db(gateway: Gateway) -> AsyncGenerator[AsyncSession, None]:
    """Dependency that yields database sessions."""
    async with gateway.session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


DbSession = Annotated[AsyncSession, Depends(get_db)]


def build_state_machine(gateway: PersistenceGateway, broker: SessionBroker) -> OrderStateMachine:
    """Wire the state machine with its post-commit fan-out."""
    fanout = PostCommitFanout(
        audit=AuditRecorder(gateway),
        dispatcher=NotificationDispatcher(gateway, broker),
        broker=broker,
    )
    return OrderStateMachine(gateway, fanout)


def build_deadline_reminders(gateway: PersistenceGateway, broker: SessionBroker) -> DeadlineReminders:
    return DeadlineReminders(gateway, NotificationDispatcher(gateway, broker), AuditRecorder(gateway))


def get_state_machine(gateway: Gateway, broker: Broker) -> OrderStateMachine:
    return build_state_machine(gateway, broker)


Machine = Annotated[OrderStateMachine, Depends(get_state_machine)]


def get_client_ip(request: Request) -> Optional[str]:
    """Extract client IP from request."""
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


def get_user_agent(request: Request) -> Optional[str]:
    """Extract user agent from request."""
    return request.headers.get("User-Agent")


async def get_current_actor(
    request: Request,
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(security)],
) -> Actor:
    """Resolve the caller from the bearer token or raise 401."""
    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    actor = get_token_verifier().resolve_actor(
        credentials.credentials,
        ip_address=get_client_ip(request),
        user_agent=get_user_agent(request),
    )
    if actor is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    actor_var.set(actor.label)
    return actor


CurrentActor = Annotated[Actor, Depends(get_current_actor)]


async def require_admin(actor: CurrentActor) -> Actor:
    """Require the current actor to be an admin."""
    if actor.role is not UserRole.ADMIN:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required",
        )
    return actor


AdminActor = Annotated[Actor, Depends(require_admin)]
