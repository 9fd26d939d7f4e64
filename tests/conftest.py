"""
Pytest fixtures for the order lifecycle engine.
"""

import os
import tempfile
import uuid
from datetime import timedelta
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

# Point the application at a throwaway file before anything builds the module engine
_tmp = tempfile.NamedTemporaryFile(suffix=".db", delete=False)
_tmp.close()
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_tmp.name}"
os.environ["SECRET_KEY"] = "test-secret-key-for-testing-only-0123456789"

from orderflow.config import get_settings

get_settings.cache_clear()

from orderflow.api.deps import build_state_machine
from orderflow.database import build_engine, build_session_maker, init_db
from orderflow.kernel.identity.tokens import Actor
from orderflow.kernel.models.base import utcnow
from orderflow.kernel.models.order import Order
from orderflow.kernel.models.user import User, UserRole
from orderflow.kernel.persistence import PersistenceGateway
from orderflow.orchestration.state_machine import OrderStateMachine
from orderflow.orchestration.transitions import OrderAction
from orderflow.realtime.broker import SessionBroker


def _in_days(days: float):
    return utcnow() + timedelta(days=days)


@pytest_asyncio.fixture
async def db_engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """File-backed SQLite so concurrent sessions really contend."""
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'orderflow.db'}")
    await init_db(bind=engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return build_session_maker(db_engine)


@pytest.fixture
def gateway(session_maker) -> PersistenceGateway:
    return PersistenceGateway(session_maker)


@pytest.fixture
def broker() -> SessionBroker:
    return SessionBroker(queue_size=64)


@pytest.fixture
def machine(gateway: PersistenceGateway, broker: SessionBroker) -> OrderStateMachine:
    return build_state_machine(gateway, broker)


async def _create_user(session_maker, email: str, name: str, role: UserRole, active: bool = True) -> User:
    async with session_maker() as session:
        user = User(id=uuid.uuid4(), email=email, full_name=name, role=role, is_active=active)
        session.add(user)
        await session.commit()
        return user


@pytest_asyncio.fixture
async def client_user(session_maker) -> User:
    return await _create_user(session_maker, "client@example.com", "Test Client", UserRole.CLIENT)


@pytest_asyncio.fixture
async def other_client_user(session_maker) -> User:
    return await _create_user(session_maker, "other@example.com", "Other Client", UserRole.CLIENT)


@pytest_asyncio.fixture
async def writer_user(session_maker) -> User:
    return await _create_user(session_maker, "writer@example.com", "Test Writer", UserRole.WRITER)


@pytest_asyncio.fixture
async def other_writer_user(session_maker) -> User:
    return await _create_user(session_maker, "writer2@example.com", "Second Writer", UserRole.WRITER)


@pytest_asyncio.fixture
async def admin_user(session_maker) -> User:
    return await _create_user(session_maker, "admin@example.com", "Test Admin", UserRole.ADMIN)


@pytest.fixture
def client(client_user: User) -> Actor:
    return Actor(user_id=client_user.id, role=UserRole.CLIENT)


@pytest.fixture
def other_client(other_client_user: User) -> Actor:
    return Actor(user_id=other_client_user.id, role=UserRole.CLIENT)


@pytest.fixture
def writer(writer_user: User) -> Actor:
    return Actor(user_id=writer_user.id, role=UserRole.WRITER)


@pytest.fixture
def other_writer(other_writer_user: User) -> Actor:
    return Actor(user_id=other_writer_user.id, role=UserRole.WRITER)


@pytest.fixture
def admin(admin_user: User) -> Actor:
    return Actor(user_id=admin_user.id, role=UserRole.ADMIN, ip_address="10.0.0.1")


@pytest_asyncio.fixture
async def new_order(machine: OrderStateMachine, client: Actor) -> Order:
    """An order fresh from the client, pending_query."""
    return await machine.create_order(client, "Market analysis of EV batteries", deadline=_in_days(14))


@pytest_asyncio.fixture
async def paid_order(machine: OrderStateMachine, new_order: Order, client: Actor, admin: Actor) -> Order:
    """Quoted, accepted and paid: payment_verified, no writer yet."""
    order = await machine.apply_action(new_order.id, OrderAction.SEND_QUOTATION, admin)
    order = await machine.apply_action(order.id, OrderAction.ACCEPT_QUOTATION, client)
    order = await machine.apply_action(order.id, OrderAction.REQUEST_PAYMENT, admin)
    return await machine.apply_action(order.id, OrderAction.VERIFY_PAYMENT, admin)


@pytest_asyncio.fixture
async def assigned_order(
    machine: OrderStateMachine, paid_order: Order, admin: Actor, writer_user: User
) -> Order:
    """writer_assigned to `writer`."""
    return await machine.assign_writer(paid_order.id, admin, writer_user.id)
