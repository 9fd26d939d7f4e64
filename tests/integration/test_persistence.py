"""
Persistence gateway against SQLite: transactions, conditional writes and
per-scope numbering.
"""

import logging
import uuid
from datetime import timedelta
from unittest.mock import patch

import pytest
from sqlalchemy import Insert, select, text
from sqlalchemy.exc import IntegrityError

from orderflow.engines.submissions.tracker import SubmissionTracker
from orderflow.errors import ConflictError, InternalError, NotFoundError
from orderflow.kernel.models.base import utcnow
from orderflow.kernel.models.order import Order, OrderStatus
from orderflow.kernel.models.submission import FileVersion, Submission, SubmissionStatus
from orderflow.kernel.models.user import User, UserRole
from orderflow.kernel.persistence import PersistenceGateway


class TestUnitOfWork:
    @pytest.mark.asyncio
    async def test_commit_on_clean_exit(self, gateway, session_maker):
        async with gateway.unit_of_work() as session:
            session.add(User(email="a@example.com", full_name="A", role=UserRole.WRITER))

        async with session_maker() as session:
            assert (await session.execute(select(User))).scalar_one().email == "a@example.com"

    @pytest.mark.asyncio
    async def test_rollback_on_engine_error(self, gateway, session_maker):
        with pytest.raises(ConflictError):
            async with gateway.unit_of_work() as session:
                session.add(User(email="b@example.com", full_name="B", role=UserRole.WRITER))
                await session.flush()
                raise ConflictError("changed underneath")

        async with session_maker() as session:
            assert (await session.execute(select(User))).first() is None

    @pytest.mark.asyncio
    async def test_database_errors_surface_as_internal(self, gateway):
        with pytest.raises(InternalError) as exc_info:
            async with gateway.unit_of_work() as session:
                await session.execute(text("SELECT * FROM no_such_table"))
        assert "no_such_table" not in exc_info.value.message

    @pytest.mark.asyncio
    async def test_get_by_id_raises_not_found(self, gateway):
        async with gateway.unit_of_work() as session:
            with pytest.raises(NotFoundError) as exc_info:
                await gateway.get_by_id(session, Order, uuid.uuid4(), label="Order")
        assert exc_info.value.message == "Order not found"


class TestConditionalWrites:
    @pytest.mark.asyncio
    async def test_update_only_when_expected_matches(self, gateway, new_order):
        async with gateway.unit_of_work() as session:
            moved = await gateway.conditional_update(
                session,
                Order,
                new_order.id,
                expected={"status": OrderStatus.APPROVED},
                values={"status": OrderStatus.COMPLETED},
            )
            assert moved is False

            moved = await gateway.conditional_update(
                session,
                Order,
                new_order.id,
                expected={"status": OrderStatus.PENDING_QUERY},
                values={"status": OrderStatus.QUOTATION_SENT, "details": {"quoted": True}},
            )
            assert moved is True

        async with gateway.unit_of_work() as session:
            order = await gateway.get_by_id(session, Order, new_order.id)
            assert order.status is OrderStatus.QUOTATION_SENT
            assert order.details == {"quoted": True}


class TestNumbering:
    @pytest.mark.asyncio
    async def test_numbers_are_scoped(self, gateway, new_order, client, writer_user, machine):
        other = await machine.create_order(client, "Second order")

        async with gateway.unit_of_work() as session:
            numbers = []
            for order_id in (new_order.id, new_order.id, other.id, new_order.id):
                row = await gateway.insert_with_next_number(
                    session,
                    FileVersion,
                    scope_column="order_id",
                    scope_value=order_id,
                    number_column="version_number",
                    values={
                        "uploaded_by": writer_user.id,
                        "file_url": "s3://f",
                        "file_name": "f.docx",
                    },
                )
                numbers.append(row.version_number)

        assert numbers == [1, 2, 1, 3]

    @pytest.mark.asyncio
    async def test_one_active_submission_index(self, gateway, assigned_order, writer_user):
        async with gateway.unit_of_work() as session:
            version = await gateway.insert_with_next_number(
                session,
                FileVersion,
                scope_column="order_id",
                scope_value=assigned_order.id,
                number_column="version_number",
                values={"uploaded_by": writer_user.id, "file_url": "s3://f", "file_name": "f"},
            )
            version_id = version.id

        def _submission(status):
            return Submission(
                order_id=assigned_order.id,
                writer_id=writer_user.id,
                file_version_id=version_id,
                status=status,
            )

        async with gateway.unit_of_work() as session:
            session.add_all([
                _submission(SubmissionStatus.REVISION_REQUIRED),
                _submission(SubmissionStatus.REVISION_REQUIRED),
                _submission(SubmissionStatus.PENDING_QC),
            ])

        with pytest.raises(InternalError) as exc_info:
            async with gateway.unit_of_work() as session:
                session.add(_submission(SubmissionStatus.APPROVED))
        assert isinstance(exc_info.value.__cause__, IntegrityError)


def _reuse_taken_number(session, table_name: str, number_column: str, taken: int, times: int):
    """
    Rewrite the next `times` INSERTs into `table_name` to carry an existing
    number, as if a concurrent writer had committed it first.
    """
    real_execute = session.execute
    remaining = [times]

    async def execute(statement, *args, **kwargs):
        if remaining[0] and isinstance(statement, Insert) and statement.table.name == table_name:
            remaining[0] -= 1
            statement = statement.values({number_column: taken})
        return await real_execute(statement, *args, **kwargs)

    return patch.object(session, "execute", new=execute)


class TestNumberCollisions:
    @pytest.mark.asyncio
    async def test_collision_is_retried_with_next_number(
        self, gateway, assigned_order, writer, machine, caplog
    ):
        await machine.record_file_version(assigned_order.id, writer, "s3://f/1", "v1.docx")

        with caplog.at_level(logging.WARNING, logger="orderflow.kernel.persistence"):
            async with gateway.unit_of_work() as session:
                with _reuse_taken_number(session, "file_versions", "version_number", 1, times=2):
                    row = await gateway.insert_with_next_number(
                        session,
                        FileVersion,
                        scope_column="order_id",
                        scope_value=assigned_order.id,
                        number_column="version_number",
                        values={"uploaded_by": writer.user_id, "file_url": "s3://f/2", "file_name": "v2"},
                    )
                    assert row.version_number == 2

        retries = [r for r in caplog.records if r.getMessage() == "Number allocation collided, retrying"]
        assert [r.attempt for r in retries] == [1, 2]
        versions = await machine.file_history(assigned_order.id, writer)
        assert [v.version_number for v in versions] == [1, 2]

    @pytest.mark.asyncio
    async def test_revision_numbering_survives_a_collision(
        self, gateway, assigned_order, client, machine
    ):
        await machine.request_revision(assigned_order.id, client, "First", utcnow() + timedelta(days=2))

        async with gateway.unit_of_work() as session:
            with _reuse_taken_number(session, "revision_requests", "revision_number", 1, times=1):
                revision = await SubmissionTracker(gateway, session).create_revision(
                    assigned_order.id, client.user_id, "Second", None
                )
            assert revision.revision_number == 2

    @pytest.mark.asyncio
    async def test_exhausted_retries_raise_conflict(
        self, session_maker, assigned_order, writer, machine
    ):
        await machine.record_file_version(assigned_order.id, writer, "s3://f/1", "v1.docx")
        gateway = PersistenceGateway(session_maker, number_allocation_retries=2)

        with pytest.raises(ConflictError):
            async with gateway.unit_of_work() as session:
                with _reuse_taken_number(session, "file_versions", "version_number", 1, times=5):
                    await gateway.insert_with_next_number(
                        session,
                        FileVersion,
                        scope_column="order_id",
                        scope_value=assigned_order.id,
                        number_column="version_number",
                        values={"uploaded_by": writer.user_id, "file_url": "s3://f/x", "file_name": "x"},
                    )

        versions = await machine.file_history(assigned_order.id, writer)
        assert [v.version_number for v in versions] == [1]
