"""
Unit tests for token verification and the error taxonomy.
"""

import json
import logging
import uuid
from datetime import datetime, timedelta, timezone

import pytest
from jose import jwt

from orderflow.errors import (
    AccessDeniedError,
    ConflictError,
    InternalError,
    NotFoundError,
    OrderFlowError,
    ValidationFailedError,
)
from orderflow.kernel.identity.tokens import TokenVerifier
from orderflow.kernel.models.user import UserRole
from orderflow.logging_config import JsonFormatter

SECRET = "unit-test-secret-key-with-enough-length"


@pytest.fixture
def verifier() -> TokenVerifier:
    return TokenVerifier(secret_key=SECRET, algorithm="HS256")


def _token(claims: dict, secret: str = SECRET) -> str:
    return jwt.encode(claims, secret, algorithm="HS256")


class TestTokenVerifier:
    def test_valid_token_resolves_actor(self, verifier):
        user_id = uuid.uuid4()
        token = _token({"sub": str(user_id), "role": "writer"})

        actor = verifier.resolve_actor(token, ip_address="127.0.0.1", user_agent="pytest")

        assert actor is not None
        assert actor.user_id == user_id
        assert actor.role is UserRole.WRITER
        assert actor.ip_address == "127.0.0.1"
        assert actor.label == f"writer:{user_id}"

    def test_wrong_signature(self, verifier):
        token = _token({"sub": str(uuid.uuid4()), "role": "admin"}, secret="another-secret")
        assert verifier.verify(token) is None

    def test_expired_token(self, verifier):
        expired = datetime.now(timezone.utc) - timedelta(minutes=5)
        token = _token({"sub": str(uuid.uuid4()), "role": "client", "exp": expired})
        assert verifier.verify(token) is None

    @pytest.mark.parametrize(
        "claims",
        [
            {"role": "client"},
            {"sub": "not-a-uuid", "role": "client"},
            {"sub": "00000000-0000-0000-0000-000000000001"},
            {"sub": "00000000-0000-0000-0000-000000000001", "role": "superuser"},
        ],
    )
    def test_bad_claims(self, verifier, claims):
        assert verifier.resolve_actor(_token(claims)) is None

    def test_garbage(self, verifier):
        assert verifier.verify("not.a.token") is None


class TestErrors:
    @pytest.mark.parametrize(
        "error_cls, code, status",
        [
            (AccessDeniedError, "ACCESS_DENIED", 403),
            (ValidationFailedError, "VALIDATION", 422),
            (NotFoundError, "NOT_FOUND", 404),
            (ConflictError, "CONFLICT", 409),
        ],
    )
    def test_codes(self, error_cls, code, status):
        error = error_cls("nope", context={"order_id": "1"})
        assert isinstance(error, OrderFlowError)
        assert error.code == code
        assert error.status_code == status
        assert str(error) == f"[{code}] nope"
        assert error.context == {"order_id": "1"}

    def test_internal_hides_cause(self):
        error = InternalError()
        assert error.code == "INTERNAL"
        assert error.status_code == 500
        assert error.message == "Internal error, please retry"


class TestJsonFormatter:
    def test_extra_fields_and_correlation(self):
        record = logging.LogRecord(
            "orderflow.test", logging.INFO, __file__, 1, "Order transitioned", None, None
        )
        record.request_id = "req-1"
        record.actor = "admin:abc"
        record.order_id = "o-1"
        record.payload = object()

        data = json.loads(JsonFormatter().format(record))

        assert data["message"] == "Order transitioned"
        assert data["level"] == "INFO"
        assert data["request_id"] == "req-1"
        assert data["actor"] == "admin:abc"
        assert data["order_id"] == "o-1"
        assert isinstance(data["payload"], str)
