"""
Failure taxonomy for lifecycle operations.

Every operation raises at most one of these. ACCESS_DENIED, VALIDATION,
NOT_FOUND and CONFLICT are recoverable by the caller; INTERNAL hides the
infrastructure cause, which is kept in the operational logs only.
"""

from typing import Any, Dict, Optional


class OrderFlowError(Exception):
    """Base class for errors surfaced to callers."""

    code: str = "INTERNAL"
    status_code: int = 500

    def __init__(self, message: str, *, context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"


class AccessDeniedError(OrderFlowError):
    code = "ACCESS_DENIED"
    status_code = 403


class ValidationFailedError(OrderFlowError):
    code = "VALIDATION"
    status_code = 422


class NotFoundError(OrderFlowError):
    code = "NOT_FOUND"
    status_code = 404


class ConflictError(OrderFlowError):
    code = "CONFLICT"
    status_code = 409


class InternalError(OrderFlowError):
    code = "INTERNAL"
    status_code = 500

    def __init__(self, message: str = "Internal error, please retry", **kwargs: Any):
        super().__init__(message, **kwargs)
