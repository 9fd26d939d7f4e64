"""
Bearer token verification.

Tokens are issued by the authentication service; this module only verifies
them and resolves the actor they carry. The actor is trusted as-is, without a
round trip to the user table.
"""

import uuid
from dataclasses import dataclass
from typing import Optional

from jose import JWTError, jwt
from pydantic import BaseModel, ValidationError

from orderflow.config import get_settings
from orderflow.kernel.models.user import UserRole


class AccessTokenClaims(BaseModel):
    """Claims this service relies on."""

    sub: str  # User ID
    role: UserRole


@dataclass(frozen=True)
class Actor:
    """An already-authenticated caller."""

    user_id: uuid.UUID
    role: UserRole
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None

    @property
    def label(self) -> str:
        return f"{self.role.value}:{self.user_id}"


class TokenVerifier:
    """Decode and validate access tokens."""

    def __init__(self, secret_key: Optional[str] = None, algorithm: Optional[str] = None):
        settings = get_settings()
        self.secret_key = secret_key or settings.secret_key
        self.algorithm = algorithm or settings.algorithm

    def verify(self, token: str) -> Optional[AccessTokenClaims]:
        """
        Verify a token's signature and expiry.

        Returns:
            The claims if valid, None otherwise
        """
        try:
            payload = jwt.decode(token, self.secret_key, algorithms=[self.algorithm])
            claims = AccessTokenClaims(sub=payload["sub"], role=payload["role"])
            uuid.UUID(claims.sub)
            return claims
        except (JWTError, KeyError, ValueError, ValidationError):
            return None

    def resolve_actor(
        self,
        token: str,
        *,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> Optional[Actor]:
        claims = self.verify(token)
        if claims is None:
            return None
        return Actor(
            user_id=uuid.UUID(claims.sub),
            role=claims.role,
            ip_address=ip_address,
            user_agent=user_agent,
        )


_verifier: Optional[TokenVerifier] = None


def get_token_verifier() -> TokenVerifier:
    """Get or create the default verifier."""
    global _verifier
    if _verifier is None:
        _verifier = TokenVerifier()
    return _verifier
