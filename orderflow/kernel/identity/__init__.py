"""
Identity - verification of tokens issued by the authentication service.
"""

from orderflow.kernel.identity.tokens import (
    AccessTokenClaims,
    Actor,
    TokenVerifier,
    get_token_verifier,
)

__all__ = [
    "AccessTokenClaims",
    "Actor",
    "TokenVerifier",
    "get_token_verifier",
]
