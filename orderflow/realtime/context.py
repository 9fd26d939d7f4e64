"""
Versioned real-time context identifiers.

A context code routes live events to the sessions following one order. It is
derived from the order's stable external code, so it survives every status
change; only the scope moves from "query" to "work" once a writer is on it.

    v1:query:ORD-7K2M9QXA
    v1:work:ORD-7K2M9QXA
"""

import re
import secrets
from dataclasses import dataclass, replace
from enum import Enum

from orderflow.errors import ValidationFailedError

CURRENT_VERSION = 1
EXTERNAL_CODE_PREFIX = "ORD-"

# Crockford base32 without the ambiguous I, L, O, U
_ALPHABET = "0123456789ABCDEFGHJKMNPQRSTVWXYZ"
_EXTERNAL_CODE_RE = re.compile(r"^ORD-[0-9A-HJKMNP-TV-Z]{8}$")
_CONTEXT_RE = re.compile(r"^v(?P<version>\d+):(?P<scope>[a-z]+):(?P<code>\S+)$")


class ContextScope(str, Enum):
    QUERY = "query"
    WORK = "work"


def generate_external_code() -> str:
    """New stable order code, e.g. ORD-7K2M9QXA."""
    return EXTERNAL_CODE_PREFIX + "".join(secrets.choice(_ALPHABET) for _ in range(8))


def is_valid_external_code(value: str) -> bool:
    return bool(_EXTERNAL_CODE_RE.match(value))


@dataclass(frozen=True)
class ContextCode:
    scope: ContextScope
    external_code: str
    version: int = CURRENT_VERSION

    def __post_init__(self):
        if not is_valid_external_code(self.external_code):
            raise ValidationFailedError(
                "Malformed order code",
                context={"external_code": self.external_code},
            )
        if self.version != CURRENT_VERSION:
            raise ValidationFailedError(
                "Unsupported context version",
                context={"version": self.version},
            )

    def __str__(self) -> str:
        return f"v{self.version}:{self.scope.value}:{self.external_code}"

    @classmethod
    def for_query(cls, external_code: str) -> "ContextCode":
        return cls(ContextScope.QUERY, external_code)

    @classmethod
    def for_work(cls, external_code: str) -> "ContextCode":
        return cls(ContextScope.WORK, external_code)

    def to_work(self) -> "ContextCode":
        """Re-derive for the execution phase; the order code is unchanged."""
        return replace(self, scope=ContextScope.WORK)

    @classmethod
    def parse(cls, raw: str) -> "ContextCode":
        """Parse a rendered context code, rejecting anything malformed."""
        match = _CONTEXT_RE.match(raw or "")
        if match is None:
            raise ValidationFailedError("Malformed context code", context={"context_code": raw})
        try:
            scope = ContextScope(match.group("scope"))
        except ValueError:
            raise ValidationFailedError(
                "Unknown context scope", context={"context_code": raw}
            ) from None
        return cls(scope, match.group("code"), int(match.group("version")))
