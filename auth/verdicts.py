"""
auth/verdicts.py -- Authorization verdicts and the fixed reason -> status table.

Every check in auth/policies.py and auth/engine.py returns a Verdict instead
of raising. The transport layer turns a denied Verdict into an HTTP response
with status_for(reason) -- a total lookup, never string matching on messages.

detail carries diagnostic context for clients (required vs current role name,
level or capability). It never carries role or principal identifiers.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any

from auth.models import Principal


class DenyReason(str, Enum):
    no_token = "no_token"
    invalid_token = "invalid_token"
    token_expired = "token_expired"
    principal_not_found = "principal_not_found"
    principal_inactive = "principal_inactive"
    no_role = "no_role"
    role_not_found = "role_not_found"
    insufficient_role = "insufficient_role"
    insufficient_level = "insufficient_level"
    missing_capability = "missing_capability"
    not_owner_not_admin = "not_owner_not_admin"


HTTP_STATUS_BY_REASON: dict[DenyReason, int] = {
    DenyReason.no_token: 401,
    DenyReason.invalid_token: 401,
    DenyReason.token_expired: 401,
    DenyReason.principal_not_found: 401,
    DenyReason.principal_inactive: 401,
    DenyReason.no_role: 403,
    DenyReason.role_not_found: 403,
    DenyReason.insufficient_role: 403,
    DenyReason.insufficient_level: 403,
    DenyReason.missing_capability: 403,
    DenyReason.not_owner_not_admin: 403,
}

# Client-facing messages. Kept generic for 401s so they do not reveal whether
# a principal exists.
MESSAGES: dict[DenyReason, str] = {
    DenyReason.no_token: "Authentication required.",
    DenyReason.invalid_token: "Invalid token.",
    DenyReason.token_expired: "Token has expired.",
    DenyReason.principal_not_found: "Invalid token.",
    DenyReason.principal_inactive: "Invalid token.",
    DenyReason.no_role: "No role assigned to user.",
    DenyReason.role_not_found: "Invalid user role.",
    DenyReason.insufficient_role: "Insufficient permissions.",
    DenyReason.insufficient_level: "Insufficient role level.",
    DenyReason.missing_capability: "Required privileges missing.",
    DenyReason.not_owner_not_admin: "You can only access your own resources unless you have admin privileges.",
}


def status_for(reason: DenyReason) -> int:
    return HTTP_STATUS_BY_REASON[reason]


@dataclass(frozen=True)
class Verdict:
    allowed: bool
    reason: DenyReason | None = None
    detail: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))

    @classmethod
    def allow(cls) -> Verdict:
        return cls(allowed=True)

    @classmethod
    def deny(cls, reason: DenyReason, **detail: Any) -> Verdict:
        return cls(allowed=False, reason=reason, detail=MappingProxyType(dict(detail)))

    @property
    def status_code(self) -> int:
        """HTTP status for this verdict: 200 when allowed, else the mapped 401/403."""
        if self.allowed or self.reason is None:
            return 200
        return status_for(self.reason)

    def to_error(self) -> dict[str, Any]:
        """Render a denied verdict in the API error envelope shape.

        Matches the {"code", "message", "detail"} structure the exception
        handlers in api/main.py emit for every other error.
        """
        if self.reason is None:
            raise ValueError("An allowed verdict has no error representation.")
        return {
            "code": self.reason.value,
            "message": MESSAGES[self.reason],
            "detail": dict(self.detail) or None,
        }


@dataclass(frozen=True)
class Authentication:
    """Outcome of authenticating one request.

    Three states:
      - authenticated: principal set, verdict allowed
      - anonymous:     principal None, verdict allowed (optional auth only)
      - denied:        principal None, verdict denied
    """

    verdict: Verdict
    principal: Principal | None = None

    @property
    def is_anonymous(self) -> bool:
        return self.principal is None and self.verdict.allowed

    @property
    def is_authenticated(self) -> bool:
        return self.principal is not None and self.verdict.allowed
