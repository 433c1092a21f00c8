"""
auth/policies.py -- Authorization policies and their pure check functions.

Each policy is a small frozen dataclass describing what a route requires.
Each check_* function is a pure function of (principal, current role,
catalog, policy) -> Verdict: no I/O, no exceptions, so every rule can be
unit-tested without an HTTP harness or a database.

role is the Role the principal's role_id resolved to, or None when the
principal has no role_id or the id no longer resolves. The two None cases are
told apart through principal.role_id:

  principal.role_id is None        -> no_role
  role_id set but role is None     -> role_not_found (deleted role)

A deleted role is a data-integrity problem, never a level-0 principal.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union

from auth.models import Capability, Principal, Role
from auth.roles import RoleCatalog
from auth.verdicts import DenyReason, Verdict


@dataclass(frozen=True)
class RequireRole:
    """Role name (case-insensitive) must be one of allowed."""

    allowed: frozenset[str]

    @classmethod
    def of(cls, *names: str) -> RequireRole:
        return cls(frozenset(n.strip().lower() for n in names))


@dataclass(frozen=True)
class RequireMinimumLevel:
    level: int


@dataclass(frozen=True)
class RequireCapability:
    capability: Capability


@dataclass(frozen=True)
class RequireOwnershipOrAdmin:
    owner_id: str


Policy = Union[RequireRole, RequireMinimumLevel, RequireCapability, RequireOwnershipOrAdmin]


def needs_role(policy: Policy, principal: Principal) -> bool:
    """False when the policy can be decided without looking up the role."""
    if isinstance(policy, RequireOwnershipOrAdmin):
        return str(principal.id) != str(policy.owner_id)
    return True


def _role_failure(principal: Principal, role: Role | None) -> Verdict | None:
    if principal.role_id is None:
        return Verdict.deny(DenyReason.no_role)
    if role is None:
        return Verdict.deny(DenyReason.role_not_found)
    return None


def check_role(principal: Principal, role: Role | None, catalog: RoleCatalog, policy: RequireRole) -> Verdict:
    failure = _role_failure(principal, role)
    if failure is not None:
        return failure
    if role.name.lower() not in policy.allowed:
        return Verdict.deny(
            DenyReason.insufficient_role,
            required=sorted(policy.allowed),
            current=role.name,
        )
    return Verdict.allow()


def check_minimum_level(
    principal: Principal, role: Role | None, catalog: RoleCatalog, policy: RequireMinimumLevel
) -> Verdict:
    failure = _role_failure(principal, role)
    if failure is not None:
        return failure
    current = catalog.level_of(role.name)
    if current < policy.level:
        return Verdict.deny(
            DenyReason.insufficient_level,
            required=policy.level,
            current=current,
            current_role=role.name,
        )
    return Verdict.allow()


def check_capability(
    principal: Principal, role: Role | None, catalog: RoleCatalog, policy: RequireCapability
) -> Verdict:
    failure = _role_failure(principal, role)
    if failure is not None:
        return failure
    if not catalog.has_capability(role.name, policy.capability):
        return Verdict.deny(
            DenyReason.missing_capability,
            required=policy.capability.value,
            current_role=role.name,
        )
    return Verdict.allow()


def check_ownership_or_admin(
    principal: Principal, role: Role | None, catalog: RoleCatalog, policy: RequireOwnershipOrAdmin
) -> Verdict:
    """Owner first, then admin capability.

    The identity match runs before anything role-related, so a principal with
    no role (or a deleted one) can always reach their own resources.
    """
    if str(principal.id) == str(policy.owner_id):
        return Verdict.allow()
    if principal.role_id is None:
        return Verdict.deny(DenyReason.not_owner_not_admin)
    if role is None:
        return Verdict.deny(DenyReason.role_not_found)
    if not catalog.has_admin_capability(role.name):
        return Verdict.deny(DenyReason.not_owner_not_admin, current_role=role.name)
    return Verdict.allow()


def evaluate(principal: Principal, role: Role | None, catalog: RoleCatalog, policy: Policy) -> Verdict:
    """Dispatch to the check function for policy."""
    if isinstance(policy, RequireRole):
        return check_role(principal, role, catalog, policy)
    if isinstance(policy, RequireMinimumLevel):
        return check_minimum_level(principal, role, catalog, policy)
    if isinstance(policy, RequireCapability):
        return check_capability(principal, role, catalog, policy)
    if isinstance(policy, RequireOwnershipOrAdmin):
        return check_ownership_or_admin(principal, role, catalog, policy)
    raise TypeError(f"Unknown policy type: {type(policy).__name__}")
