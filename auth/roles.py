"""
auth/roles.py -- Role catalog: numeric levels and capability sets.

The catalog is an immutable value built once in the application lifespan and
injected into the AuthorizationEngine. It does no I/O and every method is a
total function: unknown role names get level 0 and no capabilities
(deny-by-default).

The level table and the two capability sets are maintained independently and
are both authoritative. event_organizer and content_creator share level 2 with
mentor but are not mentor-capable; a role may be added to one table without
the other. Do not derive one from the other.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType

from auth.models import Capability

_DEFAULT_LEVELS: dict[str, int] = {
    "developer": 1,
    "mentor": 2,
    "event_organizer": 2,
    "content_creator": 2,
    "moderator": 3,
    "admin": 4,
    "super_admin": 5,
}

_DEFAULT_MENTOR_ROLES = frozenset({"mentor", "admin", "super_admin"})
_DEFAULT_ADMIN_ROLES = frozenset({"admin", "super_admin"})

_SUGGESTED_ROLES: dict[str, str] = {
    "beginner": "developer",
    "junior": "developer",
    "mid_level": "developer",
    "senior": "mentor",
    "lead": "mentor",
    "manager": "mentor",
    "principal": "mentor",
    "architect": "mentor",
}

_FALLBACK_ROLE = "developer"

# Seed set for the roles table (startup seeding and `main.py seed-roles`).
DEFAULT_ROLES: tuple[tuple[str, str], ...] = (
    ("developer", "Community member building skills and asking for help"),
    ("mentor", "Experienced developer who guides others"),
    ("event_organizer", "Plans and runs community events"),
    ("content_creator", "Publishes articles, talks and tutorials"),
    ("moderator", "Keeps community spaces healthy"),
    ("admin", "Manages users and roles"),
    ("super_admin", "Full platform control"),
)


def _normalize(name: str | None) -> str:
    return (name or "").strip().lower()


@dataclass(frozen=True)
class RoleCatalog:
    levels: Mapping[str, int] = field(default_factory=lambda: MappingProxyType(dict(_DEFAULT_LEVELS)))
    mentor_roles: frozenset[str] = _DEFAULT_MENTOR_ROLES
    admin_roles: frozenset[str] = _DEFAULT_ADMIN_ROLES

    @classmethod
    def default(cls) -> RoleCatalog:
        return cls()

    @classmethod
    def build(
        cls,
        levels: Mapping[str, int],
        mentor_roles: set[str] | frozenset[str],
        admin_roles: set[str] | frozenset[str],
    ) -> RoleCatalog:
        """Build a catalog from arbitrary tables, lower-casing every name."""
        return cls(
            levels=MappingProxyType({_normalize(k): int(v) for k, v in levels.items()}),
            mentor_roles=frozenset(_normalize(r) for r in mentor_roles),
            admin_roles=frozenset(_normalize(r) for r in admin_roles),
        )

    def level_of(self, role_name: str | None) -> int:
        return self.levels.get(_normalize(role_name), 0)

    def has_mentor_capability(self, role_name: str | None) -> bool:
        return _normalize(role_name) in self.mentor_roles

    def has_admin_capability(self, role_name: str | None) -> bool:
        return _normalize(role_name) in self.admin_roles

    def has_capability(self, role_name: str | None, capability: Capability) -> bool:
        if capability is Capability.admin:
            return self.has_admin_capability(role_name)
        return self.has_mentor_capability(role_name)

    def suggested_role(self, experience_level: str | None) -> str:
        """Pick the starting role for a new principal from their experience level.

        Unrecognized or missing levels fall back to "developer", the lowest
        privilege role.
        """
        return _SUGGESTED_ROLES.get(_normalize(experience_level), _FALLBACK_ROLE)
