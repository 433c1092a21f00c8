"""
auth/models.py -- Domain dataclasses and enums for identity entities.

Pattern: Data class (pure data container, zero logic). Stores, the resolver
and the engine do the work; these types only carry shape.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class ExperienceLevel(str, Enum):
    beginner = "beginner"
    junior = "junior"
    mid_level = "mid_level"
    senior = "senior"
    lead = "lead"
    manager = "manager"
    principal = "principal"
    architect = "architect"


class Capability(str, Enum):
    """Named grants checked independently of the numeric role level."""

    mentor = "mentor"
    admin = "admin"


class TokenKind(str, Enum):
    access = "access"
    refresh = "refresh"


@dataclass
class Principal:
    """A user identity as loaded from the principal store.

    id is a UUID string assigned at creation and never changed. email is
    stored lower-case and is unique across the store. role_id may be None
    (no role assigned) or may reference a role that has since been deleted --
    the engine distinguishes the two.

    hashed_password is a bcrypt hash and never leaves the API layer.
    """

    email: str
    full_name: str
    id: str | None = None
    hashed_password: str | None = None
    role_id: str | None = None
    experience_level: str | None = None
    is_active: bool = True
    created_at: str | None = None
    updated_at: str | None = None


@dataclass
class Role:
    """A named permission group. name is stored lower-case."""

    name: str
    description: str = ""
    id: str | None = None
    created_at: str | None = None


@dataclass(frozen=True)
class Claims:
    """Data recovered from a verified token.

    issued_at / expires_at are POSIX timestamps (seconds), exactly as carried
    in the iat / exp claims.
    """

    principal_id: str
    email: str
    issued_at: int
    expires_at: int
    kind: TokenKind = TokenKind.access
    role_id: str | None = None
