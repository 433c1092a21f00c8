"""
API request and response models for DevGuild Access REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Separation of concerns: auth/ models = domain truth; api/ models = API contract.
"""

from typing import Annotated, Any, Optional

from pydantic import AfterValidator, BaseModel, BeforeValidator, ConfigDict, Field

from auth.models import ExperienceLevel, Principal
from auth.tokens import MAX_PASSWORD_BYTES

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

# Deliberately loose: one @, no whitespace, a dot in the domain. Deliverability
# is not our problem; uniqueness and normalization are.
EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"
ROLE_NAME_PATTERN = r"^[a-zA-Z][a-zA-Z0-9_]{1,49}$"


def _lower(value: Any) -> Any:
    return value.strip().lower() if isinstance(value, str) else value


# Emails and role names are case-insensitive everywhere; normalize on the way in.
_Email = Annotated[str, BeforeValidator(_lower), Field(pattern=EMAIL_PATTERN, max_length=255)]
_RoleName = Annotated[str, BeforeValidator(_lower), Field(pattern=ROLE_NAME_PATTERN)]


def _check_password_bytes(value: str) -> str:
    if len(value.encode("utf-8")) > MAX_PASSWORD_BYTES:
        raise ValueError(f"Password must be at most {MAX_PASSWORD_BYTES} bytes when UTF-8 encoded.")
    return value


# Length is capped in bytes, not characters: bcrypt cannot hash more than 72 bytes.
_Password = Annotated[str, Field(min_length=8, max_length=MAX_PASSWORD_BYTES), AfterValidator(_check_password_bytes)]


# ---------------------------------------------------------------------------
# Errors and health
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[Any] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str]


# ---------------------------------------------------------------------------
# Auth -- requests
# ---------------------------------------------------------------------------


class RegisterRequest(BaseModel):
    """Request body for POST /api/v1/auth/register.

    No role field: the starting role is derived from experience_level.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    full_name: str = Field(min_length=1, max_length=255)
    email: _Email
    password: _Password
    experience_level: Optional[ExperienceLevel] = None


class LoginRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    email: Annotated[str, BeforeValidator(_lower), Field(min_length=1, max_length=255)]
    password: str = Field(min_length=1, max_length=255)


class RefreshRequest(BaseModel):
    refresh_token: str = Field(min_length=1)


# ---------------------------------------------------------------------------
# Users -- requests
# ---------------------------------------------------------------------------


class UserCreate(BaseModel):
    """Request body for POST /api/v1/users (admin only).

    role is optional; when omitted the role is suggested from experience_level.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    full_name: str = Field(min_length=1, max_length=255)
    email: _Email
    password: Optional[_Password] = None
    experience_level: Optional[ExperienceLevel] = None
    role: Optional[_RoleName] = None


class UserUpdate(BaseModel):
    """Request body for PUT /api/v1/users/{user_id}. Role changes go through /role."""

    model_config = ConfigDict(str_strip_whitespace=True)

    full_name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    email: Optional[_Email] = None
    password: Optional[_Password] = None
    experience_level: Optional[ExperienceLevel] = None


class RoleAssign(BaseModel):
    """Request body for PUT /api/v1/users/{user_id}/role."""

    model_config = ConfigDict(str_strip_whitespace=True)

    role: _RoleName


class RoleCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: _RoleName
    description: str = Field(default="", max_length=500)


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------


class UserResponse(BaseModel):
    """Public view of a principal. Never includes the password hash."""

    model_config = ConfigDict(frozen=True)

    id: str
    email: str
    full_name: str
    role: Optional[str]
    experience_level: Optional[str]
    is_active: bool
    created_at: str
    updated_at: str

    @classmethod
    def from_principal(cls, principal: Principal, role_name: Optional[str]) -> "UserResponse":
        return cls(
            id=principal.id,
            email=principal.email,
            full_name=principal.full_name,
            role=role_name,
            experience_level=principal.experience_level,
            is_active=principal.is_active,
            created_at=principal.created_at or "",
            updated_at=principal.updated_at or "",
        )


class TokenResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    access_token: str
    token_type: str = "bearer"
    expires_in: int


class AuthResponse(BaseModel):
    """Response for register and login: the user plus a token pair."""

    model_config = ConfigDict(frozen=True)

    user: UserResponse
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int
    refresh_expires_in: int


class MeResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    user: UserResponse
    role_level: int
    capabilities: list[str]


class SessionResponse(BaseModel):
    """Response for GET /api/v1/auth/session (optional authentication)."""

    model_config = ConfigDict(frozen=True)

    authenticated: bool
    user: Optional[UserResponse] = None


class RoleResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    description: str
    level: int
    mentor: bool
    admin: bool
