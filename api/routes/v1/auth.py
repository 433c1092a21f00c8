"""
api/routes/v1/auth.py -- Registration, login and token endpoints.

Routes:
  POST /api/v1/auth/register   -- public; creates a principal, returns a token pair
  POST /api/v1/auth/login      -- public; email + password, returns a token pair
  POST /api/v1/auth/refresh    -- public; refresh token -> new access token
  GET  /api/v1/auth/me         -- requires auth; identity, role level, capabilities
  GET  /api/v1/auth/session    -- optional auth; anonymous or the current identity

Security:
  [H2] POST /login and POST /register are rate-limited per IP (LOGIN_RATE_LIMIT).
  [C1] authenticate_principal() provides timing equalization -- use it, never inline.
  [M5] Cache-Control: no-store on every response that carries a token.
  Refresh tokens are verified with the refresh secret only; an access token
  presented to /refresh fails signature verification, and vice versa.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError

from api.limiter import limiter, login_rate_limit
from api.models import (
    AuthResponse,
    LoginRequest,
    MeResponse,
    RefreshRequest,
    RegisterRequest,
    SessionResponse,
    TokenResponse,
)
from api.routes.v1.users import user_response
from auth.dependencies import get_current_principal, get_engine, get_optional_principal
from auth.engine import AuthorizationEngine
from auth.models import Capability, Principal, TokenKind
from auth.store import UserStore
from auth.tokens import VerifyError, authenticate_principal, hash_password
from auth.verdicts import DenyReason, Verdict
from core.config import get_settings

logger = logging.getLogger("devguild.api")

# Auth policy:
# - POST /api/v1/auth/register:  public (disabled when SELF_REGISTRATION_ENABLED=false)
# - POST /api/v1/auth/login:     public
# - POST /api/v1/auth/refresh:   public -- the refresh token is the credential
# - GET  /api/v1/auth/me:        requires auth (get_current_principal)
# - GET  /api/v1/auth/session:   optional auth (get_optional_principal)
router = APIRouter()


def _token_pair(engine: AuthorizationEngine, principal: Principal, status_code: int) -> JSONResponse:
    verifier = engine.verifier
    body = AuthResponse(
        user=user_response(engine, principal),
        access_token=verifier.issue(principal.id, principal.email, principal.role_id),
        refresh_token=verifier.issue(principal.id, principal.email, kind=TokenKind.refresh),
        token_type="bearer",  # noqa: S106 # nosec B106 -- OAuth token type, not a password
        expires_in=verifier.expires_in(TokenKind.access),
        refresh_expires_in=verifier.expires_in(TokenKind.refresh),
    )
    resp = JSONResponse(status_code=status_code, content=body.model_dump())
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@limiter.limit(login_rate_limit)  # [H2]
@router.post("/auth/register", response_model=AuthResponse, status_code=201)
def register(request: Request, body: RegisterRequest) -> JSONResponse:
    """Create a principal and sign them in.

    The starting role comes from RoleCatalog.suggested_role(experience_level):
    senior and above start as mentor, everyone else as developer. If the
    suggested role has not been seeded the principal is created without a
    role and can still reach their own resources.
    """
    if not get_settings().self_registration_enabled:
        raise HTTPException(
            status_code=403,
            detail={"code": "registration_disabled", "message": "Self-registration is disabled."},
        )

    engine = get_engine(request)
    user_store: UserStore = request.app.state.user_store

    role_name = engine.catalog.suggested_role(body.experience_level)
    role = user_store.get_role_by_name(role_name)
    if role is None:
        logger.warning("Suggested role %r is not seeded; registering %s without a role", role_name, body.email)

    principal = Principal(
        email=body.email,
        full_name=body.full_name,
        hashed_password=hash_password(body.password),
        role_id=role.id if role else None,
        experience_level=body.experience_level.value if body.experience_level else None,
    )
    try:
        user_id = user_store.create_user(principal)
    except IntegrityError as exc:
        raise HTTPException(
            status_code=409,
            detail={"code": "conflict", "message": "User with this email already exists."},
        ) from exc

    created = user_store.get_by_id(user_id)
    logger.info("Registered %s as %s", created.email, role_name if role else "no role")
    return _token_pair(engine, created, status_code=201)


@limiter.limit(login_rate_limit)  # [H2]
@router.post("/auth/login", response_model=AuthResponse)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password.

    Wrong email, wrong password and deactivated account all return the same
    "bad_credentials" error so the response does not leak which one it was.
    """
    user_store: UserStore = request.app.state.user_store
    principal = authenticate_principal(user_store, body.email, body.password)
    if principal is None:
        resp = JSONResponse(
            status_code=401,
            content={"error": {"code": "bad_credentials", "message": "Invalid email or password."}},
        )
        resp.headers["Cache-Control"] = "no-store"  # [M5]
        return resp
    return _token_pair(get_engine(request), principal, status_code=200)


@router.post("/auth/refresh", response_model=TokenResponse)
def refresh(request: Request, body: RefreshRequest) -> JSONResponse:
    """Exchange a refresh token for a new access token.

    The principal is re-fetched, so a deleted or deactivated account cannot
    mint new access tokens even while its refresh token is unexpired.
    """
    engine = get_engine(request)
    result = engine.verifier.verify(body.refresh_token, TokenKind.refresh)
    if not result.ok:
        logger.warning("Rejected refresh token: %s", result.error.value)
        reason = DenyReason.token_expired if result.error is VerifyError.expired else DenyReason.invalid_token
        raise HTTPException(status_code=401, detail=Verdict.deny(reason).to_error())

    principal = engine.resolver.resolve_by_id(result.claims.principal_id)
    if principal is None or not principal.is_active:
        raise HTTPException(status_code=401, detail=Verdict.deny(DenyReason.invalid_token).to_error())

    resp = JSONResponse(
        content=TokenResponse(
            access_token=engine.verifier.issue(principal.id, principal.email, principal.role_id),
            token_type="bearer",  # noqa: S106 # nosec B106
            expires_in=engine.verifier.expires_in(TokenKind.access),
        ).model_dump()
    )
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/me", response_model=MeResponse)
def me(request: Request, principal: Principal = Depends(get_current_principal)) -> MeResponse:
    """Return the caller's identity with their live role level and capabilities."""
    engine = get_engine(request)
    role, level = engine.role_level(principal)
    role_name = role.name if role else None
    capabilities = [c.value for c in Capability if engine.catalog.has_capability(role_name, c)]
    return MeResponse(
        user=user_response(engine, principal, role=role),
        role_level=level,
        capabilities=capabilities,
    )


@router.get("/auth/session", response_model=SessionResponse)
def session(request: Request, principal: Principal | None = Depends(get_optional_principal)) -> SessionResponse:
    """Report whether the request is authenticated. Anonymous callers get 200."""
    if principal is None:
        return SessionResponse(authenticated=False)
    return SessionResponse(authenticated=True, user=user_response(get_engine(request), principal))
