"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication and RBAC.

The AuthorizationEngine lives on app.state.auth_engine (built in the API
lifespan). These helpers are the only place a Verdict turns into an HTTP
response:

  get_current_principal()        401 unless the bearer token is valid
  get_optional_principal()       Principal or None (anonymous), never raises
  require_role(*names)           403 unless the role name is in names
  require_minimum_level(level)   403 unless the role level >= level
  require_capability(cap)        403 unless the role grants cap
  require_ownership_or_admin()   403 unless the path user_id is the caller, or admin

Status codes come from the fixed DenyReason table in auth/verdicts.py.

Layer rule: no imports from api/. This module may import from fastapi because
it is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from collections.abc import Callable

from fastapi import Depends, HTTPException, Request

from auth.engine import AuthorizationEngine
from auth.models import Capability, Principal
from auth.policies import (
    Policy,
    RequireCapability,
    RequireMinimumLevel,
    RequireOwnershipOrAdmin,
    RequireRole,
)
from auth.verdicts import Verdict


def get_engine(request: Request) -> AuthorizationEngine:
    return request.app.state.auth_engine


def _raise_for(verdict: Verdict) -> None:
    headers = {"WWW-Authenticate": "Bearer"} if verdict.status_code == 401 else None
    raise HTTPException(status_code=verdict.status_code, detail=verdict.to_error(), headers=headers)


def get_current_principal(request: Request) -> Principal:
    """Require authentication. Raises HTTP 401 with the deny reason on failure.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(principal: Principal = Depends(get_current_principal)): ...
    """
    outcome = get_engine(request).authenticate(request.headers.get("Authorization"))
    if not outcome.verdict.allowed:
        _raise_for(outcome.verdict)
    return outcome.principal


def get_optional_principal(request: Request) -> Principal | None:
    """Soft variant: returns None for anonymous callers instead of raising."""
    outcome = get_engine(request).optional_authenticate(request.headers.get("Authorization"))
    return outcome.principal


def _policy_dependency(build_policy: Callable[[Request], Policy]) -> Callable:
    def _check(request: Request, principal: Principal = Depends(get_current_principal)) -> Principal:
        verdict = get_engine(request).authorize(principal, build_policy(request))
        if not verdict.allowed:
            _raise_for(verdict)
        return principal

    return _check


def require_role(*names: str) -> Callable:
    """Dependency factory: the caller's role name must be one of names.

    Usage:
        @router.delete("/roles/{role_id}")
        def remove(principal: Principal = Depends(require_role("super_admin"))): ...
    """
    policy = RequireRole.of(*names)
    return _policy_dependency(lambda request: policy)


def require_minimum_level(level: int) -> Callable:
    policy = RequireMinimumLevel(level)
    return _policy_dependency(lambda request: policy)


def require_capability(capability: Capability) -> Callable:
    policy = RequireCapability(capability)
    return _policy_dependency(lambda request: policy)


def require_ownership_or_admin(user_id_param: str = "user_id") -> Callable:
    """Dependency factory: the path parameter names the resource owner.

    For endpoints like GET /users/{user_id} where an admin may act on another
    principal's record.
    """

    def _build(request: Request) -> Policy:
        owner_id = request.path_params.get(user_id_param)
        if owner_id is None:
            raise HTTPException(
                status_code=400,
                detail={"code": "bad_request", "message": f"Missing path parameter: {user_id_param}"},
            )
        return RequireOwnershipOrAdmin(str(owner_id))

    return _policy_dependency(_build)
