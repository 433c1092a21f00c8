"""
api/routes/v1/users.py -- User management REST endpoints.

Routes:
  POST   /api/v1/users                  -- create a principal (admin capability)
  GET    /api/v1/users                  -- list principals (role level >= moderator)
  GET    /api/v1/users/learners         -- beginner/junior principals (mentor capability)
  GET    /api/v1/users/{user_id}        -- one principal (owner or admin)
  PUT    /api/v1/users/{user_id}        -- update profile fields (owner or admin)
  DELETE /api/v1/users/{user_id}        -- delete a principal (owner or admin)
  PUT    /api/v1/users/{user_id}/role   -- assign a role (admin capability)

Security:
  Ownership is checked before existence: a non-admin asking for another
  principal's id gets 403 whether or not that principal exists, so ids cannot
  be probed.
  Role assignment is a separate endpoint so it can require admin capability
  while profile edits only require ownership.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from sqlalchemy.exc import IntegrityError

from api.models import RoleAssign, UserCreate, UserResponse, UserUpdate
from auth.dependencies import (
    get_engine,
    require_capability,
    require_minimum_level,
    require_ownership_or_admin,
)
from auth.engine import AuthorizationEngine
from auth.models import Capability, ExperienceLevel, Principal, Role
from auth.store import UserStore
from auth.tokens import hash_password

logger = logging.getLogger("devguild.api")

# Level of the "moderator" role in the default catalog.
MODERATOR_LEVEL = 3

LEARNER_LEVELS = (ExperienceLevel.beginner.value, ExperienceLevel.junior.value)

router = APIRouter()


def user_response(engine: AuthorizationEngine, principal: Principal, role: Role | None = None) -> UserResponse:
    """Map a Principal to its public shape, resolving the role name."""
    if role is None:
        role = engine.current_role(principal)
    return UserResponse.from_principal(principal, role.name if role else None)


def _not_found() -> HTTPException:
    return HTTPException(status_code=404, detail={"code": "not_found", "message": "User not found."})


def _get_or_404(user_store: UserStore, user_id: str) -> Principal:
    principal = user_store.get_by_id(user_id)
    if principal is None:
        raise _not_found()
    return principal


def _role_or_400(user_store: UserStore, name: str) -> Role:
    role = user_store.get_role_by_name(name)
    if role is None:
        available = ", ".join(r.name for r in user_store.list_roles())
        raise HTTPException(
            status_code=400,
            detail={
                "code": "invalid_role",
                "message": f"Invalid role type: {name}.",
                "detail": f"Available roles: {available}",
            },
        )
    return role


# ---------------------------------------------------------------------------
# Collection endpoints
# ---------------------------------------------------------------------------


@router.post("/users", response_model=UserResponse, status_code=201)
def create_user(
    request: Request,
    body: UserCreate,
    current: Principal = Depends(require_capability(Capability.admin)),
) -> UserResponse:
    """Create a principal. Admin only.

    An explicit role must exist; without one the role is suggested from the
    experience level, as in self-registration. A password is optional for
    accounts the owner will activate later.
    """
    engine = get_engine(request)
    user_store: UserStore = request.app.state.user_store

    role_name = body.role or engine.catalog.suggested_role(body.experience_level)
    role = _role_or_400(user_store, role_name)

    principal = Principal(
        email=body.email,
        full_name=body.full_name,
        hashed_password=hash_password(body.password) if body.password else None,
        role_id=role.id,
        experience_level=body.experience_level.value if body.experience_level else None,
    )
    try:
        user_id = user_store.create_user(principal)
    except IntegrityError as exc:
        raise HTTPException(
            status_code=409,
            detail={"code": "conflict", "message": "User with this email already exists."},
        ) from exc

    logger.info("User %s created %s with role %s", current.email, principal.email, role.name)
    return user_response(engine, _get_or_404(user_store, user_id), role=role)


@router.get("/users", response_model=list[UserResponse])
def list_users(
    request: Request,
    current: Principal = Depends(require_minimum_level(MODERATOR_LEVEL)),
) -> list[UserResponse]:
    """List every principal. Moderators and above."""
    user_store: UserStore = request.app.state.user_store
    names = {r.id: r.name for r in user_store.list_roles()}
    return [UserResponse.from_principal(p, names.get(p.role_id)) for p in user_store.list_users()]


@router.get("/users/learners", response_model=list[UserResponse])
def list_learners(
    request: Request,
    current: Principal = Depends(require_capability(Capability.mentor)),
) -> list[UserResponse]:
    """List active beginner and junior principals. Mentor capability required."""
    user_store: UserStore = request.app.state.user_store
    names = {r.id: r.name for r in user_store.list_roles()}
    return [UserResponse.from_principal(p, names.get(p.role_id)) for p in user_store.list_by_experience(LEARNER_LEVELS)]


# ---------------------------------------------------------------------------
# Single-user endpoints (owner or admin)
# ---------------------------------------------------------------------------


@router.get("/users/{user_id}", response_model=UserResponse)
def get_user(
    request: Request,
    user_id: str,
    current: Principal = Depends(require_ownership_or_admin("user_id")),
) -> UserResponse:
    user_store: UserStore = request.app.state.user_store
    return user_response(get_engine(request), _get_or_404(user_store, user_id))


@router.put("/users/{user_id}", response_model=UserResponse)
def update_user(
    request: Request,
    user_id: str,
    body: UserUpdate,
    current: Principal = Depends(require_ownership_or_admin("user_id")),
) -> UserResponse:
    """Update profile fields. Role changes go through PUT /users/{user_id}/role."""
    user_store: UserStore = request.app.state.user_store
    _get_or_404(user_store, user_id)

    updates: dict = {}
    if body.full_name is not None:
        updates["full_name"] = body.full_name
    if body.email is not None:
        updates["email"] = body.email
    if body.password is not None:
        updates["hashed_password"] = hash_password(body.password)
    if body.experience_level is not None:
        updates["experience_level"] = body.experience_level.value

    if not updates:
        raise HTTPException(
            status_code=400,
            detail={"code": "no_changes", "message": "No fields to update."},
        )

    try:
        user_store.update_user(user_id, **updates)
    except IntegrityError as exc:
        raise HTTPException(
            status_code=409,
            detail={"code": "conflict", "message": "User with this email already exists."},
        ) from exc

    return user_response(get_engine(request), _get_or_404(user_store, user_id))


@router.delete("/users/{user_id}", status_code=204)
def delete_user(
    request: Request,
    user_id: str,
    current: Principal = Depends(require_ownership_or_admin("user_id")),
) -> Response:
    user_store: UserStore = request.app.state.user_store
    if not user_store.delete_user(user_id):
        raise _not_found()
    logger.info("User %s deleted principal %s", current.email, user_id)
    return Response(status_code=204)


@router.put("/users/{user_id}/role", response_model=UserResponse)
def assign_role(
    request: Request,
    user_id: str,
    body: RoleAssign,
    current: Principal = Depends(require_capability(Capability.admin)),
) -> UserResponse:
    """Assign a role. Admin only.

    The change is visible on the target's next request; their existing tokens
    stay valid and simply resolve to the new role.
    """
    engine = get_engine(request)
    user_store: UserStore = request.app.state.user_store

    target = _get_or_404(user_store, user_id)
    new_role = _role_or_400(user_store, body.role)
    old_role = engine.current_role(target)

    user_store.update_role(user_id, new_role.id)
    logger.info(
        "User role updated: %s changed from %r to %r by %s",
        target.email,
        old_role.name if old_role else "unknown",
        new_role.name,
        current.email,
    )
    return user_response(engine, _get_or_404(user_store, user_id), role=new_role)
