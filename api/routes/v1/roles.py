"""
api/routes/v1/roles.py -- Role catalog endpoints.

Routes:
  GET    /api/v1/roles             -- list roles with level and capabilities (requires auth)
  POST   /api/v1/roles             -- create a role (admin capability)
  DELETE /api/v1/roles/{role_id}   -- delete a role (super_admin role only)

A role created here has level 0 and no capabilities until it is added to the
RoleCatalog tables: the catalog is static configuration, the roles table is
data. Deleting a role does not touch principals that hold it; their next
policy check fails with role_not_found until an admin reassigns them.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from sqlalchemy.exc import IntegrityError

from api.models import RoleCreate, RoleResponse
from auth.dependencies import get_current_principal, get_engine, require_capability, require_role
from auth.models import Capability, Principal, Role
from auth.roles import RoleCatalog
from auth.store import UserStore

logger = logging.getLogger("devguild.api")

router = APIRouter()


def _role_response(catalog: RoleCatalog, role: Role) -> RoleResponse:
    return RoleResponse(
        id=role.id,
        name=role.name,
        description=role.description,
        level=catalog.level_of(role.name),
        mentor=catalog.has_mentor_capability(role.name),
        admin=catalog.has_admin_capability(role.name),
    )


@router.get("/roles", response_model=list[RoleResponse])
def list_roles(
    request: Request,
    current: Principal = Depends(get_current_principal),
) -> list[RoleResponse]:
    catalog = get_engine(request).catalog
    user_store: UserStore = request.app.state.user_store
    return [_role_response(catalog, r) for r in user_store.list_roles()]


@router.post("/roles", response_model=RoleResponse, status_code=201)
def create_role(
    request: Request,
    body: RoleCreate,
    current: Principal = Depends(require_capability(Capability.admin)),
) -> RoleResponse:
    user_store: UserStore = request.app.state.user_store
    try:
        role_id = user_store.create_role(Role(name=body.name, description=body.description))
    except IntegrityError as exc:
        raise HTTPException(
            status_code=409,
            detail={"code": "conflict", "message": f"Role '{body.name}' already exists."},
        ) from exc
    logger.info("New role created: %s (by %s)", body.name, current.email)
    return _role_response(get_engine(request).catalog, user_store.get_role_by_id(role_id))


@router.delete("/roles/{role_id}", status_code=204)
def delete_role(
    request: Request,
    role_id: str,
    current: Principal = Depends(require_role("super_admin")),
) -> Response:
    user_store: UserStore = request.app.state.user_store
    if not user_store.delete_role(role_id):
        raise HTTPException(status_code=404, detail={"code": "not_found", "message": "Role not found."})
    logger.warning("Role %s deleted by %s; principals holding it lose access until reassigned", role_id, current.email)
    return Response(status_code=204)
