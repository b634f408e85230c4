"""
api/routes/v1/users.py -- User administration and audit log endpoints.

Routes:
  GET   /api/v1/users           -- list all users (admin)
  PATCH /api/v1/users/{id}      -- change role and/or is_active (admin)
  GET   /api/v1/audit-logs      -- recent audit entries (admin, accountant)

Every route here sits behind both gates: the router-level Authentication Gate
runs first, then the route's Authorization Gate. Reversing them would make
every request a 403 because role would not be on request.state yet.

[M4] PATCH refuses self-deactivation and removing the last active admin.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Request

from api.models import AuditLogRow, ProfileResponse, UserPatch
from api.routes.v1.auth import client_info
from auth.dependencies import admin_only, authenticate_request, current_identity, require_role
from auth.models import Identity, Role
from auth.service import AuthService
from auth.store import AuthStore

router = APIRouter(dependencies=[Depends(authenticate_request)])


@router.get("/users", response_model=list[ProfileResponse], dependencies=[Depends(admin_only)])
def list_users(request: Request) -> list[ProfileResponse]:
    """List all user accounts. Admin only."""
    store: AuthStore = request.app.state.auth_store
    return [ProfileResponse.from_user(u) for u in store.list_users()]


@router.patch("/users/{user_id}", response_model=ProfileResponse, dependencies=[Depends(admin_only)])
def update_user(
    request: Request,
    user_id: int,
    body: UserPatch,
    identity: Identity = Depends(current_identity),
) -> ProfileResponse:
    """Update a user's role or active status. Admin only.

    Role changes take effect at the user's next login or refresh; access
    tokens already issued keep their role claim until they expire.
    """
    service: AuthService = request.app.state.auth_service
    updated = service.update_user(
        identity.user_id,
        user_id,
        client_info(request),
        role=body.role,
        is_active=body.is_active,
    )
    return ProfileResponse.from_user(updated)


@router.get(
    "/audit-logs",
    response_model=list[AuditLogRow],
    dependencies=[Depends(require_role(Role.admin, Role.accountant))],
)
def list_audit_logs(
    request: Request,
    limit: int = Query(default=100, ge=1, le=1000),
    user_id: int | None = Query(default=None),
) -> list[AuditLogRow]:
    """Return the newest audit entries, optionally for one user."""
    store: AuthStore = request.app.state.auth_store
    return [
        AuditLogRow(
            id=e.id,
            user_id=e.user_id,
            action=e.action,
            resource=e.resource,
            resource_id=e.resource_id,
            details=e.details,
            ip_address=e.ip_address,
            user_agent=e.user_agent,
            created_at=e.created_at,
        )
        for e in store.list_audit_logs(limit=limit, user_id=user_id)
    ]
