"""
api/routes/v1/admin.py -- Account administration endpoints (admin only).

Routes:
  GET   /api/v1/admin/users                      -- list accounts
  POST  /api/v1/admin/users                      -- provision an account (201)
  PATCH /api/v1/admin/users/{id}                 -- change role and/or first/last name
  POST  /api/v1/admin/users/{id}/reset-password  -- replace password with a temporary one

Every route depends on require_admin, so a non-admin never reaches the
handler body. The Authenticator re-checks the actor's role itself; the
dependency is the gate, the re-check keeps the core safe for non-HTTP callers.

[M4] An admin cannot change their own role (PolicyViolation, 400).
Temporary passwords are returned once with Cache-Control: no-store [M5].
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.models import PrincipalCreate, PrincipalPatch, PrincipalResponse, ProvisionedPrincipalResponse
from auth.dependencies import get_authenticator, require_admin
from auth.models import Principal

router = APIRouter()


def _provisioned_response(principal: Principal, temporary_password: str | None, status_code: int) -> JSONResponse:
    resp = JSONResponse(
        status_code=status_code,
        content=ProvisionedPrincipalResponse(
            principal=PrincipalResponse.from_principal(principal),
            temporary_password=temporary_password,
        ).model_dump(mode="json"),
    )
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


@router.get("/admin/users", response_model=list[PrincipalResponse])
def list_users(request: Request, admin: Principal = Depends(require_admin)) -> list[PrincipalResponse]:
    """List all accounts ordered by email."""
    return [PrincipalResponse.from_principal(p) for p in get_authenticator(request).list_principals(admin)]


@router.post("/admin/users", response_model=ProvisionedPrincipalResponse, status_code=201)
def create_user(
    request: Request,
    body: PrincipalCreate,
    admin: Principal = Depends(require_admin),
) -> JSONResponse:
    """Provision an account. Without a password, a temporary one is generated and returned once."""
    principal, temporary = get_authenticator(request).provision(
        admin,
        body.email,
        role=body.role,
        first_name=body.first_name,
        last_name=body.last_name,
        password=body.password,
    )
    return _provisioned_response(principal, temporary, status_code=201)


@router.patch("/admin/users/{principal_id}", response_model=PrincipalResponse)
def update_user(
    request: Request,
    principal_id: str,
    body: PrincipalPatch,
    admin: Principal = Depends(require_admin),
) -> PrincipalResponse:
    """Change an account's role, its first and last name, or both."""
    updated = get_authenticator(request).update_principal(
        admin,
        principal_id,
        role=body.role,
        profile=body.profile_changes(),
    )
    return PrincipalResponse.from_principal(updated)


@router.post("/admin/users/{principal_id}/reset-password", response_model=ProvisionedPrincipalResponse)
def reset_user_password(
    request: Request,
    principal_id: str,
    admin: Principal = Depends(require_admin),
) -> JSONResponse:
    """Replace the account's password with a temporary one and end its sessions."""
    principal, temporary = get_authenticator(request).admin_reset_password(admin, principal_id)
    return _provisioned_response(principal, temporary, status_code=200)
