"""
api/routes/v1/auth.py -- Authentication REST endpoints.

Routes:
  POST /api/v1/auth/register          -- create account, open session (201)
  POST /api/v1/auth/login             -- password login; sets session cookie
  POST /api/v1/auth/logout            -- destroys session, clears cookie; 200
  GET  /api/v1/auth/me                -- current principal (requires auth)
  PATCH /api/v1/auth/me                -- edit own first/last name (requires auth)
  POST /api/v1/auth/forgot-password   -- issue reset token; same answer for any email
  POST /api/v1/auth/reset-password    -- redeem reset token, set new password
  POST /api/v1/auth/change-password   -- change own password (requires auth)

Security:
  [H2] login, register and forgot-password are rate-limited per client IP.
  [C1] Authenticator.login() provides timing equalization -- never inline
       get_by_email() + verify().
  [M5] Cache-Control: no-store on every response that carries a session id
       or a reset token.
  Handlers that hash or verify passwords are plain `def`: FastAPI runs them
  in its threadpool so the KDF never blocks the event loop.
  Auth failures are raised as auth.errors exceptions; api/main.py turns them
  into the shared error envelope.
"""

import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter, login_limit, reset_limit
from api.models import (
    AuthResponse,
    ChangePasswordRequest,
    ForgotPasswordRequest,
    ForgotPasswordResponse,
    LoginRequest,
    MessageResponse,
    PrincipalResponse,
    ProfilePatch,
    RegisterRequest,
    ResetPasswordRequest,
)
from auth.dependencies import get_app_settings, get_authenticator, get_current_principal, session_id_from_request
from auth.errors import Forbidden
from auth.models import Principal
from auth.tokens import clear_session_cookie, set_session_cookie
from core.config import Settings

logger = logging.getLogger("siteguard.api.auth")

_RESET_ACK = "If the email address is registered, a password reset link has been sent."

# Auth policy:
# - POST /api/v1/auth/register:         public (unless SELF_REGISTRATION_ENABLED=false)
# - POST /api/v1/auth/login:            public -- login endpoint must be unauthenticated
# - POST /api/v1/auth/logout:           public -- destroying an unknown session is a no-op
# - POST /api/v1/auth/forgot-password:  public
# - POST /api/v1/auth/reset-password:   public -- the token is the credential
# - GET  /api/v1/auth/me:               requires auth (get_current_principal)
# - PATCH /api/v1/auth/me:              requires auth (get_current_principal)
# - POST /api/v1/auth/change-password:  requires auth (get_current_principal)
router = APIRouter()


def _session_response(principal: Principal, session_id: str, settings: Settings, status_code: int = 200) -> JSONResponse:
    resp = JSONResponse(
        status_code=status_code,
        content=AuthResponse(
            principal=PrincipalResponse.from_principal(principal),
            session_id=session_id,
            expires_in=settings.session_ttl_seconds,
        ).model_dump(mode="json"),
    )
    set_session_cookie(resp, session_id, settings)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/register", response_model=AuthResponse, status_code=201)
@limiter.limit(login_limit)  # [H2] below @router so FastAPI registers the limited wrapper
def register(request: Request, body: RegisterRequest) -> JSONResponse:
    """Create a role=user account and log it in immediately."""
    settings = get_app_settings(request)
    if not settings.self_registration_enabled:
        raise Forbidden("Self-registration is disabled.")
    principal, session_id = get_authenticator(request).register(
        body.email,
        body.password,
        first_name=body.first_name,
        last_name=body.last_name,
    )
    return _session_response(principal, session_id, settings, status_code=201)


@router.post("/auth/login", response_model=AuthResponse)
@limiter.limit(login_limit)  # [H2] brute-force mitigation
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password; set the session cookie.

    Wrong email and wrong password produce the same 401 "invalid_credentials"
    body so the response does not reveal which accounts exist.
    """
    principal, session_id = get_authenticator(request).login(body.email, body.password)
    return _session_response(principal, session_id, get_app_settings(request))


@router.post("/auth/logout", response_model=MessageResponse)
def logout(request: Request) -> JSONResponse:
    """Destroy the current session (if any) and clear the cookie."""
    get_authenticator(request).logout(session_id_from_request(request))
    resp = JSONResponse(content=MessageResponse(message="Logged out.").model_dump())
    clear_session_cookie(resp, get_app_settings(request))
    return resp


@router.post("/auth/forgot-password", response_model=ForgotPasswordResponse)
@limiter.limit(reset_limit)  # [H2]
def forgot_password(request: Request, body: ForgotPasswordRequest) -> JSONResponse:
    """Issue a reset token if the account exists; answer identically either way.

    The token is handed to the reset notifier. It appears in this response
    only when EXPOSE_RESET_TOKEN is on (debug deployments).
    """
    settings = get_app_settings(request)
    token = get_authenticator(request).request_password_reset(body.email)
    content = ForgotPasswordResponse(
        message=_RESET_ACK,
        reset_token=token if settings.expose_reset_token else None,
    )
    resp = JSONResponse(content=content.model_dump())
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


@router.post("/auth/reset-password", response_model=MessageResponse)
@limiter.limit(reset_limit)  # [H2] token guessing mitigation
def reset_password(request: Request, body: ResetPasswordRequest) -> JSONResponse:
    """Redeem a reset token and set the new password. All sessions of the account end."""
    get_authenticator(request).confirm_password_reset(body.token, body.new_password)
    resp = JSONResponse(
        content=MessageResponse(message="Password has been reset. Please log in with your new password.").model_dump()
    )
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/me", response_model=PrincipalResponse)
def me(current: Principal = Depends(get_current_principal)) -> PrincipalResponse:
    """Return the currently authenticated principal."""
    return PrincipalResponse.from_principal(current)


@router.patch("/auth/me", response_model=PrincipalResponse)
def update_me(
    request: Request,
    body: ProfilePatch,
    current: Principal = Depends(get_current_principal),
) -> PrincipalResponse:
    """Edit the caller's own first and last name."""
    updated = get_authenticator(request).update_own_profile(current, body.profile_changes())
    return PrincipalResponse.from_principal(updated)


@router.post("/auth/change-password", response_model=MessageResponse)
def change_password(
    request: Request,
    body: ChangePasswordRequest,
    current: Principal = Depends(get_current_principal),
) -> MessageResponse:
    """Change the caller's password. Other sessions of the account are revoked; this one stays."""
    get_authenticator(request).change_password(
        current,
        body.current_password,
        body.new_password,
        keep_session=session_id_from_request(request),
    )
    return MessageResponse(message="Password changed.")
