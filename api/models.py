"""
API request and response models for SiteGuard REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Every request model sets extra="forbid": the accepted fields ARE the
allow-list, checked once at the boundary. A body carrying e.g. "role" on
POST /auth/register is rejected with 422 rather than silently filtered.

Separation of concerns: auth/ models = domain truth; api/ models = API contract.
"""

from typing import Annotated, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from auth.models import EMAIL_PATTERN, Principal, Role

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_Email = Annotated[str, Field(min_length=3, max_length=255, pattern=EMAIL_PATTERN)]
# Upper bound keeps the KDF input reasonable; Argon2 itself accepts far longer secrets.
_Password = Annotated[str, Field(min_length=8, max_length=255)]
_LoginPassword = Annotated[str, Field(min_length=1, max_length=255)]
_Name = Annotated[Optional[str], Field(max_length=100)]


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class _Request(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")


class RegisterRequest(_Request):
    """Request body for POST /api/v1/auth/register."""

    email: _Email
    password: _Password
    first_name: _Name = None
    last_name: _Name = None


class LoginRequest(_Request):
    """Request body for POST /api/v1/auth/login."""

    email: _Email
    password: _LoginPassword


class ForgotPasswordRequest(_Request):
    """Request body for POST /api/v1/auth/forgot-password."""

    email: _Email


class ResetPasswordRequest(_Request):
    """Request body for POST /api/v1/auth/reset-password."""

    token: str = Field(min_length=1, max_length=255)
    new_password: _Password


class ChangePasswordRequest(_Request):
    """Request body for POST /api/v1/auth/change-password."""

    current_password: _LoginPassword
    new_password: _Password


class PrincipalCreate(_Request):
    """Request body for POST /api/v1/admin/users.

    password is optional: when omitted a temporary password is generated and
    returned once in the response.
    """

    email: _Email
    role: Role = Role.user
    first_name: _Name = None
    last_name: _Name = None
    password: Optional[str] = Field(default=None, min_length=8, max_length=255)


class _ProfileEdit(_Request):
    """Partial update: only the fields present in the body are applied."""

    first_name: _Name = None
    last_name: _Name = None

    def profile_changes(self) -> dict[str, Optional[str]]:
        """The sent profile fields; an explicit null clears the field."""
        return self.model_dump(include={"first_name", "last_name"}, exclude_unset=True)

    @model_validator(mode="after")
    def require_a_field(self):
        if not self.model_fields_set:
            raise ValueError("Provide at least one field to update.")
        return self


class ProfilePatch(_ProfileEdit):
    """Request body for PATCH /api/v1/auth/me. Email and role cannot be changed here."""


class PrincipalPatch(_ProfileEdit):
    """Request body for PATCH /api/v1/admin/users/{id}."""

    role: Optional[Role] = None

    @field_validator("role", mode="before")
    @classmethod
    def normalize_role(cls, value):
        """Accept role names in any letter case."""
        return value.lower() if isinstance(value, str) else value


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class PrincipalResponse(BaseModel):
    """Public view of an account. Never carries the password hash."""

    model_config = ConfigDict(frozen=True)

    id: str
    email: str
    role: Role
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    created_at: str = ""
    last_login: Optional[str] = None

    @classmethod
    def from_principal(cls, principal: Principal) -> "PrincipalResponse":
        """Factory Method: the field-by-field mapping lives with the output model."""
        return cls(
            id=principal.id,
            email=principal.email,
            role=principal.role,
            first_name=principal.first_name,
            last_name=principal.last_name,
            created_at=principal.created_at or "",
            last_login=principal.last_login,
        )


class AuthResponse(BaseModel):
    """Response for register and login: the account plus the new session id."""

    model_config = ConfigDict(frozen=True)

    principal: PrincipalResponse
    session_id: str
    expires_in: int


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


class ForgotPasswordResponse(BaseModel):
    """Same acknowledgement whether or not the account exists.

    reset_token is populated only when Settings.expose_reset_token is true
    (debug deployments), and then only for known accounts.
    """

    model_config = ConfigDict(frozen=True)

    message: str
    reset_token: Optional[str] = None


class ProvisionedPrincipalResponse(BaseModel):
    """Response for admin provisioning and admin password reset.

    temporary_password is shown exactly once; only its hash is stored.
    """

    model_config = ConfigDict(frozen=True)

    principal: PrincipalResponse
    temporary_password: Optional[str] = None


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)
