"""
API request and response models for the E-Tax auth endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Request models only enforce presence and length. Password strength, email
shape, and sanitization run in AuthService so the client gets the exact
400 messages defined there.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from auth.models import Role, User

# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login."""

    username: str = Field(min_length=1, max_length=255)
    # Passwords are taken verbatim; surrounding spaces are part of the secret.
    password: str = Field(min_length=1, max_length=255, json_schema_extra={"format": "password"})


class RegisterRequest(BaseModel):
    """Request body for POST /api/v1/auth/register."""

    username: str = Field(min_length=1, max_length=255)
    email: str = Field(min_length=1, max_length=254)
    password: str = Field(min_length=1, max_length=255)
    first_name: str = Field(min_length=1, max_length=255)
    last_name: str = Field(min_length=1, max_length=255)


class RefreshRequest(BaseModel):
    refresh_token: str = Field(min_length=1)


class ProfileUpdate(BaseModel):
    """Request body for PUT /api/v1/auth/me. Omitted or empty fields are left unchanged."""

    first_name: Optional[str] = Field(default=None, max_length=255)
    last_name: Optional[str] = Field(default=None, max_length=255)
    email: Optional[str] = Field(default=None, max_length=254)


class ChangePasswordRequest(BaseModel):
    current_password: str = Field(min_length=1, max_length=255)
    new_password: str = Field(min_length=1, max_length=255)


class UserPatch(BaseModel):
    """Request body for PATCH /api/v1/users/{id}.

    role is the closed Role enum, so an unknown role is rejected with 400
    before the handler runs.
    """

    role: Optional[Role] = None
    is_active: Optional[bool] = None


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserSummary(BaseModel):
    """Public view of a user. Never includes the password hash."""

    model_config = ConfigDict(frozen=True)

    id: int
    username: str
    email: str
    first_name: str
    last_name: str
    role: Role

    @classmethod
    def from_user(cls, user: User) -> "UserSummary":
        return cls(
            id=user.id,
            username=user.username,
            email=user.email,
            first_name=user.first_name,
            last_name=user.last_name,
            role=user.role,
        )


class ProfileResponse(UserSummary):
    """Response for GET /api/v1/auth/me and the admin user list."""

    is_active: bool
    last_login: Optional[datetime] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_user(cls, user: User) -> "ProfileResponse":
        return cls(
            id=user.id,
            username=user.username,
            email=user.email,
            first_name=user.first_name,
            last_name=user.last_name,
            role=user.role,
            is_active=user.is_active,
            last_login=user.last_login,
            created_at=user.created_at,
        )


class LoginResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    access_token: str
    refresh_token: str
    session_id: str
    user: UserSummary
    expires_at: datetime


class TokenPairResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    access_token: str
    refresh_token: str


class UserEnvelope(BaseModel):
    """Response for register and profile update: {message, user}."""

    model_config = ConfigDict(frozen=True)

    message: str
    user: UserSummary


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


class AuditLogRow(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    user_id: Optional[int]
    action: str
    resource: str
    resource_id: Optional[int]
    details: str
    ip_address: str
    user_agent: str
    created_at: datetime


class ErrorResponse(BaseModel):
    """Error envelope returned on every 4xx/5xx response: {"error": message}."""

    model_config = ConfigDict(frozen=True)

    error: str


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str]
