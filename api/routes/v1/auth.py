"""
api/routes/v1/auth.py -- Authentication and account REST endpoints.

Routes:
  POST /api/v1/auth/login            -- password login; tokens + session id
  POST /api/v1/auth/register         -- self-registration (role "user")
  POST /api/v1/auth/refresh          -- new access + refresh pair
  POST /api/v1/auth/logout           -- delete session named by X-Session-Token
  GET  /api/v1/auth/me               -- current profile (requires auth)
  PUT  /api/v1/auth/me               -- update names / email (requires auth)
  POST /api/v1/auth/change-password  -- rotate password (requires auth)

Security:
  [H2] POST /login and /register are rate-limited per client IP.
  [C1] AuthService.login() provides timing equalization and a single generic
       failure message -- use it, never inline the lookup + verify.
  [M5] Cache-Control: no-store on every response that carries tokens.

Handlers are thin: bind the body, call AuthService, map the result to a
response model. AuthError subclasses raised by the service are rendered by
the exception handler in api/main.py.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Header, Request, Response

from api.limiter import LOGIN_RATE_LIMIT, limiter
from api.models import (
    ChangePasswordRequest,
    LoginRequest,
    LoginResponse,
    MessageResponse,
    ProfileResponse,
    ProfileUpdate,
    RefreshRequest,
    RegisterRequest,
    TokenPairResponse,
    UserEnvelope,
    UserSummary,
)
from auth.dependencies import authenticate_request, current_identity
from auth.errors import AuthorizationError
from auth.models import Identity
from auth.service import AuthService, ClientInfo
from core.config import get_settings

# Auth policy:
# - POST /auth/login, /auth/register, /auth/refresh, /auth/logout: public
#   (logout is authorized by possession of the random session id)
# - GET/PUT /auth/me, POST /auth/change-password: Authentication Gate
router = APIRouter()
protected = APIRouter(dependencies=[Depends(authenticate_request)])


def _service(request: Request) -> AuthService:
    return request.app.state.auth_service


def client_info(request: Request) -> ClientInfo:
    return ClientInfo(
        ip_address=request.client.host if request.client else "",
        user_agent=request.headers.get("User-Agent", ""),
    )


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@limiter.limit(LOGIN_RATE_LIMIT)  # [H2] must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/login", response_model=LoginResponse)
def login(request: Request, response: Response, body: LoginRequest) -> LoginResponse:
    """Authenticate with username and password.

    Returns the same "Invalid credentials" error for unknown username, wrong
    password, and inactive account. A locked account gets its own message.
    """
    result = _service(request).login(body.username, body.password, client_info(request))
    response.headers["Cache-Control"] = "no-store"  # [M5]
    return LoginResponse(
        access_token=result.access_token,
        refresh_token=result.refresh_token,
        session_id=result.session.id,
        user=UserSummary.from_user(result.user),
        expires_at=result.session.expires_at,
    )


@limiter.limit(LOGIN_RATE_LIMIT)  # [H2]
@router.post("/auth/register", response_model=UserEnvelope, status_code=201)
def register(request: Request, body: RegisterRequest) -> UserEnvelope:
    """Create a "user"-role account. Elevated roles are granted by an admin only."""
    if not get_settings().self_registration_enabled:
        raise AuthorizationError("Registration is disabled")
    user = _service(request).register(
        username=body.username,
        email=body.email,
        password=body.password,
        first_name=body.first_name,
        last_name=body.last_name,
        client=client_info(request),
    )
    return UserEnvelope(message="User created successfully", user=UserSummary.from_user(user))


@router.post("/auth/refresh", response_model=TokenPairResponse)
def refresh(request: Request, response: Response, body: RefreshRequest) -> TokenPairResponse:
    """Exchange a refresh token for a new token pair. Access tokens are refused here."""
    pair = _service(request).refresh(body.refresh_token)
    response.headers["Cache-Control"] = "no-store"  # [M5]
    return TokenPairResponse(access_token=pair.access_token, refresh_token=pair.refresh_token)


@router.post("/auth/logout", response_model=MessageResponse)
def logout(
    request: Request,
    x_session_token: str = Header(default=""),
) -> MessageResponse:
    """Delete the session named by X-Session-Token.

    400 when the header is missing, 404 when the session does not exist
    (already logged out, or never issued).
    """
    _service(request).logout(x_session_token, client_info(request))
    return MessageResponse(message="Logged out successfully")


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@protected.get("/auth/me", response_model=ProfileResponse)
def get_profile(request: Request, identity: Identity = Depends(current_identity)) -> ProfileResponse:
    """Return the stored profile of the caller (fresh from the store, not the token)."""
    return ProfileResponse.from_user(_service(request).get_profile(identity.user_id))


@protected.put("/auth/me", response_model=UserEnvelope)
def update_profile(
    request: Request,
    body: ProfileUpdate,
    identity: Identity = Depends(current_identity),
) -> UserEnvelope:
    user = _service(request).update_profile(
        identity.user_id,
        client_info(request),
        first_name=body.first_name,
        last_name=body.last_name,
        email=body.email,
    )
    return UserEnvelope(message="Profile updated successfully", user=UserSummary.from_user(user))


@protected.post("/auth/change-password", response_model=MessageResponse)
def change_password(
    request: Request,
    body: ChangePasswordRequest,
    identity: Identity = Depends(current_identity),
) -> MessageResponse:
    """Verify the current password, check the new one's strength, and store it.

    Existing tokens and sessions stay valid until they expire.
    """
    _service(request).change_password(
        identity.user_id,
        body.current_password,
        body.new_password,
        client_info(request),
    )
    return MessageResponse(message="Password updated successfully")
