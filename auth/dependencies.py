"""
auth/dependencies.py -- FastAPI Depends() gates for authentication and roles.

Two independently composable gates:

  authenticate_request  -- Authentication Gate. Requires
      "Authorization: Bearer <access token>", validates it with the
      TokenService on app.state, checks type == "access" explicitly, and
      publishes user_id / username / role on request.state.

  require_role(*roles)  -- Authorization Gate factory. Reads request.state.role
      and raises 403 unless it is one of the allowed roles. A missing role is
      also a 403, not a crash: the gate can be mounted without the
      Authentication Gate, it just never passes.

Composition order matters. FastAPI resolves router-level dependencies before
route-level ones and list entries left to right, so protected routers declare
authenticate_request first:

    router = APIRouter(dependencies=[Depends(authenticate_request)])

    @router.get("/users", dependencies=[Depends(admin_only)])
    def list_users(...): ...

Neither gate touches the store. Both are pure functions of the request, so
they are safe to run in parallel worker threads.

Layer rule: this module may import from fastapi because it is part of the
FastAPI dependency injection system. It does not import from api/.
"""

from __future__ import annotations

from collections.abc import Callable

from fastapi import Request

from auth.errors import AuthenticationError, AuthorizationError
from auth.models import Identity, Role, TokenType
from auth.tokens import TokenService

_BEARER_PREFIX = "Bearer "


def authenticate_request(request: Request) -> Identity:
    """Validate the bearer access token and populate request-scoped identity."""
    auth_header = request.headers.get("Authorization")
    if not auth_header:
        raise AuthenticationError("Authorization header required")
    if not auth_header.startswith(_BEARER_PREFIX):
        raise AuthenticationError("Bearer token required")

    tokens: TokenService = request.app.state.tokens
    claims = tokens.validate(auth_header[len(_BEARER_PREFIX) :])
    if claims.get("type") != TokenType.access.value:
        raise AuthenticationError("Invalid token type")

    identity = Identity(
        user_id=claims["user_id"],
        username=claims.get("username", ""),
        role=claims.get("role", ""),
    )
    request.state.user_id = identity.user_id
    request.state.username = identity.username
    request.state.role = identity.role
    return identity


def current_identity(request: Request) -> Identity:
    """Return the identity published by authenticate_request.

    For handlers that need the caller's id. Routes using this must sit behind
    the Authentication Gate; otherwise it fails closed with a 401.
    """
    user_id = getattr(request.state, "user_id", None)
    if user_id is None:
        raise AuthenticationError("User not authenticated")
    return Identity(
        user_id=user_id,
        username=getattr(request.state, "username", ""),
        role=getattr(request.state, "role", ""),
    )


def require_role(*allowed: Role | str) -> Callable[[Request], None]:
    """Build an Authorization Gate accepting any of the given roles."""
    allowed_values = frozenset(Role(r).value for r in allowed)

    def role_gate(request: Request) -> None:
        role = getattr(request.state, "role", None)
        if role is None:
            raise AuthorizationError("User role not found")
        if role not in allowed_values:
            raise AuthorizationError("Insufficient permissions")

    return role_gate


admin_only = require_role(Role.admin)
