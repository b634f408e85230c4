"""
auth/errors.py -- Exception taxonomy for the authentication core.

Every service-layer failure that should reach the client as a specific HTTP
status is an AuthError subclass. The API layer registers one exception
handler for AuthError and renders {"error": message} with the class's
status_code, so route handlers never build error responses by hand.

Messages are client-facing. Never put usernames, hashes, tokens, or store
details into them -- log those separately if needed.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base class for errors mapped to HTTP responses."""

    status_code: int = 400
    default_message: str = "Bad request"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(AuthError):
    """Malformed or unacceptable input (400)."""

    status_code = 400
    default_message = "Invalid request"


class AuthenticationError(AuthError):
    """Missing, bad, or expired credentials or token (401)."""

    status_code = 401
    default_message = "Invalid credentials"


class InvalidTokenError(AuthenticationError):
    """Token failed signature, algorithm, issuer, or expiry checks (401)."""

    default_message = "Invalid token"


class AccountLockedError(AuthenticationError):
    """Too many recent failed logins for this account (401)."""

    default_message = "Account is locked. Please try again later."


class AuthorizationError(AuthError):
    """Valid identity, insufficient role (403)."""

    status_code = 403
    default_message = "Insufficient permissions"


class NotFoundError(AuthError):
    status_code = 404
    default_message = "Not found"


class ConflictError(AuthError):
    """A unique field (username, email) is already taken (409)."""

    status_code = 409
    default_message = "Username or email already exists"


class InternalError(AuthError):
    """Hashing, signing, or entropy failure (500). Details go to the log only."""

    status_code = 500
    default_message = "Internal server error"


class HashDecodingError(ValueError):
    """A stored credential hash is not valid base64 or is truncated."""
