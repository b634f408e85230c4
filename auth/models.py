"""
auth/models.py -- Domain dataclasses and enums for authentication entities.

Pattern: Data class (pure data container, zero logic). Stores and services do
the work; these types only own the domain shape.

Timestamps are timezone-aware UTC datetimes in the domain layer. The store
converts them to fixed-width ISO 8601 strings on the way in and back on the
way out.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class Role(str, Enum):
    """Closed set of roles. Unknown values are rejected at the API boundary."""

    admin = "admin"
    accountant = "accountant"
    user = "user"


class TokenType(str, Enum):
    access = "access"
    refresh = "refresh"


class AttemptReason(str, Enum):
    """Reason codes stored with each login attempt. Audit trail only -- never client-facing."""

    success = "success"
    invalid_credentials = "invalid_credentials"
    user_inactive = "user_inactive"
    account_locked = "account_locked"
    invalid_password = "invalid_password"


@dataclass
class User:
    """An identity record. Created at registration, never physically deleted.

    password_hash is the Argon2id salt||key string produced by PasswordHasher.
    It must never be serialized into an API response.
    """

    username: str
    email: str
    password_hash: str
    first_name: str = ""
    last_name: str = ""
    role: Role = Role.user
    id: int | None = None
    is_active: bool = True
    last_login: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass
class Session:
    """A logout-capable handle binding a random session id to issued tokens."""

    id: str
    user_id: int
    access_token: str
    refresh_token: str
    expires_at: datetime
    created_at: datetime
    last_used_at: datetime
    user_agent: str = ""
    ip_address: str = ""


@dataclass
class LoginAttempt:
    username: str
    success: bool
    reason: AttemptReason
    created_at: datetime
    ip_address: str = ""
    user_agent: str = ""
    id: int | None = None


@dataclass
class AuditLogEntry:
    """Append-only record of a security-relevant action."""

    action: str  # "register", "login", "logout", "update", "change_password"
    created_at: datetime
    user_id: int | None = None
    resource: str = ""
    resource_id: int | None = None
    details: str = ""
    ip_address: str = ""
    user_agent: str = ""
    id: int | None = None


@dataclass(frozen=True)
class Identity:
    """Request-scoped identity derived from a validated access token."""

    user_id: int
    username: str
    role: str
