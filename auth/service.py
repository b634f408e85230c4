"""
auth/service.py -- Login, registration, refresh, logout, and account flows.

AuthService orchestrates the components; it owns no state of its own:

  login:    sanitize -> find user -> active? -> locked? -> verify password
            -> issue access + refresh -> stamp last_login -> open session
            -> record success
  register: validate strength + email -> sanitize -> uniqueness -> hash
            -> create (role always "user") -> audit
  refresh:  validate token -> type == refresh -> re-read user -> active?
            -> issue a new access + refresh pair
  logout:   revoke session by id

Enumeration resistance [C1]:
  Unknown username, inactive account, and wrong password all raise
  AuthenticationError("Invalid credentials"). The distinct reason only goes
  to the login_attempts table. An unknown username still runs one Argon2
  verification against a dummy hash so response time does not reveal
  whether the account exists. Lockout is the one failure with its own
  message.

Side channels:
  Login attempts and audit entries are best-effort. A failed write is logged
  and the primary flow continues.

Layer rule: no imports from api/. Raises auth.errors types only; the API layer
maps them to HTTP responses.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from auth.errors import (
    AccountLockedError,
    AuthenticationError,
    ConflictError,
    HashDecodingError,
    InternalError,
    InvalidTokenError,
    NotFoundError,
    ValidationError,
)
from auth.lockout import LoginAttemptTracker
from auth.models import AttemptReason, AuditLogEntry, Role, Session, TokenType, User
from auth.passwords import PasswordHasher
from auth.sessions import SessionManager
from auth.store import AuthStore
from auth.tokens import TokenService
from auth.validation import is_valid_email, sanitize_input, validate_password_strength

logger = logging.getLogger("etax.auth.service")

_INVALID_CREDENTIALS = "Invalid credentials"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ClientInfo:
    """Request metadata recorded with sessions, attempts, and audit entries."""

    ip_address: str = ""
    user_agent: str = ""


@dataclass(frozen=True)
class LoginResult:
    access_token: str
    refresh_token: str
    session: Session
    user: User


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str


class AuthService:
    """Ties the hasher, token service, session store, and tracker together."""

    def __init__(
        self,
        store: AuthStore,
        hasher: PasswordHasher,
        tokens: TokenService,
        sessions: SessionManager,
        tracker: LoginAttemptTracker,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.store = store
        self.hasher = hasher
        self.tokens = tokens
        self.sessions = sessions
        self.tracker = tracker
        self._clock = clock
        # Timing equalization dummy [C1]. Computed once so the first unknown
        # username is not measurably slower than later ones.
        self._dummy_hash = hasher.hash("etax_timing_dummy")

    # ------------------------------------------------------------------
    # Login / refresh / logout
    # ------------------------------------------------------------------

    def login(self, username: str, password: str, client: ClientInfo) -> LoginResult:
        username = sanitize_input(username)

        def record(success: bool, reason: AttemptReason) -> None:
            self.tracker.record(username, client.ip_address, client.user_agent, success, reason)

        user = self.store.get_by_username(username)
        if user is None:
            self._verify(password, self._dummy_hash)
            record(False, AttemptReason.invalid_credentials)
            logger.info("Login failed: unknown username from %s", client.ip_address or "unknown")
            raise AuthenticationError(_INVALID_CREDENTIALS)

        if not user.is_active:
            record(False, AttemptReason.user_inactive)
            logger.info("Login refused: inactive user_id=%s", user.id)
            raise AuthenticationError(_INVALID_CREDENTIALS)

        if self.tracker.is_locked(user.id):
            record(False, AttemptReason.account_locked)
            raise AccountLockedError()

        if not self._verify(password, user.password_hash):
            record(False, AttemptReason.invalid_password)
            logger.info("Login failed: bad password for user_id=%s", user.id)
            raise AuthenticationError(_INVALID_CREDENTIALS)

        access_token = self.tokens.issue_access_token(user.id, user.username, Role(user.role).value)
        refresh_token = self.tokens.issue_refresh_token(user.id)
        # Stamped before the session exists so a failure here leaves no session behind.
        self.store.update_last_login(user.id, self._clock())
        session = self.sessions.open(
            user.id,
            access_token,
            refresh_token,
            user_agent=client.user_agent,
            ip_address=client.ip_address,
        )
        record(True, AttemptReason.success)
        self._audit(user.id, "login", user.id, "User logged in", client)
        logger.info("Login succeeded for user_id=%s", user.id)
        return LoginResult(access_token=access_token, refresh_token=refresh_token, session=session, user=user)

    def refresh(self, refresh_token: str) -> TokenPair:
        """Mint a new token pair from a refresh token.

        Identity is re-read from storage; the refresh token only contributes
        the user id. The login session record is left untouched.
        """
        try:
            claims = self.tokens.validate(refresh_token)
        except InvalidTokenError as exc:
            raise AuthenticationError("Invalid refresh token") from exc
        if claims.get("type") != TokenType.refresh.value:
            raise AuthenticationError("Invalid token type")

        user = self.store.get_by_id(claims["user_id"])
        if user is None or not user.is_active:
            raise AuthenticationError("Invalid refresh token")

        return TokenPair(
            access_token=self.tokens.issue_access_token(user.id, user.username, Role(user.role).value),
            refresh_token=self.tokens.issue_refresh_token(user.id),
        )

    def logout(self, session_id: str, client: ClientInfo) -> None:
        if not session_id:
            raise ValidationError("Session token required")
        session = self.sessions.revoke(session_id)
        self._audit(session.user_id, "logout", session.user_id, "User logged out", client)

    # ------------------------------------------------------------------
    # Registration and account management
    # ------------------------------------------------------------------

    def register(
        self,
        username: str,
        email: str,
        password: str,
        first_name: str,
        last_name: str,
        client: ClientInfo,
    ) -> User:
        validate_password_strength(password)
        if not is_valid_email(email):
            raise ValidationError("Invalid email format")

        username = sanitize_input(username)
        first_name = sanitize_input(first_name)
        last_name = sanitize_input(last_name)
        if not username:
            raise ValidationError("Invalid username")

        if self.store.get_by_username_or_email(username, email) is not None:
            raise ConflictError()

        user = User(
            username=username,
            email=email,
            password_hash=self._hash(password),
            first_name=first_name,
            last_name=last_name,
            role=Role.user,
        )
        try:
            user_id = self.store.create_user(user)
        except IntegrityError as exc:
            # A concurrent registration won the race past the pre-check.
            raise ConflictError() from exc

        self._audit(user_id, "register", user_id, "User registered", client)
        logger.info("Registered user_id=%s", user_id)
        return self._require_user(user_id)

    def get_profile(self, user_id: int) -> User:
        return self._require_user(user_id)

    def update_profile(
        self,
        user_id: int,
        client: ClientInfo,
        first_name: str | None = None,
        last_name: str | None = None,
        email: str | None = None,
    ) -> User:
        """Update display names and email. Empty or None values are ignored."""
        if email and not is_valid_email(email):
            raise ValidationError("Invalid email format")
        user = self._require_user(user_id)

        updates: dict = {}
        if first_name and sanitize_input(first_name):
            updates["first_name"] = sanitize_input(first_name)
        if last_name and sanitize_input(last_name):
            updates["last_name"] = sanitize_input(last_name)
        if email and email != user.email:
            if self.store.get_by_email(email) is not None:
                raise ConflictError("Email already exists")
            updates["email"] = email

        if updates:
            try:
                self.store.update_user(user_id, **updates)
            except IntegrityError as exc:
                raise ConflictError("Email already exists") from exc
            self._audit(user_id, "update", user_id, "Profile updated", client)
        return self._require_user(user_id)

    def change_password(self, user_id: int, current_password: str, new_password: str, client: ClientInfo) -> None:
        validate_password_strength(new_password)
        user = self._require_user(user_id)
        if not self._verify(current_password, user.password_hash):
            raise AuthenticationError("Current password is incorrect")

        self.store.update_user(user_id, password_hash=self._hash(new_password))
        self._audit(user_id, "change_password", user_id, "Password changed", client)
        logger.info("Password changed for user_id=%s", user_id)

    def update_user(
        self,
        actor_id: int,
        target_id: int,
        client: ClientInfo,
        role: Role | None = None,
        is_active: bool | None = None,
    ) -> User:
        """Admin update of another user's role and/or active flag.

        [M4] Refuses self-deactivation and any change that would leave no
        active admin (deactivating or demoting the last one).
        """
        target = self.store.get_by_id(target_id)
        if target is None:
            raise NotFoundError("User not found")

        updates: dict = {}
        removes_admin = False
        if role is not None:
            role = Role(role)
            if target.role == Role.admin and role != Role.admin:
                removes_admin = True
            updates["role"] = role
        if is_active is not None:
            if not is_active and target.id == actor_id:
                raise ValidationError("You cannot deactivate your own account")
            if not is_active and target.role == Role.admin:
                removes_admin = True
            updates["is_active"] = is_active

        if not updates:
            raise ValidationError("No fields to update")
        if removes_admin and target.is_active and self.store.count_active_admins() <= 1:
            raise ValidationError("Cannot remove the last active admin account")

        self.store.update_user(target_id, **updates)
        details = ", ".join(f"{k}={getattr(v, 'value', v)}" for k, v in updates.items())
        self._audit(actor_id, "update", target_id, f"User updated: {details}", client)
        return self._require_user(target_id)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _require_user(self, user_id: int) -> User:
        user = self.store.get_by_id(user_id)
        if user is None:
            raise NotFoundError("User not found")
        return user

    def _hash(self, password: str) -> str:
        try:
            return self.hasher.hash(password)
        except OSError as exc:
            logger.error("Password hashing failed: %s", exc)
            raise InternalError("Failed to hash password") from exc

    def _verify(self, password: str, password_hash: str) -> bool:
        """Verify, treating an undecodable stored hash as a mismatch.

        A corrupt hash is an operator problem, so it is logged loudly, but the
        client still sees an ordinary credential failure.
        """
        try:
            return self.hasher.verify(password, password_hash)
        except HashDecodingError:
            logger.error("Stored password hash is malformed; treating as mismatch")
            return False

    def _audit(self, user_id: int | None, action: str, resource_id: int | None, details: str, client: ClientInfo) -> None:
        entry = AuditLogEntry(
            action=action,
            created_at=self._clock(),
            user_id=user_id,
            resource="user",
            resource_id=resource_id,
            details=details,
            ip_address=client.ip_address,
            user_agent=client.user_agent,
        )
        try:
            self.store.create_audit_log(entry)
        except SQLAlchemyError:
            logger.warning("Failed to write audit log entry (action=%s)", action, exc_info=True)
