"""
tests/test_service.py -- Unit tests for auth/service.py flows.

Uses the unit-level `service` fixture: in-memory store, cheap Argon2, and a
FakeClock shared by the service, session manager, and tracker.

Covers:
  - login success side effects (session, last_login, attempt, audit)
  - enumeration resistance: one message for unknown / inactive / bad password,
    and a dummy verification for unknown usernames
  - refresh type check and re-read of the user
  - logout: required id, revoke, second logout is NotFound
  - registration rules, profile update, password change
  - admin user update guards
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest
from sqlalchemy import text
from sqlalchemy.exc import OperationalError

from auth.errors import (
    AuthenticationError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from auth.models import AttemptReason, Role
from auth.service import AuthService, ClientInfo
from auth.store import AuthStore
from auth.tokens import TokenService
from core.config import get_settings

CLIENT = ClientInfo(ip_address="203.0.113.7", user_agent="pytest")
PASSWORD = "Str0ng!Pw"


def _register(service: AuthService, username: str = "alice", email: str = "a@x.com"):
    return service.register(username, email, PASSWORD, "Alice", "Smith", CLIENT)


# ---------------------------------------------------------------------------
# Login
# ---------------------------------------------------------------------------


class TestLogin:
    def test_success(self, service: AuthService, store: AuthStore, clock) -> None:
        user = _register(service)
        result = service.login("alice", PASSWORD, CLIENT)

        assert result.user.id == user.id
        claims = service.tokens.validate(result.access_token)
        assert claims["type"] == "access"
        assert claims["role"] == "user"
        assert service.tokens.validate(result.refresh_token)["type"] == "refresh"

        session = store.get_session(result.session.id)
        assert session is not None
        assert session.user_id == user.id
        assert session.access_token == result.access_token
        assert session.expires_at == clock() + timedelta(hours=24)
        assert session.ip_address == "203.0.113.7"

        assert store.get_by_id(user.id).last_login == clock()
        assert store.list_login_attempts("alice")[-1].reason == AttemptReason.success
        assert store.list_audit_logs(limit=1)[0].action == "login"

    def test_session_ids_are_long_and_unique(self, service: AuthService) -> None:
        _register(service)
        first = service.login("alice", PASSWORD, CLIENT).session.id
        second = service.login("alice", PASSWORD, CLIENT).session.id
        assert first != second
        assert len(first) >= 64

    def test_unknown_user_runs_dummy_verification(self, service: AuthService, store: AuthStore) -> None:
        with patch.object(service.hasher, "verify", wraps=service.hasher.verify) as verify:
            with pytest.raises(AuthenticationError) as exc_info:
                service.login("ghost", PASSWORD, CLIENT)
        assert exc_info.value.message == "Invalid credentials"
        verify.assert_called_once()
        assert store.list_login_attempts("ghost")[0].reason == AttemptReason.invalid_credentials

    def test_wrong_password(self, service: AuthService, store: AuthStore) -> None:
        _register(service)
        with pytest.raises(AuthenticationError) as exc_info:
            service.login("alice", "Wr0ng!Pw", CLIENT)
        assert exc_info.value.message == "Invalid credentials"
        assert store.list_login_attempts("alice")[-1].reason == AttemptReason.invalid_password

    def test_inactive_user_gets_generic_message(self, service: AuthService, store: AuthStore) -> None:
        user = _register(service)
        store.update_user(user.id, is_active=False)
        with pytest.raises(AuthenticationError) as exc_info:
            service.login("alice", PASSWORD, CLIENT)
        assert exc_info.value.message == "Invalid credentials"
        assert store.list_login_attempts("alice")[-1].reason == AttemptReason.user_inactive

    def test_corrupt_stored_hash_is_a_mismatch(self, service: AuthService, store: AuthStore) -> None:
        user = _register(service)
        store.update_user(user.id, password_hash="%%% not base64 %%%")
        with pytest.raises(AuthenticationError):
            service.login("alice", PASSWORD, CLIENT)

    def test_username_is_sanitized_before_lookup(self, service: AuthService) -> None:
        _register(service)
        assert service.login("<alice>", PASSWORD, CLIENT).user.username == "alice"

    def test_store_failure_leaves_no_session(self, service: AuthService, store: AuthStore) -> None:
        _register(service)
        boom = OperationalError("UPDATE users", {}, Exception("database is locked"))
        with patch.object(store, "update_last_login", side_effect=boom):
            with pytest.raises(OperationalError):
                service.login("alice", PASSWORD, CLIENT)
        with store.engine.connect() as conn:
            assert conn.execute(text("SELECT COUNT(*) FROM sessions")).scalar() == 0


# ---------------------------------------------------------------------------
# Refresh / logout
# ---------------------------------------------------------------------------


class TestRefresh:
    def test_new_pair(self, service: AuthService) -> None:
        _register(service)
        login = service.login("alice", PASSWORD, CLIENT)
        pair = service.refresh(login.refresh_token)
        claims = service.tokens.validate(pair.access_token)
        assert claims["username"] == "alice"
        assert claims["type"] == "access"
        assert pair.refresh_token != login.refresh_token

    def test_picks_up_role_changes(self, service: AuthService, store: AuthStore) -> None:
        user = _register(service)
        login = service.login("alice", PASSWORD, CLIENT)
        store.update_user(user.id, role=Role.accountant)
        pair = service.refresh(login.refresh_token)
        assert service.tokens.validate(pair.access_token)["role"] == "accountant"

    def test_access_token_refused(self, service: AuthService) -> None:
        _register(service)
        login = service.login("alice", PASSWORD, CLIENT)
        with pytest.raises(AuthenticationError) as exc_info:
            service.refresh(login.access_token)
        assert exc_info.value.message == "Invalid token type"

    def test_inactive_user_refused(self, service: AuthService, store: AuthStore) -> None:
        user = _register(service)
        login = service.login("alice", PASSWORD, CLIENT)
        store.update_user(user.id, is_active=False)
        with pytest.raises(AuthenticationError) as exc_info:
            service.refresh(login.refresh_token)
        assert exc_info.value.message == "Invalid refresh token"

    def test_garbage_refused(self, service: AuthService) -> None:
        with pytest.raises(AuthenticationError) as exc_info:
            service.refresh("garbage")
        assert exc_info.value.message == "Invalid refresh token"

    def test_expired_refresh_token_refused(self, service: AuthService, store: AuthStore) -> None:
        user = _register(service)
        past = datetime.now(timezone.utc) - timedelta(days=8)
        stale = TokenService(get_settings().secret_key, clock=lambda: past).issue_refresh_token(user.id)
        with pytest.raises(AuthenticationError) as exc_info:
            service.refresh(stale)
        assert exc_info.value.message == "Invalid refresh token"

    def test_session_left_untouched(self, service: AuthService, store: AuthStore) -> None:
        _register(service)
        login = service.login("alice", PASSWORD, CLIENT)
        service.refresh(login.refresh_token)
        assert store.get_session(login.session.id).refresh_token == login.refresh_token


class TestLogout:
    def test_revokes_session(self, service: AuthService, store: AuthStore) -> None:
        _register(service)
        login = service.login("alice", PASSWORD, CLIENT)
        service.logout(login.session.id, CLIENT)
        assert store.get_session(login.session.id) is None
        assert store.list_audit_logs(limit=1)[0].action == "logout"

    def test_second_logout_is_not_found(self, service: AuthService) -> None:
        _register(service)
        login = service.login("alice", PASSWORD, CLIENT)
        service.logout(login.session.id, CLIENT)
        with pytest.raises(NotFoundError):
            service.logout(login.session.id, CLIENT)

    def test_missing_session_id(self, service: AuthService) -> None:
        with pytest.raises(ValidationError) as exc_info:
            service.logout("", CLIENT)
        assert exc_info.value.message == "Session token required"


# ---------------------------------------------------------------------------
# Registration and account management
# ---------------------------------------------------------------------------


class TestRegister:
    def test_creates_plain_user(self, service: AuthService, store: AuthStore) -> None:
        user = _register(service)
        assert user.role == Role.user
        assert user.is_active is True
        assert user.password_hash != PASSWORD
        assert service.hasher.verify(PASSWORD, user.password_hash)
        assert store.list_audit_logs(limit=1)[0].action == "register"

    def test_duplicate_username_and_email(self, service: AuthService) -> None:
        _register(service)
        with pytest.raises(ConflictError):
            _register(service, username="alice", email="other@x.com")
        with pytest.raises(ConflictError):
            _register(service, username="bob", email="a@x.com")

    def test_weak_password(self, service: AuthService, store: AuthStore) -> None:
        with pytest.raises(ValidationError):
            service.register("alice", "a@x.com", "password", "A", "S", CLIENT)
        assert store.get_by_username("alice") is None

    def test_bad_email(self, service: AuthService) -> None:
        with pytest.raises(ValidationError) as exc_info:
            service.register("alice", "not-an-email", PASSWORD, "A", "S", CLIENT)
        assert exc_info.value.message == "Invalid email format"

    def test_names_are_sanitized(self, service: AuthService) -> None:
        user = service.register("<b>bob</b>", "b@x.com", PASSWORD, "Bo(b)", "O'Neil", CLIENT)
        assert user.username == "bbobb"
        assert user.first_name == "Bob"
        assert user.last_name == "ONeil"

    def test_username_that_sanitizes_to_nothing(self, service: AuthService) -> None:
        with pytest.raises(ValidationError) as exc_info:
            service.register("<>", "b@x.com", PASSWORD, "B", "B", CLIENT)
        assert exc_info.value.message == "Invalid username"


class TestProfile:
    def test_update_names_and_email(self, service: AuthService) -> None:
        user = _register(service)
        updated = service.update_profile(user.id, CLIENT, first_name="Ally", email="ally@x.com")
        assert updated.first_name == "Ally"
        assert updated.last_name == "Smith"
        assert updated.email == "ally@x.com"

    def test_email_taken(self, service: AuthService) -> None:
        user = _register(service)
        _register(service, username="bob", email="b@x.com")
        with pytest.raises(ConflictError) as exc_info:
            service.update_profile(user.id, CLIENT, email="b@x.com")
        assert exc_info.value.message == "Email already exists"

    def test_missing_user(self, service: AuthService) -> None:
        with pytest.raises(NotFoundError):
            service.get_profile(999)

    def test_change_password(self, service: AuthService) -> None:
        user = _register(service)
        service.change_password(user.id, PASSWORD, "N3w!Passw0rd", CLIENT)
        assert service.login("alice", "N3w!Passw0rd", CLIENT).user.id == user.id
        with pytest.raises(AuthenticationError):
            service.login("alice", PASSWORD, CLIENT)

    def test_change_password_wrong_current(self, service: AuthService) -> None:
        user = _register(service)
        with pytest.raises(AuthenticationError) as exc_info:
            service.change_password(user.id, "Wr0ng!Pw", "N3w!Passw0rd", CLIENT)
        assert exc_info.value.message == "Current password is incorrect"

    def test_change_password_weak_new(self, service: AuthService) -> None:
        user = _register(service)
        with pytest.raises(ValidationError):
            service.change_password(user.id, PASSWORD, "weak", CLIENT)


class TestAdminUpdate:
    @pytest.fixture
    def admin_id(self, store, hasher, make_user) -> int:
        return make_user(store, hasher, "root", role=Role.admin)

    def test_promote_and_deactivate(self, service: AuthService, admin_id: int) -> None:
        user = _register(service)
        updated = service.update_user(admin_id, user.id, CLIENT, role=Role.accountant)
        assert updated.role == Role.accountant
        updated = service.update_user(admin_id, user.id, CLIENT, is_active=False)
        assert updated.is_active is False

    def test_audit_names_target(self, service: AuthService, store: AuthStore, admin_id: int) -> None:
        user = _register(service)
        service.update_user(admin_id, user.id, CLIENT, role=Role.accountant)
        entry = store.list_audit_logs(limit=1)[0]
        assert entry.action == "update"
        assert entry.user_id == admin_id
        assert entry.resource_id == user.id
        assert "role=accountant" in entry.details

    def test_cannot_deactivate_self(self, service: AuthService, admin_id: int) -> None:
        with pytest.raises(ValidationError) as exc_info:
            service.update_user(admin_id, admin_id, CLIENT, is_active=False)
        assert exc_info.value.message == "You cannot deactivate your own account"

    def test_cannot_demote_last_admin(self, service: AuthService, admin_id: int) -> None:
        with pytest.raises(ValidationError) as exc_info:
            service.update_user(admin_id, admin_id, CLIENT, role=Role.user)
        assert exc_info.value.message == "Cannot remove the last active admin account"

    def test_can_demote_when_another_admin_exists(
        self, service: AuthService, store, hasher, make_user, admin_id: int
    ) -> None:
        other = make_user(store, hasher, "root2", role=Role.admin)
        assert service.update_user(admin_id, other, CLIENT, role=Role.user).role == Role.user

    def test_no_fields(self, service: AuthService, admin_id: int) -> None:
        user = _register(service)
        with pytest.raises(ValidationError) as exc_info:
            service.update_user(admin_id, user.id, CLIENT)
        assert exc_info.value.message == "No fields to update"

    def test_missing_target(self, service: AuthService, admin_id: int) -> None:
        with pytest.raises(NotFoundError):
            service.update_user(admin_id, 999, CLIENT, role=Role.user)
