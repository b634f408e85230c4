"""
auth/store.py -- SQLAlchemy Core persistence layer for auth entities.

Pattern: Repository + Data Mapper.
AuthStore is the repository; the _row_to_* functions are the mappers.
Service and dependency code never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

Timestamps:
  Stored as fixed-width ISO 8601 UTC strings (microsecond precision, +00:00
  offset). Fixed width makes lexicographic order equal chronological order,
  which the lockout window query relies on.

Errors:
  Any failure surfaces as sqlalchemy.exc.SQLAlchemyError. create_user raises
  IntegrityError on a duplicate username or email; callers translate that to
  a 409.

DB path: auth/etax_auth.db unless DATABASE_URL is set.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    event,
    func,
    select,
    text,
)
from sqlalchemy.engine import Engine

from auth.models import AttemptReason, AuditLogEntry, LoginAttempt, Role, Session, User

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("username", String(255), nullable=False, unique=True),
    Column("email", String(254), nullable=False, unique=True),
    Column("password_hash", Text, nullable=False),
    Column("first_name", String(255), nullable=False, server_default=""),
    Column("last_name", String(255), nullable=False, server_default=""),
    Column("role", String(30), nullable=False, server_default=Role.user.value),
    Column("is_active", Boolean, nullable=False, server_default="1"),
    Column("last_login", String(32)),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

_sessions = Table(
    "sessions",
    _metadata,
    Column("id", String(128), primary_key=True),
    Column("user_id", Integer, nullable=False, index=True),
    Column("access_token", Text, nullable=False, unique=True),
    Column("refresh_token", Text, nullable=False, unique=True),
    Column("expires_at", String(32), nullable=False),
    Column("created_at", String(32), nullable=False),
    Column("last_used_at", String(32), nullable=False),
    Column("user_agent", Text, nullable=False, server_default=""),
    Column("ip_address", String(45), nullable=False, server_default=""),
)

_login_attempts = Table(
    "login_attempts",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("username", String(255), nullable=False, index=True),
    Column("ip_address", String(45), nullable=False, server_default=""),
    Column("user_agent", Text, nullable=False, server_default=""),
    Column("success", Boolean, nullable=False),
    Column("reason", String(30), nullable=False),
    Column("created_at", String(32), nullable=False, index=True),
)

_audit_logs = Table(
    "audit_logs",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer),  # NULL for anonymous actions
    Column("action", String(50), nullable=False),
    Column("resource", String(50), nullable=False, server_default=""),
    Column("resource_id", Integer),
    Column("details", Text, nullable=False, server_default=""),
    Column("ip_address", String(45), nullable=False, server_default=""),
    Column("user_agent", Text, nullable=False, server_default=""),
    Column("created_at", String(32), nullable=False),
)


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers never block behind a writer.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def to_iso(dt: datetime) -> str:
    """Fixed-width UTC ISO 8601 string. Naive datetimes are treated as UTC."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat(timespec="microseconds")


def from_iso(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _now() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class AuthStore:
    """Repository for users, sessions, login attempts, and audit log entries.

    Usage:
        store = AuthStore("sqlite:///:memory:")
        user_id = store.create_user(User(username="alice", email="a@x.com", password_hash=h))
        user = store.get_by_username("alice")
        store.close()
    """

    def __init__(self, db_url: str) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        with self.engine.connect() as conn:
            return conn.execute(text("SELECT 1")).scalar() == 1

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def create_user(self, user: User) -> int:
        """Insert a new user and return its assigned ID.

        Raises sqlalchemy.exc.IntegrityError if the username or email already
        exists. The UNIQUE constraints are the real guard; a pre-check in the
        service only produces a nicer error for the common case.
        """
        now = to_iso(user.created_at or _now())
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.insert().values(
                    username=user.username,
                    email=user.email,
                    password_hash=user.password_hash,
                    first_name=user.first_name,
                    last_name=user.last_name,
                    role=Role(user.role).value,
                    is_active=user.is_active,
                    created_at=now,
                    updated_at=now,
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_by_username(self, username: str) -> User | None:
        """Look up a user by exact username (case-sensitive)."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.username == username)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_id(self, user_id: int) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_username_or_email(self, username: str, email: str) -> User | None:
        """Return any user holding either the username or the email."""
        with self.engine.connect() as conn:
            row = conn.execute(
                _users.select().where((_users.c.username == username) | (_users.c.email == email)).limit(1)
            ).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_email(self, email: str) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == email)).fetchone()
        return _row_to_user(row) if row is not None else None

    def list_users(self) -> list[User]:
        """Return all users ordered by username. Admin-only operation."""
        with self.engine.connect() as conn:
            rows = conn.execute(_users.select().order_by(_users.c.username)).fetchall()
        return [_row_to_user(r) for r in rows]

    def update_user(self, user_id: int, **fields) -> bool:
        """Update mutable fields on an existing user and stamp updated_at.

        Accepted fields: email, first_name, last_name, role, is_active,
        password_hash. role is normalized through the Role enum, so an unknown
        value raises ValueError before any SQL runs.

        Returns True if a row was updated, False if user_id was not found.
        """
        if "role" in fields:
            fields["role"] = Role(fields["role"]).value
        fields["updated_at"] = to_iso(_now())
        with self.engine.connect() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(**fields))
            conn.commit()
        return result.rowcount > 0

    def update_last_login(self, user_id: int, when: datetime | None = None) -> None:
        """Stamp last_login. Concurrent logins race; the last write wins."""
        with self.engine.connect() as conn:
            conn.execute(_users.update().where(_users.c.id == user_id).values(last_login=to_iso(when or _now())))
            conn.commit()

    def count_active_admins(self) -> int:
        """Return the number of active admin users (last-admin guard)."""
        with self.engine.connect() as conn:
            result = conn.execute(
                select(func.count())
                .select_from(_users)
                .where((_users.c.role == Role.admin.value) & (_users.c.is_active.is_(True)))
            ).scalar()
        return result or 0

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def create_session(self, session: Session) -> None:
        with self.engine.connect() as conn:
            conn.execute(
                _sessions.insert().values(
                    id=session.id,
                    user_id=session.user_id,
                    access_token=session.access_token,
                    refresh_token=session.refresh_token,
                    expires_at=to_iso(session.expires_at),
                    created_at=to_iso(session.created_at),
                    last_used_at=to_iso(session.last_used_at),
                    user_agent=session.user_agent,
                    ip_address=session.ip_address,
                )
            )
            conn.commit()

    def get_session(self, session_id: str) -> Session | None:
        with self.engine.connect() as conn:
            row = conn.execute(_sessions.select().where(_sessions.c.id == session_id)).fetchone()
        return _row_to_session(row) if row is not None else None

    def delete_session(self, session_id: str) -> bool:
        """Delete a session by id. Returns False if no such session existed."""
        with self.engine.connect() as conn:
            result = conn.execute(_sessions.delete().where(_sessions.c.id == session_id))
            conn.commit()
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Login attempts
    # ------------------------------------------------------------------

    def create_login_attempt(self, attempt: LoginAttempt) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(
                _login_attempts.insert().values(
                    username=attempt.username,
                    ip_address=attempt.ip_address,
                    user_agent=attempt.user_agent,
                    success=attempt.success,
                    reason=AttemptReason(attempt.reason).value,
                    created_at=to_iso(attempt.created_at),
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def count_failed_attempts(self, user_id: int, since: datetime) -> int:
        """Count failed attempts for the user's username strictly after `since`.

        Attempts are keyed by username (they are recorded before the user is
        resolved), so the username is looked up by id in a scalar subquery.
        """
        username = select(_users.c.username).where(_users.c.id == user_id).scalar_subquery()
        with self.engine.connect() as conn:
            result = conn.execute(
                select(func.count())
                .select_from(_login_attempts)
                .where(
                    (_login_attempts.c.username == username)
                    & (_login_attempts.c.success.is_(False))
                    & (_login_attempts.c.created_at > to_iso(since))
                )
            ).scalar()
        return result or 0

    def list_login_attempts(self, username: str) -> list[LoginAttempt]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                _login_attempts.select()
                .where(_login_attempts.c.username == username)
                .order_by(_login_attempts.c.id)
            ).fetchall()
        return [_row_to_login_attempt(r) for r in rows]

    # ------------------------------------------------------------------
    # Audit log
    # ------------------------------------------------------------------

    def create_audit_log(self, entry: AuditLogEntry) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(
                _audit_logs.insert().values(
                    user_id=entry.user_id,
                    action=entry.action,
                    resource=entry.resource,
                    resource_id=entry.resource_id,
                    details=entry.details,
                    ip_address=entry.ip_address,
                    user_agent=entry.user_agent,
                    created_at=to_iso(entry.created_at),
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def list_audit_logs(self, limit: int = 100, user_id: int | None = None) -> list[AuditLogEntry]:
        """Return audit entries newest first, optionally for one user."""
        query = _audit_logs.select().order_by(_audit_logs.c.id.desc()).limit(limit)
        if user_id is not None:
            query = query.where(_audit_logs.c.user_id == user_id)
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return [_row_to_audit_log(r) for r in rows]

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        username=row.username,
        email=row.email,
        password_hash=row.password_hash,
        first_name=row.first_name,
        last_name=row.last_name,
        role=Role(row.role),
        is_active=bool(row.is_active),
        last_login=from_iso(row.last_login),
        created_at=from_iso(row.created_at),
        updated_at=from_iso(row.updated_at),
    )


def _row_to_session(row) -> Session:
    return Session(
        id=row.id,
        user_id=row.user_id,
        access_token=row.access_token,
        refresh_token=row.refresh_token,
        expires_at=from_iso(row.expires_at),
        created_at=from_iso(row.created_at),
        last_used_at=from_iso(row.last_used_at),
        user_agent=row.user_agent,
        ip_address=row.ip_address,
    )


def _row_to_login_attempt(row) -> LoginAttempt:
    return LoginAttempt(
        id=row.id,
        username=row.username,
        success=bool(row.success),
        reason=AttemptReason(row.reason),
        created_at=from_iso(row.created_at),
        ip_address=row.ip_address,
        user_agent=row.user_agent,
    )


def _row_to_audit_log(row) -> AuditLogEntry:
    return AuditLogEntry(
        id=row.id,
        user_id=row.user_id,
        action=row.action,
        resource=row.resource,
        resource_id=row.resource_id,
        details=row.details,
        ip_address=row.ip_address,
        user_agent=row.user_agent,
        created_at=from_iso(row.created_at),
    )
