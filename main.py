#!/usr/bin/env python3
"""
E-Tax API -- management commands.

Usage:
  python main.py create-admin --username admin --email admin@example.com
  python main.py create-admin --username admin --email admin@example.com --password 'Str0ng!Pw'
  python main.py create-admin --username alice --email a@x.com --promote

create-admin creates an admin account, or with --promote grants the admin
role to an existing account with that username. Self-registration only ever
creates "user" accounts, so this is how the first admin comes into being.

The password is prompted for (twice) unless --password is given. It must pass
the same strength check as registration.

Environment variables:
  DATABASE_URL   SQLAlchemy URL of the auth database (default: auth/etax_auth.db)
  SECRET_KEY     Not needed by this command unless DEBUG is unset; Settings
                 validation runs either way.
"""

import argparse
import getpass
import sys
from typing import Optional

from sqlalchemy.exc import IntegrityError

from auth.errors import ValidationError
from auth.models import Role, User
from auth.passwords import PasswordHasher
from auth.store import AuthStore
from auth.validation import is_valid_email, sanitize_input, validate_password_strength
from core.config import get_settings


def _read_password(given: Optional[str]) -> str:
    if given:
        return given
    first = getpass.getpass("Password: ")
    second = getpass.getpass("Repeat password: ")
    if first != second:
        raise ValidationError("passwords do not match")
    return first


def create_admin(store: AuthStore, hasher: PasswordHasher, username: str, email: str, password: Optional[str], promote: bool) -> str:
    """Create or promote an admin. Returns a one-line status for the terminal."""
    username = sanitize_input(username)
    existing = store.get_by_username(username)
    if existing is not None:
        if existing.role == Role.admin:
            return f"User {username} is already an admin (id: {existing.id})"
        if not promote:
            raise ValidationError(f"user {username} exists; pass --promote to grant admin")
        store.update_user(existing.id, role=Role.admin, is_active=True)
        return f"Promoted {username} to admin (id: {existing.id})"

    if not is_valid_email(email):
        raise ValidationError("Invalid email format")
    password = _read_password(password)
    validate_password_strength(password)
    try:
        user_id = store.create_user(
            User(username=username, email=email, password_hash=hasher.hash(password), role=Role.admin)
        )
    except IntegrityError as exc:
        raise ValidationError("username or email already exists") from exc
    return f"Created admin {username} (id: {user_id})"


def main() -> int:
    parser = argparse.ArgumentParser(
        description="E-Tax API management commands.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    commands = parser.add_subparsers(dest="command", required=True)

    admin = commands.add_parser("create-admin", help="Create (or promote) an admin account.")
    admin.add_argument("--username", required=True)
    admin.add_argument("--email", required=True)
    admin.add_argument("--password", help="Password (prompted for when omitted).")
    admin.add_argument("--promote", action="store_true", help="Promote an existing user instead of failing.")

    args = parser.parse_args()
    settings = get_settings()
    store = AuthStore(settings.database_url)
    try:
        message = create_admin(
            store,
            PasswordHasher.from_settings(settings),
            args.username,
            args.email,
            args.password,
            args.promote,
        )
    except ValidationError as exc:
        print(f"  [!] {exc.message}", file=sys.stderr)
        return 1
    finally:
        store.close()
    print(message)
    return 0


if __name__ == "__main__":
    sys.exit(main())
