"""
auth/validation.py -- Input checks for registration and profile updates.

These run in the service layer rather than as Pydantic validators so the
client receives the exact messages below with a 400, and so the CLI
bootstrap script can reuse them without an HTTP request.
"""

from __future__ import annotations

from auth.errors import ValidationError

_SPECIAL_CHARS = frozenset("!@#$%^&*()-_+={}[]|\\;:\"'<>,.?/")

# Stripped from usernames and display names before they are stored or looked up.
_DENYLIST = frozenset("<>&\"'/\\(){}[]")


def sanitize_input(value: str) -> str:
    """Remove markup and punctuation characters from a free-text field."""
    return "".join(ch for ch in value if ch not in _DENYLIST)


def validate_password_strength(password: str) -> None:
    """Raise ValidationError naming the first missing character class."""
    if len(password) < 8:
        raise ValidationError("password must be at least 8 characters long")
    if not any("A" <= ch <= "Z" for ch in password):
        raise ValidationError("password must contain at least one uppercase letter")
    if not any("a" <= ch <= "z" for ch in password):
        raise ValidationError("password must contain at least one lowercase letter")
    if not any("0" <= ch <= "9" for ch in password):
        raise ValidationError("password must contain at least one number")
    if not any(ch in _SPECIAL_CHARS for ch in password):
        raise ValidationError("password must contain at least one special character")


def is_valid_email(email: str) -> bool:
    """Basic shape check: 5-254 chars, exactly one '@', not at either end."""
    if not 5 <= len(email) <= 254:
        return False
    if email.count("@") != 1:
        return False
    at = email.index("@")
    return 0 < at < len(email) - 1
