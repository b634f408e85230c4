"""
auth/tokens.py -- JWT issuance and validation.

Security design decisions:
  JWT: python-jose with HS256. The secret comes from Settings; a missing
       secret is a startup failure in production mode, never a silent default.

  Two kinds, one validator: access tokens carry user_id, username, and role;
       refresh tokens carry only user_id, so a refresh must re-read the user
       from storage instead of trusting stale claims. validate() checks
       signature, algorithm, issuer, and expiry, but NOT the "type" claim --
       each caller compares "type" explicitly against the kind it expects.

  Algorithm pinning: decode() is called with algorithms=["HS256"], so a token
       signed with any other algorithm (including "none") is rejected.

  jti: a random id per token. Two logins within the same second would
       otherwise produce identical strings, and sessions store tokens under
       UNIQUE constraints.

Layer rule: no imports from api/. auth/ never reads the environment directly.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

from auth.errors import InternalError, InvalidTokenError
from auth.models import TokenType

logger = logging.getLogger("etax.auth.tokens")

_ALGORITHM = "HS256"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TokenService:
    """Issues and validates signed access and refresh tokens.

    The clock is injectable so tests can mint already-expired tokens without
    sleeping.
    """

    def __init__(
        self,
        secret_key: str,
        issuer: str = "e-tax-api",
        access_ttl: timedelta = timedelta(minutes=15),
        refresh_ttl: timedelta = timedelta(days=7),
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        if not secret_key:
            raise ValueError("TokenService requires a signing secret")
        self._secret_key = secret_key
        self.issuer = issuer
        self.access_ttl = access_ttl
        self.refresh_ttl = refresh_ttl
        self._clock = clock

    @classmethod
    def from_settings(cls, settings) -> TokenService:
        return cls(
            secret_key=settings.secret_key,
            issuer=settings.jwt_issuer,
            access_ttl=timedelta(minutes=settings.access_token_ttl_minutes),
            refresh_ttl=timedelta(days=settings.refresh_token_ttl_days),
        )

    def _encode(self, claims: dict, ttl: timedelta) -> str:
        now = self._clock()
        payload = {
            **claims,
            "iat": int(now.timestamp()),
            "exp": int((now + ttl).timestamp()),
            "iss": self.issuer,
            "jti": uuid.uuid4().hex,
        }
        try:
            return jwt.encode(payload, self._secret_key, algorithm=_ALGORITHM)
        except JWTError as exc:
            logger.error("Token signing failed: %s", exc)
            raise InternalError("Failed to generate token") from exc

    def issue_access_token(self, user_id: int, username: str, role: str) -> str:
        """Encode a short-lived access token carrying identity and role claims."""
        return self._encode(
            {
                "sub": str(user_id),
                "user_id": user_id,
                "username": username,
                "role": role,
                "type": TokenType.access.value,
            },
            self.access_ttl,
        )

    def issue_refresh_token(self, user_id: int) -> str:
        """Encode a long-lived refresh token. No username or role claims."""
        return self._encode(
            {"sub": str(user_id), "user_id": user_id, "type": TokenType.refresh.value},
            self.refresh_ttl,
        )

    def validate(self, token: str) -> dict:
        """Verify signature, algorithm, issuer, and expiry. Returns the claims.

        Raises InvalidTokenError on any failure. The "type" claim is left for
        the caller to check.
        """
        try:
            claims = jwt.decode(
                token,
                self._secret_key,
                algorithms=[_ALGORITHM],
                issuer=self.issuer,
                options={"verify_aud": False},
            )
        except JWTError as exc:
            raise InvalidTokenError() from exc
        if not isinstance(claims.get("user_id"), int):
            raise InvalidTokenError()
        return claims
