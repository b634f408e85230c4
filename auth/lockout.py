"""
auth/lockout.py -- Login-attempt recording and sliding-window lockout.

Lockout is a derived property, not stored state: an account is locked while
at least `max_failures` failed attempts for its username fall inside the
trailing `window`. A failure stops counting the instant it is exactly
`window` old, so the lock lifts on its own with no explicit unlock and
nothing to clear after a successful login. There is deliberately no counter
to reset -- a stale counter is exactly the bug this design avoids.

Recording is best-effort. A store failure while writing an attempt is logged
and swallowed so that the login flow itself never fails because the audit
side channel did.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from sqlalchemy.exc import SQLAlchemyError

from auth.models import AttemptReason, LoginAttempt
from auth.store import AuthStore

logger = logging.getLogger("etax.auth.lockout")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class LoginAttemptTracker:
    def __init__(
        self,
        store: AuthStore,
        max_failures: int = 5,
        window: timedelta = timedelta(minutes=15),
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.store = store
        self.max_failures = max_failures
        self.window = window
        self._clock = clock

    @classmethod
    def from_settings(cls, store: AuthStore, settings) -> LoginAttemptTracker:
        return cls(
            store,
            max_failures=settings.lockout_max_failures,
            window=timedelta(minutes=settings.lockout_window_minutes),
        )

    def record(
        self,
        username: str,
        ip_address: str,
        user_agent: str,
        success: bool,
        reason: AttemptReason,
    ) -> None:
        """Append an attempt record. Never raises on store failure."""
        attempt = LoginAttempt(
            username=username,
            success=success,
            reason=reason,
            created_at=self._clock(),
            ip_address=ip_address,
            user_agent=user_agent,
        )
        try:
            self.store.create_login_attempt(attempt)
        except SQLAlchemyError:
            logger.warning("Failed to record login attempt (reason=%s)", reason.value, exc_info=True)

    def is_locked(self, user_id: int) -> bool:
        """True when failed attempts inside the trailing window reach max_failures."""
        since = self._clock() - self.window
        failures = self.store.count_failed_attempts(user_id, since)
        if failures >= self.max_failures:
            logger.warning("Account locked: user_id=%s failures=%d window=%s", user_id, failures, self.window)
            return True
        return False
