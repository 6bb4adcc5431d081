"""
security/lockout.py -- Brute-force mitigation via temporary account lockout.

State machine:
  Unlocked --(threshold consecutive failures)--> Locked
  Locked --(lockout duration elapsed OR unlock())--> Unlocked

A success while locked does not change state. Callers check is_locked() (or
ensure_unlocked()) before attempting verification and do not record failures
or successes for a locked account.

Decisions here are fail-closed: a RepositoryError from any read propagates,
and the caller must treat the account as not-yet-unlocked.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from core.clock import Clock, SystemClock
from core.errors import AccountLockedError, UserNotFoundError
from core.models import AuditAction
from security.audit import SecurityAuditLog
from security.repository import SecurityRepository

logger = logging.getLogger("accountguard.lockout")


class AccountLockoutGuard:
    def __init__(
        self,
        repository: SecurityRepository,
        audit: SecurityAuditLog,
        clock: Clock | None = None,
        threshold: int = 5,
        lockout_minutes: int = 30,
    ) -> None:
        self.repository = repository
        self.audit = audit
        self.clock = clock or SystemClock()
        self.threshold = threshold
        self.lockout_duration = timedelta(minutes=lockout_minutes)

    def locked_until(self, user_id: str) -> datetime | None:
        """Return the unlock time if the account is currently locked, else None."""
        user = self.repository.get_user(user_id)
        if user is None:
            raise UserNotFoundError(user_id)
        if user.is_locked(self.clock.now()):
            return user.locked_until
        return None

    def is_locked(self, user_id: str) -> bool:
        return self.locked_until(user_id) is not None

    def ensure_unlocked(self, user_id: str) -> None:
        """Raise AccountLockedError (carrying the unlock time) if the account is locked."""
        until = self.locked_until(user_id)
        if until is not None:
            raise AccountLockedError(until)

    def record_failure(self, user_id: str) -> bool:
        """Count one failed attempt; lock the account when the threshold is reached.

        The increment and the lock are separate atomic statements. The lock is
        conditional on the counter still being at or above the threshold and
        resets it to zero, so when several failures race past the threshold
        exactly one of them locks and logs ACCOUNT_LOCKED.

        Returns True if this call locked the account.
        """
        attempts = self.repository.increment_failed_attempts(user_id)
        if attempts < self.threshold:
            return False
        until = self.clock.now() + self.lockout_duration
        if not self.repository.lock_if_threshold_reached(user_id, self.threshold, until):
            return False
        logger.warning("Account %s locked until %s after %d failed attempts", user_id, until.isoformat(), attempts)
        self.audit.log(
            AuditAction.ACCOUNT_LOCKED,
            user_id=user_id,
            details={
                "locked_until": until.isoformat(),
                "reason": "failed_attempts",
                "duration_minutes": int(self.lockout_duration.total_seconds() // 60),
            },
        )
        return True

    def record_success(self, user_id: str) -> None:
        """Reset the failure counter and stamp last_login_at. Never clears a lock."""
        self.repository.reset_failed_attempts(user_id, self.clock.now())

    def unlock(self, user_id: str) -> None:
        """Administrative override: clear the lock and the counter."""
        if self.repository.get_user(user_id) is None:
            raise UserNotFoundError(user_id)
        self.repository.clear_lock(user_id)
        logger.info("Account %s unlocked manually", user_id)
        self.audit.log(AuditAction.ACCOUNT_UNLOCKED, user_id=user_id, details={"reason": "manual"})
