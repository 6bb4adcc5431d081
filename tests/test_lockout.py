"""Tests for security/lockout.py -- failed-attempt counting and temporary lockout.

Covers:
- five consecutive failures lock the account for 30 minutes
- the lock expires on its own or is cleared by unlock()
- record_success() resets the counter but never clears an active lock
- only the failure that crosses the threshold logs ACCOUNT_LOCKED
"""

import pytest

from core.errors import AccountLockedError, UserNotFoundError
from core.models import AuditAction
from security.lockout import AccountLockoutGuard


def _fail(lockout, times, user_id="u1"):
    return [lockout.record_failure(user_id) for _ in range(times)]


class TestLocking:
    def test_four_failures_do_not_lock(self, lockout, store):
        assert _fail(lockout, 4) == [False] * 4
        assert lockout.is_locked("u1") is False
        assert store.get_user("u1").failed_login_attempts == 4

    def test_fifth_failure_locks_and_resets_counter(self, lockout, store, clock):
        results = _fail(lockout, 5)
        assert results == [False, False, False, False, True]
        user = store.get_user("u1")
        assert user.failed_login_attempts == 0
        assert user.locked_until == clock.now() + lockout.lockout_duration
        assert lockout.is_locked("u1") is True

    def test_lock_lasts_thirty_minutes(self, lockout, clock):
        _fail(lockout, 5)
        clock.advance(minutes=29, seconds=59)
        assert lockout.is_locked("u1") is True
        clock.advance(seconds=1)
        assert lockout.is_locked("u1") is False

    def test_lock_event_logged_once_with_unlock_time(self, lockout, store, clock):
        _fail(lockout, 5)
        entries, total = store.query_audit_entries("u1", action=AuditAction.ACCOUNT_LOCKED)
        assert total == 1
        details = entries[0].details
        assert details["reason"] == "failed_attempts"
        assert details["duration_minutes"] == 30
        assert details["locked_until"] == (clock.now() + lockout.lockout_duration).isoformat()

    def test_other_users_unaffected(self, lockout):
        _fail(lockout, 5, "u1")
        assert lockout.is_locked("u2") is False

    def test_custom_threshold(self, store, audit, clock):
        guard = AccountLockoutGuard(store, audit, clock=clock, threshold=2, lockout_minutes=5)
        assert _fail(guard, 2) == [False, True]
        clock.advance(minutes=5)
        assert guard.is_locked("u1") is False

    def test_only_one_racer_locks(self, lockout, store):
        """Two failures that both see the counter at the threshold: one locks."""
        store.update_user("u1", failed_login_attempts=4)
        store.increment_failed_attempts("u1")  # a concurrent request got to 5 first
        assert lockout.record_failure("u1") is True
        # The earlier request now tries its conditional lock and matches nothing.
        assert store.lock_if_threshold_reached("u1", 5, lockout.clock.now()) is False
        _, total = store.query_audit_entries("u1", action=AuditAction.ACCOUNT_LOCKED)
        assert total == 1


class TestSuccessAndUnlock:
    def test_success_resets_counter_and_stamps_login(self, lockout, store, clock):
        _fail(lockout, 3)
        lockout.record_success("u1")
        user = store.get_user("u1")
        assert user.failed_login_attempts == 0
        assert user.last_login_at == clock.now()

    def test_success_restarts_the_count(self, lockout):
        _fail(lockout, 4)
        lockout.record_success("u1")
        assert _fail(lockout, 4) == [False] * 4
        assert lockout.is_locked("u1") is False

    def test_success_does_not_clear_lock(self, lockout):
        _fail(lockout, 5)
        lockout.record_success("u1")
        assert lockout.is_locked("u1") is True

    def test_unlock_clears_lock_and_counter(self, lockout, store):
        _fail(lockout, 5)
        lockout.unlock("u1")
        assert lockout.is_locked("u1") is False
        assert store.get_user("u1").failed_login_attempts == 0

    def test_unlock_is_audited(self, lockout, store):
        _fail(lockout, 5)
        lockout.unlock("u1")
        entries, _ = store.query_audit_entries("u1", action=AuditAction.ACCOUNT_UNLOCKED)
        assert entries[0].details == {"reason": "manual"}

    def test_unlock_unknown_user(self, lockout):
        with pytest.raises(UserNotFoundError):
            lockout.unlock("nobody")


class TestEnsureUnlocked:
    def test_passes_when_unlocked(self, lockout):
        lockout.ensure_unlocked("u1")

    def test_raises_with_unlock_time(self, lockout, clock):
        _fail(lockout, 5)
        with pytest.raises(AccountLockedError) as exc_info:
            lockout.ensure_unlocked("u1")
        assert exc_info.value.locked_until == clock.now() + lockout.lockout_duration

    def test_locked_until_none_when_unlocked(self, lockout):
        assert lockout.locked_until("u1") is None

    def test_unknown_user(self, lockout):
        with pytest.raises(UserNotFoundError):
            lockout.is_locked("nobody")
