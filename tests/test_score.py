"""Unit tests for security/score.py -- pure logic, no I/O.

All inputs are built inline. The score only reads the user record, the audit
statistics and the timestamp it is given.
"""

from datetime import datetime, timedelta, timezone

import pytest

from core.models import AuditStats, UserSecurityRecord
from security.score import score

NOW = datetime(2024, 1, 15, 12, 0, tzinfo=timezone.utc)


def _user(**kwargs) -> UserSecurityRecord:
    return UserSecurityRecord(id="u1", **kwargs)


def _ids(result):
    return [r.id for r in result.recommendations]


class TestPoints:
    def test_bare_account(self):
        result = score(_user(), AuditStats(days=30), NOW)
        # base 20 + clean history 15
        assert result.value == 35
        assert _ids(result) == ["enable-2fa", "verify-email", "sign-in-activity"]

    def test_fully_secured_account(self):
        user = _user(email_verified=True, two_factor_enabled=True, last_login_at=NOW - timedelta(days=1))
        result = score(user, AuditStats(days=30), NOW)
        assert result.value == 100
        assert _ids(result) == ["excellent-security"]

    @pytest.mark.parametrize(
        ("days_ago", "expected"),
        [(0, 15), (7, 15), (8, 10), (30, 10), (31, 0)],
    )
    def test_login_recency(self, days_ago, expected):
        base = score(_user(), AuditStats(days=30), NOW).value
        user = _user(last_login_at=NOW - timedelta(days=days_ago))
        assert score(user, AuditStats(days=30), NOW).value - base == expected

    def test_failed_attempts_lose_bonus(self):
        result = score(_user(failed_login_attempts=2), AuditStats(days=30), NOW)
        assert result.value == 20
        assert "review-failed-attempts" in _ids(result)

    def test_locked_account_loses_bonus(self):
        user = _user(locked_until=NOW + timedelta(minutes=10))
        assert score(user, AuditStats(days=30), NOW).value == 20

    def test_expired_lock_keeps_bonus(self):
        user = _user(locked_until=NOW - timedelta(minutes=1))
        assert score(user, AuditStats(days=30), NOW).value == 35

    def test_score_stays_in_range(self):
        for user in (_user(), _user(email_verified=True, two_factor_enabled=True, last_login_at=NOW)):
            assert 0 <= score(user, AuditStats(days=30), NOW).value <= 100


class TestRecommendations:
    def test_many_failed_events_warns(self):
        result = score(_user(email_verified=True), AuditStats(days=30, failed_events=6), NOW)
        rec = next(r for r in result.recommendations if r.id == "review-failed-logins")
        assert rec.type == "warning"
        assert "6 failed events" in rec.description

    def test_five_failed_events_does_not_warn(self):
        result = score(_user(), AuditStats(days=30, failed_events=5), NOW)
        assert "review-failed-logins" not in _ids(result)

    def test_order_is_fixed(self):
        user = _user(failed_login_attempts=1)
        result = score(user, AuditStats(days=30, failed_events=9), NOW)
        assert _ids(result) == [
            "enable-2fa",
            "verify-email",
            "review-failed-attempts",
            "sign-in-activity",
            "review-failed-logins",
        ]

    def test_deterministic(self):
        user = _user(email_verified=True)
        stats = AuditStats(days=30, failed_events=7)
        assert score(user, stats, NOW) == score(user, stats, NOW)


class TestMonotonicity:
    """Improving one input never lowers the score; degrading one never raises it."""

    BASE = dict(email_verified=False, two_factor_enabled=False, last_login_at=NOW - timedelta(days=10))

    def _value(self, **overrides):
        return score(_user(**{**self.BASE, **overrides}), AuditStats(days=30), NOW).value

    def test_enabling_2fa_raises(self):
        assert self._value(two_factor_enabled=True) > self._value()

    def test_verifying_email_raises(self):
        assert self._value(email_verified=True) > self._value()

    def test_recent_login_raises(self):
        assert self._value(last_login_at=NOW) > self._value()

    def test_failure_lowers(self):
        assert self._value(failed_login_attempts=1) < self._value()

    def test_lock_after_failures_does_not_raise(self):
        failing = self._value(failed_login_attempts=4)
        locked = self._value(failed_login_attempts=0, locked_until=NOW + timedelta(minutes=30))
        assert locked <= failing
