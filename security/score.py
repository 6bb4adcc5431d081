"""
security/score.py -- Account security score (0-100) with recommendations.

Pure function of the user record, audit statistics and the current time. No
repository access, no clock of its own.

Points:
  base                                   20
  email verified                        +20
  two-factor enabled                    +30
  no failed attempts and not locked     +15
  last login within 7 days              +15  (else within 30 days: +10)
  capped at 100

A locked account does not earn the clean-history bonus, even though locking
resets the failure counter to zero.
"""

from __future__ import annotations

from datetime import datetime

from core.models import AuditStats, Recommendation, SecurityScore, UserSecurityRecord

BASE_POINTS = 20
EMAIL_POINTS = 20
TWO_FACTOR_POINTS = 30
CLEAN_HISTORY_POINTS = 15
RECENT_LOGIN_POINTS = 15
MONTHLY_LOGIN_POINTS = 10
MAX_SCORE = 100

FAILED_EVENT_WARNING_THRESHOLD = 5
EXCELLENT_THRESHOLD = 90


def _login_points(user: UserSecurityRecord, now: datetime) -> int:
    if user.last_login_at is None:
        return 0
    days = (now - user.last_login_at).days
    if days <= 7:
        return RECENT_LOGIN_POINTS
    if days <= 30:
        return MONTHLY_LOGIN_POINTS
    return 0


def score(user: UserSecurityRecord, stats: AuditStats, now: datetime) -> SecurityScore:
    value = BASE_POINTS
    recommendations: list[Recommendation] = []

    if user.two_factor_enabled:
        value += TWO_FACTOR_POINTS
    else:
        recommendations.append(
            Recommendation(
                id="enable-2fa",
                type="warning",
                title="Enable Two-Factor Authentication",
                description="Secure your account with 2FA to prevent unauthorized access.",
                action="Enable 2FA",
            )
        )

    if user.email_verified:
        value += EMAIL_POINTS
    else:
        recommendations.append(
            Recommendation(
                id="verify-email",
                type="warning",
                title="Verify Your Email",
                description="Verify your email address to secure account recovery.",
                action="Verify Email",
            )
        )

    if user.failed_login_attempts == 0 and not user.is_locked(now):
        value += CLEAN_HISTORY_POINTS
    else:
        recommendations.append(
            Recommendation(
                id="review-failed-attempts",
                type="info",
                title="Failed Sign-In Attempts On Record",
                description="Someone has recently failed to sign in to your account.",
                action="Review Activity",
            )
        )

    login_points = _login_points(user, now)
    value += login_points
    if login_points == 0:
        recommendations.append(
            Recommendation(
                id="sign-in-activity",
                type="info",
                title="No Recent Sign-In",
                description="Sign in regularly so unusual activity stands out.",
            )
        )

    if stats.failed_events > FAILED_EVENT_WARNING_THRESHOLD:
        recommendations.append(
            Recommendation(
                id="review-failed-logins",
                type="warning",
                title="Recent Failed Login Attempts",
                description=f"You have {stats.failed_events} failed events in the last {stats.days} days.",
                action="Review Activity",
            )
        )

    value = min(MAX_SCORE, value)
    if value >= EXCELLENT_THRESHOLD:
        recommendations.append(
            Recommendation(
                id="excellent-security",
                type="success",
                title="Excellent Security",
                description="Your account security is excellent. Keep it up!",
            )
        )
    return SecurityScore(value=value, recommendations=recommendations)
