"""
core/models.py -- Domain dataclasses for the account-security core.

Pattern: Data class (pure data container, zero logic). Stores map rows to
these types; components do the work. Timestamps are timezone-aware UTC
datetimes everywhere above the store layer.

Layer rule: core/ is the kernel. No imports from security/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class AuditAction(str, Enum):
    """Security event tags. Persisted by value, so names and values match."""

    LOGIN_ATTEMPT = "LOGIN_ATTEMPT"
    LOGIN_SUCCESS = "LOGIN_SUCCESS"
    LOGIN_FAILED = "LOGIN_FAILED"
    LOGOUT = "LOGOUT"
    TWO_FACTOR_ENABLE = "TWO_FACTOR_ENABLE"
    TWO_FACTOR_DISABLE = "TWO_FACTOR_DISABLE"
    TWO_FACTOR_VERIFY = "TWO_FACTOR_VERIFY"
    TWO_FACTOR_BACKUP_USED = "TWO_FACTOR_BACKUP_USED"
    SESSION_CREATED = "SESSION_CREATED"
    SESSION_TERMINATED = "SESSION_TERMINATED"
    ACCOUNT_LOCKED = "ACCOUNT_LOCKED"
    ACCOUNT_UNLOCKED = "ACCOUNT_UNLOCKED"
    SUSPICIOUS_ACTIVITY = "SUSPICIOUS_ACTIVITY"


# Actions counted as "failed authentication" by the suspicious-activity check.
FAILED_AUTH_ACTIONS = (AuditAction.LOGIN_FAILED, AuditAction.TWO_FACTOR_VERIFY)

LOGIN_ACTIONS = (AuditAction.LOGIN_ATTEMPT, AuditAction.LOGIN_SUCCESS, AuditAction.LOGIN_FAILED)

TWO_FACTOR_ACTIONS = (
    AuditAction.TWO_FACTOR_ENABLE,
    AuditAction.TWO_FACTOR_DISABLE,
    AuditAction.TWO_FACTOR_VERIFY,
    AuditAction.TWO_FACTOR_BACKUP_USED,
)


@dataclass
class UserSecurityRecord:
    """The security-relevant slice of a user owned by the identity system.

    two_factor_secret is None exactly when two_factor_enabled is False, and
    backup_codes is only non-empty while two-factor is enabled. Only
    TwoFactorAuthManager writes the two_factor_* fields and backup_codes;
    only AccountLockoutGuard writes failed_login_attempts and locked_until.
    """

    id: str
    email: str | None = None
    email_verified: bool = False
    two_factor_enabled: bool = False
    two_factor_secret: str | None = None  # base32
    two_factor_enabled_at: datetime | None = None
    backup_codes: list[str] = field(default_factory=list)  # unused, upper-cased
    failed_login_attempts: int = 0
    locked_until: datetime | None = None
    last_login_at: datetime | None = None

    def is_locked(self, now: datetime) -> bool:
        return self.locked_until is not None and self.locked_until > now


@dataclass
class Session:
    """One authenticated client connection. Never hard-deleted.

    terminated only ever goes from False to True. A session whose expires_at
    has passed is inactive whatever terminated says.

    id is None before the record is written to the database.
    """

    user_id: str
    session_token: str
    expires_at: datetime
    ip_address: str | None = None
    location: str | None = None
    browser: str | None = None
    os: str | None = None
    device: str | None = None  # "mobile" | "tablet" | "desktop" | "bot"
    last_active: datetime | None = None
    created_at: datetime | None = None
    terminated: bool = False
    id: str | None = None

    def is_active(self, now: datetime) -> bool:
        return not self.terminated and self.expires_at > now


@dataclass
class AuditLogEntry:
    """Immutable record of one security event.

    user_id is None for pre-authentication events. Records are never updated
    or deleted -- only inserted.
    """

    action: AuditAction
    success: bool
    timestamp: datetime
    user_id: str | None = None
    session_id: str | None = None
    details: dict[str, Any] = field(default_factory=dict)
    ip_address: str | None = None
    user_agent: str | None = None
    location: str | None = None
    id: int | None = None


@dataclass
class TwoFactorSetup:
    """Material handed to the user during enrolment. Nothing here is persisted."""

    secret: str
    provisioning_uri: str
    backup_codes: list[str]
    manual_entry_key: str
    qr_code: str | None = None  # data URI


@dataclass
class TwoFactorStatus:
    enabled: bool
    backup_codes_remaining: int = 0
    enabled_at: datetime | None = None


@dataclass
class AuditStats:
    """Aggregates over a user's audit trail for a trailing window."""

    days: int
    total_events: int = 0
    successful_events: int = 0
    failed_events: int = 0
    login_attempts: int = 0
    two_factor_events: int = 0
    suspicious_events: int = 0
    unique_locations: int = 0
    events_by_day: dict[str, int] = field(default_factory=dict)
    recent_events: list[AuditLogEntry] = field(default_factory=list)


@dataclass(frozen=True)
class Recommendation:
    id: str
    type: str  # "warning" | "info" | "success"
    title: str
    description: str
    action: str | None = None


@dataclass
class SecurityScore:
    value: int
    recommendations: list[Recommendation] = field(default_factory=list)
