"""
security/audit.py -- Append-only security event recorder.

SecurityAuditLog is fail-open: log() never raises. A failed write is reported
on the "accountguard.audit" logger at ERROR level and counted in
failed_writes, which is the hook for operational monitoring. The audit trail
records what happened; it is never a precondition for a security decision, so
a lost write leaves account and session state intact, only under-logged.

Queries (query_events, detect_suspicious_activity, summarize) are ordinary
reads and propagate RepositoryError like any other read.
"""

from __future__ import annotations

import logging
from collections import Counter
from datetime import timedelta
from typing import Any

from core.clock import Clock, SystemClock
from core.geo import GeoLookup, no_geo_lookup, resolve_location
from core.models import (
    FAILED_AUTH_ACTIONS,
    LOGIN_ACTIONS,
    TWO_FACTOR_ACTIONS,
    AuditAction,
    AuditLogEntry,
    AuditStats,
)
from security.repository import SecurityRepository

logger = logging.getLogger("accountguard.audit")

RECENT_EVENT_COUNT = 10


class SecurityAuditLog:
    """Records and queries security events for users.

    Usage:
        audit = SecurityAuditLog(store, geo_lookup=lookup, clock=SystemClock())
        audit.log(AuditAction.LOGIN_SUCCESS, user_id="u1", ip_address="203.0.113.9")
        entries, total = audit.query_events("u1", page=1, limit=20)
    """

    def __init__(
        self,
        repository: SecurityRepository,
        geo_lookup: GeoLookup = no_geo_lookup,
        clock: Clock | None = None,
        suspicious_failure_threshold: int = 5,
        suspicious_window_minutes: int = 30,
        known_ip_window_days: int = 7,
    ) -> None:
        self.repository = repository
        self.geo_lookup = geo_lookup
        self.clock = clock or SystemClock()
        self.suspicious_failure_threshold = suspicious_failure_threshold
        self.suspicious_window = timedelta(minutes=suspicious_window_minutes)
        self.known_ip_window = timedelta(days=known_ip_window_days)
        self.failed_writes = 0

    def log(
        self,
        action: AuditAction,
        *,
        success: bool = True,
        user_id: str | None = None,
        session_id: str | None = None,
        details: dict[str, Any] | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> int | None:
        """Append one event. Returns the entry id, or None if the write failed."""
        try:
            entry = AuditLogEntry(
                action=AuditAction(action),
                success=success,
                timestamp=self.clock.now(),
                user_id=user_id,
                session_id=session_id,
                details=dict(details or {}),
                ip_address=ip_address,
                user_agent=user_agent,
                location=resolve_location(self.geo_lookup, ip_address),
            )
            return self.repository.add_audit_entry(entry)
        except Exception:
            self.failed_writes += 1
            logger.error(
                "Audit write failed (action=%s user_id=%s success=%s)",
                getattr(action, "value", action),
                user_id,
                success,
                exc_info=True,
            )
            return None

    def query_events(
        self,
        user_id: str,
        *,
        action: AuditAction | None = None,
        success: bool | None = None,
        since_days: int | None = None,
        page: int = 1,
        limit: int = 50,
    ) -> tuple[list[AuditLogEntry], int]:
        """Return (entries, total_count) newest-first for the given 1-based page."""
        page = max(page, 1)
        limit = max(limit, 1)
        since = self.clock.now() - timedelta(days=since_days) if since_days else None
        return self.repository.query_audit_entries(
            user_id,
            action=action,
            success=success,
            since=since,
            offset=(page - 1) * limit,
            limit=limit,
        )

    def detect_suspicious_activity(self, user_id: str, ip_address: str | None = None) -> bool:
        """Advisory signal: many recent failures, or a login from an unfamiliar IP.

        True when the user has at least suspicious_failure_threshold failed
        login / 2FA events inside the failure window, or when ip_address is
        given and is not among the IPs of successful logins inside the
        known-IP window. Callers decide what to do with the signal; nothing
        here locks or blocks.
        """
        now = self.clock.now()
        recent_failures = self.repository.count_audit_entries(
            user_id,
            actions=FAILED_AUTH_ACTIONS,
            success=False,
            since=now - self.suspicious_window,
        )
        if recent_failures >= self.suspicious_failure_threshold:
            return True
        if ip_address:
            known_ips = self.repository.distinct_audit_values(
                user_id,
                "ip_address",
                actions=[AuditAction.LOGIN_SUCCESS],
                success=True,
                since=now - self.known_ip_window,
            )
            return ip_address not in known_ips
        return False

    def summarize(self, user_id: str, days: int = 30) -> AuditStats:
        """Aggregate the user's trail over the trailing `days` days."""
        since = self.clock.now() - timedelta(days=days)
        repo = self.repository
        recent, total = repo.query_audit_entries(user_id, since=since, limit=RECENT_EVENT_COUNT)
        by_day = Counter(ts.date().isoformat() for ts in repo.audit_timestamps(user_id, since))
        return AuditStats(
            days=days,
            total_events=total,
            successful_events=repo.count_audit_entries(user_id, success=True, since=since),
            failed_events=repo.count_audit_entries(user_id, success=False, since=since),
            login_attempts=repo.count_audit_entries(user_id, actions=LOGIN_ACTIONS, since=since),
            two_factor_events=repo.count_audit_entries(user_id, actions=TWO_FACTOR_ACTIONS, since=since),
            suspicious_events=repo.count_audit_entries(
                user_id, actions=[AuditAction.SUSPICIOUS_ACTIVITY], since=since
            ),
            unique_locations=len(repo.distinct_audit_values(user_id, "location", since=since)),
            events_by_day=dict(sorted(by_day.items())),
            recent_events=recent,
        )
