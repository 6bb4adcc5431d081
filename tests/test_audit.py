"""Tests for security/audit.py -- event recording, queries and the suspicious-activity signal.

Covers:
- log() persists entries with location and never raises on storage failure
- query_events() filters, paginates and orders newest-first
- detect_suspicious_activity() failure-count and unfamiliar-IP rules
- summarize() aggregates
"""

import logging

from core.errors import RepositoryError
from core.models import AuditAction
from security.audit import SecurityAuditLog


class TestLog:
    def test_entry_persisted(self, audit, store, clock):
        entry_id = audit.log(
            AuditAction.LOGIN_SUCCESS,
            user_id="u1",
            session_id="s1",
            details={"method": "password"},
            ip_address="203.0.113.9",
            user_agent="curl/8.0",
        )
        entries, total = store.query_audit_entries("u1")
        assert total == 1
        entry = entries[0]
        assert entry.id == entry_id
        assert entry.action == AuditAction.LOGIN_SUCCESS
        assert entry.success is True
        assert entry.timestamp == clock.now()
        assert entry.details == {"method": "password"}
        assert (entry.session_id, entry.ip_address, entry.user_agent) == ("s1", "203.0.113.9", "curl/8.0")

    def test_location_resolved(self, store, clock):
        audit = SecurityAuditLog(store, geo_lookup=lambda ip: "Berlin, Berlin, Germany", clock=clock)
        audit.log(AuditAction.LOGIN_ATTEMPT, user_id="u1", ip_address="203.0.113.9")
        entries, _ = store.query_audit_entries("u1")
        assert entries[0].location == "Berlin, Berlin, Germany"

    def test_anonymous_event_allowed(self, audit):
        assert audit.log(AuditAction.LOGIN_FAILED, success=False, ip_address="203.0.113.9") is not None

    def test_storage_failure_is_swallowed_and_counted(self, audit, store, monkeypatch, caplog):
        def broken(entry):
            raise RepositoryError("disk full")

        monkeypatch.setattr(store, "add_audit_entry", broken)
        with caplog.at_level(logging.ERROR, logger="accountguard.audit"):
            assert audit.log(AuditAction.LOGIN_SUCCESS, user_id="u1") is None
        assert audit.failed_writes == 1
        assert "Audit write failed" in caplog.text


class TestQueryEvents:
    def test_newest_first_and_paginated(self, audit, clock):
        for _ in range(5):
            audit.log(AuditAction.LOGIN_ATTEMPT, user_id="u1")
            clock.advance(minutes=1)
        page1, total = audit.query_events("u1", page=1, limit=2)
        page3, _ = audit.query_events("u1", page=3, limit=2)
        assert total == 5
        assert len(page1) == 2 and len(page3) == 1
        assert page1[0].timestamp > page1[1].timestamp > page3[0].timestamp

    def test_filters(self, audit, clock):
        audit.log(AuditAction.LOGIN_FAILED, success=False, user_id="u1")
        audit.log(AuditAction.LOGIN_SUCCESS, user_id="u1")
        audit.log(AuditAction.LOGOUT, user_id="u1")
        entries, total = audit.query_events("u1", success=False)
        assert total == 1 and entries[0].action == AuditAction.LOGIN_FAILED
        _, total = audit.query_events("u1", action=AuditAction.LOGOUT)
        assert total == 1

    def test_since_days(self, audit, clock):
        audit.log(AuditAction.LOGIN_SUCCESS, user_id="u1")
        clock.advance(days=10)
        audit.log(AuditAction.LOGIN_SUCCESS, user_id="u1")
        _, total = audit.query_events("u1", since_days=7)
        assert total == 1

    def test_scoped_to_user(self, audit):
        audit.log(AuditAction.LOGIN_SUCCESS, user_id="u2")
        assert audit.query_events("u1") == ([], 0)


class TestSuspiciousActivity:
    def _fail(self, audit, n, action=AuditAction.LOGIN_FAILED):
        for _ in range(n):
            audit.log(action, success=False, user_id="u1")

    def test_four_failures_not_suspicious(self, audit):
        self._fail(audit, 4)
        assert audit.detect_suspicious_activity("u1") is False

    def test_five_failures_suspicious(self, audit):
        self._fail(audit, 3)
        self._fail(audit, 2, AuditAction.TWO_FACTOR_VERIFY)
        assert audit.detect_suspicious_activity("u1") is True

    def test_old_failures_ignored(self, audit, clock):
        self._fail(audit, 5)
        clock.advance(minutes=31)
        assert audit.detect_suspicious_activity("u1") is False

    def test_successful_verifies_not_counted(self, audit):
        for _ in range(5):
            audit.log(AuditAction.TWO_FACTOR_VERIFY, user_id="u1")
        assert audit.detect_suspicious_activity("u1") is False

    def test_known_ip_not_suspicious(self, audit):
        audit.log(AuditAction.LOGIN_SUCCESS, user_id="u1", ip_address="203.0.113.9")
        assert audit.detect_suspicious_activity("u1", "203.0.113.9") is False

    def test_new_ip_suspicious(self, audit):
        audit.log(AuditAction.LOGIN_SUCCESS, user_id="u1", ip_address="203.0.113.9")
        assert audit.detect_suspicious_activity("u1", "198.51.100.7") is True

    def test_ip_forgotten_after_a_week(self, audit, clock):
        audit.log(AuditAction.LOGIN_SUCCESS, user_id="u1", ip_address="203.0.113.9")
        clock.advance(days=8)
        assert audit.detect_suspicious_activity("u1", "203.0.113.9") is True


class TestSummarize:
    def test_aggregates(self, store, clock):
        locations = {"203.0.113.9": "Oslo, Oslo, Norway", "198.51.100.7": "Lima, Lima, Peru"}
        audit = SecurityAuditLog(store, geo_lookup=locations.get, clock=clock)
        audit.log(AuditAction.LOGIN_ATTEMPT, user_id="u1", ip_address="203.0.113.9")
        audit.log(AuditAction.LOGIN_FAILED, success=False, user_id="u1", ip_address="203.0.113.9")
        clock.advance(days=1)
        audit.log(AuditAction.LOGIN_SUCCESS, user_id="u1", ip_address="198.51.100.7")
        audit.log(AuditAction.TWO_FACTOR_VERIFY, user_id="u1")
        audit.log(AuditAction.SUSPICIOUS_ACTIVITY, user_id="u1")

        stats = audit.summarize("u1", days=30)
        assert stats.days == 30
        assert stats.total_events == 5
        assert stats.successful_events == 4
        assert stats.failed_events == 1
        assert stats.login_attempts == 3
        assert stats.two_factor_events == 1
        assert stats.suspicious_events == 1
        assert stats.unique_locations == 2
        assert stats.events_by_day == {"2024-01-15": 2, "2024-01-16": 3}
        assert stats.recent_events[0].action == AuditAction.SUSPICIOUS_ACTIVITY

    def test_recent_events_capped(self, audit):
        for _ in range(15):
            audit.log(AuditAction.LOGIN_ATTEMPT, user_id="u1")
        stats = audit.summarize("u1")
        assert stats.total_events == 15
        assert len(stats.recent_events) == 10

    def test_empty_trail(self, audit):
        stats = audit.summarize("u1", days=7)
        assert stats.total_events == 0
        assert stats.events_by_day == {}
        assert stats.recent_events == []
