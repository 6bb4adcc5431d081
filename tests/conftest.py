"""
tests/conftest.py -- Shared fixtures for the account-security tests.

This module provides:
  - FakeClock: a pinned, manually advanced Clock
  - store: an in-memory SecurityStore with two users pre-loaded
  - audit / lockout / two_factor / sessions: components wired to store + clock
  - service: AccountSecurityService over the same store, with default settings

Design: plain sqlite:///:memory: is enough here. Everything runs on the test
thread, and SQLAlchemy's SingletonThreadPool hands that thread the same
connection for every transaction, so the schema created in SecurityStore()
is visible to every later call.

The clock starts on a 30-second boundary so TOTP step arithmetic in tests is
exact.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from core.config import Settings
from core.models import UserSecurityRecord
from security.audit import SecurityAuditLog
from security.lockout import AccountLockoutGuard
from security.service import AccountSecurityService
from security.sessions import SessionManager
from security.store import SecurityStore
from security.two_factor import TwoFactorAuthManager

START = datetime(2024, 1, 15, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Clock whose time only moves when a test says so."""

    def __init__(self, start: datetime = START) -> None:
        self.current = start

    def now(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> datetime:
        self.current = self.current + timedelta(**kwargs)
        return self.current


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def settings() -> Settings:
    """Default policy, isolated from any .env file in the working directory."""
    return Settings(_env_file=None, database_url="sqlite:///:memory:")


@pytest.fixture
def store():
    """In-memory SecurityStore with two users.

    Users:
      - u1: alice@example.com, email verified, no two-factor
      - u2: bob@example.com, email not verified
    """
    s = SecurityStore("sqlite:///:memory:")
    s.create_user(UserSecurityRecord(id="u1", email="alice@example.com", email_verified=True))
    s.create_user(UserSecurityRecord(id="u2", email="bob@example.com"))
    yield s
    s.close()


@pytest.fixture
def audit(store, clock) -> SecurityAuditLog:
    return SecurityAuditLog(store, clock=clock)


@pytest.fixture
def lockout(store, audit, clock) -> AccountLockoutGuard:
    return AccountLockoutGuard(store, audit, clock=clock)


@pytest.fixture
def two_factor(store, audit, clock) -> TwoFactorAuthManager:
    return TwoFactorAuthManager(store, audit, clock=clock, issuer="AccountGuard Test")


@pytest.fixture
def sessions(store, audit, clock) -> SessionManager:
    return SessionManager(store, audit, clock=clock)


@pytest.fixture
def service(store, settings, clock) -> AccountSecurityService:
    return AccountSecurityService(store, settings=settings, clock=clock)
