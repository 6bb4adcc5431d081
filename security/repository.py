"""
security/repository.py -- Persistence contract consumed by the security components.

Components depend on this Protocol, never on a concrete store, so tests and
host applications can substitute their own implementation. security/store.py
is the SQLAlchemy implementation shipped with the package.

Atomicity requirements an implementation must honour:
  increment_failed_attempts -- read-modify-write in one statement; concurrent
      callers never lose an increment.
  lock_if_threshold_reached -- conditional update; of several concurrent
      callers at most one sees True.
  enable_two_factor -- conditional on two-factor being disabled.
  consume_backup_code -- remove-if-present; of several concurrent callers
      presenting the same code at most one sees True.
  terminate_session / terminate_user_sessions -- only ever set terminated.

All methods raise core.errors.RepositoryError on storage failure.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from datetime import datetime
from typing import Protocol

from core.models import AuditAction, AuditLogEntry, Session, UserSecurityRecord


class SecurityRepository(Protocol):
    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def get_user(self, user_id: str) -> UserSecurityRecord | None: ...

    def increment_failed_attempts(self, user_id: str) -> int:
        """Add one to failed_login_attempts and return the new value (0 if no such user)."""
        ...

    def lock_if_threshold_reached(self, user_id: str, threshold: int, locked_until: datetime) -> bool:
        """Set locked_until and zero the counter iff the counter is >= threshold."""
        ...

    def reset_failed_attempts(self, user_id: str, last_login_at: datetime) -> None: ...

    def clear_lock(self, user_id: str) -> None: ...

    def enable_two_factor(self, user_id: str, secret: str, backup_codes: Sequence[str], enabled_at: datetime) -> bool:
        """Persist secret + codes and set the flag iff two-factor is currently disabled."""
        ...

    def disable_two_factor(self, user_id: str) -> None: ...

    def consume_backup_code(self, user_id: str, code: str) -> bool:
        """Remove code from the user's set. True iff this call removed it."""
        ...

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def create_session(self, session: Session) -> str: ...

    def get_session(self, session_id: str) -> Session | None: ...

    def get_session_by_token(self, session_token: str, now: datetime) -> Session | None:
        """Return the active (unterminated, unexpired) session for a token."""
        ...

    def list_active_sessions(self, user_id: str, now: datetime) -> list[Session]:
        """Unterminated, unexpired sessions ordered by last_active descending."""
        ...

    def terminate_session(self, session_id: str, user_id: str) -> bool:
        """Set terminated on one session. True iff this call flipped it."""
        ...

    def terminate_user_sessions(self, user_id: str, now: datetime, except_token: str | None = None) -> int:
        """Terminate the user's unexpired sessions. Returns how many were flipped."""
        ...

    def touch_sessions(self, session_token: str, now: datetime) -> int: ...

    def terminate_expired_sessions(self, now: datetime) -> int: ...

    # ------------------------------------------------------------------
    # Audit log
    # ------------------------------------------------------------------

    def add_audit_entry(self, entry: AuditLogEntry) -> int: ...

    def query_audit_entries(
        self,
        user_id: str,
        *,
        action: AuditAction | None = None,
        success: bool | None = None,
        since: datetime | None = None,
        offset: int = 0,
        limit: int = 50,
    ) -> tuple[list[AuditLogEntry], int]:
        """Newest-first page of entries plus the total matching count."""
        ...

    def count_audit_entries(
        self,
        user_id: str,
        *,
        actions: Iterable[AuditAction] | None = None,
        success: bool | None = None,
        since: datetime | None = None,
    ) -> int: ...

    def distinct_audit_values(
        self,
        user_id: str,
        column: str,
        *,
        actions: Iterable[AuditAction] | None = None,
        success: bool | None = None,
        since: datetime | None = None,
    ) -> set[str]:
        """Distinct non-null values of ip_address or location over matching entries."""
        ...

    def audit_timestamps(self, user_id: str, since: datetime) -> list[datetime]: ...
