"""
security/sessions.py -- Creation, enumeration and revocation of authenticated sessions.

Sessions are soft-deleted. Termination sets `terminated` and nothing clears
it; rows are never removed.
"""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime

from core.clock import Clock, SystemClock
from core.errors import SessionNotFoundError
from core.geo import GeoLookup, no_geo_lookup, resolve_location
from core.models import AuditAction, Session
from security.audit import SecurityAuditLog
from security.repository import SecurityRepository
from security.useragent import parse_client

logger = logging.getLogger("accountguard.sessions")


def generate_session_token() -> str:
    """Return an unguessable token (32 random bytes, 256 bits, URL-safe)."""
    return secrets.token_urlsafe(32)


@dataclass
class SessionInfo:
    """A live session as shown to its owner."""

    id: str
    ip_address: str | None
    location: str | None
    browser: str | None
    os: str | None
    device: str | None
    last_active: datetime | None
    created_at: datetime | None
    expires_at: datetime
    current: bool


class SessionManager:
    def __init__(
        self,
        repository: SecurityRepository,
        audit: SecurityAuditLog,
        geo_lookup: GeoLookup = no_geo_lookup,
        clock: Clock | None = None,
    ) -> None:
        self.repository = repository
        self.audit = audit
        self.geo_lookup = geo_lookup
        self.clock = clock or SystemClock()

    def create_session(
        self,
        user_id: str,
        session_token: str,
        expires_at: datetime,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> Session:
        """Record a new session with best-effort client and location metadata."""
        now = self.clock.now()
        client = parse_client(user_agent)
        location = resolve_location(self.geo_lookup, ip_address)
        session = Session(
            user_id=user_id,
            session_token=session_token,
            expires_at=expires_at,
            ip_address=ip_address,
            location=location,
            browser=client.browser,
            os=client.os,
            device=client.device,
            last_active=now,
            created_at=now,
        )
        session.id = self.repository.create_session(session)
        self.audit.log(
            AuditAction.SESSION_CREATED,
            user_id=user_id,
            session_id=session.id,
            ip_address=ip_address,
            user_agent=user_agent,
            details={
                "browser": client.browser,
                "os": client.os,
                "device": client.device,
                "location": location,
            },
        )
        return session

    def list_sessions(self, user_id: str, current_session_token: str | None = None) -> list[SessionInfo]:
        """Active sessions, most recently used first, with the caller's own flagged."""
        sessions = self.repository.list_active_sessions(user_id, self.clock.now())
        return [
            SessionInfo(
                id=s.id,
                ip_address=s.ip_address,
                location=s.location,
                browser=s.browser,
                os=s.os,
                device=s.device,
                last_active=s.last_active,
                created_at=s.created_at,
                expires_at=s.expires_at,
                current=current_session_token is not None
                and secrets.compare_digest(s.session_token, current_session_token),
            )
            for s in sessions
        ]

    def find_active(self, session_token: str) -> Session | None:
        return self.repository.get_session_by_token(session_token, self.clock.now())

    def terminate_session(self, session_id: str, user_id: str, reason: str = "manual") -> None:
        """Terminate one of the user's sessions. Idempotent.

        Raises SessionNotFoundError when the id does not exist or belongs to
        another user. Terminating an already-terminated session succeeds
        silently and is logged like any other termination request.
        """
        session = self.repository.get_session(session_id)
        if session is None or session.user_id != user_id:
            raise SessionNotFoundError(session_id)
        changed = self.repository.terminate_session(session_id, user_id)
        self.audit.log(
            AuditAction.SESSION_TERMINATED,
            user_id=user_id,
            session_id=session_id,
            details={"reason": reason, "already_terminated": not changed},
        )

    def terminate_all_sessions(self, user_id: str, except_token: str | None = None) -> int:
        """Terminate every active session except the one holding except_token.

        Returns the number of sessions terminated. One summarising audit event
        is written for the whole batch.
        """
        count = self.repository.terminate_user_sessions(user_id, self.clock.now(), except_token)
        logger.info("Terminated %d session(s) for %s", count, user_id)
        self.audit.log(
            AuditAction.SESSION_TERMINATED,
            user_id=user_id,
            details={
                "reason": "terminate_all",
                "excluded_current": bool(except_token),
                "terminated": count,
            },
        )
        return count

    def touch(self, session_token: str) -> None:
        """Bump last_active on sessions holding this token. No match is a no-op."""
        self.repository.touch_sessions(session_token, self.clock.now())

    def sweep_expired(self) -> int:
        """Mark every expired, unterminated session terminated. Returns the count."""
        count = self.repository.terminate_expired_sessions(self.clock.now())
        if count:
            logger.info("Expiry sweep terminated %d session(s)", count)
        return count
