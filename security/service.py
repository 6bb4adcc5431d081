"""
security/service.py -- AccountSecurityService, the operations an outer layer calls.

Pattern: Facade. Each method composes the components (lockout guard, two-factor
manager, session manager, audit log, score calculator) into one user-facing
operation and returns a pydantic model from security/schemas.py. Errors are the
typed SecurityError family from core/errors.py; no method returns an error
value.

Verification failures of every kind surface as InvalidCodeError with the same
message. Which check failed is recorded in the audit trail only.

Usage:
    service = AccountSecurityService.from_settings()
    suspicious = service.begin_login("u1", ip_address=ip, user_agent=ua)
    ...  # primary credential check happens outside this package
    result = service.complete_login("u1", ip_address=ip, user_agent=ua)
"""

from __future__ import annotations

import logging
import math
from datetime import timedelta

from core.clock import Clock, SystemClock
from core.config import Settings, get_settings
from core.errors import (
    AccountLockedError,
    AlreadyEnabledError,
    InvalidCodeError,
    NotEnabledError,
    UserNotFoundError,
)
from core.geo import GeoLookup, HttpGeoLookup, no_geo_lookup
from core.models import AuditAction, UserSecurityRecord
from security.audit import SecurityAuditLog
from security.lockout import AccountLockoutGuard
from security.repository import SecurityRepository
from security.schemas import (
    AuditEntryResponse,
    AuditLogPage,
    AuditQuery,
    AuditStatsResponse,
    LoginResult,
    Pagination,
    SecurityScoreResponse,
    SessionListResponse,
    SessionResponse,
    SessionStatistics,
    TwoFactorSetupResponse,
    TwoFactorStatusResponse,
    VerificationResult,
)
from security.score import score
from security.sessions import SessionManager, generate_session_token
from security.store import SecurityStore
from security.two_factor import TwoFactorAuthManager, validate_backup_codes

logger = logging.getLogger("accountguard.service")

SCORE_WINDOW_DAYS = 30


class AccountSecurityService:
    def __init__(
        self,
        repository: SecurityRepository,
        *,
        settings: Settings | None = None,
        geo_lookup: GeoLookup = no_geo_lookup,
        clock: Clock | None = None,
    ) -> None:
        settings = settings or get_settings()
        self.repository = repository
        self.settings = settings
        self.clock = clock or SystemClock()
        self.audit = SecurityAuditLog(
            repository,
            geo_lookup=geo_lookup,
            clock=self.clock,
            suspicious_failure_threshold=settings.suspicious_failure_threshold,
            suspicious_window_minutes=settings.suspicious_window_minutes,
            known_ip_window_days=settings.known_ip_window_days,
        )
        self.lockout = AccountLockoutGuard(
            repository,
            self.audit,
            clock=self.clock,
            threshold=settings.lockout_threshold,
            lockout_minutes=settings.lockout_minutes,
        )
        self.two_factor = TwoFactorAuthManager(
            repository,
            self.audit,
            clock=self.clock,
            issuer=settings.totp_issuer,
            window_steps=settings.totp_window_steps,
            backup_code_count=settings.backup_code_count,
        )
        self.sessions = SessionManager(repository, self.audit, geo_lookup=geo_lookup, clock=self.clock)

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "AccountSecurityService":
        """Build the service with a SQL store, optional HTTP geo lookup and the system clock."""
        settings = settings or get_settings()
        geo_lookup: GeoLookup = no_geo_lookup
        if settings.geo_lookup_url:
            geo_lookup = HttpGeoLookup(settings.geo_lookup_url, timeout=settings.geo_lookup_timeout)
        return cls(SecurityStore(settings.database_url), settings=settings, geo_lookup=geo_lookup)

    def close(self) -> None:
        close = getattr(self.repository, "close", None)
        if close is not None:
            close()

    def _get_user(self, user_id: str) -> UserSecurityRecord:
        user = self.repository.get_user(user_id)
        if user is None:
            raise UserNotFoundError(user_id)
        return user

    # ------------------------------------------------------------------
    # Two-factor
    # ------------------------------------------------------------------

    def setup_2fa(self, user_id: str, account_label: str | None = None) -> TwoFactorSetupResponse:
        """Start enrolment. The label shown in the authenticator defaults to the user's email."""
        user = self._get_user(user_id)
        label = account_label or user.email or user.id
        return TwoFactorSetupResponse.from_domain(self.two_factor.generate_setup(user_id, label))

    def enable_2fa(
        self,
        user_id: str,
        secret: str,
        code: str,
        backup_codes: list[str],
        *,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> TwoFactorStatusResponse:
        """Confirm enrolment with a code from the new secret, then switch two-factor on."""
        if self._get_user(user_id).two_factor_enabled:
            raise AlreadyEnabledError()
        validate_backup_codes(backup_codes)
        if not self.two_factor.verify_totp(secret, code):
            self.audit.log(
                AuditAction.TWO_FACTOR_ENABLE,
                success=False,
                user_id=user_id,
                details={"method": "TOTP", "reason": "invalid_code"},
                ip_address=ip_address,
                user_agent=user_agent,
            )
            raise InvalidCodeError()
        self.two_factor.enable(user_id, secret, backup_codes)
        return self.two_factor_status(user_id)

    def disable_2fa(
        self,
        user_id: str,
        code: str,
        *,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> TwoFactorStatusResponse:
        """Switch two-factor off after proving possession with a TOTP or backup code."""
        user = self._get_user(user_id)
        if not user.two_factor_enabled:
            raise NotEnabledError()
        if not (
            self.two_factor.verify_totp(user.two_factor_secret, code)
            or self.two_factor.verify_and_consume_backup_code(user_id, code)
        ):
            self.audit.log(
                AuditAction.TWO_FACTOR_DISABLE,
                success=False,
                user_id=user_id,
                details={"reason": "invalid_code"},
                ip_address=ip_address,
                user_agent=user_agent,
            )
            raise InvalidCodeError()
        self.two_factor.disable(user_id)
        return self.two_factor_status(user_id)

    def verify_2fa(
        self,
        user_id: str,
        code: str,
        *,
        session_id: str | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> VerificationResult:
        """Second-factor check during sign-in.

        The lock is checked first; a locked account never reaches code
        verification. A wrong code counts towards the lockout threshold like a
        failed password.
        """
        self.lockout.ensure_unlocked(user_id)
        user = self._get_user(user_id)
        if not user.two_factor_enabled:
            raise NotEnabledError()

        method = None
        if self.two_factor.verify_totp(user.two_factor_secret, code):
            method = "TOTP"
        elif self.two_factor.verify_and_consume_backup_code(user_id, code):
            method = "backup_code"

        if method is None:
            self.audit.log(
                AuditAction.TWO_FACTOR_VERIFY,
                success=False,
                user_id=user_id,
                session_id=session_id,
                details={"reason": "invalid_code"},
                ip_address=ip_address,
                user_agent=user_agent,
            )
            self.lockout.record_failure(user_id)
            raise InvalidCodeError()

        self.lockout.record_success(user_id)
        self.audit.log(
            AuditAction.TWO_FACTOR_VERIFY,
            user_id=user_id,
            session_id=session_id,
            details={"method": method},
            ip_address=ip_address,
            user_agent=user_agent,
        )
        backup_used = method == "backup_code"
        return VerificationResult(
            backup_code_used=backup_used,
            backup_codes_remaining=self.two_factor.status(user_id).backup_codes_remaining if backup_used else None,
        )

    def two_factor_status(self, user_id: str) -> TwoFactorStatusResponse:
        return TwoFactorStatusResponse.from_domain(self.two_factor.status(user_id))

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def list_sessions(self, user_id: str, current_session_token: str | None = None) -> SessionListResponse:
        infos = self.sessions.list_sessions(user_id, current_session_token)
        devices: dict[str, int] = {}
        for info in infos:
            key = info.device or "unknown"
            devices[key] = devices.get(key, 0) + 1
        return SessionListResponse(
            sessions=[SessionResponse(**vars(info)) for info in infos],
            statistics=SessionStatistics(
                total=len(infos),
                current=sum(1 for info in infos if info.current),
                devices=devices,
            ),
        )

    def terminate_session(self, user_id: str, session_id: str, reason: str = "manual") -> None:
        self.sessions.terminate_session(session_id, user_id, reason)

    def terminate_all_sessions(self, user_id: str, current_session_token: str | None = None) -> int:
        """Sign out everywhere else. Returns how many sessions were terminated."""
        return self.sessions.terminate_all_sessions(user_id, except_token=current_session_token)

    def sweep_expired_sessions(self) -> int:
        return self.sessions.sweep_expired()

    # ------------------------------------------------------------------
    # Audit and score
    # ------------------------------------------------------------------

    def query_audit_log(self, user_id: str, query: AuditQuery | None = None) -> AuditLogPage:
        """One page of the user's trail plus statistics over the same window."""
        query = query or AuditQuery()
        limit = min(query.limit, self.settings.audit_max_page_size)
        entries, total = self.audit.query_events(
            user_id,
            action=query.action,
            success=query.success,
            since_days=query.days,
            page=query.page,
            limit=limit,
        )
        stats = self.audit.summarize(user_id, days=query.days)
        return AuditLogPage(
            entries=[AuditEntryResponse.from_domain(e) for e in entries],
            pagination=Pagination(
                page=query.page,
                limit=limit,
                total=total,
                pages=math.ceil(total / limit),
            ),
            statistics=AuditStatsResponse(
                days=stats.days,
                total_events=stats.total_events,
                successful_events=stats.successful_events,
                failed_events=stats.failed_events,
                login_attempts=stats.login_attempts,
                two_factor_events=stats.two_factor_events,
                suspicious_events=stats.suspicious_events,
                unique_locations=stats.unique_locations,
                events_by_day=stats.events_by_day,
            ),
        )

    def get_security_score(self, user_id: str) -> SecurityScoreResponse:
        user = self._get_user(user_id)
        stats = self.audit.summarize(user_id, days=SCORE_WINDOW_DAYS)
        result = score(user, stats, self.clock.now())
        return SecurityScoreResponse.from_domain(
            result,
            two_factor_enabled=user.two_factor_enabled,
            email_verified=user.email_verified,
            last_login_at=user.last_login_at,
            failed_events=stats.failed_events,
        )

    # ------------------------------------------------------------------
    # Login flow
    # ------------------------------------------------------------------

    def begin_login(
        self,
        user_id: str,
        *,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> bool:
        """Record the attempt and refuse locked accounts.

        Returns the suspicious-activity advisory for this attempt. When it is
        True a SUSPICIOUS_ACTIVITY event has been logged; whether to demand
        extra verification is the caller's decision.
        """
        self._get_user(user_id)
        try:
            self.lockout.ensure_unlocked(user_id)
        except AccountLockedError as exc:
            self.audit.log(
                AuditAction.LOGIN_ATTEMPT,
                success=False,
                user_id=user_id,
                details={"reason": "account_locked", "locked_until": exc.locked_until.isoformat()},
                ip_address=ip_address,
                user_agent=user_agent,
            )
            raise
        self.audit.log(AuditAction.LOGIN_ATTEMPT, user_id=user_id, ip_address=ip_address, user_agent=user_agent)

        suspicious = self.audit.detect_suspicious_activity(user_id, ip_address)
        if suspicious:
            logger.warning("Suspicious login attempt for %s from %s", user_id, ip_address)
            self.audit.log(
                AuditAction.SUSPICIOUS_ACTIVITY,
                user_id=user_id,
                details={"trigger": "login_attempt"},
                ip_address=ip_address,
                user_agent=user_agent,
            )
        return suspicious

    def fail_login(
        self,
        user_id: str,
        *,
        reason: str = "invalid_credentials",
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> bool:
        """Record a failed primary credential check. Returns True if this failure locked the account."""
        self.audit.log(
            AuditAction.LOGIN_FAILED,
            success=False,
            user_id=user_id,
            details={"reason": reason},
            ip_address=ip_address,
            user_agent=user_agent,
        )
        return self.lockout.record_failure(user_id)

    def complete_login(
        self,
        user_id: str,
        *,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> LoginResult:
        """Finish a sign-in: reset the failure counter and open a new session.

        The lock is checked again here, since a concurrent failure may have
        locked the account after begin_login.
        """
        self.lockout.ensure_unlocked(user_id)
        suspicious = bool(ip_address) and self.audit.detect_suspicious_activity(user_id, ip_address)
        self.lockout.record_success(user_id)

        token = generate_session_token()
        expires_at = self.clock.now() + timedelta(hours=self.settings.session_ttl_hours)
        session = self.sessions.create_session(
            user_id, token, expires_at, ip_address=ip_address, user_agent=user_agent
        )
        self.audit.log(
            AuditAction.LOGIN_SUCCESS,
            user_id=user_id,
            session_id=session.id,
            ip_address=ip_address,
            user_agent=user_agent,
        )
        return LoginResult(
            session_id=session.id,
            session_token=token,
            expires_at=expires_at,
            suspicious=suspicious,
        )

    def logout(
        self,
        session_token: str,
        *,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> bool:
        """Terminate the session holding session_token. False if it was not active."""
        session = self.sessions.find_active(session_token)
        if session is None:
            return False
        self.sessions.terminate_session(session.id, session.user_id, reason="logout")
        self.audit.log(
            AuditAction.LOGOUT,
            user_id=session.user_id,
            session_id=session.id,
            ip_address=ip_address,
            user_agent=user_agent,
        )
        return True

    def unlock_account(self, user_id: str) -> None:
        self.lockout.unlock(user_id)
