"""
security/schemas.py -- Request and response models for AccountSecurityService.

These Pydantic v2 models define the contract the service exposes to whatever
outer layer calls it (HTTP handlers, the CLI). They are intentionally separate
from the dataclasses in core/models.py, which own the internal domain
representation. The service maps between the two.

Secrets never appear in a response model except TwoFactorSetupResponse, which
exists precisely to hand the new secret and backup codes to the user once.
"""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from core.models import AuditAction, AuditLogEntry, SecurityScore, TwoFactorSetup, TwoFactorStatus

# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class AuditQuery(BaseModel):
    """Filters and pagination for the audit log query.

    Out-of-range values are rejected rather than clamped, so a caller asking
    for page 0 learns about it instead of silently getting page 1.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    page: int = Field(default=1, ge=1)
    limit: int = Field(default=50, ge=1, le=100)
    days: int = Field(default=30, ge=1, le=365, description="Trailing window in days.")
    action: Optional[AuditAction] = None
    success: Optional[bool] = None


# ---------------------------------------------------------------------------
# Two-factor
# ---------------------------------------------------------------------------


class TwoFactorSetupResponse(BaseModel):
    secret: str
    qr_code: Optional[str] = None
    provisioning_uri: str
    backup_codes: list[str]
    manual_entry_key: str

    @classmethod
    def from_domain(cls, setup: TwoFactorSetup) -> "TwoFactorSetupResponse":
        return cls(
            secret=setup.secret,
            qr_code=setup.qr_code,
            provisioning_uri=setup.provisioning_uri,
            backup_codes=list(setup.backup_codes),
            manual_entry_key=setup.manual_entry_key,
        )


class TwoFactorStatusResponse(BaseModel):
    enabled: bool
    backup_codes_remaining: int
    enabled_at: Optional[datetime] = None

    @classmethod
    def from_domain(cls, status: TwoFactorStatus) -> "TwoFactorStatusResponse":
        return cls(
            enabled=status.enabled,
            backup_codes_remaining=status.backup_codes_remaining,
            enabled_at=status.enabled_at,
        )


class VerificationResult(BaseModel):
    """Outcome of a successful second-factor check."""

    verified: bool = True
    backup_code_used: bool = False
    backup_codes_remaining: Optional[int] = None


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------


class SessionResponse(BaseModel):
    id: str
    ip_address: Optional[str] = None
    location: Optional[str] = None
    browser: Optional[str] = None
    os: Optional[str] = None
    device: Optional[str] = None
    last_active: Optional[datetime] = None
    created_at: Optional[datetime] = None
    expires_at: datetime
    current: bool = False


class SessionStatistics(BaseModel):
    total: int
    current: int
    devices: dict[str, int] = Field(default_factory=dict)


class SessionListResponse(BaseModel):
    sessions: list[SessionResponse]
    statistics: SessionStatistics


class LoginResult(BaseModel):
    """Returned by complete_login. session_token is shown to the client once."""

    session_id: str
    session_token: str
    expires_at: datetime
    suspicious: bool = False


# ---------------------------------------------------------------------------
# Audit log
# ---------------------------------------------------------------------------


class AuditEntryResponse(BaseModel):
    id: int
    action: AuditAction
    success: bool
    timestamp: datetime
    session_id: Optional[str] = None
    details: dict[str, Any] = Field(default_factory=dict)
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    location: Optional[str] = None

    @classmethod
    def from_domain(cls, entry: AuditLogEntry) -> "AuditEntryResponse":
        return cls(
            id=entry.id,
            action=entry.action,
            success=entry.success,
            timestamp=entry.timestamp,
            session_id=entry.session_id,
            details=entry.details,
            ip_address=entry.ip_address,
            user_agent=entry.user_agent,
            location=entry.location,
        )


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    pages: int


class AuditStatsResponse(BaseModel):
    days: int
    total_events: int
    successful_events: int
    failed_events: int
    login_attempts: int
    two_factor_events: int
    suspicious_events: int
    unique_locations: int
    events_by_day: dict[str, int] = Field(default_factory=dict)


class AuditLogPage(BaseModel):
    entries: list[AuditEntryResponse]
    pagination: Pagination
    statistics: AuditStatsResponse


# ---------------------------------------------------------------------------
# Score
# ---------------------------------------------------------------------------


class RecommendationResponse(BaseModel):
    id: str
    type: str
    title: str
    description: str
    action: Optional[str] = None


class SecurityScoreResponse(BaseModel):
    score: int = Field(ge=0, le=100)
    recommendations: list[RecommendationResponse]
    two_factor_enabled: bool
    email_verified: bool
    last_login_at: Optional[datetime] = None
    failed_events: int

    @classmethod
    def from_domain(
        cls,
        result: SecurityScore,
        *,
        two_factor_enabled: bool,
        email_verified: bool,
        last_login_at: Optional[datetime],
        failed_events: int,
    ) -> "SecurityScoreResponse":
        return cls(
            score=result.value,
            recommendations=[
                RecommendationResponse(
                    id=r.id, type=r.type, title=r.title, description=r.description, action=r.action
                )
                for r in result.recommendations
            ],
            two_factor_enabled=two_factor_enabled,
            email_verified=email_verified,
            last_login_at=last_login_at,
            failed_events=failed_events,
        )
