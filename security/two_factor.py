"""
security/two_factor.py -- TOTP enrolment and verification, plus one-time backup codes.

TOTP follows RFC 6238 via pyotp: 6 digits, 30-second step, SHA-1. Secrets are
32 base32 characters (160 bits) from pyotp.random_base32(), which draws on the
secrets module. Backup codes are 8 uppercase alphanumeric characters drawn
with secrets.choice.

Backup codes are single-use by construction: consumption is a conditional
delete in the repository, and whichever request deletes the row wins. There
is no separate "used" flag to get out of sync.
"""

from __future__ import annotations

import base64
import binascii
import io
import logging
import secrets
import string
from collections.abc import Sequence
from datetime import datetime

import pyotp
import qrcode
import qrcode.image.svg

from core.clock import Clock, SystemClock
from core.errors import (
    AlreadyEnabledError,
    InvalidBackupCodesError,
    NotEnabledError,
    UserNotFoundError,
)
from core.models import AuditAction, TwoFactorSetup, TwoFactorStatus, UserSecurityRecord
from security.audit import SecurityAuditLog
from security.repository import SecurityRepository

logger = logging.getLogger("accountguard.two_factor")

TOTP_DIGITS = 6
TOTP_INTERVAL = 30
SECRET_LENGTH = 32  # base32 chars -> 160 bits
BACKUP_CODE_LENGTH = 8
BACKUP_CODE_ALPHABET = string.ascii_uppercase + string.digits


def generate_backup_codes(count: int = 10, length: int = BACKUP_CODE_LENGTH) -> list[str]:
    """Return `count` distinct random codes. Duplicates within the batch are redrawn."""
    codes: list[str] = []
    seen: set[str] = set()
    while len(codes) < count:
        code = "".join(secrets.choice(BACKUP_CODE_ALPHABET) for _ in range(length))
        if code in seen:
            continue
        seen.add(code)
        codes.append(code)
    return codes


def normalize_code(code: str) -> str:
    """Strip whitespace and dashes, upper-case. "abcd-1234" -> "ABCD1234"."""
    return "".join(code.split()).replace("-", "").upper()


def validate_backup_codes(codes: Sequence[str]) -> list[str]:
    """Normalize an enrolment batch, or raise InvalidBackupCodesError.

    Every code must be BACKUP_CODE_LENGTH characters from BACKUP_CODE_ALPHABET
    after normalization, the batch must not be empty, and no code may repeat.
    """
    if isinstance(codes, str) or not codes:
        raise InvalidBackupCodesError("At least one backup code is required")
    normalized = [normalize_code(str(c)) for c in codes]
    for code in normalized:
        if len(code) != BACKUP_CODE_LENGTH or any(ch not in BACKUP_CODE_ALPHABET for ch in code):
            raise InvalidBackupCodesError()
    if len(set(normalized)) != len(normalized):
        raise InvalidBackupCodesError("Backup codes must be unique")
    return normalized


def render_qr_data_uri(data: str) -> str:
    """Render data as an SVG QR code and return it as a data URI."""
    img = qrcode.make(data, image_factory=qrcode.image.svg.SvgPathImage)
    buffer = io.BytesIO()
    img.save(buffer)
    encoded = base64.b64encode(buffer.getvalue()).decode("ascii")
    return f"data:image/svg+xml;base64,{encoded}"


class TwoFactorAuthManager:
    """Lifecycle of TOTP-based second-factor authentication.

    Usage:
        setup = manager.generate_setup("u1", "alice@example.com")
        # user scans setup.qr_code, types a code ...
        if manager.verify_totp(setup.secret, code):
            manager.enable("u1", setup.secret, setup.backup_codes)
    """

    def __init__(
        self,
        repository: SecurityRepository,
        audit: SecurityAuditLog,
        clock: Clock | None = None,
        issuer: str = "AccountGuard",
        window_steps: int = 2,
        backup_code_count: int = 10,
    ) -> None:
        self.repository = repository
        self.audit = audit
        self.clock = clock or SystemClock()
        self.issuer = issuer
        self.window_steps = window_steps
        self.backup_code_count = backup_code_count

    def _get_user(self, user_id: str) -> UserSecurityRecord:
        user = self.repository.get_user(user_id)
        if user is None:
            raise UserNotFoundError(user_id)
        return user

    def generate_setup(self, user_id: str, account_label: str) -> TwoFactorSetup:
        """Produce a fresh secret, provisioning URI, QR code and backup codes.

        Nothing is persisted. The user confirms by presenting a code, after
        which the caller passes the same secret and codes to enable().
        """
        if self._get_user(user_id).two_factor_enabled:
            raise AlreadyEnabledError()
        secret = pyotp.random_base32(length=SECRET_LENGTH)
        uri = pyotp.TOTP(secret, digits=TOTP_DIGITS, interval=TOTP_INTERVAL).provisioning_uri(
            name=account_label, issuer_name=self.issuer
        )
        return TwoFactorSetup(
            secret=secret,
            provisioning_uri=uri,
            backup_codes=generate_backup_codes(self.backup_code_count),
            manual_entry_key=secret,
            qr_code=render_qr_data_uri(uri),
        )

    def verify_totp(self, secret: str, code: str, window_steps: int | None = None) -> bool:
        """Check a 6-digit code against secret at the clock's current time.

        Accepts codes from window_steps steps either side of now (default from
        the constructor, normally 2). Stateless -- never touches the repository.
        Malformed secrets and non-numeric codes are simply False.
        """
        window = self.window_steps if window_steps is None else window_steps
        code = "".join(str(code).split())
        if len(code) != TOTP_DIGITS or not code.isdigit():
            return False
        try:
            totp = pyotp.TOTP(secret, digits=TOTP_DIGITS, interval=TOTP_INTERVAL)
            return totp.verify(code, for_time=self.clock.now(), valid_window=window)
        except (binascii.Error, ValueError, TypeError):
            return False

    def totp_now(self, secret: str, at: datetime | None = None) -> str:
        """Current code for secret. Used by tooling and tests, not by verification."""
        return pyotp.TOTP(secret, digits=TOTP_DIGITS, interval=TOTP_INTERVAL).at(at or self.clock.now())

    def verify_and_consume_backup_code(self, user_id: str, code: str) -> bool:
        """Spend one backup code. True at most once per code.

        Matching is case-insensitive. On a miss nothing is consumed and
        nothing is logged here -- the caller records the failed verification.
        """
        normalized = normalize_code(code)
        if len(normalized) != BACKUP_CODE_LENGTH:
            return False
        if not self.repository.consume_backup_code(user_id, normalized):
            return False
        self.audit.log(
            AuditAction.TWO_FACTOR_BACKUP_USED,
            user_id=user_id,
            details={"backup_code_used": True},
        )
        return True

    def enable(self, user_id: str, secret: str, backup_codes: Sequence[str]) -> None:
        """Persist the secret and codes and switch two-factor on."""
        user = self._get_user(user_id)
        if user.two_factor_enabled:
            raise AlreadyEnabledError()
        codes = validate_backup_codes(backup_codes)
        if not self.repository.enable_two_factor(user_id, secret, codes, self.clock.now()):
            # Lost a race with a concurrent enable.
            raise AlreadyEnabledError()
        logger.info("Two-factor enabled for %s (%d backup codes)", user_id, len(codes))
        self.audit.log(AuditAction.TWO_FACTOR_ENABLE, user_id=user_id, details={"method": "TOTP"})

    def disable(self, user_id: str) -> None:
        """Clear secret, codes and flag. Identity must already be verified by the caller."""
        if not self._get_user(user_id).two_factor_enabled:
            raise NotEnabledError()
        self.repository.disable_two_factor(user_id)
        logger.info("Two-factor disabled for %s", user_id)
        self.audit.log(AuditAction.TWO_FACTOR_DISABLE, user_id=user_id, details={"method": "manual"})

    def status(self, user_id: str) -> TwoFactorStatus:
        user = self._get_user(user_id)
        return TwoFactorStatus(
            enabled=user.two_factor_enabled,
            backup_codes_remaining=len(user.backup_codes) if user.two_factor_enabled else 0,
            enabled_at=user.two_factor_enabled_at,
        )
