"""
core/errors.py -- Exception taxonomy for the account-security core.

Every error a caller can act on derives from SecurityError, so an outer layer
can map the whole family to responses in one place. Stores raise
RepositoryError; components raise the domain errors; nothing here carries a
reason that would let a caller tell *why* a code was rejected.

Layer rule: core/ is the kernel. No imports from security/.
"""

from __future__ import annotations

from datetime import datetime

INVALID_CODE_MESSAGE = "Invalid verification code"


class SecurityError(Exception):
    """Base class for all account-security errors."""

    code = "security_error"


class AlreadyEnabledError(SecurityError):
    code = "two_factor_already_enabled"

    def __init__(self, message: str = "Two-factor authentication is already enabled") -> None:
        super().__init__(message)


class NotEnabledError(SecurityError):
    code = "two_factor_not_enabled"

    def __init__(self, message: str = "Two-factor authentication is not enabled") -> None:
        super().__init__(message)


class InvalidCodeError(SecurityError):
    """A TOTP or backup code failed verification.

    The message is fixed. Wrong, expired, malformed and already-used codes all
    look the same to the caller.
    """

    code = "invalid_code"

    def __init__(self) -> None:
        super().__init__(INVALID_CODE_MESSAGE)


class InvalidBackupCodesError(SecurityError):
    """The backup codes offered for enrolment are not a usable set."""

    code = "invalid_backup_codes"

    def __init__(self, message: str = "Backup codes are malformed") -> None:
        super().__init__(message)


class AccountLockedError(SecurityError):
    code = "account_locked"

    def __init__(self, locked_until: datetime) -> None:
        self.locked_until = locked_until
        super().__init__(f"Account is locked until {locked_until.isoformat()}")


class SessionNotFoundError(SecurityError):
    code = "session_not_found"

    def __init__(self, session_id: str) -> None:
        self.session_id = session_id
        super().__init__("Session not found")


class UserNotFoundError(SecurityError):
    code = "user_not_found"

    def __init__(self, user_id: str) -> None:
        self.user_id = user_id
        super().__init__("User not found")


class RepositoryError(SecurityError):
    """Underlying storage failure. Always propagated except for audit writes."""

    code = "repository_error"
